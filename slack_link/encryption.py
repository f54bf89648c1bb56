# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
At-rest encryption for Slack bot and user tokens.

AES-256-CBC with PKCS7 padding and a fresh IV per value. The stored form
is base64(iv || ciphertext).
"""

import base64
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

IV_SIZE = 16
BLOCK_SIZE_BITS = 128


class TokenEncryption:
    """Encrypts tokens before they reach the database and decrypts them on read."""

    def __init__(self, encryption_key: str):
        """
        Args:
            encryption_key: At least 32 characters; the first 32 form the AES-256 key

        Raises:
            ValueError: If the key is too short
        """
        if not encryption_key or len(encryption_key) < 32:
            raise ValueError("Encryption key must be at least 32 characters")
        self._key = encryption_key[:32].encode("utf-8")

    def _cipher(self, iv: bytes) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(iv))

    def encrypt(self, token: str) -> str:
        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(token.encode("utf-8")) + padder.finalize()

        encryptor = self._cipher(iv).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, stored: str) -> str:
        """
        Raises:
            ValueError: If the value is not valid base64 or was encrypted with another key
        """
        try:
            raw = base64.b64decode(stored, validate=True)
            iv, ciphertext = raw[:IV_SIZE], raw[IV_SIZE:]

            decryptor = self._cipher(iv).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except Exception as e:
            raise ValueError("Failed to decrypt token") from e
