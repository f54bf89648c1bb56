# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Webhook gate for Slack callbacks.

Slack multiplexes URL verification challenges, Events API callbacks and
slash commands onto the same endpoint, so the gate classifies each payload
by its shape. Every path answers Slack with HTTP 200 quickly: message
events are handed to the persistence queue, slash-command failures become
ephemeral text, and unknown payloads are acknowledged without action.
"""

import hashlib
import hmac
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from slack_link.dispatcher import MessageDispatcher
from slack_link.logging_config import get_logger
from slack_link.message_queue import MessagePersistenceQueue
from slack_link.models import InboundMessage, SlashCommand


logger = get_logger(__name__)

REGISTER_NOTIFICATION_COMMAND = "/register-notification"
SLASH_COMMAND_FIELDS = ("channel_id", "user_id", "team_id")


@dataclass
class WebhookResponse:
    """Response from webhook processing. A body of None means an empty 200."""
    status_code: int
    body: Optional[Dict[str, Any]] = None
    processed: bool = False
    duplicate: bool = False
    error: Optional[str] = None


def ephemeral(text: str) -> Dict[str, Any]:
    return {'response_type': 'ephemeral', 'text': text}


class SignatureValidator:
    """
    Validates Slack request signatures (v0 HMAC-SHA256 over
    "v0:{timestamp}:{body}") and rejects requests older than five minutes.
    """

    MAX_REQUEST_AGE_SECONDS = 300

    def __init__(self, signing_secret: str):
        self.signing_secret = signing_secret.encode('utf-8')

    def compute_signature(self, timestamp: str, body: bytes) -> str:
        sig_basestring = f"v0:{timestamp}:".encode('utf-8') + body
        return 'v0=' + hmac.new(self.signing_secret, sig_basestring, hashlib.sha256).hexdigest()

    def validate_signature(self, timestamp: str, body: bytes, signature: str) -> bool:
        """
        Args:
            timestamp: X-Slack-Request-Timestamp header value
            body: Raw request body bytes
            signature: X-Slack-Signature header value

        Returns:
            True if the signature matches and the timestamp is fresh
        """
        if not timestamp or not signature:
            return False

        if not self._validate_timestamp(timestamp):
            logger.warning("Webhook timestamp validation failed", extra={'timestamp': timestamp})
            return False

        is_valid = hmac.compare_digest(self.compute_signature(timestamp, body), signature)
        if not is_valid:
            logger.warning("Webhook signature mismatch", extra={'timestamp': timestamp})
        return is_valid

    def _validate_timestamp(self, timestamp: str) -> bool:
        try:
            age = abs(int(time.time()) - int(timestamp))
        except (ValueError, TypeError):
            return False
        return age <= self.MAX_REQUEST_AGE_SECONDS


class WebhookDeduplicator:
    """
    Remembers processed event ids for a TTL so Slack redeliveries are
    acknowledged without being ingested twice.

    Uses Redis when a client is given, otherwise an in-process dict. Redis
    errors fail open. claim() is a single check-and-set, so concurrent
    redeliveries of one event cannot both win.
    """

    def __init__(self, redis_client: Optional[Any] = None, ttl_seconds: int = 300):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self._memory_cache: Dict[str, datetime] = {}

        logger.info("Webhook deduplicator initialized", extra={
            'ttl_seconds': ttl_seconds,
            'using_redis': redis_client is not None
        })

    @staticmethod
    def _key(event_id: str) -> str:
        return f"slack-webhook:{event_id}"

    async def claim(self, event_id: str) -> bool:
        """
        Record event_id as seen.

        Returns:
            True if this call claimed the event, False if it was already seen
        """
        if self.redis_client:
            try:
                claimed = await self.redis_client.set(self._key(event_id), "1", nx=True, ex=self.ttl_seconds)
            except Exception as e:
                logger.error("Redis claim failed", extra={'event_id': event_id, 'error': str(e)})
                return True
            return bool(claimed)

        # No await between the check and the set
        self._clean_expired()
        if event_id in self._memory_cache:
            return False
        self._memory_cache[event_id] = datetime.now(timezone.utc)
        return True

    async def release(self, event_id: str) -> None:
        """Forget a claim so a redelivery of the event is processed again."""
        if self.redis_client:
            try:
                await self.redis_client.delete(self._key(event_id))
            except Exception as e:
                logger.error("Redis release failed", extra={'event_id': event_id, 'error': str(e)})
            return

        self._memory_cache.pop(event_id, None)

    def _clean_expired(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [
            event_id
            for event_id, seen_at in self._memory_cache.items()
            if (now - seen_at).total_seconds() > self.ttl_seconds
        ]
        for event_id in expired:
            del self._memory_cache[event_id]


class WebhookGate:
    """Single entry point for every Slack-originated callback."""

    def __init__(
        self,
        persistence_queue: MessagePersistenceQueue,
        dispatcher: MessageDispatcher,
        deduplicator: Optional[WebhookDeduplicator] = None
    ):
        self.persistence_queue = persistence_queue
        self.dispatcher = dispatcher
        self.deduplicator = deduplicator or WebhookDeduplicator()

    async def handle(self, payload: Dict[str, Any]) -> WebhookResponse:
        """
        Classify a decoded callback payload and act on it.

        Never raises and never returns a non-200 status.
        """
        start_time = time.time()
        try:
            if payload.get('type') == 'url_verification':
                logger.info("Handling URL verification challenge")
                return WebhookResponse(
                    status_code=200,
                    body={'challenge': payload.get('challenge', '')},
                    processed=True
                )

            event = payload.get('event')
            if isinstance(event, dict) and event.get('type') == 'message':
                return await self._handle_message(payload, event)

            if self._is_slash_command(payload):
                return await self._handle_slash_command(payload)

            logger.debug("Ignoring unrecognized Slack payload", extra={
                'payload_type': payload.get('type'),
            })
            return WebhookResponse(status_code=200, body={})

        except Exception as e:
            logger.error("Webhook processing error", extra={
                'error': str(e),
                'processing_time_ms': int((time.time() - start_time) * 1000)
            }, exc_info=True)
            return WebhookResponse(status_code=200, error=str(e))

    @staticmethod
    def _is_slash_command(payload: Dict[str, Any]) -> bool:
        if 'command' in payload:
            return True
        return 'event' not in payload and all(payload.get(field) for field in SLASH_COMMAND_FIELDS)

    async def _handle_message(self, payload: Dict[str, Any], event: Dict[str, Any]) -> WebhookResponse:
        # The bot's own posts come back as events; ingesting them would loop
        if event.get('subtype') == 'bot_message':
            return WebhookResponse(status_code=200)

        event_id = payload.get('event_id') or event.get('client_msg_id') or event.get('ts')
        if event_id and not await self.deduplicator.claim(event_id):
            logger.info("Duplicate webhook event detected", extra={'event_id': event_id})
            return WebhookResponse(status_code=200, duplicate=True)

        message = InboundMessage.from_event(event)
        queued = self.persistence_queue.submit(message)
        if not queued and event_id:
            # Dropped, so a redelivery gets another chance
            await self.deduplicator.release(event_id)

        logger.info("Message event accepted", extra={
            'event_id': event_id,
            'team_id': message.team_id,
            'channel_id': message.channel_id,
            'queued': queued,
        })
        return WebhookResponse(status_code=200, processed=queued)

    @staticmethod
    def _slash_failure(error: Exception, team_id: Any = None) -> WebhookResponse:
        logger.error("Error handling /register-notification command", extra={
            'team_id': team_id,
            'error_type': type(error).__name__,
            'error': str(error)
        })
        return WebhookResponse(
            status_code=200,
            body=ephemeral(f"❌ Failed to create notification thread {error}"),
            error=str(error)
        )

    async def _handle_slash_command(self, payload: Dict[str, Any]) -> WebhookResponse:
        try:
            command = SlashCommand.model_validate(payload)
        except ValidationError as e:
            return self._slash_failure(e, payload.get('team_id'))

        if command.command and command.command != REGISTER_NOTIFICATION_COMMAND:
            logger.warning("Unsupported slash command", extra={'command': command.command})
            return WebhookResponse(
                status_code=200,
                body=ephemeral(f"❌ Unsupported command {command.command}")
            )

        logger.info("Received /register-notification command", extra={
            'team_id': command.team_id,
            'channel_id': command.channel_id,
            'user_id': command.user_id,
        })

        try:
            thread = await self.dispatcher.create_notification_thread(
                channel_id=command.channel_id,
                team_id=command.team_id,
                user_id=command.user_id,
                user_name=command.user_name,
                text=command.text,
            )
        except Exception as e:
            return self._slash_failure(e, command.team_id)

        return WebhookResponse(
            status_code=200,
            body=ephemeral(
                f"✅ Notification thread created!\n"
                f"📍 Channel: {thread.channel_id}\n"
                f"🧵 Thread: {thread.thread_ts}"
            ),
            processed=True
        )
