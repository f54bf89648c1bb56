# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Structured logging configuration for the Slack linking service.

JSON log lines with structured context, and a filter that keeps Slack
tokens and app secrets out of every record.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


class SensitiveDataFilter(logging.Filter):
    """
    Redacts Slack tokens, bearer credentials and secret-named fields.

    Bot and user tokens pass through most of this service, so the filter is
    attached to every handler installed by setup_logging().
    """

    PATTERNS = [
        # Slack tokens
        (re.compile(r'xoxb-[a-zA-Z0-9-]+'), 'REDACTED_BOT_TOKEN'),
        (re.compile(r'xoxp-[a-zA-Z0-9-]+'), 'REDACTED_USER_TOKEN'),
        (re.compile(r'xoxe\.[a-zA-Z0-9.-]+'), 'REDACTED_ROTATING_TOKEN'),
        (re.compile(r'xox[ar]-[a-zA-Z0-9-]+'), 'REDACTED_TOKEN'),

        # Bearer tokens
        (re.compile(r'Bearer\s+[a-zA-Z0-9._-]+'), 'Bearer REDACTED_TOKEN'),

        # JSON field patterns
        (re.compile(r'("(?:access_token|bot_token|user_token|client_secret|signing_secret|encryption_key)"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
    ]

    SENSITIVE_KEYS = {
        'token', 'access_token', 'bot_token', 'user_token', 'authorization',
        'client_secret', 'signing_secret', 'encryption_key', 'secret', 'code',
    }

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from log message, args and extra fields."""
        if isinstance(record.msg, str):
            record.msg = self._redact_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = self._redact_dict(record.args)
            elif isinstance(record.args, (list, tuple)):
                record.args = tuple(self._redact_value(arg) for arg in record.args)

        for key in list(record.__dict__):
            if key in JSONFormatter.RESERVED_ATTRS or key.startswith('_'):
                continue
            value = record.__dict__[key]
            if key.lower() in self.SENSITIVE_KEYS:
                record.__dict__[key] = 'REDACTED'
            elif isinstance(value, dict):
                record.__dict__[key] = self._redact_dict(value)
            elif isinstance(value, str):
                record.__dict__[key] = self._redact_value(value)

        return True

    def _redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        result = {}
        for key, value in data.items():
            if str(key).lower() in self.SENSITIVE_KEYS:
                result[key] = 'REDACTED'
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            else:
                result[key] = self._redact_value(value)
        return result

    def _redact_value(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)
        return value


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    # LogRecord attributes that are never emitted as extra fields
    RESERVED_ATTRS = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
        'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
        'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
        'exc_text', 'stack_info', 'getMessage', 'message', 'asctime', 'taskName'
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
            log_data['exception_type'] = record.exc_info[0].__name__ if record.exc_info[0] else None

        for key, value in record.__dict__.items():
            if key not in self.RESERVED_ATTRS and not key.startswith('_') and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Libraries that log every request or API call at INFO
QUIET_LOGGERS = ('slack_sdk', 'httpx', 'asyncpg', 'aiohttp.access')


def setup_logging(log_level: str = "INFO", log_format: str = "json", stream: Optional[TextIO] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    Existing root handlers are replaced so repeated calls do not duplicate
    lines. Every record passes through SensitiveDataFilter before it is
    formatted.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: 'json' for JSONFormatter, anything else for plain text
        stream: Output stream, stdout when omitted
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format.lower() == "json" else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(SensitiveDataFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    error: Exception,
    **context
) -> None:
    """
    Log an error with its type, message and any domain attributes it carries.

    Args:
        logger: Logger instance
        message: Error message
        error: Exception that occurred
        **context: Additional context fields
    """
    extra = {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **context
    }

    if hasattr(error, 'error_code'):
        extra['error_code'] = error.error_code
    if hasattr(error, 'status_code'):
        extra['status_code'] = error.status_code
    if getattr(error, 'upstream_error', None):
        extra['upstream_error'] = error.upstream_error

    logger.error(message, extra=extra, exc_info=True)
