# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Background persistence of inbound Slack messages.

The webhook gate must answer Slack within its three-second window, so
accepted message events are handed to this queue and written by worker
tasks afterwards. Sink failures are logged here and never reach the
webhook response.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from slack_link.logging_config import get_logger, log_error_with_context
from slack_link.models import InboundMessage


logger = get_logger(__name__)


class MessageSink(Protocol):
    """Destination for inbound messages."""

    async def save_message(self, message: InboundMessage) -> None:
        ...


class LoggingMessageSink:
    """
    Sink that records what would be persisted without storing it.

    Message storage is not implemented yet; this keeps the pipeline
    observable until a real sink is plugged in.
    """

    async def save_message(self, message: InboundMessage) -> None:
        logger.info("Inbound message received (not persisted)", extra={
            'message_id': message.message_id,
            'channel_id': message.channel_id,
            'team_id': message.team_id,
            'thread_ts': message.thread_ts,
        })


class MessagePersistenceQueue:
    """
    Async task queue feeding a MessageSink.

    submit() never awaits the sink and never raises for sink failures.
    """

    def __init__(self, sink: MessageSink, max_workers: int = 2, max_size: int = 1000):
        """
        Args:
            sink: Destination for accepted messages
            max_workers: Number of concurrent worker tasks
            max_size: Queue bound; messages beyond it are dropped and logged
        """
        self.sink = sink
        self.max_workers = max_workers
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self.workers: List[asyncio.Task] = []
        self.running = False
        self.failures = 0

        logger.info("Message persistence queue initialized", extra={
            'max_workers': max_workers,
            'max_size': max_size
        })

    def submit(self, message: InboundMessage) -> bool:
        """
        Enqueue a message without waiting.

        Returns:
            True if the message was queued, False if the queue was full
        """
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.failures += 1
            logger.error("Message persistence queue full, dropping message", extra={
                'message_id': message.message_id,
                'queue_size': self.queue.qsize()
            })
            return False

        logger.debug("Message enqueued", extra={
            'message_id': message.message_id,
            'queue_size': self.queue.qsize()
        })
        return True

    async def start(self) -> None:
        if self.running:
            logger.warning("Message persistence queue already running")
            return

        self.running = True
        for i in range(self.max_workers):
            self.workers.append(asyncio.create_task(self._worker(i)))

        logger.info("Message persistence queue started", extra={'num_workers': len(self.workers)})

    async def stop(self) -> None:
        """Drain pending messages, then cancel the workers."""
        if not self.running:
            return

        await self.queue.join()
        self.running = False

        for worker in self.workers:
            worker.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers.clear()

        logger.info("Message persistence queue stopped")

    async def drain(self) -> None:
        """Wait until every submitted message has been handled."""
        await self.queue.join()

    async def _worker(self, worker_id: int) -> None:
        while True:
            message = await self.queue.get()
            try:
                await self._persist(message, worker_id)
            finally:
                self.queue.task_done()

    async def _persist(self, message: InboundMessage, worker_id: Optional[int] = None) -> None:
        start_time = datetime.now(timezone.utc)
        try:
            await self.sink.save_message(message)
        except Exception as e:
            self.failures += 1
            log_error_with_context(
                logger,
                "Error saving message",
                e,
                message_id=message.message_id,
                worker_id=worker_id,
            )
            return

        processing_time = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        logger.debug("Message persisted", extra={
            'message_id': message.message_id,
            'worker_id': worker_id,
            'processing_time_ms': int(processing_time)
        })
