"""Receive loop for the verification results queue.

Concurrency model:
- One ``Poller`` runs as one asyncio task; the ``PollingSupervisor`` makes
  sure there is never more than one at a time.
- Messages of a received batch are handled by at most ``concurrency``
  handlers at once (1 = strictly sequential). There is no ordering guarantee
  across batches.

Every receive call that returns (even with zero messages) is reported through
``on_poll`` so the supervisor can tell a stuck loop from an idle queue.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol

from client_verification.constants import RECEIVE_ERROR_BACKOFF_SECONDS
from client_verification.handler import Outcome
from client_verification.metrics import (
    LAST_SUCCESSFUL_POLL_TIMESTAMP,
    POLL_DELETE_FAILED_TOTAL,
    POLL_MESSAGES_RECEIVED_TOTAL,
    POLL_RECEIVE_TOTAL,
)
from client_verification.models import RawMessage

logger = logging.getLogger(__name__)


class QueueClient(Protocol):
    async def receive(self, max_messages: int, wait_time_seconds: float) -> list[RawMessage]: ...

    async def delete(self, receipt_handle: str) -> None: ...

    async def release(self, receipt_handle: str) -> None: ...

    async def close(self) -> None: ...


class MessageHandler(Protocol):
    async def handle(self, message: RawMessage) -> Outcome: ...


class Poller:
    """Long-poll the results queue and dispatch each message to the handler.

    Properties:
    - `max_messages`: upper bound on messages requested per receive call
    - `wait_time_seconds`: long-poll wait per receive call
    - `concurrency`: max in-flight handlers within one batch
    - `receive_error_backoff_seconds`: pause after a failed receive call
    """

    def __init__(
        self,
        queue: QueueClient,
        handler: MessageHandler,
        *,
        max_messages: int = 10,
        wait_time_seconds: float = 20,
        concurrency: int = 1,
        on_poll: Optional[Callable[[], None]] = None,
        receive_error_backoff_seconds: float = RECEIVE_ERROR_BACKOFF_SECONDS,
    ) -> None:
        self._queue = queue
        self._handler = handler
        self.max_messages = max_messages
        self.wait_time_seconds = wait_time_seconds
        self.concurrency = max(1, concurrency)
        self.receive_error_backoff_seconds = receive_error_backoff_seconds
        self._on_poll = on_poll
        self._stopping = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def stop(self) -> None:
        """Ask the loop to exit after the current receive call or batch."""
        self._stopping.set()

    async def run(self) -> None:
        """Receive and dispatch until ``stop()`` is called; closes the queue client on exit."""
        logger.info("Polling loop started (max_messages=%d, wait_time_seconds=%s)",
                    self.max_messages, self.wait_time_seconds)
        try:
            while not self._stopping.is_set():
                try:
                    messages = await self._queue.receive(self.max_messages, self.wait_time_seconds)
                except Exception:  # noqa: BLE001
                    POLL_RECEIVE_TOTAL.labels(result="error").inc()
                    logger.exception("Error polling verification results queue")
                    if await self._sleep_unless_stopped(self.receive_error_backoff_seconds):
                        break
                    continue

                POLL_RECEIVE_TOTAL.labels(result="ok").inc()
                self._report_poll()

                if messages:
                    POLL_MESSAGES_RECEIVED_TOTAL.inc(len(messages))
                    logger.info("Received %d verification result message(s)", len(messages))
                    await self._dispatch(messages)
        finally:
            await self._close_queue()
            logger.info("Polling loop stopped")

    async def _dispatch(self, messages: list[RawMessage]) -> None:
        if self.concurrency == 1:
            for message in messages:
                await self._process(message)
            return

        sem = asyncio.Semaphore(self.concurrency)

        async def _bounded(message: RawMessage) -> None:
            async with sem:
                await self._process(message)

        await asyncio.gather(*(_bounded(m) for m in messages))

    async def _process(self, message: RawMessage) -> None:
        try:
            outcome = await self._handler.handle(message)
        except Exception:  # noqa: BLE001
            logger.exception("Handler failed for message %s; message will remain in queue", message.message_id)
            outcome = Outcome.RETAINED
        if outcome is Outcome.ACKED:
            try:
                await self._queue.delete(message.receipt_handle)
            except Exception:  # noqa: BLE001
                # The message will be redelivered and handled again
                POLL_DELETE_FAILED_TOTAL.inc()
                logger.exception("Error deleting message %s from queue", message.message_id)
            return
        try:
            await self._queue.release(message.receipt_handle)
        except Exception:  # noqa: BLE001
            logger.exception("Error releasing message %s back to queue", message.message_id)

    def _report_poll(self) -> None:
        LAST_SUCCESSFUL_POLL_TIMESTAMP.set(time.time())
        if self._on_poll is not None:
            self._on_poll()

    async def _sleep_unless_stopped(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if ``stop()`` was called meanwhile."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _close_queue(self) -> None:
        try:
            await self._queue.close()
        except Exception:  # noqa: BLE001
            logger.warning("Error closing queue client", exc_info=True)
