"""Audit log publishing with async batching onto the audit log queue.

Verification outcomes are recorded as ``AuditRecord`` messages on the audit
log queue, where a separate service persists them. Recording is
fire-and-forget: ``QueueAuditLog.record`` only enqueues the record into an
in-memory batcher, and publish failures are logged and counted but never
raised back into message handling.

How to use:
- Build one ``QueueAuditLog`` per process and call ``start()`` once the event
  loop is running.
- Call ``await audit_log.shutdown()`` during shutdown to flush pending records.

Example:
    >>> audit_log = QueueAuditLog(settings)
    >>> audit_log.start()
    >>> await audit_log.record("agent-1", "c0ffee...", "Status", "PENDING", "ACTIVE", "Auto-verified")
    >>> await audit_log.shutdown()
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from client_verification.config import Settings
from client_verification.constants import AUDIT_CRUD_UPDATE
from client_verification.metrics import (
    AUDIT_BATCH_FLUSH_TOTAL,
    AUDIT_BATCH_SIZE,
    AUDIT_PUBLISH_FAILED_TOTAL,
    AUDIT_RECORD_ENQUEUED_TOTAL,
    AUDIT_RECORDS_DROPPED_TOTAL,
)
from client_verification.models import AuditRecord
from client_verification.rabbit import connect, publish_json
from client_verification.validation import now_iso

logger = logging.getLogger(__name__)


def build_update_record(
    agent_id: Optional[str],
    client_id: str,
    field: str,
    before: Optional[str],
    after: Optional[str],
    remarks: str,
) -> AuditRecord:
    """Return the ``Update`` audit record for a single attribute change."""
    return AuditRecord(
        crud_operation=AUDIT_CRUD_UPDATE,
        attribute_name=field,
        before_value=before or "",
        after_value=after or "",
        agent_id=agent_id,
        client_id=client_id,
        date_time=now_iso(),
        remarks=remarks,
    )


class AuditRecordBatcher:
    """In-memory buffer that writes audit records in batches.

    A batch is written as soon as ``batch_size`` records are waiting, and in
    any case every ``flush_interval_ms``. Once ``queue_max`` records are
    buffered, further records are dropped (and counted) rather than blocking
    message handling.

    Subclasses (or tests) replace ``_write_batch`` to change where a batch goes.
    """

    def __init__(self, batch_size: int, flush_interval_ms: int, queue_max: int) -> None:
        self.batch_size = max(1, int(batch_size))
        self.flush_interval = max(1, int(flush_interval_ms)) / 1000.0
        self._pending: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max(self.batch_size, int(queue_max)))
        self._batch_ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._flusher: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._flusher is not None and not self._flusher.done()

    def start(self) -> None:
        """Start the background flusher; calling it again while running does nothing."""
        if self.is_running:
            return
        self._closing.clear()
        self._flusher = asyncio.create_task(self._flush_loop(), name="audit-record-flusher")

    async def enqueue(self, record: dict[str, Any]) -> None:
        if self._pending.full():
            AUDIT_RECORDS_DROPPED_TOTAL.inc()
            logger.warning("Audit buffer full; dropping record for client %s", record.get("client_id"))
            return
        self._pending.put_nowait(record)
        AUDIT_RECORD_ENQUEUED_TOTAL.labels(attribute=str(record.get("attribute_name") or "unknown")).inc()
        if self._pending.qsize() >= self.batch_size:
            self._batch_ready.set()

    async def flush(self, reason: str = "manual") -> None:
        await self._flush_once(reason)

    async def shutdown(self) -> None:
        """Stop the flusher and write out everything still buffered."""
        flusher, self._flusher = self._flusher, None
        if flusher is not None and not flusher.done():
            self._closing.set()
            self._batch_ready.set()
            done, _ = await asyncio.wait({flusher}, timeout=self.flush_interval * 2)
            if not done:
                flusher.cancel()
        while not self._pending.empty():
            await self._flush_once("shutdown")

    async def _flush_loop(self) -> None:
        while not self._closing.is_set():
            reason = await self._next_flush_reason()
            try:
                await self._flush_once(reason)
            except Exception:  # noqa: BLE001
                logger.exception("Audit batch flush failed")

    async def _next_flush_reason(self) -> str:
        try:
            await asyncio.wait_for(self._batch_ready.wait(), timeout=self.flush_interval)
            return "size"
        except asyncio.TimeoutError:
            return "interval"
        finally:
            self._batch_ready.clear()

    def _take_batch(self) -> list[dict[str, Any]]:
        batch: list[dict[str, Any]] = []
        while len(batch) < self.batch_size:
            try:
                batch.append(self._pending.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _flush_once(self, reason: str) -> None:
        batch = self._take_batch()
        if not batch:
            return
        AUDIT_BATCH_FLUSH_TOTAL.labels(reason=reason).inc()
        AUDIT_BATCH_SIZE.observe(len(batch))
        await self._write_batch(batch)

    async def _write_batch(self, items: list[dict[str, Any]]) -> None:
        raise NotImplementedError


class QueueAuditLog(AuditRecordBatcher):
    """``AuditLog`` that publishes batched records to the audit log queue.

    A single connection is opened lazily on the first flush and reused; it is
    dropped after a publish failure so the next flush reconnects.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or Settings()
        super().__init__(
            batch_size=settings.audit_batch_size,
            flush_interval_ms=settings.audit_flush_interval_ms,
            queue_max=settings.audit_queue_max,
        )
        self._settings = settings
        self._queue_name = settings.audit_log_queue
        self._connection: Any = None
        self._channel: Any = None

    async def record(
        self,
        agent_id: Optional[str],
        client_id: str,
        field: str,
        before: Optional[str],
        after: Optional[str],
        remarks: str,
    ) -> None:
        audit_record = build_update_record(agent_id, client_id, field, before, after, remarks)
        await self.enqueue(audit_record.model_dump())

    async def _ensure_channel(self) -> Any:
        if self._channel is None or self._channel.is_closed:
            if self._connection is None or self._connection.is_closed:
                self._connection = await connect(settings=self._settings)
            self._channel = await self._connection.channel()
        return self._channel

    async def _write_batch(self, items: list[dict[str, Any]]) -> None:
        try:
            channel = await self._ensure_channel()
            for item in items:
                await publish_json(channel, self._queue_name, item)
        except Exception:  # noqa: BLE001
            AUDIT_PUBLISH_FAILED_TOTAL.inc(len(items))
            logger.exception("Failed to publish %d audit record(s) to %s", len(items), self._queue_name)
            await self._reset_connection()

    async def _reset_connection(self) -> None:
        connection, self._connection, self._channel = self._connection, None, None
        if connection is not None and not connection.is_closed:
            try:
                await connection.close()
            except Exception:  # noqa: BLE001
                logger.debug("Ignoring error while closing audit connection", exc_info=True)

    async def shutdown(self) -> None:
        await super().shutdown()
        await self._reset_connection()
