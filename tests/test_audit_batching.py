import asyncio
import types
from types import SimpleNamespace

import pytest

from client_verification import audit as audit_module
from client_verification.audit import AuditRecordBatcher, QueueAuditLog, build_update_record
from client_verification.config import Settings


def capture_writes(batcher):
    written = []

    async def fake_write(items):
        written.append(list(items))

    batcher._write_batch = types.MethodType(lambda self, items: fake_write(items), batcher)  # type: ignore
    return written


@pytest.mark.asyncio
async def test_batch_flushes_on_size():
    batcher = AuditRecordBatcher(batch_size=5, flush_interval_ms=10_000, queue_max=100)
    written = capture_writes(batcher)
    batcher.start()

    for i in range(5):
        await batcher.enqueue({"client_id": f"c{i}", "attribute_name": "Status"})

    # Give the loop a tick to process the size-triggered flush
    await asyncio.sleep(0.05)

    assert len(written) == 1
    assert len(written[0]) == 5
    await batcher.shutdown()


@pytest.mark.asyncio
async def test_batch_flushes_on_interval():
    batcher = AuditRecordBatcher(batch_size=10, flush_interval_ms=50, queue_max=100)
    written = capture_writes(batcher)
    batcher.start()

    for i in range(3):
        await batcher.enqueue({"client_id": f"c{i}", "attribute_name": "Status"})

    # Wait longer than interval to force a timer-based flush
    await asyncio.sleep(0.1)

    assert len(written) >= 1
    assert sum(len(b) for b in written) >= 3
    await batcher.shutdown()


@pytest.mark.asyncio
async def test_full_buffer_drops_records():
    batcher = AuditRecordBatcher(batch_size=2, flush_interval_ms=10_000, queue_max=2)
    written = capture_writes(batcher)

    for i in range(3):
        await batcher.enqueue({"client_id": f"c{i}"})

    await batcher.shutdown()
    assert [r["client_id"] for batch in written for r in batch] == ["c0", "c1"]


@pytest.mark.asyncio
async def test_shutdown_flushes_pending_records():
    batcher = AuditRecordBatcher(batch_size=100, flush_interval_ms=10_000, queue_max=1000)
    written = capture_writes(batcher)
    batcher.start()

    await batcher.enqueue({"client_id": "c1"})
    await batcher.shutdown()

    assert sum(len(b) for b in written) == 1
    assert batcher.is_running is False


def test_build_update_record_fills_update_fields():
    record = build_update_record("agent-1", "c1", "Status", "PENDING", "ACTIVE", "done")
    assert record.crud_operation == "Update"
    assert record.attribute_name == "Status"
    assert (record.before_value, record.after_value) == ("PENDING", "ACTIVE")
    assert record.date_time.endswith("Z")


def test_build_update_record_blank_values():
    record = build_update_record(None, "c1", "Status", None, None, "")
    assert record.before_value == ""
    assert record.after_value == ""
    assert record.agent_id is None


class FakeConnection:
    def __init__(self):
        self.is_closed = False

    async def channel(self):
        return SimpleNamespace(is_closed=False)

    async def close(self):
        self.is_closed = True


@pytest.mark.asyncio
async def test_queue_audit_log_publishes_records(monkeypatch):
    published = []

    async def fake_connect(settings=None):
        return FakeConnection()

    async def fake_publish(channel, queue_name, payload, headers=None, persistent=True):
        published.append((queue_name, payload))

    monkeypatch.setattr(audit_module, "connect", fake_connect)
    monkeypatch.setattr(audit_module, "publish_json", fake_publish)

    audit_log = QueueAuditLog(Settings(audit_log_queue="audit.test.q", audit_flush_interval_ms=10_000))
    await audit_log.record("agent-1", "c1", "Status", "PENDING", "ACTIVE", "Auto-verified")
    await audit_log.shutdown()

    assert len(published) == 1
    queue_name, payload = published[0]
    assert queue_name == "audit.test.q"
    assert payload["crud_operation"] == "Update"
    assert payload["client_id"] == "c1"


@pytest.mark.asyncio
async def test_queue_audit_log_swallows_publish_failures(monkeypatch):
    async def failing_connect(settings=None):
        raise ConnectionError("broker unavailable")

    monkeypatch.setattr(audit_module, "connect", failing_connect)

    audit_log = QueueAuditLog(Settings(audit_flush_interval_ms=10_000))
    await audit_log.record("agent-1", "c1", "Status", "PENDING", "ACTIVE", "Auto-verified")

    # Does not raise
    await audit_log.shutdown()
