"""Prometheus metrics and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, Gauge, start_http_server


# Message handling
VERIFICATION_MESSAGE_TOTAL = Counter(
    "verification_message_total", "Total results messages handled", ["outcome", "reason"]
)
VERIFICATION_RESULT_TOTAL = Counter(
    "verification_result_total", "Identity matching outcomes", ["result"]  # verified | failed
)
VERIFICATION_HANDLE_LATENCY_SECONDS = Histogram(
    "verification_handle_latency_seconds", "Time to handle a single results message",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5),
)

# Poller
POLL_RECEIVE_TOTAL = Counter(
    "verification_poll_receive_total", "Receive calls against the results queue", ["result"]  # ok | error
)
POLL_MESSAGES_RECEIVED_TOTAL = Counter(
    "verification_poll_messages_received_total", "Messages received from the results queue"
)
POLL_DELETE_FAILED_TOTAL = Counter(
    "verification_poll_delete_failed_total", "Failed deletes of handled messages"
)
LAST_SUCCESSFUL_POLL_TIMESTAMP = Gauge(
    "verification_last_successful_poll_timestamp_seconds", "Unix time of the last completed receive call"
)

# Supervisor
SUPERVISOR_RESTART_TOTAL = Counter(
    "verification_supervisor_restart_total", "Poller restart attempts", ["result"]  # ok | error | exhausted
)
SUPERVISOR_STATUS = Gauge(
    "verification_supervisor_status", "1 for the current supervisor status, 0 otherwise", ["status"]
)

# Audit batching
AUDIT_RECORD_ENQUEUED_TOTAL = Counter(
    "audit_record_enqueued_total",
    "Total audit records enqueued for batching",
    ["attribute"],
)
AUDIT_RECORDS_DROPPED_TOTAL = Counter(
    "audit_records_dropped_total",
    "Total audit records dropped due to full buffer",
)
AUDIT_BATCH_FLUSH_TOTAL = Counter(
    "audit_batch_flush_total",
    "Total number of audit batch flushes",
    ["reason"],  # size | interval | shutdown | manual
)
AUDIT_BATCH_SIZE = Histogram(
    "audit_batch_size",
    "Number of audit records published in a single batch",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
)
AUDIT_PUBLISH_FAILED_TOTAL = Counter(
    "audit_publish_failed_total",
    "Total audit records that could not be published",
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)
