"""Shared constants for verification processing, supervision and audit records.

Keys of ``extractedData.keyValuePairs`` consumed by the matcher:
- ``Name``: full name as printed on the identity document.
- ``Date of Birth``: date of birth in one of the layouts in ``client_verification.dates``.

Audit records (``AuditRecord.attribute_name``):
- ``Status``: a successful auto-verification moved the client to ``ACTIVE``.
- ``Auto-Verification``: auto-verification failed; the status is unchanged and
  manual verification is required.
"""

# Extracted field names
FIELD_NAME = "Name"
FIELD_DATE_OF_BIRTH = "Date of Birth"

# Audit attribute names and values
AUDIT_CRUD_UPDATE = "Update"
AUDIT_ATTRIBUTE_STATUS = "Status"
AUDIT_ATTRIBUTE_AUTO_VERIFICATION = "Auto-Verification"
AUTO_VERIFICATION_IN_PROGRESS = "In Progress"
AUTO_VERIFICATION_FAILED = "Failed"

# Poller
RECEIVE_ERROR_BACKOFF_SECONDS = 5.0
LONG_POLL_INTERVAL_SECONDS = 0.5

# Results queue redelivery
RETAINED_COUNT_HEADER = "x-retained-count"
RETRY_QUEUE_SUFFIX = ".retry"
DEAD_LETTER_QUEUE_SUFFIX = ".dlq"

# Supervisor
STALE_POLL_GRACE_SECONDS = 30
POLLER_SHUTDOWN_TIMEOUT_SECONDS = 10.0
POLLER_DISCARD_TIMEOUT_SECONDS = 5.0
HEALTH_CHECK_SHUTDOWN_TIMEOUT_SECONDS = 5.0

# Handler outcomes (metric labels)
OUTCOME_ACKED = "acked"
OUTCOME_RETAINED = "retained"
