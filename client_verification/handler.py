"""Handling of a single verification results message.

The handler decodes the payload, loads the client profile, runs identity
matching and records the outcome. It never raises: every message ends as
``Outcome.ACKED`` (delete it) or ``Outcome.RETAINED`` (leave it for
redelivery).

| Situation                    | Outcome  | Side effects                         |
|------------------------------|----------|--------------------------------------|
| malformed payload            | RETAINED | none                                 |
| unknown client               | RETAINED | none                                 |
| fields match                 | ACKED    | status -> ACTIVE, saved, audit entry |
| fields do not match          | ACKED    | failure audit entry only             |
| store / audit error          | RETAINED | whatever completed before the error  |

A failed match leaves the client in its current status; there is no
auto-rejection, and no retry is scheduled from here.
"""
from __future__ import annotations

import logging
import time
import uuid
from enum import Enum
from typing import Any, Optional, Protocol

from client_verification.constants import (
    AUDIT_ATTRIBUTE_AUTO_VERIFICATION,
    AUDIT_ATTRIBUTE_STATUS,
    AUTO_VERIFICATION_FAILED,
    AUTO_VERIFICATION_IN_PROGRESS,
    OUTCOME_ACKED,
    OUTCOME_RETAINED,
)
from client_verification.exceptions import DecodeError
from client_verification.matching import match_fields
from client_verification.metrics import (
    VERIFICATION_HANDLE_LATENCY_SECONDS,
    VERIFICATION_MESSAGE_TOTAL,
    VERIFICATION_RESULT_TOTAL,
)
from client_verification.models import ClientProfile, ClientStatus, RawMessage, VerificationResult
from client_verification.tracing import get_tracer, span_from_headers
from client_verification.validation import decode_verification_result

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    ACKED = "ACKED"
    RETAINED = "RETAINED"


class ClientStore(Protocol):
    async def find_by_id(self, client_id: uuid.UUID) -> Optional[ClientProfile]: ...

    async def save(self, profile: ClientProfile) -> None: ...

    async def exists_by_field(self, field: str, value: Any) -> bool: ...


class AuditLog(Protocol):
    async def record(
        self,
        agent_id: Optional[str],
        client_id: str,
        field: str,
        before: Optional[str],
        after: Optional[str],
        remarks: str,
    ) -> None: ...


class VerificationResultHandler:
    """Apply one verification result to the client it belongs to."""

    def __init__(self, store: ClientStore, audit_log: AuditLog) -> None:
        self._store = store
        self._audit_log = audit_log
        self._tracer = get_tracer("client-verification")

    async def handle(self, message: RawMessage) -> Outcome:
        start_ts = time.perf_counter()
        try:
            try:
                result = decode_verification_result(message.body)
            except DecodeError as exc:
                logger.error(
                    "Undecodable verification result (message %s); message will remain in queue: %s",
                    message.message_id, exc,
                )
                VERIFICATION_MESSAGE_TOTAL.labels(outcome=OUTCOME_RETAINED, reason="decode_error").inc()
                return Outcome.RETAINED

            try:
                with span_from_headers(self._tracer, "verify_client", message.headers) as span:
                    span.set_attribute("client_id", str(result.client_id))
                    outcome = await self._apply(result)
                    span.set_attribute("outcome", outcome.value)
                    return outcome
            except Exception:
                logger.exception(
                    "Error processing verification result for client %s; message will remain in queue",
                    result.client_id,
                )
                VERIFICATION_MESSAGE_TOTAL.labels(outcome=OUTCOME_RETAINED, reason="error").inc()
                return Outcome.RETAINED
        finally:
            VERIFICATION_HANDLE_LATENCY_SECONDS.observe(time.perf_counter() - start_ts)

    async def _apply(self, result: VerificationResult) -> Outcome:
        client_id = result.client_id
        logger.info("Processing verification result for client %s", client_id)

        profile = await self._store.find_by_id(client_id)
        if profile is None:
            # Not deleted: the profile may become visible on a later delivery
            logger.error("Client not found for verification result: %s", client_id)
            VERIFICATION_MESSAGE_TOTAL.labels(outcome=OUTCOME_RETAINED, reason="client_not_found").inc()
            return Outcome.RETAINED

        match = match_fields(profile, result.extracted_data)
        logger.info(
            "Verification results for client %s: name_match=%s, dob_match=%s",
            client_id, match.name_match, match.dob_match,
        )

        if match.verified:
            await self._activate(profile)
            VERIFICATION_RESULT_TOTAL.labels(result="verified").inc()
        else:
            await self._audit_log.record(
                profile.agent_id,
                str(client_id),
                AUDIT_ATTRIBUTE_AUTO_VERIFICATION,
                AUTO_VERIFICATION_IN_PROGRESS,
                AUTO_VERIFICATION_FAILED,
                f"Auto-verification failed for client {client_id}. Manual verification required.",
            )
            VERIFICATION_RESULT_TOTAL.labels(result="failed").inc()
            logger.warning("Client %s verification failed. Manual verification required", client_id)

        VERIFICATION_MESSAGE_TOTAL.labels(outcome=OUTCOME_ACKED, reason="processed").inc()
        return Outcome.ACKED

    async def _activate(self, profile: ClientProfile) -> None:
        previous = profile.status
        if previous is not ClientStatus.PENDING:
            logger.warning(
                "Client %s verified while in status %s; setting ACTIVE anyway", profile.client_id, previous.value
            )
        activated = profile.model_copy(update={"status": ClientStatus.ACTIVE})
        await self._store.save(activated)
        await self._audit_log.record(
            profile.agent_id,
            str(profile.client_id),
            AUDIT_ATTRIBUTE_STATUS,
            previous.value,
            ClientStatus.ACTIVE.value,
            f"Auto-verification successful for client {profile.client_id}. Status updated to ACTIVE.",
        )
        logger.info("Client %s verification successful. Status updated to ACTIVE", profile.client_id)
