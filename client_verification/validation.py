"""Decoding of raw results-queue payloads into ``VerificationResult`` models.

Decoding only checks shape and types (required keys, string values, a UUID
client id). Whether the extracted fields match the client is decided later by
``client_verification.matching``.
"""
from __future__ import annotations

import datetime as _dt
from typing import Any

from pydantic import ValidationError

from client_verification.exceptions import DecodeError
from client_verification.models import VerificationResult


def decode_verification_result(raw: bytes | bytearray | str) -> VerificationResult:
    """Parse a JSON payload into a ``VerificationResult``.

    Raises ``DecodeError`` for malformed JSON, missing required keys, wrong
    value types or a client id that is not a UUID.

    Example:
        >>> result = decode_verification_result(
        ...     b'{"clientId": "6f1c9c1e-6d52-4c36-9a43-1c1f9b0e6c0a",'
        ...     b' "extractedData": {"keyValuePairs": {"Name": "JOHN DOE"}}}'
        ... )
        >>> result.extracted_data.key_value_pairs["Name"]
        'JOHN DOE'
    """
    try:
        return VerificationResult.model_validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(_describe(exc)) from exc


def export_result_json_schema() -> dict[str, Any]:
    """Return the JSON Schema for ``VerificationResult`` (for producers in other languages)."""
    return VerificationResult.model_json_schema(by_alias=True)


def now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)
