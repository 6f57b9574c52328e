"""Pydantic models for queue payloads, client profiles and audit records.

Wire payloads use camelCase keys (``clientId``, ``extractedData``...) while
the Python attributes are snake_case; ``populate_by_name`` lets callers build
models with either spelling and ``model_dump(by_alias=True)`` restores the
wire shape.
"""
from __future__ import annotations

import datetime as _dt
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientStatus(str, Enum):
    """Lifecycle status of a client record."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class VerificationRequest(BaseModel):
    """Request for an identity-document extraction, sent once per trigger."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    client_id: str = Field(alias="clientId")
    client_email: str = Field(alias="clientEmail")
    agent_id: str = Field(alias="agentId")
    agent_email: str = Field(alias="agentEmail")
    timestamp: str


class ExtractedData(BaseModel):
    """Structured output of the document extraction step.

    ``tables`` is carried through untouched; the matcher only reads
    ``key_value_pairs``.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    text: list[str] = Field(default_factory=list)
    key_value_pairs: dict[str, str] = Field(alias="keyValuePairs")
    tables: list[Any] = Field(default_factory=list)


class VerificationResult(BaseModel):
    """Extraction result for one client, as received from the results queue."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    client_id: uuid.UUID = Field(alias="clientId")
    extracted_data: ExtractedData = Field(alias="extractedData")
    timestamp: Optional[_dt.datetime] = None


class ClientProfile(BaseModel):
    """Subset of the client record read and written by the verification pipeline."""
    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    client_id: uuid.UUID
    first_name: str
    last_name: str
    date_of_birth: Optional[_dt.date] = None
    status: ClientStatus = ClientStatus.PENDING
    agent_id: Optional[str] = None


class AuditRecord(BaseModel):
    """Body of a message on the audit log queue."""
    model_config = ConfigDict(extra="allow")

    crud_operation: str
    attribute_name: str = ""
    before_value: str = ""
    after_value: str = ""
    agent_id: Optional[str] = None
    client_id: str
    date_time: str
    remarks: str = ""


@dataclass(frozen=True)
class RawMessage:
    """Transport-neutral view of one received queue message.

    ``receipt_handle`` is opaque to callers and is handed back to the queue
    client to delete or release the message.
    """
    receipt_handle: str
    body: bytes
    headers: Mapping[str, Any] = field(default_factory=dict)
    message_id: Optional[str] = None
