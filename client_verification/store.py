"""Client record access for the verification pipeline, backed by async SQLAlchemy."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import exists, select, update

from client_verification.db import get_session
from client_verification.models import ClientProfile, ClientStatus
from client_verification.orm_models import ClientProfileRow


_LOOKUP_FIELDS = {"client_id", "email_address", "agent_id"}


def _to_profile(row: ClientProfileRow) -> ClientProfile:
    return ClientProfile(
        client_id=row.client_id,
        first_name=row.first_name,
        last_name=row.last_name,
        date_of_birth=row.date_of_birth,
        status=ClientStatus(row.status),
        agent_id=row.agent_id,
    )


class SqlClientStore:
    """``ClientStore`` over the ``client_profiles`` table.

    ``save`` writes the profile's current status as-is; there is no
    compare-and-swap against the status that was read, so a concurrent manual
    status change can be overwritten.
    """

    def __init__(self, session_factory: Any = get_session) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, client_id: uuid.UUID) -> Optional[ClientProfile]:
        async with self._session_factory() as session:
            row = await session.get(ClientProfileRow, client_id)
            return _to_profile(row) if row is not None else None

    async def save(self, profile: ClientProfile) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ClientProfileRow)
                .where(ClientProfileRow.client_id == profile.client_id)
                .values(
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    date_of_birth=profile.date_of_birth,
                    status=profile.status.value,
                    agent_id=profile.agent_id,
                )
            )
            await session.commit()

    async def exists_by_field(self, field: str, value: Any) -> bool:
        if field not in _LOOKUP_FIELDS:
            raise ValueError(f"Unsupported lookup field '{field}'")
        column = getattr(ClientProfileRow, field)
        async with self._session_factory() as session:
            result = await session.execute(select(exists().where(column == value)))
            return bool(result.scalar())
