"""Append-only call log for emergency escalation attempts.

Every placed call gets exactly one row, keyed by (SOS alert, contact,
attempt number).  After creation only the ``status`` column changes,
once per status check, and rows are never deleted.  ``update_status`` is
an idempotent overwrite, so repeating it with the same terminal value is
harmless.

Backends:
    * ``InMemoryCallLogStore`` -- process-local, for development and tests.
    * ``SupabaseCallLogStore`` -- the ``call_logs`` table via PostgREST.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

import structlog

from src.models.enums import CallStatus
from src.models.escalation import CallAttempt
from src.services.errors import PersistenceError

if TYPE_CHECKING:
    from src.services.postgrest import PostgRESTClient

logger = structlog.get_logger(__name__)

CALL_LOGS_TABLE: Final[str] = "call_logs"


@runtime_checkable
class CallLogStore(Protocol):
    """Async call-log interface."""

    async def record_attempt(
        self,
        alert_id: str,
        contact_id: str,
        phone_number: str,
        contact_name: str,
        call_sid: str,
        attempt_number: int,
    ) -> str: ...

    async def update_status(self, log_entry_id: str, status: CallStatus) -> None: ...

    async def get_entry(self, log_entry_id: str) -> CallAttempt | None: ...

    async def list_attempts(self, alert_id: str, contact_id: str | None = None) -> list[CallAttempt]: ...


def _sorted(entries: list[CallAttempt]) -> list[CallAttempt]:
    return sorted(entries, key=lambda e: (e.contact_id, e.attempt_number))


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryCallLogStore:
    """Dict-backed call log guarded by an :class:`asyncio.Lock`."""

    __slots__ = ("_entries", "_lock")

    def __init__(self) -> None:
        self._entries: dict[str, CallAttempt] = {}
        self._lock = asyncio.Lock()

    async def record_attempt(
        self,
        alert_id: str,
        contact_id: str,
        phone_number: str,
        contact_name: str,
        call_sid: str,
        attempt_number: int,
    ) -> str:
        entry = CallAttempt(
            sos_alert_id=alert_id,
            contact_id=contact_id,
            phone_number=phone_number,
            contact_name=contact_name,
            call_sid=call_sid,
            attempt_number=attempt_number,
        )
        async with self._lock:
            self._entries[entry.id] = entry
        return entry.id

    async def update_status(self, log_entry_id: str, status: CallStatus) -> None:
        async with self._lock:
            entry = self._entries.get(log_entry_id)
            if entry is None:
                raise PersistenceError(f"Unknown call log entry {log_entry_id!r}")
            if entry.status == status:
                return
            self._entries[log_entry_id] = entry.model_copy(
                update={"status": status, "updated_at": datetime.now(UTC)},
            )

    async def get_entry(self, log_entry_id: str) -> CallAttempt | None:
        return self._entries.get(log_entry_id)

    async def list_attempts(self, alert_id: str, contact_id: str | None = None) -> list[CallAttempt]:
        return _sorted([
            entry
            for entry in self._entries.values()
            if entry.sos_alert_id == alert_id
            and (contact_id is None or entry.contact_id == contact_id)
        ])

    @property
    def size(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Supabase backend
# ---------------------------------------------------------------------------


class SupabaseCallLogStore:
    """Call log persisted to the ``call_logs`` table.

    Entry ids are generated here rather than by the database so that a
    retried insert upserts the same row instead of duplicating it.
    """

    __slots__ = ("_client", "_table")

    def __init__(self, client: PostgRESTClient, *, table: str = CALL_LOGS_TABLE) -> None:
        self._client = client
        self._table = table

    async def record_attempt(
        self,
        alert_id: str,
        contact_id: str,
        phone_number: str,
        contact_name: str,
        call_sid: str,
        attempt_number: int,
    ) -> str:
        entry = CallAttempt(
            sos_alert_id=alert_id,
            contact_id=contact_id,
            phone_number=phone_number,
            contact_name=contact_name,
            call_sid=call_sid,
            attempt_number=attempt_number,
        )
        await self._client.insert(self._table, entry.model_dump(mode="json"), upsert=True)
        return entry.id

    async def update_status(self, log_entry_id: str, status: CallStatus) -> None:
        rows = await self._client.update(
            self._table,
            {"status": str(status), "updated_at": datetime.now(UTC).isoformat()},
            filters={"id": log_entry_id},
        )
        if not rows:
            raise PersistenceError(f"Unknown call log entry {log_entry_id!r}")

    async def get_entry(self, log_entry_id: str) -> CallAttempt | None:
        rows = await self._client.select(self._table, filters={"id": log_entry_id}, limit=1)
        return CallAttempt.model_validate(rows[0]) if rows else None

    async def list_attempts(self, alert_id: str, contact_id: str | None = None) -> list[CallAttempt]:
        filters = {"sos_alert_id": alert_id}
        if contact_id is not None:
            filters["contact_id"] = contact_id
        rows = await self._client.select(
            self._table,
            filters=filters,
            order="contact_id.asc,attempt_number.asc",
        )
        return _sorted([CallAttempt.model_validate(row) for row in rows])
