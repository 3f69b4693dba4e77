"""Tests for the call log backends and the PostgREST client underneath."""

from __future__ import annotations

import json

import httpx
import pytest

from src.models.enums import CallStatus
from src.services.call_log import InMemoryCallLogStore, SupabaseCallLogStore
from src.services.errors import ConfigurationError, PersistenceError
from src.services.postgrest import PostgRESTClient


async def _record(store, *, contact_id: str = "c1", attempt: int = 1, sid: str = "CA1") -> str:
    return await store.record_attempt(
        alert_id="a1",
        contact_id=contact_id,
        phone_number="+15551230001",
        contact_name="Priya",
        call_sid=sid,
        attempt_number=attempt,
    )


# -----------------------------------------------------------------------
# In-memory backend
# -----------------------------------------------------------------------


class TestInMemoryCallLogStore:
    async def test_record_starts_initiated(self, call_log: InMemoryCallLogStore) -> None:
        entry_id = await _record(call_log)
        entry = await call_log.get_entry(entry_id)

        assert entry is not None
        assert entry.status == CallStatus.INITIATED
        assert entry.sos_alert_id == "a1"
        assert call_log.size == 1

    async def test_update_status_overwrites(self, call_log: InMemoryCallLogStore) -> None:
        entry_id = await _record(call_log)
        await call_log.update_status(entry_id, CallStatus.NO_ANSWER)
        await call_log.update_status(entry_id, CallStatus.FAILED_MAX_RETRIES)

        entry = await call_log.get_entry(entry_id)
        assert entry is not None and entry.status == CallStatus.FAILED_MAX_RETRIES

    async def test_repeated_update_is_idempotent(self, call_log: InMemoryCallLogStore) -> None:
        entry_id = await _record(call_log)
        await call_log.update_status(entry_id, CallStatus.COMPLETED)
        first = await call_log.get_entry(entry_id)
        await call_log.update_status(entry_id, CallStatus.COMPLETED)
        second = await call_log.get_entry(entry_id)

        assert first == second

    async def test_update_unknown_entry_raises(self, call_log: InMemoryCallLogStore) -> None:
        with pytest.raises(PersistenceError):
            await call_log.update_status("missing", CallStatus.COMPLETED)

    async def test_list_orders_by_contact_then_attempt(self, call_log: InMemoryCallLogStore) -> None:
        await _record(call_log, contact_id="c2", attempt=1)
        await _record(call_log, contact_id="c1", attempt=2)
        await _record(call_log, contact_id="c1", attempt=1)

        entries = await call_log.list_attempts("a1")
        assert [(e.contact_id, e.attempt_number) for e in entries] == [
            ("c1", 1),
            ("c1", 2),
            ("c2", 1),
        ]
        assert len(await call_log.list_attempts("a1", "c1")) == 2
        assert await call_log.list_attempts("other") == []


# -----------------------------------------------------------------------
# Supabase backend
# -----------------------------------------------------------------------


def _client(handler) -> PostgRESTClient:
    return PostgRESTClient(
        "https://proj.supabase.co",
        "service-key",
        transport=httpx.MockTransport(handler),
    )


class TestSupabaseCallLogStore:
    async def test_record_upserts_row(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json=[json.loads(request.content)])

        store = SupabaseCallLogStore(_client(handler))
        entry_id = await _record(store)

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/call_logs"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Authorization"] == "Bearer service-key"
        assert "resolution=merge-duplicates" in request.headers["Prefer"]
        row = json.loads(request.content)
        assert row["id"] == entry_id
        assert row["status"] == "initiated"
        assert row["attempt_number"] == 1
        assert row["sos_alert_id"] == "a1"

    async def test_update_patches_by_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": "row-1", "status": "busy"}])

        await SupabaseCallLogStore(_client(handler)).update_status("row-1", CallStatus.BUSY)

        request = seen[0]
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.row-1"
        assert json.loads(request.content)["status"] == "busy"

    async def test_update_missing_row_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[])

        with pytest.raises(PersistenceError):
            await SupabaseCallLogStore(_client(handler)).update_status("row-1", CallStatus.BUSY)

    async def test_list_attempts_filters_and_orders(self) -> None:
        rows = [
            {
                "id": "r1",
                "sos_alert_id": "a1",
                "contact_id": "c1",
                "phone_number": "+15551230001",
                "contact_name": "Priya",
                "call_sid": "CA1",
                "status": "no-answer",
                "attempt_number": 1,
                "created_at": "2026-03-14T09:30:00Z",
                "updated_at": "2026-03-14T09:30:31Z",
            },
        ]
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=rows)

        entries = await SupabaseCallLogStore(_client(handler)).list_attempts("a1", "c1")

        params = seen[0].url.params
        assert params["sos_alert_id"] == "eq.a1"
        assert params["contact_id"] == "eq.c1"
        assert params["order"] == "contact_id.asc,attempt_number.asc"
        assert [e.status for e in entries] == [CallStatus.NO_ANSWER]


class TestPostgRESTClient:
    def test_requires_credentials(self) -> None:
        with pytest.raises(ConfigurationError):
            PostgRESTClient("https://proj.supabase.co", "")

    async def test_transient_errors_are_retried(self) -> None:
        responses = iter([httpx.Response(503), httpx.Response(200, json=[{"id": "x"}])])
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return next(responses)

        rows = await _client(handler).select("call_logs", filters={"id": "x"})

        assert rows == [{"id": "x"}]
        assert len(calls) == 2

    async def test_persistent_failure_raises_persistence_error(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(PersistenceError):
            await _client(handler).select("call_logs")
        assert len(calls) == 3

    async def test_client_errors_are_not_retried(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"message": "bad column"})

        with pytest.raises(PersistenceError, match="HTTP 400"):
            await _client(handler).select("call_logs")
        assert len(calls) == 1
