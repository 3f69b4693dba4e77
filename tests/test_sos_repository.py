"""Tests for the Supabase-backed SOS repository."""

from __future__ import annotations

import json

import httpx

from src.models.enums import TriggerType
from src.models.escalation import RetrySettings, SOSAlert
from src.services.postgrest import PostgRESTClient
from src.services.sos_repository import SupabaseSOSRepository


def _repository(handler) -> SupabaseSOSRepository:
    client = PostgRESTClient(
        "https://proj.supabase.co",
        "service-key",
        transport=httpx.MockTransport(handler),
    )
    return SupabaseSOSRepository(client)


async def test_create_alert_writes_known_columns() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json=[json.loads(request.content)])

    alert = SOSAlert(user_id="u1", latitude=12.97, longitude=77.59, location="MG Road", trigger_type=TriggerType.VOICE)
    await _repository(handler).create_alert(alert)

    request = seen[0]
    assert request.url.path == "/rest/v1/sos_alerts"
    row = json.loads(request.content)
    assert row["id"] == alert.id
    assert row["trigger_type"] == "voice"
    assert "location" not in row


async def test_list_contacts_maps_rows() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["user_id"] == "eq.u1"
        return httpx.Response(200, json=[
            {"id": 7, "user_id": "u1", "name": "Asha", "phone_number": "+15551230003", "relationship": "sister"},
        ])

    contacts = await _repository(handler).list_contacts("u1")

    assert len(contacts) == 1
    assert contacts[0].id == "7"
    assert contacts[0].relationship == "sister"


async def test_retry_settings_absent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    assert await _repository(handler).get_retry_settings("u1") is None


async def test_retry_settings_null_columns_use_defaults() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[
            {"user_id": "u1", "max_retry_attempts": 5, "retry_interval_minutes": None},
        ])

    settings = await _repository(handler).get_retry_settings("u1")

    assert settings == RetrySettings(max_retry_attempts=5, retry_interval_minutes=2.0)


async def test_get_alert_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    assert await _repository(handler).get_alert("nope") is None
