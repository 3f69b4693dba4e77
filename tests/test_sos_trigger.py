"""Tests for the SOS trigger collector (alert fan-out to escalation chains)."""

from __future__ import annotations

import pytest

from src.models.enums import CallStatus, TriggerStatus
from src.models.escalation import EmergencyContact, RetrySettings
from src.models.request import SOSTriggerRequest
from src.services.errors import PersistenceError
from src.services.escalation import EscalationOrchestrator
from src.services.sos_repository import InMemorySOSRepository
from src.services.sos_trigger import NO_CONTACTS_MESSAGE, SOSTriggerCollector
from tests.fakes import FIXED_NOW, ScriptedGateway


class BrokenRepository(InMemorySOSRepository):
    """Repository whose writes and settings lookups fail."""

    def __init__(self, *, contacts_fail: bool = False) -> None:
        super().__init__()
        self._contacts_fail = contacts_fail

    async def create_alert(self, alert):
        raise PersistenceError("sos_alerts insert failed")

    async def list_contacts(self, user_id: str):
        if self._contacts_fail:
            raise PersistenceError("emergency_contacts unavailable")
        return await super().list_contacts(user_id)

    async def get_retry_settings(self, user_id: str):
        raise PersistenceError("retry_settings unavailable")


def _contact(contact_id: str, phone: str, user_id: str = "u1") -> EmergencyContact:
    return EmergencyContact(id=contact_id, user_id=user_id, name=f"Contact {contact_id}", phone_number=phone)


@pytest.fixture
def repository() -> InMemorySOSRepository:
    return InMemorySOSRepository()


def _collector(gateway, repository, call_log, sleep, **kwargs) -> SOSTriggerCollector:
    orchestrator = EscalationOrchestrator(gateway, call_log, sleep=sleep, clock=lambda: FIXED_NOW)
    return SOSTriggerCollector(orchestrator, repository, **kwargs)


async def test_no_contacts_places_no_calls(repository, call_log, sleep) -> None:
    gateway = ScriptedGateway()
    collector = _collector(gateway, repository, call_log, sleep)

    outcome = await collector.trigger(SOSTriggerRequest(user_id="u1", latitude=12.97, longitude=77.59))

    assert outcome.status == TriggerStatus.NO_CONTACTS
    assert outcome.message == NO_CONTACTS_MESSAGE
    assert outcome.contacts_notified == 0
    assert gateway.placement_attempts == 0
    assert await repository.get_alert(outcome.alert.id) is not None, "the alert is still recorded"


async def test_one_chain_per_stored_contact(repository, call_log, sleep) -> None:
    repository.add_contact(_contact("c1", "+15551230001"))
    repository.add_contact(_contact("c2", "+15551230002"))
    gateway = ScriptedGateway({
        "+15551230001": ["completed"],
        "+15551230002": ["busy", "completed"],
    })
    collector = _collector(gateway, repository, call_log, sleep)

    outcome = await collector.trigger(SOSTriggerRequest(user_id="u1", location="MG Road"))
    assert outcome.status == TriggerStatus.DISPATCHED
    assert outcome.contact_ids == ["c1", "c2"]
    assert outcome.message == "SOS alert sent to 2 contact(s)"

    await collector._orchestrator.jobs.wait_idle(timeout=5)
    first = await call_log.list_attempts(outcome.alert.id, "c1")
    second = await call_log.list_attempts(outcome.alert.id, "c2")
    assert [e.status for e in first] == [CallStatus.COMPLETED]
    assert [e.status for e in second] == [CallStatus.BUSY, CallStatus.COMPLETED]
    assert all("MG Road" in message for _, _, message in gateway.placed)


async def test_coordinates_used_when_no_address(repository, call_log, sleep) -> None:
    repository.add_contact(_contact("c1", "+15551230001"))
    gateway = ScriptedGateway(["completed"])
    collector = _collector(gateway, repository, call_log, sleep)

    await collector.trigger(SOSTriggerRequest(user_id="u1", latitude=12.9716, longitude=77.5946))
    await collector._orchestrator.jobs.wait_idle(timeout=5)

    assert "The person is located at 12.971600, 77.594600." in gateway.placed[0][2]


async def test_request_contacts_override_store(repository, call_log, sleep) -> None:
    repository.add_contact(_contact("stored", "+15551230009"))
    gateway = ScriptedGateway(["completed"])
    collector = _collector(gateway, repository, call_log, sleep)

    request = SOSTriggerRequest.model_validate({
        "userId": "u1",
        "contacts": [{"id": "inline", "name": "Asha", "phoneNumber": "+15551230003"}],
    })
    outcome = await collector.trigger(request)
    await collector._orchestrator.jobs.wait_idle(timeout=5)

    assert outcome.contact_ids == ["inline"]
    assert [to for _, to, _ in gateway.placed] == ["+15551230003"]


async def test_duplicate_contacts_start_one_chain(repository, call_log, sleep) -> None:
    gateway = ScriptedGateway(["completed"])
    collector = _collector(gateway, repository, call_log, sleep)
    contact = {"id": "c1", "name": "Asha", "phoneNumber": "+15551230003"}

    outcome = await collector.trigger(
        SOSTriggerRequest.model_validate({"userId": "u1", "contacts": [contact, contact]})
    )
    await collector._orchestrator.jobs.wait_idle(timeout=5)

    assert outcome.contact_ids == ["c1"]
    assert len(gateway.placed) == 1


async def test_user_retry_settings_applied(repository, call_log, sleep) -> None:
    repository.add_contact(_contact("c1", "+15551230001"))
    repository.set_retry_settings("u1", RetrySettings(max_retry_attempts=1, retry_interval_minutes=5))
    gateway = ScriptedGateway(["no-answer"])
    collector = _collector(gateway, repository, call_log, sleep)

    outcome = await collector.trigger(SOSTriggerRequest(user_id="u1"))
    await collector._orchestrator.jobs.wait_idle(timeout=5)

    assert outcome.retry == RetrySettings(max_retry_attempts=1, retry_interval_minutes=5)
    entries = await call_log.list_attempts(outcome.alert.id)
    assert [e.status for e in entries] == [CallStatus.FAILED_MAX_RETRIES]


async def test_defaults_used_without_retry_settings(repository, call_log, sleep) -> None:
    repository.add_contact(_contact("c1", "+15551230001"))
    defaults = RetrySettings(max_retry_attempts=2, retry_interval_minutes=1)
    collector = _collector(ScriptedGateway(), repository, call_log, sleep, default_retry=defaults)

    outcome = await collector.trigger(SOSTriggerRequest(user_id="u1"))
    await collector._orchestrator.jobs.wait_idle(timeout=5)

    assert outcome.retry == defaults
    assert sleep.calls == [30.0, 60.0, 30.0]


async def test_store_failures_do_not_block_calls(call_log, sleep) -> None:
    gateway = ScriptedGateway(["completed"])
    collector = _collector(gateway, BrokenRepository(), call_log, sleep)
    request = SOSTriggerRequest.model_validate({
        "userId": "u1",
        "contacts": [{"id": "c1", "name": "Asha", "phoneNumber": "+15551230003"}],
    })

    outcome = await collector.trigger(request)
    await collector._orchestrator.jobs.wait_idle(timeout=5)

    assert outcome.status == TriggerStatus.DISPATCHED
    assert outcome.retry == RetrySettings()
    assert len(gateway.placed) == 1


async def test_contact_lookup_failure_raises(call_log, sleep) -> None:
    collector = _collector(ScriptedGateway(), BrokenRepository(contacts_fail=True), call_log, sleep)

    with pytest.raises(PersistenceError):
        await collector.trigger(SOSTriggerRequest(user_id="u1"))
