"""Tests for escalation domain models and wire schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.models import (
    CallStatus,
    EmergencyContact,
    RetrySettings,
    SOSAlert,
    SOSTriggerRequest,
    VoiceCallRequest,
    VoiceCallResponse,
)
from tests.fakes import make_chain


class TestCallStatus:
    def test_provider_values_map_directly(self) -> None:
        assert CallStatus.from_provider("no-answer") == CallStatus.NO_ANSWER
        assert CallStatus.from_provider("in-progress") == CallStatus.IN_PROGRESS
        assert CallStatus.from_provider("COMPLETED") == CallStatus.COMPLETED

    def test_unrecognised_values_are_unknown(self) -> None:
        assert CallStatus.from_provider("answered-by-machine") == CallStatus.UNKNOWN
        assert CallStatus.from_provider(None) == CallStatus.UNKNOWN
        assert CallStatus.from_provider("") == CallStatus.UNKNOWN

    def test_terminal_classification(self) -> None:
        assert CallStatus.BUSY.is_provider_terminal
        assert CallStatus.COMPLETED.is_provider_terminal
        assert not CallStatus.RINGING.is_provider_terminal
        assert not CallStatus.FAILED_MAX_RETRIES.is_provider_terminal


class TestSOSAlert:
    def test_location_text_prefers_address(self) -> None:
        alert = SOSAlert(user_id="u1", latitude=12.97, longitude=77.59, location="MG Road")
        assert alert.location_text == "MG Road"

    def test_location_text_from_coordinates(self) -> None:
        alert = SOSAlert(user_id="u1", latitude=12.9716, longitude=77.5946)
        assert alert.location_text == "12.971600, 77.594600"

    def test_location_text_absent(self) -> None:
        assert SOSAlert(user_id="u1").location_text is None

    def test_invalid_latitude_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SOSAlert(user_id="u1", latitude=123.0, longitude=0.0)

    def test_ids_are_unique(self) -> None:
        assert SOSAlert(user_id="u1").id != SOSAlert(user_id="u1").id


class TestRetrySettings:
    def test_defaults(self) -> None:
        settings = RetrySettings()
        assert settings.max_retry_attempts == 3
        assert settings.retry_interval.total_seconds() == 120

    def test_at_least_one_attempt(self) -> None:
        with pytest.raises(ValidationError):
            RetrySettings(max_retry_attempts=0)


class TestEscalationChain:
    def test_key_identifies_alert_and_contact(self) -> None:
        assert make_chain(alert_id="a9", contact_id="c4").key == "a9:c4"

    def test_contact_requires_name(self) -> None:
        with pytest.raises(ValidationError):
            EmergencyContact(id="c1", name="", phone_number="+15551230001")


class TestWireSchemas:
    def test_voice_call_request_accepts_camel_case(self) -> None:
        request = VoiceCallRequest.model_validate({
            "phoneNumber": "+15551230001",
            "contactName": "Priya",
            "contactId": "c1",
            "sosAlertId": "a1",
            "userLocation": "MG Road",
            "attemptNumber": 2,
        })
        assert request.phone_number == "+15551230001"
        assert request.attempt_number == 2
        assert request.max_retries is None

    def test_voice_call_request_requires_alert_id(self) -> None:
        with pytest.raises(ValidationError):
            VoiceCallRequest.model_validate({
                "phoneNumber": "+15551230001",
                "contactName": "Priya",
                "contactId": "c1",
            })

    def test_voice_call_response_wire_format(self) -> None:
        wire = VoiceCallResponse(success=True, call_sid="CA1", message="Call initiated to Priya").to_wire()
        assert wire == {"success": True, "callSid": "CA1", "message": "Call initiated to Priya"}

    def test_trigger_request_contacts_optional(self) -> None:
        request = SOSTriggerRequest.model_validate({"userId": "u1", "triggerType": "shake"})
        assert request.contacts is None
        assert request.trigger_type == "shake"
