from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.enums import TriggerType
from src.models.escalation import EmergencyContact

_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class VoiceCallRequest(BaseModel):
    """Body of ``POST /api/v1/voice-call``; camelCase on the wire."""

    model_config = _WIRE_CONFIG

    phone_number: str = Field(..., min_length=3)
    contact_name: str = Field(..., min_length=1)
    contact_id: str = Field(..., min_length=1)
    sos_alert_id: str = Field(..., min_length=1)
    user_location: str | None = None
    attempt_number: int = Field(default=1, ge=1)
    max_retries: int | None = Field(default=None, ge=1)
    retry_interval_minutes: float | None = Field(default=None, ge=0)


class ContactPayload(BaseModel):
    model_config = _WIRE_CONFIG

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=3)
    relationship: str | None = None

    def to_contact(self, user_id: str) -> EmergencyContact:
        return EmergencyContact(
            id=self.id,
            user_id=user_id,
            name=self.name,
            phone_number=self.phone_number,
            relationship=self.relationship,
        )


class SOSTriggerRequest(BaseModel):
    """Body of ``POST /api/v1/sos/alerts``.

    ``contacts`` is optional: when omitted the user's configured contacts
    are loaded from the store.
    """

    model_config = _WIRE_CONFIG

    user_id: str = Field(..., min_length=1)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    location: str | None = Field(default=None, max_length=500)
    trigger_type: TriggerType = TriggerType.MANUAL
    contacts: list[ContactPayload] | None = None
