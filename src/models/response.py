from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.enums import CallStatus, TriggerStatus
from src.models.escalation import CallAttempt

_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VoiceCallResponse(BaseModel):
    model_config = _WIRE_CONFIG

    success: bool
    call_sid: str | None = None
    attempt_number: int | None = None
    message: str | None = None
    error: str | None = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SOSTriggerResponse(BaseModel):
    model_config = _WIRE_CONFIG

    success: bool
    alert_id: str | None = None
    status: TriggerStatus | None = None
    contacts_notified: int = 0
    contact_ids: list[str] = Field(default_factory=list)
    message: str | None = None
    error: str | None = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CallAttemptView(BaseModel):
    model_config = _WIRE_CONFIG

    id: str
    attempt_number: int
    status: CallStatus
    call_sid: str
    phone_number: str
    contact_name: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_attempt(cls, attempt: CallAttempt) -> CallAttemptView:
        return cls(
            id=attempt.id,
            attempt_number=attempt.attempt_number,
            status=attempt.status,
            call_sid=attempt.call_sid,
            phone_number=attempt.phone_number,
            contact_name=attempt.contact_name,
            created_at=attempt.created_at,
            updated_at=attempt.updated_at,
        )


class ContactCallLog(BaseModel):
    model_config = _WIRE_CONFIG

    contact_id: str
    latest_status: CallStatus | None = None
    attempts: list[CallAttemptView] = Field(default_factory=list)


class AlertCallLogResponse(BaseModel):
    model_config = _WIRE_CONFIG

    alert_id: str
    total_attempts: int
    contacts: list[ContactCallLog] = Field(default_factory=list)
