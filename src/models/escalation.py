"""Domain models for SOS alerts, emergency contacts and call escalation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import CallStatus, ChainState, StopReason, TriggerType

DEFAULT_MAX_RETRY_ATTEMPTS: Final[int] = 3
DEFAULT_RETRY_INTERVAL_MINUTES: Final[float] = 2.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SOSAlert(BaseModel):
    """A single emergency-trigger event for one user. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    location: str | None = None
    trigger_type: TriggerType = TriggerType.MANUAL
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def location_text(self) -> str | None:
        """Human-readable location, or None when nothing is known."""
        if self.location:
            return self.location
        if self.latitude is not None and self.longitude is not None:
            return f"{self.latitude:.6f}, {self.longitude:.6f}"
        return None


class EmergencyContact(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str = ""
    name: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=3)
    relationship: str | None = None


class RetrySettings(BaseModel):
    """Per-user retry configuration. Read-only for the lifetime of a chain."""

    model_config = ConfigDict(frozen=True)

    max_retry_attempts: int = Field(default=DEFAULT_MAX_RETRY_ATTEMPTS, ge=1)
    retry_interval_minutes: float = Field(default=DEFAULT_RETRY_INTERVAL_MINUTES, ge=0)

    @property
    def retry_interval(self) -> timedelta:
        return timedelta(minutes=self.retry_interval_minutes)


class CallAttempt(BaseModel):
    """One row of the call log."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    sos_alert_id: str
    contact_id: str
    phone_number: str
    contact_name: str
    call_sid: str
    status: CallStatus = CallStatus.INITIATED
    attempt_number: int = Field(..., ge=1)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class EscalationChain(BaseModel):
    """Everything needed to drive calls to one contact for one alert."""

    model_config = ConfigDict(frozen=True)

    alert_id: str
    contact: EmergencyContact
    location: str | None = None
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @property
    def key(self) -> str:
        return f"{self.alert_id}:{self.contact.id}"


class ChainCheckpoint(BaseModel):
    """Durable record of a suspended chain, used to resume after a restart."""

    chain: EscalationChain
    state: ChainState
    attempt_number: int = Field(..., ge=1)
    log_entry_id: str | None = None
    call_sid: str | None = None
    wake_at: datetime
    updated_at: datetime = Field(default_factory=_utcnow)


@dataclass(slots=True)
class ChainResult:
    """Outcome of one escalation chain once it reached Terminal."""

    alert_id: str
    contact_id: str
    attempts: int
    stop_reason: StopReason
    last_status: CallStatus | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.stop_reason == StopReason.COMPLETED
