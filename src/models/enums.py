from __future__ import annotations

from enum import StrEnum
from typing import Final


class TriggerType(StrEnum):
    __slots__ = ()

    MANUAL = "manual"
    VOICE = "voice"
    SHAKE = "shake"
    MOTION = "motion"


class CallStatus(StrEnum):
    """Status of one call attempt.

    ``queued`` .. ``canceled`` are the provider's own values; ``initiated``
    is written when the attempt is recorded, ``failed_max_retries`` is
    applied by the orchestrator and ``unknown`` means the provider could
    not resolve the call yet.
    """

    __slots__ = ()

    INITIATED = "initiated"
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    FAILED = "failed"
    CANCELED = "canceled"
    FAILED_MAX_RETRIES = "failed_max_retries"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, value: str | None) -> CallStatus:
        """Map a raw provider status string, falling back to ``UNKNOWN``."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_provider_terminal(self) -> bool:
        return self in PROVIDER_TERMINAL_STATUSES


PROVIDER_TERMINAL_STATUSES: Final[frozenset[CallStatus]] = frozenset({
    CallStatus.COMPLETED,
    CallStatus.BUSY,
    CallStatus.NO_ANSWER,
    CallStatus.FAILED,
    CallStatus.CANCELED,
})


class StopReason(StrEnum):
    __slots__ = ()

    COMPLETED = "completed"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
    PLACEMENT_FAILED = "placement_failed"


class ChainState(StrEnum):
    """States of one (alert, contact) escalation chain."""

    __slots__ = ()

    DIALING = "dialing"
    AWAITING_SETTLEMENT = "awaiting_settlement"
    DECIDING = "deciding"
    RETRY_SCHEDULED = "retry_scheduled"
    TERMINAL = "terminal"


class TriggerStatus(StrEnum):
    __slots__ = ()

    DISPATCHED = "dispatched"
    NO_CONTACTS = "no_contacts"
