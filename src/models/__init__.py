from src.models.enums import (
    PROVIDER_TERMINAL_STATUSES,
    CallStatus,
    ChainState,
    StopReason,
    TriggerStatus,
    TriggerType,
)
from src.models.escalation import (
    DEFAULT_MAX_RETRY_ATTEMPTS,
    DEFAULT_RETRY_INTERVAL_MINUTES,
    CallAttempt,
    ChainCheckpoint,
    ChainResult,
    EmergencyContact,
    EscalationChain,
    RetrySettings,
    SOSAlert,
)
from src.models.request import ContactPayload, SOSTriggerRequest, VoiceCallRequest
from src.models.response import (
    AlertCallLogResponse,
    CallAttemptView,
    ContactCallLog,
    SOSTriggerResponse,
    VoiceCallResponse,
)

__all__ = [
    "AlertCallLogResponse",
    "CallAttempt",
    "CallAttemptView",
    "CallStatus",
    "ChainCheckpoint",
    "ChainResult",
    "ChainState",
    "ContactCallLog",
    "ContactPayload",
    "DEFAULT_MAX_RETRY_ATTEMPTS",
    "DEFAULT_RETRY_INTERVAL_MINUTES",
    "EmergencyContact",
    "EscalationChain",
    "PROVIDER_TERMINAL_STATUSES",
    "RetrySettings",
    "SOSAlert",
    "SOSTriggerRequest",
    "SOSTriggerResponse",
    "StopReason",
    "TriggerStatus",
    "TriggerType",
    "VoiceCallRequest",
    "VoiceCallResponse",
]
