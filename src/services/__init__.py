"""SheShield service layer -- telephony, call log, retry policy and escalation."""

from __future__ import annotations

from src.services.background import BackgroundJobs
from src.services.call_log import CallLogStore, InMemoryCallLogStore, SupabaseCallLogStore
from src.services.checkpoints import CheckpointStore, InMemoryCheckpointBackend, RedisCheckpointBackend
from src.services.errors import (
    ConfigurationError,
    DuplicateChainError,
    EscalationError,
    PersistenceError,
    ProviderError,
)
from src.services.escalation import DialedAttempt, EscalationOrchestrator, build_spoken_message
from src.services.postgrest import PostgRESTClient
from src.services.retry_policy import RetryAfter, RetryDecision, Stop, decide, resolve_retry_settings
from src.services.sos_repository import InMemorySOSRepository, SOSRepository, SupabaseSOSRepository
from src.services.sos_trigger import SOSTriggerCollector, TriggerOutcome
from src.services.telephony import (
    MockVoiceGateway,
    TelephonyConfig,
    TelephonyGateway,
    TwilioVoiceGateway,
    build_twiml,
    create_gateway,
)

__all__ = [
    "BackgroundJobs",
    "CallLogStore",
    "CheckpointStore",
    "ConfigurationError",
    "DialedAttempt",
    "DuplicateChainError",
    "EscalationError",
    "EscalationOrchestrator",
    "InMemoryCallLogStore",
    "InMemoryCheckpointBackend",
    "InMemorySOSRepository",
    "MockVoiceGateway",
    "PersistenceError",
    "PostgRESTClient",
    "ProviderError",
    "RedisCheckpointBackend",
    "RetryAfter",
    "RetryDecision",
    "SOSRepository",
    "SOSTriggerCollector",
    "Stop",
    "SupabaseCallLogStore",
    "SupabaseSOSRepository",
    "TelephonyConfig",
    "TelephonyGateway",
    "TriggerOutcome",
    "TwilioVoiceGateway",
    "build_spoken_message",
    "build_twiml",
    "create_gateway",
    "decide",
    "resolve_retry_settings",
]
