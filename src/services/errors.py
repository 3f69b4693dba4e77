"""Exception taxonomy for the escalation workflow.

Reaching the retry limit is not an error: it is the normal terminal
outcome ``StopReason.MAX_RETRIES_EXCEEDED`` and is recorded in the call
log as ``failed_max_retries``.
"""

from __future__ import annotations


class EscalationError(Exception):
    """Base class for all escalation-service errors."""


class ConfigurationError(EscalationError):
    """Provider or store credentials are missing or invalid."""


class ProviderError(EscalationError):
    """The telephony provider rejected a request or could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(EscalationError):
    """A write to or read from the relational store failed."""


class DuplicateChainError(EscalationError):
    """A chain for the same (alert, contact) pair is already running."""

    def __init__(self, chain_key: str) -> None:
        super().__init__(f"Escalation already active for {chain_key}")
        self.chain_key = chain_key
