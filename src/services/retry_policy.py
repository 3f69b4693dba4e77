"""Retry policy for unanswered emergency calls.

A pure decision function: given the attempt that just settled, the
configured maximum and the provider's status, decide whether to dial
the contact again and after what delay.  The delay is a fixed cooldown,
identical for every attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import structlog

from src.models.enums import CallStatus, StopReason
from src.models.escalation import RetrySettings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Stop:
    reason: StopReason


@dataclass(frozen=True, slots=True)
class RetryAfter:
    delay: timedelta


RetryDecision = Stop | RetryAfter

DEFAULT_RETRY_SETTINGS = RetrySettings()


def decide(
    attempt_number: int,
    max_retries: int,
    status: CallStatus,
    *,
    retry_interval: timedelta = DEFAULT_RETRY_SETTINGS.retry_interval,
) -> RetryDecision:
    """Decide what happens after *attempt_number* settled with *status*.

    ``completed`` always stops.  Every other status -- provider failures
    as well as calls still pending or unresolved after the settling
    window -- retries while ``attempt_number < max_retries``.
    """
    if status == CallStatus.COMPLETED:
        return Stop(StopReason.COMPLETED)
    if attempt_number < max_retries:
        return RetryAfter(retry_interval)
    return Stop(StopReason.MAX_RETRIES_EXCEEDED)


def decide_for(attempt_number: int, settings: RetrySettings, status: CallStatus) -> RetryDecision:
    return decide(
        attempt_number,
        settings.max_retry_attempts,
        status,
        retry_interval=settings.retry_interval,
    )


def resolve_retry_settings(
    configured: RetrySettings | None,
    *,
    user_id: str = "",
    defaults: RetrySettings = DEFAULT_RETRY_SETTINGS,
) -> RetrySettings:
    """Return the user's settings, or *defaults* when none are configured.

    The fallback is logged so that a chain running on defaults is
    visible in the logs rather than silently inferred.
    """
    if configured is not None:
        return configured
    logger.info(
        "retry_policy.defaults_applied",
        user_id=user_id,
        max_retry_attempts=defaults.max_retry_attempts,
        retry_interval_minutes=defaults.retry_interval_minutes,
    )
    return defaults
