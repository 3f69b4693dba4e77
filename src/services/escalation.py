"""Emergency-call escalation orchestrator.

Drives one escalation chain -- the calls made to one emergency contact
for one SOS alert -- through a small state machine::

    DIALING -> AWAITING_SETTLEMENT -> DECIDING -> RETRY_SCHEDULED -> DIALING ...
                                              \\-> TERMINAL

* **Dialing** builds the spoken message, places the call and records the
  attempt in the call log.  If the provider refuses the call, nothing is
  recorded and the chain ends immediately.  "Could not dial" is never
  retried and stays distinct from "dialed but unanswered".
* **Awaiting settlement** is a fixed delay (30 s by default) that gives
  the provider time to reach a final call state.  It is not a poll loop.
* **Deciding** reads the call status, writes it to the log and asks the
  retry policy whether to dial again.  When the retry limit is reached the
  last entry is marked ``failed_max_retries``.
* **Retry scheduled** waits out the configured cooldown, then dials the
  next attempt number.

The whole sequence runs serially inside one task, so a chain can never
overlap with itself.  Chains for different contacts run concurrently as
independent background jobs and share nothing but the append-only call
log.  A checkpoint is saved before each placement and each suspension so that
:meth:`EscalationOrchestrator.resume_pending` can pick chains up again
after a restart.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from src.models.enums import CallStatus, ChainState, StopReason
from src.models.escalation import ChainCheckpoint, ChainResult, EscalationChain
from src.services.background import BackgroundJobs
from src.services.errors import DuplicateChainError, PersistenceError, ProviderError
from src.services.retry_policy import RetryAfter, decide_for

if TYPE_CHECKING:
    from src.services.call_log import CallLogStore
    from src.services.checkpoints import CheckpointStore
    from src.services.telephony import TelephonyGateway

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]

DEFAULT_SETTLING_WINDOW_SECONDS = 30.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Spoken message
# ---------------------------------------------------------------------------


def build_spoken_message(
    contact_name: str,
    location: str | None,
    *,
    attempt_number: int = 1,
    max_attempts: int | None = None,
) -> str:
    """Text read out to the emergency contact.

    Repeat calls disclose the attempt count so the listener knows earlier
    calls went unanswered.
    """
    location_text = (
        f"The person is located at {location}."
        if location
        else "Location information is not available."
    )
    parts = [
        "This is an emergency alert from SheShield Safety App.",
        f"{contact_name}, your contact has triggered an SOS alert and needs immediate help.",
        location_text,
        "Please check the app for real-time location tracking.",
    ]
    if attempt_number > 1:
        if max_attempts:
            parts.append(f"This is call attempt {attempt_number} of {max_attempts}.")
        else:
            parts.append(f"This is call attempt {attempt_number}.")
    parts.append("This is an automated emergency message.")
    return " ".join(parts)


@dataclass(frozen=True, slots=True)
class DialedAttempt:
    """A call the provider accepted.  ``log_entry_id`` is None if logging failed."""

    attempt_number: int
    call_sid: str
    log_entry_id: str | None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class EscalationOrchestrator:
    """Runs escalation chains against a telephony gateway and a call log.

    Parameters
    ----------
    gateway:
        Places calls and reports call status.
    call_log:
        Append-only attempt log.
    checkpoints:
        Durable chain checkpoints; optional, chains are not resumable
        across restarts without it.
    jobs:
        Registry that owns detached chain tasks.
    settling_window:
        Seconds to wait after placing a call before checking its status.
    sleep, clock:
        Time sources, injectable for tests.
    """

    def __init__(
        self,
        gateway: TelephonyGateway,
        call_log: CallLogStore,
        *,
        checkpoints: CheckpointStore | None = None,
        jobs: BackgroundJobs | None = None,
        settling_window: float = DEFAULT_SETTLING_WINDOW_SECONDS,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = _utcnow,
    ) -> None:
        self._gateway = gateway
        self._call_log = call_log
        self._checkpoints = checkpoints
        self._jobs = jobs or BackgroundJobs()
        self._settling_window = settling_window
        self._sleep = sleep
        self._clock = clock
        self._active: set[str] = set()

    @property
    def jobs(self) -> BackgroundJobs:
        return self._jobs

    @property
    def active_chains(self) -> frozenset[str]:
        return frozenset(self._active)

    def is_active(self, chain: EscalationChain) -> bool:
        return chain.key in self._active

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def dial(self, chain: EscalationChain, attempt_number: int) -> DialedAttempt:
        """The Dialing step: place one call and record it.

        Raises
        ------
        ProviderError
            If the call could not be placed.  No log entry exists then.
        """
        log = logger.bind(alert_id=chain.alert_id, contact_id=chain.contact.id, attempt=attempt_number)
        message = build_spoken_message(
            chain.contact.name,
            chain.location,
            attempt_number=attempt_number,
            max_attempts=chain.retry.max_retry_attempts,
        )

        try:
            call_sid = await self._gateway.place_call(chain.contact.phone_number, message)
        except ProviderError as exc:
            log.error("escalation.placement_failed", error=str(exc))
            raise

        log_entry_id: str | None = None
        try:
            log_entry_id = await self._call_log.record_attempt(
                alert_id=chain.alert_id,
                contact_id=chain.contact.id,
                phone_number=chain.contact.phone_number,
                contact_name=chain.contact.name,
                call_sid=call_sid,
                attempt_number=attempt_number,
            )
        except PersistenceError as exc:
            # The call is already ringing; only the log row is missing.
            log.warning("escalation.record_failed", call_sid=call_sid, error=str(exc))

        log.info("escalation.call_placed", call_sid=call_sid, log_entry_id=log_entry_id)
        return DialedAttempt(attempt_number, call_sid, log_entry_id)

    async def run_chain(self, chain: EscalationChain, first_attempt: int = 1) -> ChainResult:
        """Drive *chain* from Dialing to Terminal in the current task."""
        self._claim(chain)
        try:
            return await self._drive(chain, first_attempt)
        finally:
            self._release(chain)

    async def follow_up(self, chain: EscalationChain, placed: DialedAttempt) -> ChainResult:
        """Continue *chain* after an attempt that :meth:`dial` already placed."""
        self._claim(chain)
        try:
            return await self._drive(chain, placed.attempt_number, placed=placed)
        finally:
            self._release(chain)

    def start_chain(self, chain: EscalationChain, first_attempt: int = 1) -> asyncio.Task[ChainResult]:
        """Run *chain* as a detached background job and return at once.

        Raises
        ------
        DuplicateChainError
            If a chain for the same (alert, contact) is already running.
        """
        self._claim(chain)
        return self._spawn(chain, self._drive(chain, first_attempt))

    async def escalate(self, chain: EscalationChain, attempt_number: int = 1) -> DialedAttempt:
        """Place *attempt_number* now and continue the chain in the background.

        The caller learns the immediate outcome of this one call; settlement
        and any retries are only observable through the call log.

        Raises
        ------
        DuplicateChainError
            If the chain is already running; no call is placed.
        ProviderError
            If the call could not be placed; the chain ends.
        """
        self._claim(chain)
        try:
            await self._mark_dialing(chain, attempt_number)
            placed = await self.dial(chain, attempt_number)
        except ProviderError:
            await self._clear_checkpoint(chain)
            self._release(chain)
            raise
        except BaseException:
            self._release(chain)
            raise
        self._spawn(chain, self._drive(chain, attempt_number, placed=placed))
        return placed

    async def resume_pending(self) -> int:
        """Restart every checkpointed chain; returns how many were resumed."""
        if self._checkpoints is None:
            return 0

        try:
            pending = await self._checkpoints.list_pending()
        except Exception:
            logger.warning("escalation.resume_load_failed", exc_info=True)
            return 0

        now = self._clock()
        resumed = 0
        for checkpoint in pending:
            chain = checkpoint.chain
            if chain.key in self._active:
                continue
            remaining = max(0.0, (checkpoint.wake_at - now).total_seconds())

            if checkpoint.state == ChainState.AWAITING_SETTLEMENT and checkpoint.call_sid:
                placed = DialedAttempt(
                    checkpoint.attempt_number,
                    checkpoint.call_sid,
                    checkpoint.log_entry_id,
                )
                coro = self._drive(chain, checkpoint.attempt_number, placed=placed, settle_for=remaining)
            elif checkpoint.state == ChainState.RETRY_SCHEDULED:
                coro = self._drive(chain, checkpoint.attempt_number, dial_delay=remaining)
            elif checkpoint.state == ChainState.DIALING:
                recorded = await self._find_recorded(chain, checkpoint.attempt_number)
                if recorded is None:
                    coro = self._drive(chain, checkpoint.attempt_number)
                else:
                    elapsed = (now - checkpoint.wake_at).total_seconds()
                    settle = max(0.0, self._settling_window - elapsed)
                    coro = self._drive(chain, checkpoint.attempt_number, placed=recorded, settle_for=settle)
            else:
                logger.warning(
                    "escalation.resume_skipped",
                    chain=chain.key,
                    state=checkpoint.state,
                )
                await self._clear_checkpoint(chain)
                continue

            self._claim(chain)
            self._spawn(chain, coro)
            resumed += 1
            logger.info(
                "escalation.chain_resumed",
                chain=chain.key,
                state=checkpoint.state,
                attempt=checkpoint.attempt_number,
                remaining_s=round(remaining, 1),
            )

        return resumed

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _drive(
        self,
        chain: EscalationChain,
        attempt_number: int,
        *,
        placed: DialedAttempt | None = None,
        settle_for: float | None = None,
        dial_delay: float | None = None,
    ) -> ChainResult:
        log = logger.bind(alert_id=chain.alert_id, contact_id=chain.contact.id)
        last_status: CallStatus | None = None

        while True:
            # -- Dialing ----------------------------------------------------
            if placed is None:
                if dial_delay is not None:
                    await self._suspend(chain, ChainState.RETRY_SCHEDULED, attempt_number, None, dial_delay)
                    dial_delay = None
                await self._mark_dialing(chain, attempt_number)
                try:
                    placed = await self.dial(chain, attempt_number)
                except ProviderError as exc:
                    await self._clear_checkpoint(chain)
                    return ChainResult(
                        alert_id=chain.alert_id,
                        contact_id=chain.contact.id,
                        attempts=attempt_number - 1,
                        stop_reason=StopReason.PLACEMENT_FAILED,
                        last_status=last_status,
                        error=str(exc),
                    )

            # -- Awaiting settlement ------------------------------------------
            window = self._settling_window if settle_for is None else settle_for
            settle_for = None
            await self._suspend(chain, ChainState.AWAITING_SETTLEMENT, placed.attempt_number, placed, window)

            # -- Deciding -----------------------------------------------------
            status = await self._check_status(placed)
            last_status = status
            if not status.is_provider_terminal:
                log.info("escalation.call_unsettled", call_sid=placed.call_sid, status=status)
            if status != CallStatus.UNKNOWN:
                await self._update_status(placed, status)

            decision = decide_for(placed.attempt_number, chain.retry, status)
            if isinstance(decision, RetryAfter):
                attempt_number = placed.attempt_number + 1
                dial_delay = decision.delay.total_seconds()
                log.info(
                    "escalation.retry_scheduled",
                    status=status,
                    next_attempt=attempt_number,
                    delay_s=dial_delay,
                )
                placed = None
                continue

            # -- Terminal -----------------------------------------------------
            if decision.reason == StopReason.MAX_RETRIES_EXCEEDED:
                await self._update_status(placed, CallStatus.FAILED_MAX_RETRIES)
                last_status = CallStatus.FAILED_MAX_RETRIES
            await self._clear_checkpoint(chain)
            log.info(
                "escalation.chain_terminal",
                reason=decision.reason,
                attempts=placed.attempt_number,
                last_status=last_status,
            )
            return ChainResult(
                alert_id=chain.alert_id,
                contact_id=chain.contact.id,
                attempts=placed.attempt_number,
                stop_reason=decision.reason,
                last_status=last_status,
            )

    async def _suspend(
        self,
        chain: EscalationChain,
        state: ChainState,
        attempt_number: int,
        placed: DialedAttempt | None,
        seconds: float,
    ) -> None:
        await self._save_checkpoint(
            ChainCheckpoint(
                chain=chain,
                state=state,
                attempt_number=attempt_number,
                log_entry_id=placed.log_entry_id if placed else None,
                call_sid=placed.call_sid if placed else None,
                wake_at=self._clock() + timedelta(seconds=seconds),
            )
        )
        await self._sleep(seconds)

    async def _mark_dialing(self, chain: EscalationChain, attempt_number: int) -> None:
        # Saved before placement so a crash mid-dial is recoverable.
        await self._save_checkpoint(
            ChainCheckpoint(
                chain=chain,
                state=ChainState.DIALING,
                attempt_number=attempt_number,
                wake_at=self._clock(),
            )
        )

    async def _find_recorded(self, chain: EscalationChain, attempt_number: int) -> DialedAttempt | None:
        """Look up the log row of an attempt interrupted while dialing."""
        try:
            entries = await self._call_log.list_attempts(chain.alert_id, chain.contact.id)
        except PersistenceError as exc:
            logger.warning("escalation.resume_lookup_failed", chain=chain.key, error=str(exc))
            return None
        for entry in entries:
            if entry.attempt_number == attempt_number:
                return DialedAttempt(attempt_number, entry.call_sid, entry.id)
        return None

    async def _check_status(self, placed: DialedAttempt) -> CallStatus:
        try:
            return await self._gateway.get_call_status(placed.call_sid)
        except ProviderError as exc:
            logger.warning("escalation.status_check_failed", call_sid=placed.call_sid, error=str(exc))
            return CallStatus.UNKNOWN

    async def _update_status(self, placed: DialedAttempt, status: CallStatus) -> None:
        if placed.log_entry_id is None:
            logger.warning(
                "escalation.status_unrecorded",
                call_sid=placed.call_sid,
                status=status,
            )
            return
        try:
            await self._call_log.update_status(placed.log_entry_id, status)
        except PersistenceError as exc:
            logger.warning(
                "escalation.status_update_failed",
                log_entry_id=placed.log_entry_id,
                status=status,
                error=str(exc),
            )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _claim(self, chain: EscalationChain) -> None:
        if chain.key in self._active:
            raise DuplicateChainError(chain.key)
        self._active.add(chain.key)

    def _release(self, chain: EscalationChain) -> None:
        self._active.discard(chain.key)

    def _spawn(self, chain: EscalationChain, coro: Coroutine[Any, Any, ChainResult]) -> asyncio.Task[ChainResult]:
        async def _run() -> ChainResult:
            try:
                return await coro
            finally:
                self._release(chain)

        try:
            return self._jobs.spawn(_run(), name=f"escalation:{chain.key}")
        except RuntimeError:
            coro.close()
            self._release(chain)
            raise

    async def _save_checkpoint(self, checkpoint: ChainCheckpoint) -> None:
        if self._checkpoints is None:
            return
        try:
            await self._checkpoints.save(checkpoint)
        except Exception:
            logger.warning("escalation.checkpoint_save_failed", chain=checkpoint.chain.key, exc_info=True)

    async def _clear_checkpoint(self, chain: EscalationChain) -> None:
        if self._checkpoints is None:
            return
        try:
            await self._checkpoints.delete(chain.key)
        except Exception:
            logger.warning("escalation.checkpoint_delete_failed", chain=chain.key, exc_info=True)
