"""SOS trigger collector: turns one alert into one escalation chain per contact.

The collector records the alert, resolves the user's contacts and retry
settings, and starts an independent chain for every contact.  It returns
as soon as the chains are scheduled; it never waits for a call to be
answered and never aggregates the chains into an alert-level verdict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from src.models.enums import TriggerStatus
from src.models.escalation import EmergencyContact, EscalationChain, RetrySettings, SOSAlert
from src.services.errors import DuplicateChainError, PersistenceError
from src.services.retry_policy import DEFAULT_RETRY_SETTINGS, resolve_retry_settings

if TYPE_CHECKING:
    from src.models.request import SOSTriggerRequest
    from src.services.escalation import EscalationOrchestrator
    from src.services.sos_repository import SOSRepository

logger = structlog.get_logger(__name__)

NO_CONTACTS_MESSAGE = "No emergency contacts configured"


@dataclass(slots=True)
class TriggerOutcome:
    alert: SOSAlert
    status: TriggerStatus
    contact_ids: list[str] = field(default_factory=list)
    retry: RetrySettings | None = None

    @property
    def contacts_notified(self) -> int:
        return len(self.contact_ids)

    @property
    def message(self) -> str:
        if self.status == TriggerStatus.NO_CONTACTS:
            return NO_CONTACTS_MESSAGE
        return f"SOS alert sent to {self.contacts_notified} contact(s)"


class SOSTriggerCollector:
    """Fans an SOS alert out to the escalation orchestrator.

    Parameters
    ----------
    orchestrator:
        Runs the per-contact chains.
    repository:
        Store for alerts, contacts and retry settings.
    default_retry:
        Settings used for users without a ``retry_settings`` row.
    """

    def __init__(
        self,
        orchestrator: EscalationOrchestrator,
        repository: SOSRepository,
        *,
        default_retry: RetrySettings = DEFAULT_RETRY_SETTINGS,
    ) -> None:
        self._orchestrator = orchestrator
        self._repository = repository
        self._default_retry = default_retry

    async def trigger(self, request: SOSTriggerRequest) -> TriggerOutcome:
        """Record the alert and start one chain per contact.

        Raises
        ------
        PersistenceError
            If the contact list had to be loaded and the store failed.
        """
        alert = SOSAlert(
            user_id=request.user_id,
            latitude=request.latitude,
            longitude=request.longitude,
            location=request.location,
            trigger_type=request.trigger_type,
        )
        log = logger.bind(alert_id=alert.id, user_id=alert.user_id, trigger_type=alert.trigger_type)
        log.info("sos.triggered", has_location=alert.location_text is not None)

        try:
            await self._repository.create_alert(alert)
        except PersistenceError as exc:
            # Calling the contacts matters more than the alert row.
            log.warning("sos.alert_not_persisted", error=str(exc))

        contacts = await self._resolve_contacts(request)
        if not contacts:
            log.warning("sos.no_contacts")
            return TriggerOutcome(alert=alert, status=TriggerStatus.NO_CONTACTS)

        retry = await self._resolve_retry(alert.user_id)
        started: list[str] = []
        for contact in contacts:
            chain = EscalationChain(
                alert_id=alert.id,
                contact=contact,
                location=alert.location_text,
                retry=retry,
            )
            try:
                self._orchestrator.start_chain(chain)
            except DuplicateChainError:
                log.warning("sos.duplicate_contact", contact_id=contact.id)
                continue
            started.append(contact.id)

        log.info("sos.dispatched", contacts=len(started))
        return TriggerOutcome(
            alert=alert,
            status=TriggerStatus.DISPATCHED,
            contact_ids=started,
            retry=retry,
        )

    async def _resolve_contacts(self, request: SOSTriggerRequest) -> list[EmergencyContact]:
        if request.contacts is not None:
            return [payload.to_contact(request.user_id) for payload in request.contacts]
        return await self._repository.list_contacts(request.user_id)

    async def _resolve_retry(self, user_id: str) -> RetrySettings:
        try:
            configured = await self._repository.get_retry_settings(user_id)
        except PersistenceError as exc:
            logger.warning("sos.retry_settings_unavailable", user_id=user_id, error=str(exc))
            configured = None
        return resolve_retry_settings(configured, user_id=user_id, defaults=self._default_retry)
