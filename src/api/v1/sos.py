"""SOS alert endpoints.

* ``POST /sos/alerts`` -- trigger an SOS: record the alert and start one
  escalation chain per emergency contact.  Returns before any call is
  answered.
* ``GET /sos/alerts/{alert_id}/calls`` -- read the call log for an alert,
  the only place where retry outcomes become visible.
"""

from __future__ import annotations

from collections import defaultdict

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import ORJSONResponse

from src.models.enums import TriggerStatus
from src.models.escalation import CallAttempt
from src.models.request import SOSTriggerRequest
from src.models.response import (
    AlertCallLogResponse,
    CallAttemptView,
    ContactCallLog,
    SOSTriggerResponse,
)
from src.services.errors import EscalationError, PersistenceError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sos", tags=["sos"])


@router.post("/alerts")
async def trigger_sos(body: SOSTriggerRequest, request: Request) -> ORJSONResponse:
    """Trigger an SOS alert for a user.

    202 when calls were dispatched, 200 with ``success=false`` when the
    user has no emergency contacts, 500 when the service cannot run.
    """
    collector = getattr(request.app.state, "sos_collector", None)
    if collector is None:
        error = getattr(request.app.state, "startup_error", None) or "Escalation service not available"
        return ORJSONResponse(
            content=SOSTriggerResponse(success=False, error=error).to_wire(),
            status_code=500,
        )

    try:
        outcome = await collector.trigger(body)
    except EscalationError as exc:
        logger.error("api.sos.trigger_failed", user_id=body.user_id, error=str(exc))
        return ORJSONResponse(
            content=SOSTriggerResponse(success=False, error=str(exc)).to_wire(),
            status_code=500,
        )

    dispatched = outcome.status == TriggerStatus.DISPATCHED
    response = SOSTriggerResponse(
        success=dispatched,
        alert_id=outcome.alert.id,
        status=outcome.status,
        contacts_notified=outcome.contacts_notified,
        contact_ids=outcome.contact_ids,
        message=outcome.message,
    )
    return ORJSONResponse(content=response.to_wire(), status_code=202 if dispatched else 200)


def _group_by_contact(attempts: list[CallAttempt]) -> list[ContactCallLog]:
    grouped: dict[str, list[CallAttempt]] = defaultdict(list)
    for attempt in attempts:
        grouped[attempt.contact_id].append(attempt)

    logs = []
    for contact_id, entries in grouped.items():
        entries.sort(key=lambda a: a.attempt_number)
        logs.append(
            ContactCallLog(
                contact_id=contact_id,
                latest_status=entries[-1].status,
                attempts=[CallAttemptView.from_attempt(a) for a in entries],
            )
        )
    return logs


@router.get("/alerts/{alert_id}/calls")
async def get_alert_calls(alert_id: str, request: Request) -> dict:
    """Return every recorded call attempt for *alert_id*, grouped per contact."""
    call_log = getattr(request.app.state, "call_log", None)
    if call_log is None:
        raise HTTPException(status_code=503, detail="Call log not available")

    try:
        attempts = await call_log.list_attempts(alert_id)
    except PersistenceError as exc:
        logger.error("api.sos.call_log_read_failed", alert_id=alert_id, error=str(exc))
        raise HTTPException(status_code=503, detail="Call log not available") from None

    response = AlertCallLogResponse(
        alert_id=alert_id,
        total_attempts=len(attempts),
        contacts=_group_by_contact(attempts),
    )
    return response.model_dump(mode="json", by_alias=True)
