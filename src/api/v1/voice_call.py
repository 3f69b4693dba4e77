"""Emergency voice-call endpoint.

Places one call to an emergency contact right away and leaves settlement
and retries to a background escalation chain.  The caller only learns
whether *this* call was placed; later attempts show up in the call log.

The endpoint is called directly from the browser, so every response
(including the ``OPTIONS`` preflight) carries permissive CORS headers.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse, Response
from pydantic import ValidationError

from src.middleware.cors import CORS_HEADERS
from src.models.escalation import EmergencyContact, EscalationChain, RetrySettings
from src.models.request import VoiceCallRequest
from src.models.response import VoiceCallResponse
from src.services.errors import DuplicateChainError, ProviderError

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["voice-call"])


def _respond(body: VoiceCallResponse, status_code: int) -> ORJSONResponse:
    return ORJSONResponse(content=body.to_wire(), status_code=status_code, headers=CORS_HEADERS)


def _retry_settings(body: VoiceCallRequest, default: RetrySettings) -> RetrySettings:
    return RetrySettings(
        max_retry_attempts=body.max_retries or default.max_retry_attempts,
        retry_interval_minutes=(
            body.retry_interval_minutes
            if body.retry_interval_minutes is not None
            else default.retry_interval_minutes
        ),
    )


@router.options("/voice-call", include_in_schema=False)
async def voice_call_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/voice-call")
async def place_voice_call(request: Request) -> ORJSONResponse:
    """Call an emergency contact and schedule automatic retries.

    Returns 200 with the provider call sid when the call was placed and
    500 with an error message otherwise.
    """
    try:
        body = VoiceCallRequest.model_validate(await request.json())
    except (ValidationError, ValueError) as exc:
        logger.warning("api.voice_call.invalid_body", error=str(exc))
        return _respond(VoiceCallResponse(success=False, error=f"Invalid request: {exc}"), 500)

    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        error = getattr(request.app.state, "startup_error", None) or "Escalation service not available"
        logger.error("api.voice_call.unavailable", error=error)
        return _respond(VoiceCallResponse(success=False, error=error), 500)

    default_retry: RetrySettings = getattr(request.app.state, "default_retry", None) or RetrySettings()
    chain = EscalationChain(
        alert_id=body.sos_alert_id,
        contact=EmergencyContact(
            id=body.contact_id,
            name=body.contact_name,
            phone_number=body.phone_number,
        ),
        location=body.user_location,
        retry=_retry_settings(body, default_retry),
    )

    logger.info(
        "api.voice_call.requested",
        alert_id=body.sos_alert_id,
        contact_id=body.contact_id,
        attempt=body.attempt_number,
    )
    try:
        placed = await orchestrator.escalate(chain, body.attempt_number)
    except DuplicateChainError as exc:
        return _respond(VoiceCallResponse(success=False, error=str(exc)), 409)
    except ProviderError as exc:
        return _respond(VoiceCallResponse(success=False, error=str(exc)), 500)

    return _respond(
        VoiceCallResponse(
            success=True,
            call_sid=placed.call_sid,
            attempt_number=placed.attempt_number,
            message=f"Call initiated to {body.contact_name}",
        ),
        200,
    )
