"""Telephony gateway for outbound emergency voice calls.

Wraps the voice-call provider behind two operations:

1. **place_call** -- dial a number and speak a message (TwiML ``<Say>``).
2. **get_call_status** -- look up the provider's current status for a call.

Architecture:
    * ``TelephonyConfig`` carries the provider credentials.  It is built
      once from settings and injected into the gateway, so the gateway
      never reads the process environment at call time.
    * ``TwilioVoiceGateway`` talks to the Twilio REST API over ``httpx``.
    * ``MockVoiceGateway`` logs calls instead of placing them, for local
      development.

This layer never retries: the escalation
orchestrator owns retrying so that attempt numbering and call logging
stay consistent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable
from uuid import uuid4
from xml.sax.saxutils import escape

import httpx
import structlog

from src.models.enums import CallStatus
from src.services.errors import ConfigurationError, ProviderError

if TYPE_CHECKING:
    from config.settings import Settings

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TWILIO_API_BASE: Final[str] = "https://api.twilio.com/2010-04-01"
TWIML_VOICE: Final[str] = "alice"

_PHONE_RE: Final[re.Pattern[str]] = re.compile(r"^\+?\d{7,15}$")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TelephonyConfig:
    """Credentials and endpoint for the voice provider."""

    account_sid: str
    auth_token: str = field(repr=False)
    from_number: str
    api_base: str = TWILIO_API_BASE
    timeout_seconds: float = 15.0

    def __post_init__(self) -> None:
        missing = [
            name
            for name, value in (
                ("TWILIO_ACCOUNT_SID", self.account_sid),
                ("TWILIO_AUTH_TOKEN", self.auth_token),
                ("TWILIO_PHONE_NUMBER", self.from_number),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Twilio credentials not configured: missing {', '.join(missing)}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> TelephonyConfig:
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
            api_base=settings.twilio_api_base.rstrip("/"),
            timeout_seconds=settings.telephony_timeout_seconds,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalise_phone_number(number: str) -> str:
    """Strip formatting characters and check for a plausible E.164 number.

    Raises
    ------
    ProviderError
        If the number cannot be dialled.
    """
    cleaned = re.sub(r"[\s\-\(\)\.]+", "", number.strip())
    if not _PHONE_RE.match(cleaned):
        raise ProviderError(f"Invalid phone number: {number!r}")
    return cleaned


def build_twiml(message: str, *, voice: str = TWIML_VOICE) -> str:
    """Wrap *message* in a TwiML ``<Say>`` instruction."""
    spoken = " ".join(message.split())
    return f'<Response><Say voice="{voice}">{escape(spoken)}</Say></Response>'


def _json_object(response: httpx.Response) -> dict[str, Any]:
    """Decode a success body, which must be a JSON object."""
    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderError("Provider response was not valid JSON", status_code=response.status_code) from exc
    if not isinstance(body, dict):
        raise ProviderError("Provider response was not a JSON object", status_code=response.status_code)
    return body


def _provider_error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text[:500]


# ---------------------------------------------------------------------------
# Gateway interface
# ---------------------------------------------------------------------------


@runtime_checkable
class TelephonyGateway(Protocol):
    """Async voice-call provider interface."""

    async def place_call(self, to_number: str, spoken_message: str) -> str: ...

    async def get_call_status(self, call_sid: str) -> CallStatus: ...


# ---------------------------------------------------------------------------
# Twilio implementation
# ---------------------------------------------------------------------------


class TwilioVoiceGateway:
    """Twilio Programmable Voice over its REST API.

    Usage::

        gateway = TwilioVoiceGateway(TelephonyConfig.from_settings(settings))
        call_sid = await gateway.place_call("+15551234567", "Help is needed.")
        status = await gateway.get_call_status(call_sid)
    """

    __slots__ = ("_config", "_transport")

    def __init__(
        self,
        config: TelephonyConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    @property
    def _calls_url(self) -> str:
        return f"{self._config.api_base}/Accounts/{self._config.account_sid}/Calls"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            auth=(self._config.account_sid, self._config.auth_token),
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        )

    async def place_call(self, to_number: str, spoken_message: str) -> str:
        to = normalise_phone_number(to_number)
        payload = {
            "To": to,
            "From": self._config.from_number,
            "Twiml": build_twiml(spoken_message),
        }
        try:
            async with self._client() as client:
                response = await client.post(f"{self._calls_url}.json", data=payload)
        except httpx.HTTPError as exc:
            logger.error("telephony.place_call_transport_error", to=to, error=str(exc))
            raise ProviderError(f"Failed to initiate call: {exc}") from exc

        if not response.is_success:
            detail = _provider_error_text(response)
            logger.error(
                "telephony.place_call_rejected",
                to=to,
                status=response.status_code,
                detail=detail,
            )
            raise ProviderError(
                f"Failed to initiate call: {detail}",
                status_code=response.status_code,
            )

        data = _json_object(response)
        call_sid = data.get("sid")
        if not call_sid:
            raise ProviderError("Provider response did not include a call sid")

        logger.info("telephony.call_placed", to=to, call_sid=call_sid)
        return str(call_sid)

    async def get_call_status(self, call_sid: str) -> CallStatus:
        try:
            async with self._client() as client:
                response = await client.get(f"{self._calls_url}/{call_sid}.json")
        except httpx.HTTPError as exc:
            raise ProviderError(f"Failed to fetch call status: {exc}") from exc

        if response.status_code == 404:
            logger.info("telephony.call_not_found", call_sid=call_sid)
            return CallStatus.UNKNOWN
        if not response.is_success:
            raise ProviderError(
                f"Failed to fetch call status: {_provider_error_text(response)}",
                status_code=response.status_code,
            )

        raw = _json_object(response).get("status")
        status = CallStatus.from_provider(raw)
        logger.debug("telephony.call_status", call_sid=call_sid, raw=raw, status=status)
        return status


# ---------------------------------------------------------------------------
# Mock implementation
# ---------------------------------------------------------------------------


class MockVoiceGateway:
    """Mock voice provider for local development and testing.

    Every placed call reports *default_status* unless overridden with
    :meth:`set_status`.
    """

    def __init__(self, default_status: CallStatus | str = CallStatus.COMPLETED) -> None:
        self._default_status = CallStatus.from_provider(str(default_status))
        self._statuses: dict[str, CallStatus] = {}
        self.placed_calls: list[tuple[str, str, str]] = []

    async def place_call(self, to_number: str, spoken_message: str) -> str:
        to = normalise_phone_number(to_number)
        call_sid = f"CA{uuid4().hex}"
        self.placed_calls.append((call_sid, to, spoken_message))
        logger.info(
            "mock_telephony.call_placed",
            to=to,
            call_sid=call_sid,
            message_preview=spoken_message[:80],
        )
        return call_sid

    async def get_call_status(self, call_sid: str) -> CallStatus:
        if not any(sid == call_sid for sid, _, _ in self.placed_calls):
            return CallStatus.UNKNOWN
        return self._statuses.get(call_sid, self._default_status)

    def set_status(self, call_sid: str, status: CallStatus | str) -> None:
        self._statuses[call_sid] = CallStatus.from_provider(str(status))


def create_gateway(settings: Settings) -> TelephonyGateway:
    """Build the gateway selected by ``settings.telephony_provider``.

    Raises
    ------
    ConfigurationError
        If the Twilio provider is selected but credentials are missing.
    """
    if settings.telephony_provider == "mock":
        return MockVoiceGateway(default_status=settings.mock_call_status)
    return TwilioVoiceGateway(TelephonyConfig.from_settings(settings))
