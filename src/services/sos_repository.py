"""Access to SOS alerts, emergency contacts and per-user retry settings.

These rows live in the application's relational store and are managed by
the front end; the escalation service only appends alert rows and reads
the rest.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

import structlog

from src.models.escalation import EmergencyContact, RetrySettings, SOSAlert

if TYPE_CHECKING:
    from src.services.postgrest import PostgRESTClient

logger = structlog.get_logger(__name__)

SOS_ALERTS_TABLE: Final[str] = "sos_alerts"
CONTACTS_TABLE: Final[str] = "emergency_contacts"
RETRY_SETTINGS_TABLE: Final[str] = "retry_settings"


@runtime_checkable
class SOSRepository(Protocol):
    async def create_alert(self, alert: SOSAlert) -> SOSAlert: ...

    async def get_alert(self, alert_id: str) -> SOSAlert | None: ...

    async def list_contacts(self, user_id: str) -> list[EmergencyContact]: ...

    async def get_retry_settings(self, user_id: str) -> RetrySettings | None: ...


class InMemorySOSRepository:
    """Process-local repository for development and tests."""

    def __init__(self) -> None:
        self._alerts: dict[str, SOSAlert] = {}
        self._contacts: dict[str, list[EmergencyContact]] = {}
        self._retry_settings: dict[str, RetrySettings] = {}

    async def create_alert(self, alert: SOSAlert) -> SOSAlert:
        self._alerts[alert.id] = alert
        return alert

    async def get_alert(self, alert_id: str) -> SOSAlert | None:
        return self._alerts.get(alert_id)

    async def list_contacts(self, user_id: str) -> list[EmergencyContact]:
        return list(self._contacts.get(user_id, []))

    async def get_retry_settings(self, user_id: str) -> RetrySettings | None:
        return self._retry_settings.get(user_id)

    # -- Seeding helpers -------------------------------------------------------

    def add_contact(self, contact: EmergencyContact) -> None:
        self._contacts.setdefault(contact.user_id, []).append(contact)

    def set_retry_settings(self, user_id: str, retry: RetrySettings) -> None:
        self._retry_settings[user_id] = retry


class SupabaseSOSRepository:
    """Repository backed by the Supabase tables used by the front end."""

    def __init__(self, client: PostgRESTClient) -> None:
        self._client = client

    async def create_alert(self, alert: SOSAlert) -> SOSAlert:
        row = alert.model_dump(mode="json", exclude={"location"})
        stored = await self._client.insert(SOS_ALERTS_TABLE, row, upsert=True)
        logger.info("sos_repository.alert_created", alert_id=stored.get("id", alert.id))
        return alert

    async def get_alert(self, alert_id: str) -> SOSAlert | None:
        rows = await self._client.select(SOS_ALERTS_TABLE, filters={"id": alert_id}, limit=1)
        return SOSAlert.model_validate(rows[0]) if rows else None

    async def list_contacts(self, user_id: str) -> list[EmergencyContact]:
        rows = await self._client.select(
            CONTACTS_TABLE,
            filters={"user_id": user_id},
            order="created_at.asc",
        )
        return [
            EmergencyContact(
                id=str(row["id"]),
                user_id=str(row.get("user_id", user_id)),
                name=row["name"],
                phone_number=row["phone_number"],
                relationship=row.get("relationship"),
            )
            for row in rows
        ]

    async def get_retry_settings(self, user_id: str) -> RetrySettings | None:
        rows = await self._client.select(
            RETRY_SETTINGS_TABLE,
            filters={"user_id": user_id},
            limit=1,
        )
        if not rows:
            return None
        row = rows[0]
        return RetrySettings(
            max_retry_attempts=row.get("max_retry_attempts") or RetrySettings().max_retry_attempts,
            retry_interval_minutes=(
                row["retry_interval_minutes"]
                if row.get("retry_interval_minutes") is not None
                else RetrySettings().retry_interval_minutes
            ),
        )
