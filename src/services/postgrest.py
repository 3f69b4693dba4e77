"""Async client for the hosted database's PostgREST interface (Supabase).

The escalation service does not own the relational store; it reads
contacts and retry settings and appends alert and call-log rows through
the ``/rest/v1`` endpoint with the service-role key.

Transient failures (connection errors, 429 and 5xx responses) are
retried a few times with exponential backoff.  Anything still failing
is raised as :class:`PersistenceError`.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.services.errors import ConfigurationError, PersistenceError

logger = structlog.get_logger(__name__)


class _TransientStoreError(Exception):
    """Retryable response from the store (429 / 5xx)."""


class PostgRESTClient:
    """Thin wrapper over ``httpx.AsyncClient`` for PostgREST tables.

    Parameters
    ----------
    base_url:
        Project URL, e.g. ``https://xyz.supabase.co``.
    api_key:
        Service-role key, sent both as ``apikey`` and bearer token.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional transport override (used by tests).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not api_key:
            raise ConfigurationError(
                "Store credentials not configured: SUPABASE_URL and "
                "SUPABASE_SERVICE_ROLE_KEY are required"
            )
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            timeout=timeout,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows of *table* matching equality *filters*."""
        params = {column: f"eq.{value}" for column, value in (filters or {}).items()}
        params["select"] = "*"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return await self._request("GET", f"/{table}", params=params)

    async def insert(
        self,
        table: str,
        row: dict[str, Any],
        *,
        upsert: bool = False,
    ) -> dict[str, Any]:
        """Insert *row* and return the stored representation.

        With ``upsert=True`` a repeated insert of the same primary key
        merges instead of failing, which makes retried writes safe.
        """
        prefer = "return=representation"
        if upsert:
            prefer += ",resolution=merge-duplicates"
        rows = await self._request("POST", f"/{table}", json=row, headers={"Prefer": prefer})
        return rows[0] if rows else row

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        *,
        filters: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Patch rows matching *filters*; returns the updated rows."""
        if not filters:
            raise ValueError("update() requires at least one filter")
        params = {column: f"eq.{value}" for column, value in filters.items()}
        return await self._request(
            "PATCH",
            f"/{table}",
            params=params,
            json=values,
            headers={"Prefer": "return=representation"},
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> list[dict[str, Any]]:
        try:
            response = await self._send(method, path, **kwargs)
        except (httpx.TransportError, _TransientStoreError) as exc:
            logger.warning("postgrest.request_failed", method=method, path=path, error=str(exc))
            raise PersistenceError(f"{method} {path} failed: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "postgrest.request_rejected",
                method=method,
                path=path,
                status=response.status_code,
                body=response.text[:300],
            )
            raise PersistenceError(
                f"{method} {path} rejected with HTTP {response.status_code}"
            )

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, _TransientStoreError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientStoreError(f"HTTP {response.status_code}")
        return response
