"""Supabase HTTP client for edge functions and PostgREST reads.

The Strava sync and activity detail collaborators live behind Supabase:

    POST /functions/v1/<name>   — edge functions (sync-strava-activities, ...)
    GET  /rest/v1/<table>       — row reads, filtered by PostgREST operators

The user's session JWT is forwarded so Row-Level Security sees the right
identity.  Non-2xx responses and ``{"error": ...}`` bodies are mapped onto
the sync error taxonomy.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.config import Settings, get_settings
from src.strava.errors import EntityNotFound, classify_error

logger = logging.getLogger("stride.supabase")


class SupabaseClient:
    """Thin async wrapper over the Supabase REST and Functions endpoints.

    Usage::

        client = SupabaseClient.from_settings(get_settings())
        data = await client.invoke("sync-strava-activities")
        rows = await client.select("strava_best_efforts", {"activity_id": 42}, order="distance.asc")
        await client.aclose()
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            url:          Project URL, e.g. ``https://xyz.supabase.co``.
            api_key:      Anon (publishable) key.
            access_token: User session JWT; falls back to the anon key.
            http_client:  Optional pre-configured httpx client (for testing).
            timeout:      Per-request timeout in seconds.
        """
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SupabaseClient":
        s = settings or get_settings()
        return cls(
            url=s.supabase_url,
            api_key=s.supabase_anon_key,
            access_token=s.supabase_access_token or None,
        )

    def _headers(self) -> dict[str, str]:
        token = self._access_token or self._api_key
        return {"apikey": self._api_key, "Authorization": f"Bearer {token}"}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Supabase %s %s failed: %s", method, url, exc)
            raise classify_error(exc) from exc
        return response

    async def invoke(self, function_name: str, body: dict | None = None) -> dict:
        """Call an edge function and return its JSON body.

        Raises:
            StravaSyncError: Classified HTTP failure or ``error`` in the body.
        """
        url = f"{self._url}/functions/v1/{function_name}"
        response = await self._send("POST", url, json=body or {})
        data = response.json() if response.content else {}
        if isinstance(data, dict) and data.get("error"):
            message = data["error"]
            if isinstance(message, dict):
                message = message.get("message") or str(message)
            raise classify_error(Exception(str(message)))
        return data

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        columns: str = "*",
        order: str | None = None,
    ) -> list[dict]:
        """Read rows with ``column=eq.value`` filters."""
        params: dict[str, str] = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = order
        response = await self._send("GET", f"{self._url}/rest/v1/{table}", params=params)
        return response.json()

    async def select_one(
        self,
        table: str,
        filters: dict[str, Any],
        columns: str = "*",
    ) -> dict:
        """Read exactly one row.

        Raises:
            EntityNotFound: If no row matches.
        """
        rows = await self.select(table, filters, columns=columns)
        if not rows:
            raise EntityNotFound(f"No {table} row matching {filters}")
        return rows[0]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
