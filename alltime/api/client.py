"""AllTime backend API client.

Thin async wrapper over httpx that turns every failure into the sync error
taxonomy (``alltime.errors``) so the scheduler and the cache layer never see
raw transport exceptions.

Endpoints used:
    GET  /api/v1/summary/daily     — daily summary for one date
    GET  /api/v1/health/insights   — insights for a date range
    POST /api/v1/health/daily      — upsert per-day health metrics
    POST /sync/<provider>          — trigger a calendar provider sync
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Sequence

import httpx

from alltime.errors import AuthError, NetworkError, ServerError
from alltime.freshness.keys import cache_key
from alltime.health.models import DailyHealthMetrics, SubmitHealthMetricsResponse

logger = logging.getLogger("alltime.api.client")

DAILY_HEALTH_ENDPOINT = "/api/v1/health/daily"
DAILY_SUMMARY_ENDPOINT = "/api/v1/summary/daily"
HEALTH_INSIGHTS_ENDPOINT = "/api/v1/health/insights"

TokenProvider = Callable[[], "str | None"]


class BackendClient:
    """Authenticated JSON client for the AllTime backend.

    Usage::

        client = BackendClient("https://api.alltime.app", token=session.token)
        summary = await client.fetch("/api/v1/summary/daily", {"date": "2025-12-04"})
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:       Backend root URL.
            token:          Static bearer token.
            token_provider: Callable returning the current token (wins over ``token``).
            timeout:        Request timeout in seconds.
            http_client:    Optional pre-configured httpx client (for testing).
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._token_provider = token_provider
        self._timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        token_provider: TokenProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "BackendClient":
        return cls(
            base_url=settings.api_base_url,
            token=settings.api_token,
            token_provider=token_provider,
            timeout=settings.http_timeout_seconds,
            http_client=http_client,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _current_token(self) -> str | None:
        if self._token_provider is not None:
            return self._token_provider()
        return self._token

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """Send one request and decode the JSON response.

        Raises:
            AuthError:    No token, or HTTP 401/403.
            NetworkError: Timeout or transport failure.
            ServerError:  Any other non-2xx, or an undecodable body.
        """
        token = self._current_token()
        if not token:
            raise AuthError("No authentication token available")

        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        url = self._url(endpoint)
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{method} {endpoint} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {endpoint} failed: {exc}") from exc

        status = response.status_code
        if status in (401, 403):
            logger.warning("%s %s rejected credentials (HTTP %d)", method, endpoint, status)
            raise AuthError(f"Authentication rejected (HTTP {status})")
        if not 200 <= status < 300:
            logger.warning("%s %s returned HTTP %d", method, endpoint, status)
            raise ServerError.from_status(status, response.text[:200])

        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ServerError(
                f"Undecodable response from {method} {endpoint}", status_code=status
            ) from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``endpoint`` and return the decoded JSON body."""
        logger.debug("GET %s %s", endpoint, params or {})
        return await self._request("GET", endpoint, params=params)

    async def post(self, endpoint: str, body: Any = None) -> Any:
        """POST ``body`` as JSON to ``endpoint``."""
        logger.debug("POST %s", endpoint)
        return await self._request("POST", endpoint, body=body)

    async def submit_daily_metrics(
        self, records: Sequence[DailyHealthMetrics]
    ) -> SubmitHealthMetricsResponse:
        """Upsert per-day health metrics.

        One record is sent as a bare object, several as an array; the backend
        accepts both.
        """
        if not records:
            raise ValueError("submit_daily_metrics needs at least one record")
        payloads = [r.to_payload() for r in records]
        body: Any = payloads[0] if len(payloads) == 1 else payloads
        data = await self.post(DAILY_HEALTH_ENDPOINT, body)
        if not isinstance(data, dict):
            raise ServerError("Unexpected response shape from health submission")
        response = SubmitHealthMetricsResponse.model_validate(data)
        logger.info(
            "Submitted %d health records (%d upserted)",
            len(records),
            response.records_upserted,
        )
        return response

    def producer(self, endpoint: str, **params: Any) -> Callable[[], Awaitable[Any]]:
        """Return a zero-argument fetch for ``endpoint`` usable with the cache layer.

        Pair it with ``cache_key(endpoint, **params)`` (see ``keyed_producer``).
        """
        query = {
            k: (v.isoformat() if hasattr(v, "isoformat") else v)
            for k, v in params.items()
            if v is not None
        }

        async def _fetch() -> Any:
            return await self.fetch(endpoint, query or None)

        return _fetch

    def keyed_producer(
        self, endpoint: str, **params: Any
    ) -> tuple[str, Callable[[], Awaitable[Any]]]:
        """Return ``(cache_key, producer)`` for one endpoint + parameters."""
        return cache_key(endpoint, **params), self.producer(endpoint, **params)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()
