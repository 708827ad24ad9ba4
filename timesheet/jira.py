"""Async Jira REST client: authenticated JSON calls with uniform errors."""

import logging
from typing import Any

import httpx

from .config import ApiContext, get_ssl_verify

logger = logging.getLogger(__name__)

AGILE_API_PREFIX = "/rest/agile/1.0/"
SCOPE_MISMATCH_MARKER = "scope does not match"

_AGILE_HINT = (
    "Make sure your Jira user has Jira Software access "
    "and the token has the required permissions."
)
_CORE_HINT = "Check your Jira permissions and API token."


class JiraError(Exception):
    """Raised when a Jira operation fails."""

    pass


class ApiError(JiraError):
    """Non-success response from the Jira API."""

    def __init__(self, message: str, status: int = 0, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class NetworkError(ApiError):
    """Transport failure (connection refused, timeout, DNS)."""


class ScopeMismatchError(ApiError):
    """401 caused by a token whose scopes do not cover the endpoint."""


def api_error(status: int, body: str, url: str) -> ApiError:
    """Build the error for a non-success response.

    A 401 whose body reports a scope mismatch gets a permission hint that
    depends on whether the agile or the core API was called.
    """
    message = f"API error: {status} - {body}"
    if status == 401 and SCOPE_MISMATCH_MARKER in body:
        hint = _AGILE_HINT if AGILE_API_PREFIX in url else _CORE_HINT
        return ScopeMismatchError(f"{message}. {hint}", status=status, body=body)
    return ApiError(message, status=status, body=body)


class JiraClient:
    """Thin async wrapper over httpx for the Jira REST API.

    Purely a transport primitive: no retries, no caching.
    """

    def __init__(self, context: ApiContext, **kwargs: Any):
        self.context = context
        kwargs.setdefault("verify", get_ssl_verify())
        self._client = httpx.AsyncClient(
            base_url=context.base_url,
            headers=context.headers,
            timeout=30.0,
            **kwargs,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "JiraClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
    ) -> httpx.Response:
        """Make a request and classify failures.

        Wraps httpx transport errors as NetworkError so callers only need
        to catch ApiError.
        """
        logger.debug("%s %s %s", method, path, params or "")
        try:
            resp = await self._client.request(method, path, json=json, params=params)
        except httpx.RequestError as exc:
            raise NetworkError(f"Network error: {exc}") from exc
        if not resp.is_success:
            raise api_error(resp.status_code, resp.text, str(resp.request.url))
        return resp

    async def request_json(self, path: str, params: dict | None = None) -> Any:
        """GET a path and return the decoded JSON body."""
        resp = await self._request("GET", path, params=params)
        return resp.json()

    async def send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
    ) -> Any:
        """Send a mutation. Returns decoded JSON, or None for empty responses."""
        resp = await self._request(method, path, json=json, params=params)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()
