"""Async HTTP client for the storefront REST API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from campuzon.errors import (
    AuthenticationRequired,
    NetworkFailure,
    NotFound,
    StorefrontError,
    ValidationFailure,
)

if TYPE_CHECKING:
    from campuzon.identity import IdentityProvider


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------


def extract_data(body: Any) -> Any:
    """Unwrap ``{"success": {"data": ...}}``; other shapes pass through."""
    if isinstance(body, dict):
        success = body.get("success")
        if isinstance(success, dict) and "data" in success:
            return success["data"]
    return body


def extract_error(body: Any, fallback: str) -> str:
    """Pull a user-facing message out of an error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return fallback or "Request failed."


# ---------------------------------------------------------------------------
# Status code → exception mapping
# ---------------------------------------------------------------------------

_STATUS_MAP: dict[int, type[StorefrontError]] = {
    400: ValidationFailure,
    401: AuthenticationRequired,
    403: AuthenticationRequired,
    404: NotFound,
    409: ValidationFailure,
    422: ValidationFailure,
}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class StorefrontClient:
    """Async client for the storefront API.

    Constructor accepts explicit params; no env-var loading. The bearer
    token is read from ``identity`` on every request, so sign-in and
    sign-out take effect without rebuilding the client.
    """

    def __init__(
        self,
        base_url: str,
        identity: IdentityProvider | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 15.0,
    ) -> None:
        self._identity = identity
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(
                connect=connect_timeout, read=read_timeout, write=10.0, pool=5.0,
            ),
        )

    # -- internal request dispatcher -----------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        token = self._identity.access_token if self._identity else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request, unwrap the envelope, and map errors to the taxonomy."""
        try:
            response = await self._client.request(
                method, path, json=json_data, params=params,
                headers=self._auth_headers(),
            )
        except httpx.TimeoutException as exc:
            raise NetworkFailure(f"Request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Network error: {exc}") from exc

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None

        if response.status_code >= 400:
            status = response.status_code
            message = extract_error(body, response.text)
            exc_cls = _STATUS_MAP.get(status)
            if exc_cls is ValidationFailure:
                fields = body.get("errors") if isinstance(body, dict) else None
                raise ValidationFailure(
                    message, code=status,
                    field_errors=fields if isinstance(fields, dict) else None,
                )
            if exc_cls is not None:
                raise exc_cls(message, code=status)
            if status >= 500:
                raise NetworkFailure(message, code=status)
            raise StorefrontError(message, code=status)

        return extract_data(body)

    # -- public API methods ---------------------------------------------------

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self._request("POST", path, json_data=body)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self._request("PUT", path, json_data=body)

    async def patch(self, path: str, body: Any = None) -> Any:
        return await self._request("PATCH", path, json_data=body)

    async def delete(self, path: str) -> Any:
        return await self._request("DELETE", path)

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> StorefrontClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
