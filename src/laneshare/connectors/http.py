"""
Async HTTP client shared by the platform adapters.

Wraps httpx.AsyncClient with a bounded timeout and turns every failure into
one of three adapter errors, because the error text ends up as the
connection's user-visible `last_sync_error`:

  - AdapterAuthError       401 / 403
  - AdapterNotFoundError   404
  - AdapterTransportError  timeouts, connection failures, 429 and 5xx

Other 4xx responses are reported as a plain AdapterError with the
platform's own message when one can be extracted.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from laneshare.errors import (
    AdapterAuthError,
    AdapterError,
    AdapterNotFoundError,
    AdapterTransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20.0


def _extract_message(response: httpx.Response) -> str:
    """Best-effort error message from a JSON or text error body."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] if text else response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("message", "error", "msg", "hint"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


def raise_for_status(response: httpx.Response, platform: str, what: str) -> None:
    """Raise the classified adapter error for a non-2xx response."""
    status = response.status_code
    if status < 400:
        return
    detail = _extract_message(response)
    if status in (401, 403):
        raise AdapterAuthError(
            f"{platform} rejected the credentials while {what} ({status}): {detail}"
        )
    if status == 404:
        raise AdapterNotFoundError(f"{platform} returned not found while {what}: {detail}")
    if status == 429 or status >= 500:
        raise AdapterTransportError(
            f"{platform} is unavailable while {what} ({status}): {detail}"
        )
    raise AdapterError(f"{platform} API error while {what} ({status}): {detail}")


class PlatformHttpClient:
    """
    Thin async wrapper over httpx.AsyncClient for one platform.

    Use as an async context manager so the connection pool is closed when
    the adapter call finishes:

        async with PlatformHttpClient("Vercel", base_url, headers) as http:
            user = await http.get_json("/v2/user", what="fetching the user")
    """

    def __init__(
        self,
        platform: str,
        base_url: str = "",
        headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            platform: Human platform name used in error messages.
            base_url: Prefix for relative request paths.
            headers: Default headers (auth lives here; never logged).
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self.platform = platform
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "PlatformHttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        what: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request and return the raw response without status checks.

        Raises:
            AdapterTransportError: on timeout or any network-level failure.
        """
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise AdapterTransportError(
                f"{self.platform} timed out while {what}"
            ) from exc
        except httpx.RequestError as exc:
            raise AdapterTransportError(
                f"Could not reach {self.platform} while {what}: {exc.__class__.__name__}"
            ) from exc

    async def get_json(self, url: str, *, what: str, **kwargs: Any) -> Any:
        response = await self.request("GET", url, what=what, **kwargs)
        raise_for_status(response, self.platform, what)
        return self._decode(response, what)

    async def post_json(self, url: str, *, what: str, **kwargs: Any) -> Any:
        response = await self.request("POST", url, what=what, **kwargs)
        raise_for_status(response, self.platform, what)
        return self._decode(response, what)

    def _decode(self, response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise AdapterError(
                f"{self.platform} returned a non-JSON response while {what}"
            ) from exc
