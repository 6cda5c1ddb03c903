from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from cataloglens.core.config import get_settings
from cataloglens.core.errors import CatalogLensError


logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class GoogleTokenSource:
    """Application Default Credentials, refreshed lazily off the event loop."""

    def __init__(self, credentials: Any | None = None) -> None:
        self._credentials = credentials
        self._lock = asyncio.Lock()

    async def token(self) -> str:
        from google.auth import default
        from google.auth.transport.requests import Request

        async with self._lock:
            if self._credentials is None:
                self._credentials, _project = await asyncio.to_thread(default, scopes=[CLOUD_PLATFORM_SCOPE])
            if not self._credentials.valid:
                await asyncio.to_thread(self._credentials.refresh, Request())
            return self._credentials.token


class GoogleRestClient:
    """Thin JSON-over-HTTPS client for Google Cloud REST APIs.

    Failures are raised as ``error_cls`` (or ``auth_error_cls`` for credential
    and 401/403 problems) carrying the HTTP status; transport errors map to a
    synthetic 503 and timeouts to 504 so the retry policy treats them as
    transient.
    """

    def __init__(
        self,
        *,
        error_cls: type[CatalogLensError],
        auth_error_cls: type[CatalogLensError] | None = None,
        token_source: GoogleTokenSource | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._error_cls = error_cls
        self._auth_error_cls = auth_error_cls or error_cls
        self._tokens = token_source or GoogleTokenSource()
        self._http = http_client
        self._owns_http = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            timeout_s = max(1.0, get_settings().ext_call_timeout_ms / 1000.0)
            self._http = httpx.AsyncClient(timeout=timeout_s)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def _auth_headers(self) -> dict[str, str]:
        from google.auth.exceptions import GoogleAuthError

        try:
            token = await self._tokens.token()
        except GoogleAuthError as exc:
            raise self._auth_error_cls(
                "Google credentials unavailable: run `gcloud auth application-default login`.",
                status_code=401,
            ) from exc
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = await self._auth_headers()
        try:
            response = await self._client().request(method, url, json=json, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise self._error_cls(f"{method} {url} timed out", status_code=504) from exc
        except httpx.TransportError as exc:
            raise self._error_cls(f"{method} {url} failed: {exc}", status_code=503) from exc

        if response.status_code in (401, 403):
            raise self._auth_error_cls(_error_message(response), status_code=response.status_code)
        if response.status_code >= 400:
            raise self._error_cls(_error_message(response), status_code=response.status_code)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise self._error_cls(f"{method} {url} returned invalid JSON", status_code=502) from exc
        return payload if isinstance(payload, dict) else {}


def _error_message(response: httpx.Response) -> str:
    # Google APIs wrap failures as {"error": {"code", "message", "status"}}.
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {response.status_code}"
