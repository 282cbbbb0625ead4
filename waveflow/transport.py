"""HTTP execution capability backed by httpx."""

from __future__ import annotations

import asyncio
import base64
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx

from waveflow.exceptions import HttpExecutionError
from waveflow.logger import get_logger
from waveflow.models import (
    ApiKeyAuth,
    BasicAuth,
    DigestAuth,
    HttpRequestConfig,
    HttpResponse,
    OAuth2RefreshAuth,
)

log = get_logger(__name__)

_TEXT_MARKERS = ("json", "xml", "javascript", "html", "x-www-form-urlencoded")
_TOKEN_LEEWAY = timedelta(seconds=30)


class HttpExecutor(Protocol):
    """Sends one request. Raises on transport failure; any status is a response."""

    async def execute(self, request: HttpRequestConfig) -> HttpResponse: ...


def _is_text(content_type: str) -> bool:
    content_type = content_type.lower()
    return content_type.startswith("text/") or any(
        marker in content_type for marker in _TEXT_MARKERS
    )


def to_http_response(
    response: httpx.Response, elapsed_ms: float, response_id: str | None = None
) -> HttpResponse:
    """Convert an httpx response; binary bodies are base64-encoded."""
    content = response.content
    content_type = response.headers.get("content-type", "")
    is_encoded = False
    if not content or _is_text(content_type):
        body = response.text
    else:
        try:
            body = content.decode("utf-8")
        except UnicodeDecodeError:
            body = base64.b64encode(content).decode("ascii")
            is_encoded = True
    return HttpResponse(
        id=response_id or uuid.uuid4().hex,
        status=response.status_code,
        status_text=response.reason_phrase,
        elapsed_time=round(elapsed_ms, 2),
        size=len(content),
        body=body,
        headers=dict(response.headers),
        is_encoded=is_encoded,
    )


class HttpxExecutor:
    """Executes materialized requests with a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 30.0,
        verify: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=timeout, verify=verify, follow_redirects=True
        )
        self._owns_client = client is None
        self._tokens: dict[str, tuple[str, datetime | None]] = {}
        self._token_locks: dict[str, asyncio.Lock] = {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpxExecutor:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def execute(self, request: HttpRequestConfig) -> HttpResponse:
        headers: dict[str, str] = {
            key: ", ".join(value) if isinstance(value, list) else value
            for key, value in request.headers.items()
        }
        params = list(request.params)
        auth: httpx.Auth | None = None
        if request.auth is not None:
            auth = await self._apply_auth(request.auth, headers, params)

        kwargs: dict[str, Any] = {}
        if request.body_mode == "raw" and request.body is not None:
            kwargs["content"] = request.body.encode("utf-8")
        elif request.body_mode == "urlencoded":
            kwargs["data"] = _form_dict(request.form)
        elif request.body_mode == "formdata":
            kwargs["files"] = [(k, (None, v.encode("utf-8"))) for k, v in request.form]

        log.debug("http_request", method=request.method, url=request.url)
        start = time.perf_counter()
        try:
            response = await self._client.request(
                request.method,
                request.url,
                params=params or None,
                headers=headers,
                auth=auth,
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise HttpExecutionError(request.url, str(exc) or type(exc).__name__) from exc
        elapsed_ms = (time.perf_counter() - start) * 1000
        log.debug(
            "http_response",
            url=request.url,
            status=response.status_code,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return to_http_response(response, elapsed_ms)

    # --- Auth ---

    async def _apply_auth(
        self,
        auth: Any,
        headers: dict[str, str],
        params: list[tuple[str, str]],
    ) -> httpx.Auth | None:
        """Mutate headers/params for the auth type, or return an httpx auth flow."""
        if isinstance(auth, ApiKeyAuth):
            value = auth.value
            if auth.base64_encode:
                value = base64.b64encode(value.encode("utf-8")).decode("ascii")
            value = f"{auth.prefix or ''}{value}"
            if auth.send_in == "query":
                params.append((auth.key, value))
            else:
                headers[auth.key] = value
            return None
        if isinstance(auth, BasicAuth):
            return httpx.BasicAuth(auth.username, auth.password)
        if isinstance(auth, DigestAuth):
            return httpx.DigestAuth(auth.username, auth.password)
        if isinstance(auth, OAuth2RefreshAuth):
            token = await self._oauth_token(auth)
            headers["Authorization"] = f"Bearer {token}"
            return None
        return None

    async def _oauth_token(self, auth: OAuth2RefreshAuth) -> str:
        now = datetime.now(tz=timezone.utc)
        cached = self._tokens.get(auth.id)
        if cached is None and auth.access_token:
            cached = (auth.access_token, auth.token_expires_at)
        if cached is not None and _token_valid(cached[1], now):
            return cached[0]

        lock = self._token_locks.setdefault(auth.id, asyncio.Lock())
        async with lock:
            cached = self._tokens.get(auth.id)
            if cached is not None and _token_valid(cached[1], now):
                return cached[0]
            token, expires_at = await self._refresh_token(auth)
            self._tokens[auth.id] = (token, expires_at)
            return token

    async def _refresh_token(
        self, auth: OAuth2RefreshAuth
    ) -> tuple[str, datetime | None]:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": auth.refresh_token,
            "client_id": auth.client_id,
        }
        if auth.client_secret:
            data["client_secret"] = auth.client_secret
        if auth.scope:
            data["scope"] = auth.scope
        try:
            response = await self._client.post(auth.token_url, data=data)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise HttpExecutionError(auth.token_url, f"Token refresh failed: {exc}") from exc

        token = payload.get("access_token")
        if not token:
            raise HttpExecutionError(auth.token_url, "Token response has no access_token")
        expires_in = payload.get("expires_in")
        expires_at = (
            datetime.now(tz=timezone.utc) + timedelta(seconds=float(expires_in))
            if expires_in
            else None
        )
        log.info("oauth_token_refreshed", auth_id=auth.id)
        return token, expires_at


def _token_valid(expires_at: datetime | None, now: datetime) -> bool:
    if expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at - _TOKEN_LEEWAY > now


def _form_dict(rows: list[tuple[str, str]]) -> dict[str, str | list[str]]:
    form: dict[str, str | list[str]] = {}
    for key, value in rows:
        existing = form.get(key)
        if existing is None:
            form[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            form[key] = [existing, value]
    return form
