"""Authenticated kino.pub HTTP client with bounded retries."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from ..config import Settings
from ..errors import (
    ApiError,
    AuthFailure,
    NetworkError,
    RateLimited,
    ServerError,
)
from .auth import TokenLifecycle

logger = logging.getLogger(__name__)


def _error_details(response: httpx.Response) -> tuple[str | None, str | None]:
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    message = body.get("error_description") or body.get("message") or body.get("error")
    code = body.get("error_code") or body.get("error")
    return (
        str(message) if message is not None else None,
        str(code) if code is not None else None,
    )


class KinoPubClient:
    """Executes single logical requests against the kino.pub API.

    401 answers trigger one token refresh; 429, 5xx and transport errors are
    retried with a linear backoff until ``request_max_attempts`` is spent. Every
    successful answer must decode to a JSON object.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        auth: TokenLifecycle,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._auth = auth
        self._sleep = sleep or asyncio.sleep
        self._max_attempts = settings.request_max_attempts

    @property
    def auth(self) -> TokenLifecycle:
        return self._auth

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self._settings.request_retry_delay_seconds * attempt
        logger.debug(
            "%s, retrying in %.1fs (attempt %s/%s)",
            reason,
            delay,
            attempt,
            self._max_attempts,
        )
        await self._sleep(delay)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON object."""

        refresh_attempted = False
        for attempt in range(1, self._max_attempts + 1):
            access_token = await self._auth.get_access_token()
            headers = {
                "Authorization": f"Bearer {access_token}",
                "User-Agent": self._settings.app_name,
            }
            try:
                response = await self._client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers=headers,
                    timeout=self._settings.request_timeout_seconds,
                )
            except httpx.HTTPError as exc:
                if attempt < self._max_attempts:
                    await self._backoff(
                        attempt, f"Network error on {method} {path} ({exc.__class__.__name__})"
                    )
                    continue
                raise NetworkError(
                    f"Network error: {exc}", error_code="NETWORK_ERROR"
                ) from exc

            status = response.status_code
            if status == 401:
                if not refresh_attempted and attempt < self._max_attempts:
                    refresh_attempted = True
                    logger.info("kino.pub rejected the access token, refreshing session")
                    if await self._auth.refresh_session():
                        continue
                _, code = _error_details(response)
                raise AuthFailure(
                    "Authentication failed. Please re-authenticate.",
                    error_code=code or "UNAUTHORIZED",
                )
            if status == 429:
                if attempt < self._max_attempts:
                    await self._backoff(attempt, f"Rate limited on {method} {path}")
                    continue
                raise RateLimited(
                    "Rate limit exceeded. Please try again later.",
                    status_code=status,
                    error_code="RATE_LIMITED",
                )
            if status >= 500:
                if attempt < self._max_attempts:
                    await self._backoff(attempt, f"Server error {status} on {method} {path}")
                    continue
                raise ServerError(
                    "Server error. Please try again later.",
                    status_code=status,
                    error_code="SERVER_ERROR",
                )
            if status >= 400:
                message, code = _error_details(response)
                raise ApiError(
                    message or f"kino.pub request failed with HTTP {status}",
                    status_code=status,
                    error_code=code,
                )
            return self._decode(response)

        # The loop either returns or raises on its final attempt.
        raise ServerError("Request attempts exhausted", error_code="SERVER_ERROR")

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if response.status_code == 204:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError(
                "Invalid response format", status_code=response.status_code
            ) from exc
        if not isinstance(body, dict):
            raise ApiError("Invalid response format", status_code=response.status_code)
        return body

    async def get(self, path: str, **params: Any) -> dict[str, Any]:
        cleaned = {key: value for key, value in params.items() if value is not None}
        return await self.request("GET", path, params=cleaned or None)

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", path, json=payload)
