"""OAuth device-flow authentication against kino.pub."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import AuthFailure
from ..models import DeviceAuthorization, StoredTokens, TokenResponse

logger = logging.getLogger(__name__)

EXPIRY_BUFFER_MS = 5 * 60 * 1000
MIN_POLL_INTERVAL_SECONDS = 2.5
MAX_POLL_ATTEMPTS = 120

Clock = Callable[[], int]
Sleeper = Callable[[float], Awaitable[Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class TokenStore:
    """Reads and writes the token pair as a small JSON file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StoredTokens | None:
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            return StoredTokens.model_validate(payload)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, exc)
            return None

    def save(self, tokens: StoredTokens) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(tokens.to_file_payload(), indent=2), encoding="utf-8"
        )
        logger.info("Stored kino.pub tokens in %s", self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING_USER_APPROVAL = "pending_user_approval"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class AuthEvent(str, Enum):
    DEVICE_CODE_ISSUED = "device_code_issued"
    TOKENS_GRANTED = "tokens_granted"
    FLOW_FAILED = "flow_failed"
    TOKEN_EXPIRED = "token_expired"
    REFRESH_SUCCEEDED = "refresh_succeeded"
    REFRESH_FAILED = "refresh_failed"


_TRANSITIONS: dict[tuple[AuthState, AuthEvent], AuthState] = {
    (AuthState.UNAUTHENTICATED, AuthEvent.DEVICE_CODE_ISSUED): AuthState.PENDING_USER_APPROVAL,
    (AuthState.EXPIRED, AuthEvent.DEVICE_CODE_ISSUED): AuthState.PENDING_USER_APPROVAL,
    (AuthState.AUTHENTICATED, AuthEvent.DEVICE_CODE_ISSUED): AuthState.PENDING_USER_APPROVAL,
    (AuthState.PENDING_USER_APPROVAL, AuthEvent.TOKENS_GRANTED): AuthState.AUTHENTICATED,
    # A refresh may settle the state while a device code is still being polled.
    (AuthState.AUTHENTICATED, AuthEvent.TOKENS_GRANTED): AuthState.AUTHENTICATED,
    (AuthState.EXPIRED, AuthEvent.TOKENS_GRANTED): AuthState.AUTHENTICATED,
    (AuthState.PENDING_USER_APPROVAL, AuthEvent.FLOW_FAILED): AuthState.UNAUTHENTICATED,
    (AuthState.AUTHENTICATED, AuthEvent.TOKEN_EXPIRED): AuthState.EXPIRED,
    (AuthState.AUTHENTICATED, AuthEvent.REFRESH_SUCCEEDED): AuthState.AUTHENTICATED,
    (AuthState.EXPIRED, AuthEvent.REFRESH_SUCCEEDED): AuthState.AUTHENTICATED,
    (AuthState.AUTHENTICATED, AuthEvent.REFRESH_FAILED): AuthState.UNAUTHENTICATED,
    (AuthState.EXPIRED, AuthEvent.REFRESH_FAILED): AuthState.UNAUTHENTICATED,
}


def advance(state: AuthState, event: AuthEvent) -> AuthState:
    """Return the state reached from ``state`` on ``event``.

    Unknown pairs raise ``ValueError``.
    """

    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"Invalid auth transition {state.value} -> {event.value}") from None


class PollOutcome(str, Enum):
    GRANTED = "granted"
    PENDING = "pending"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass(slots=True)
class PollResult:
    outcome: PollOutcome
    tokens: TokenResponse | None = None
    error_code: str | None = None
    message: str | None = None


def classify_poll_response(status_code: int, body: Any) -> PollResult:
    """Interpret one answer of the token endpoint during device polling."""

    error_code = body.get("error") if isinstance(body, dict) else None
    if error_code == "authorization_pending":
        return PollResult(PollOutcome.PENDING, error_code=error_code)
    if error_code == "code_expired":
        return PollResult(
            PollOutcome.EXPIRED,
            error_code=error_code,
            message="Authorization code expired. Please try again.",
        )
    if status_code < 400 and not error_code and isinstance(body, dict):
        try:
            return PollResult(PollOutcome.GRANTED, tokens=TokenResponse.model_validate(body))
        except ValidationError:
            return PollResult(
                PollOutcome.FAILED,
                error_code="INVALID_TOKEN_RESPONSE",
                message="Token endpoint returned an incomplete token payload",
            )
    description = None
    if isinstance(body, dict):
        description = body.get("error_description") or body.get("error")
    return PollResult(
        PollOutcome.FAILED,
        error_code=error_code or "TOKEN_REQUEST_FAILED",
        message=f"Token request failed: {description or f'HTTP {status_code}'}",
    )


class TokenLifecycle:
    """Owns the token pair: device authorization, refresh and validity checks."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        store: TokenStore | None = None,
        *,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._store = store or TokenStore(settings.token_file)
        self._clock = clock or _now_ms
        self._sleep = sleep or asyncio.sleep
        self._tokens: StoredTokens | None = None
        self._loaded = False
        self._state = AuthState.UNAUTHENTICATED
        tokens = self._current_tokens()
        if tokens is not None:
            self._state = (
                AuthState.AUTHENTICATED
                if self._is_valid(tokens)
                else AuthState.EXPIRED
            )

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def state(self) -> AuthState:
        if self._state is AuthState.AUTHENTICATED and not self.is_authenticated():
            self._apply(AuthEvent.TOKEN_EXPIRED)
        return self._state

    @property
    def access_expiry(self) -> int | None:
        tokens = self._current_tokens()
        return tokens.access_expiry if tokens else None

    def _apply(self, event: AuthEvent) -> None:
        previous = self._state
        self._state = advance(self._state, event)
        if previous is not self._state:
            logger.debug("Auth state %s -> %s", previous.value, self._state.value)

    def _current_tokens(self) -> StoredTokens | None:
        if not self._loaded:
            self._tokens = self._store.load()
            self._loaded = True
        return self._tokens

    def _is_valid(self, tokens: StoredTokens) -> bool:
        return tokens.access_expiry > self._clock() + EXPIRY_BUFFER_MS

    def is_authenticated(self) -> bool:
        """Return True when a token pair exists and outlives the safety buffer."""

        tokens = self._current_tokens()
        return tokens is not None and self._is_valid(tokens)

    def _persist(self, response: TokenResponse) -> StoredTokens:
        tokens = StoredTokens(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            access_expiry=self._clock() + response.expires_in * 1000,
        )
        self._store.save(tokens)
        self._tokens = tokens
        self._loaded = True
        return tokens

    def _credentials(self) -> dict[str, str]:
        payload = {"client_id": self._settings.kinopub_client_id}
        if self._settings.kinopub_client_secret:
            payload["client_secret"] = self._settings.kinopub_client_secret
        return payload

    async def _post_oauth(self, payload: dict[str, Any]) -> tuple[int, Any]:
        response = await self._client.post(
            self._settings.kinopub_oauth_url,
            json={**payload, **self._credentials()},
            headers={"User-Agent": self._settings.app_name},
            timeout=self._settings.request_timeout_seconds,
        )
        try:
            body = response.json()
        except ValueError:
            body = None
        return response.status_code, body

    async def start_device_authorization(self) -> DeviceAuthorization:
        """Request a device code and user code from the OAuth endpoint."""

        try:
            status_code, body = await self._post_oauth({"grant_type": "device_code"})
        except httpx.HTTPError as exc:
            raise AuthFailure(
                f"Network error during device authorization: {exc}",
                error_code="DEVICE_AUTH_FAILED",
            ) from exc
        if status_code >= 400 or not isinstance(body, dict):
            detail = body.get("error") if isinstance(body, dict) else f"HTTP {status_code}"
            raise AuthFailure(
                f"Failed to request device authorization: {detail}",
                error_code="DEVICE_AUTH_FAILED",
            )
        try:
            device = DeviceAuthorization.model_validate(body)
        except ValidationError as exc:
            raise AuthFailure(
                "Device authorization response is missing fields",
                error_code="DEVICE_AUTH_FAILED",
            ) from exc
        if self._state is AuthState.PENDING_USER_APPROVAL:
            logger.info("Replacing a pending device authorization")
        else:
            self._apply(AuthEvent.DEVICE_CODE_ISSUED)
        logger.info(
            "Device code issued; visit %s and enter %s",
            device.verification_uri,
            device.user_code,
        )
        return device

    async def wait_for_authorization(self, device: DeviceAuthorization) -> StoredTokens:
        """Poll the token endpoint until the user approves the device code."""

        interval = max(float(device.interval or 0), MIN_POLL_INTERVAL_SECONDS)
        try:
            for attempt in range(1, MAX_POLL_ATTEMPTS + 1):
                try:
                    status_code, body = await self._post_oauth(
                        {"grant_type": "device_token", "code": device.code}
                    )
                except httpx.HTTPError as exc:
                    raise AuthFailure(
                        f"Network error during token polling: {exc}",
                        error_code="TOKEN_REQUEST_FAILED",
                    ) from exc

                result = classify_poll_response(status_code, body)
                if result.outcome is PollOutcome.GRANTED and result.tokens is not None:
                    tokens = self._persist(result.tokens)
                    self._apply(AuthEvent.TOKENS_GRANTED)
                    logger.info("Device authorized after %s poll(s)", attempt)
                    return tokens
                if result.outcome is PollOutcome.PENDING:
                    await self._sleep(interval)
                    continue
                if result.outcome is PollOutcome.EXPIRED:
                    raise AuthFailure(
                        result.message or "Authorization code expired",
                        error_code="CODE_EXPIRED",
                    )
                raise AuthFailure(
                    result.message or "Token request failed",
                    error_code=result.error_code,
                )
            raise AuthFailure(
                "Authentication timeout. Please try again.", error_code="TIMEOUT"
            )
        except AuthFailure:
            if self._state is AuthState.PENDING_USER_APPROVAL:
                self._apply(AuthEvent.FLOW_FAILED)
            raise

    async def authenticate(
        self,
        on_device_code: Callable[[DeviceAuthorization], Any] | None = None,
    ) -> bool:
        """Run the whole device flow, returning True once tokens are stored."""

        try:
            device = await self.start_device_authorization()
            if on_device_code is not None:
                on_device_code(device)
            await self.wait_for_authorization(device)
        except AuthFailure as exc:
            logger.error("kino.pub authentication failed: %s", exc)
            return False
        return True

    async def _request_refresh(self, refresh_token: str) -> TokenResponse:
        try:
            status_code, body = await self._post_oauth(
                {"grant_type": "refresh_token", "refresh_token": refresh_token}
            )
        except httpx.HTTPError as exc:
            raise AuthFailure(
                f"Network error during token refresh: {exc}",
                error_code="TOKEN_REFRESH_FAILED",
            ) from exc
        if status_code >= 400 or not isinstance(body, dict):
            detail = body.get("error") if isinstance(body, dict) else f"HTTP {status_code}"
            raise AuthFailure(
                f"Token refresh failed: {detail}", error_code="TOKEN_REFRESH_FAILED"
            )
        try:
            return TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise AuthFailure(
                "Token refresh returned an incomplete payload",
                error_code="TOKEN_REFRESH_FAILED",
            ) from exc

    def _record_refresh(self, succeeded: bool) -> None:
        if self._state in (AuthState.UNAUTHENTICATED, AuthState.PENDING_USER_APPROVAL):
            if succeeded:
                self._state = AuthState.AUTHENTICATED
            return
        self._apply(AuthEvent.REFRESH_SUCCEEDED if succeeded else AuthEvent.REFRESH_FAILED)

    async def get_access_token(self) -> str:
        """Return a valid access token, refreshing it once if necessary."""

        tokens = self._current_tokens()
        if tokens is None:
            raise AuthFailure(
                "No stored tokens found. Please authenticate first.",
                error_code="NOT_AUTHENTICATED",
            )
        if self._is_valid(tokens):
            return tokens.access_token

        if self._state is AuthState.AUTHENTICATED:
            self._apply(AuthEvent.TOKEN_EXPIRED)
        try:
            refreshed = await self._request_refresh(tokens.refresh_token)
        except AuthFailure as exc:
            self._record_refresh(False)
            raise AuthFailure(
                "Failed to refresh token. Please re-authenticate.",
                error_code="TOKEN_REFRESH_FAILED",
            ) from exc
        stored = self._persist(refreshed)
        self._record_refresh(True)
        return stored.access_token

    async def refresh_session(self) -> bool:
        """Refresh the token pair unconditionally; never raises."""

        tokens = self._current_tokens()
        if tokens is None or not tokens.refresh_token:
            return False
        try:
            refreshed = await self._request_refresh(tokens.refresh_token)
            self._persist(refreshed)
        except (AuthFailure, OSError) as exc:
            logger.warning("Failed to refresh kino.pub session: %s", exc)
            self._record_refresh(False)
            return False
        self._record_refresh(True)
        return True
