"""Client-side session handling for the subscription tracker API.

SessionManager keeps the access/refresh token pair, refreshes the access
token shortly before it expires, attaches it to outgoing requests and drops
the session whenever the server answers 401.
"""

import asyncio
import base64
import binascii
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict

from token_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TokenStore

logger = logging.getLogger("subscription_tracker.session")

REMEMBER_ME_MAX_AGE = 60 * 60 * 24 * 30  # 30 days
EXPIRY_LEEWAY = 10  # seconds before exp at which a token counts as expired
LOGIN_PATH = "/auth/login"


class SessionState(str, Enum):
    LOGGED_OUT = "logged_out"
    AUTHENTICATED = "authenticated"
    EXPIRING = "expiring"
    REFRESHING = "refreshing"


# ============================================
# TOKEN DECODING
# ============================================


class TokenPayload(BaseModel):
    """Claims the client reads from the access token; anything else is ignored"""

    model_config = ConfigDict(extra="ignore", strict=True)

    exp: int | float
    username: str | None = None
    firstName: str | None = None
    lastName: str | None = None


@dataclass(frozen=True)
class CurrentUser:
    email: str | None
    first_name: str | None
    last_name: str | None
    exp: int | float


def decode_token(token: str | None) -> CurrentUser | None:
    """
    Read the identity embedded in an access token without verifying it.

    The token is three dot-separated parts; the middle one is base64url
    encoded JSON. Any malformed input yields None instead of an error.
    """
    if not token:
        return None

    parts = token.split(".")
    if len(parts) != 3 or not parts[1]:
        return None

    segment = parts[1].replace("-", "+").replace("_", "/")
    segment += "=" * (-len(segment) % 4)
    try:
        payload = TokenPayload.model_validate_json(base64.b64decode(segment, validate=True))
    except (binascii.Error, ValueError) as e:
        logger.debug(f"Ignoring undecodable access token: {e}")
        return None

    return CurrentUser(
        email=payload.username,
        first_name=payload.firstName,
        last_name=payload.lastName,
        exp=payload.exp,
    )


# ============================================
# SESSION MANAGER
# ============================================


class SessionManager:
    """
    Authenticated client session.

    Create one per application and pass it to whatever needs API access;
    close it with ``aclose()`` or use it as an async context manager.

    Args:
        store: Durable token storage shared with other clients
        api_url: Base URL of the API
        timeout: Seconds before an HTTP call is abandoned
        transport: Optional httpx transport (tests, ASGI apps)
        navigate: Called with ``login_path`` whenever the session ends
        login_path: Where ``navigate`` should send the user
        clock: Returns the current Unix time in seconds
        expiry_leeway: Seconds before ``exp`` at which a token is refreshed
    """

    def __init__(
        self,
        store: TokenStore,
        api_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        navigate: Callable[[str], None] | None = None,
        login_path: str = LOGIN_PATH,
        clock: Callable[[], float] = time.time,
        expiry_leeway: int = EXPIRY_LEEWAY,
    ):
        self._store = store
        self._client = httpx.AsyncClient(base_url=api_url, timeout=timeout, transport=transport)
        self._navigate = navigate
        self.login_path = login_path
        self._clock = clock
        self.expiry_leeway = expiry_leeway

        self._token = store.get(ACCESS_TOKEN_KEY)
        self._refresh_token = store.get(REFRESH_TOKEN_KEY)

        self._refresh_lock = asyncio.Lock()
        self._refresh_generation = 0
        self._last_refresh_ok = False

    @classmethod
    def from_env(cls, store: TokenStore, **kwargs) -> "SessionManager":
        """Build a session from SUBSCRIPTIONS_API_URL and API_TIMEOUT."""
        kwargs.setdefault("timeout", float(os.getenv("API_TIMEOUT", "10")))
        return cls(store, os.getenv("SUBSCRIPTIONS_API_URL", "http://localhost:8000"), **kwargs)

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # --------------------------------------------
    # Observed state
    # --------------------------------------------

    @property
    def token(self) -> str | None:
        stored = self._store.get(ACCESS_TOKEN_KEY)
        if stored != self._token:
            logger.debug("Access token changed in storage")
            self._token = stored
        return self._token

    @property
    def refresh_token(self) -> str | None:
        stored = self._store.get(REFRESH_TOKEN_KEY)
        if stored != self._refresh_token:
            logger.debug("Refresh token changed in storage")
            self._refresh_token = stored
        return self._refresh_token

    @property
    def current_user(self) -> CurrentUser | None:
        return decode_token(self.token)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def is_token_expired(self) -> bool:
        user = self.current_user
        if user is None:
            return True
        return self._clock() >= user.exp - self.expiry_leeway

    @property
    def state(self) -> SessionState:
        if self._refresh_lock.locked():
            return SessionState.REFRESHING
        if not self.is_authenticated:
            return SessionState.LOGGED_OUT
        if self.is_token_expired:
            return SessionState.EXPIRING
        return SessionState.AUTHENTICATED

    # --------------------------------------------
    # Transitions
    # --------------------------------------------

    async def login(self, email: str, password: str, remember_me: bool = False) -> bool:
        """Sign in; returns False (and logs why) on any failure."""
        try:
            response = await self._client.post(
                "/login_check", json={"email": email, "password": password}
            )
            if not response.is_success:
                logger.error(f"Login error: server answered {response.status_code}")
                return False
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Login unexpected error: {e!r}")
            return False

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            logger.error("Login error: response carried no token")
            return False

        max_age = REMEMBER_ME_MAX_AGE if remember_me else None
        self._save(token, data.get("refresh_token"), max_age)
        logger.info(f"Logged in as {email}")
        return True

    async def refresh(self) -> bool:
        """
        Exchange the refresh token for a new access token.

        Callers arriving while a refresh is in flight wait for it and share
        its outcome. Every failure ends the session.
        """
        generation = self._refresh_generation
        async with self._refresh_lock:
            if self._refresh_generation != generation:
                return self._last_refresh_ok

            ok = await self._refresh()
            self._last_refresh_ok = ok
            self._refresh_generation += 1
            return ok

    async def _refresh(self) -> bool:
        refresh_token = self.refresh_token
        if not refresh_token:
            logger.warning("Refresh failed: no refresh token")
            self.logout()
            return False

        entry = self._store.get_entry(REFRESH_TOKEN_KEY)
        max_age = entry.max_age if entry else None

        try:
            response = await self._client.post(
                "/token/refresh", json={"refresh_token": refresh_token}
            )
            if not response.is_success:
                logger.warning(f"Refresh failed: server answered {response.status_code}")
                self.logout()
                return False
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Refresh failed: {e!r}")
            self.logout()
            return False

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            logger.warning("Refresh failed: response carried no token")
            self.logout()
            return False

        self._save(token, data.get("refresh_token"), max_age)
        logger.info("Access token refreshed")
        return True

    async def restore(self) -> bool:
        """Revive a session that only has a refresh token left."""
        if self.is_authenticated:
            return True
        if not self.refresh_token:
            return False
        return await self.refresh()

    def logout(self) -> None:
        self._store.delete(ACCESS_TOKEN_KEY)
        self._store.delete(REFRESH_TOKEN_KEY)
        self._token = None
        self._refresh_token = None
        logger.info("Session ended")

        if self._navigate is not None:
            self._navigate(self.login_path)

    def _save(self, token: str, refresh_token: str | None, max_age: int | None) -> None:
        self._store.set(ACCESS_TOKEN_KEY, token, max_age=max_age)
        self._token = token
        if refresh_token:
            self._store.set(REFRESH_TOKEN_KEY, refresh_token, max_age=max_age)
            self._refresh_token = refresh_token

    # --------------------------------------------
    # Authenticated requests
    # --------------------------------------------

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request with the bearer token attached.

        An expiring token is refreshed before the header is set. A 401
        response ends the session whatever the local expiry says.
        """
        headers = httpx.Headers(kwargs.pop("headers", None))

        if self.token:
            if self.is_token_expired:
                await self.refresh()
            token = self.token
            if token:
                headers["Authorization"] = f"Bearer {token}"

        response = await self._client.request(method, url, headers=headers, **kwargs)

        if response.status_code == 401:
            logger.warning(f"{method} {url} answered 401; ending session")
            self.logout()
        return response

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def patch(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)
