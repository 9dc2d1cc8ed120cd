# crunchyapi/Auth/token_manager.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""
Token lifecycle for one session (async-first).

States
------
UNAUTHENTICATED -> VALID | INVALID       (login accepted / rejected)
VALID           -> EXPIRED               (computed on read, with a safety margin)
VALID|EXPIRED   -> REFRESHING            (token needed and refresh required)
REFRESHING      -> VALID                 (refresh succeeded, generation bumped)
REFRESHING      -> INVALID               (refresh rejected or ambiguous failure)
REFRESHING      -> EXPIRED               (refresh blocked by bot mitigation)
INVALID         -> terminal until the next login

Concurrency
-----------
Refresh is single flight: concurrent callers attach to one shared
`asyncio.Task` through `asyncio.shield`, so a cancelled caller never cancels
the refresh other waiters depend on. The lock guards state transitions only;
it is never held across a network await.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from ..const import DEFAULT_EXPIRY_MARGIN_S
from ..exceptions import (
    BlockError,
    CrunchyrollError,
    InvalidCredentialsError,
    InvalidProfileError,
    ReauthenticationRequiredError,
)
from ..models import AuthResponse
from ..RestApi.util import clip
from .credentials import (
    Anonymous,
    CredentialStore,
    Credentials,
    DeviceIdentifier,
    EmailPassword,
    LoginMode,
    RefreshToken,
    RefreshTokenWithProfile,
)
from .profile_context import ProfileContext
from .token_retrieval import TokenRetriever

_LOGGER = logging.getLogger(__name__)


class TokenStatus(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    REFRESHING = "refreshing"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(slots=True, frozen=True)
class AccessToken:
    """Immutable snapshot of the bearer token handed to callers."""

    value: str
    token_type: str
    expires_at: datetime
    generation: int

    @property
    def authorization(self) -> str:
        return f"{self.token_type or 'Bearer'} {self.value}"

    def __repr__(self) -> str:
        return (
            f"AccessToken(value={clip(self.value)!r}, generation={self.generation}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


@dataclass(slots=True, frozen=True)
class TokenState:
    access_token: str
    token_type: str
    expires_at: datetime
    refresh_token: str | None
    account_id: str | None
    generation: int

    def snapshot(self) -> AccessToken:
        return AccessToken(
            value=self.access_token,
            token_type=self.token_type,
            expires_at=self.expires_at,
            generation=self.generation,
        )


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _consume_task_exception(task: asyncio.Task[AccessToken]) -> None:
    """Retrieve the exception of a finished refresh so it is never logged as unretrieved."""
    if not task.cancelled():
        task.exception()


class TokenManager:
    """Owns the TokenState of one session."""

    def __init__(
        self,
        retriever: TokenRetriever,
        credentials: CredentialStore | None = None,
        profile: ProfileContext | None = None,
        *,
        expiry_margin: float = DEFAULT_EXPIRY_MARGIN_S,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._retriever = retriever
        self._credentials = credentials or CredentialStore()
        self._profile = profile or ProfileContext()
        self._margin = timedelta(seconds=expiry_margin)
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()

        self._state: TokenState | None = None
        self._invalid = False
        # Set when a refresh was blocked: the token is known-bad but was never judged.
        self._stale = False
        self._generation = 0
        # Bumped by every applied login; a refresh started under an older epoch is discarded.
        self._epoch = 0
        self._login_seq = 0
        self._applied_login = 0
        self._refresh_task: asyncio.Task[AccessToken] | None = None

    # --- Read accessors ---

    @property
    def status(self) -> TokenStatus:
        if self._invalid:
            return TokenStatus.INVALID
        if self._state is None:
            return TokenStatus.UNAUTHENTICATED
        if self._refresh_task is not None and not self._refresh_task.done():
            return TokenStatus.REFRESHING
        if self._is_expired(self._state):
            return TokenStatus.EXPIRED
        return TokenStatus.VALID

    @property
    def state(self) -> TokenState | None:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def refresh_token(self) -> str | None:
        return self._state.refresh_token if self._state else None

    @property
    def account_id(self) -> str | None:
        return self._state.account_id if self._state else None

    @property
    def expires_at(self) -> datetime | None:
        return self._state.expires_at if self._state else None

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def profile(self) -> ProfileContext:
        return self._profile

    def current(self) -> AccessToken | None:
        """Return the current token snapshot without any validity check."""
        return self._state.snapshot() if self._state else None

    def _is_expired(self, state: TokenState) -> bool:
        return self._stale or self._clock() >= state.expires_at - self._margin

    # --- Login ---

    async def async_login(
        self, credentials: Credentials, *, device: DeviceIdentifier | None = None
    ) -> AuthResponse:
        """Perform the grant for `credentials` and replace the whole TokenState.

        Raises:
            InvalidCredentialsError: the server rejected the login (state INVALID).
            BlockError / TransportError / UpstreamError: the server never judged
                the login; the prior state is left untouched.
        """
        if isinstance(credentials, (RefreshToken, RefreshTokenWithProfile)):
            bound = credentials.device
        else:
            bound = device or self._credentials.device

        async with self._lock:
            self._login_seq += 1
            ticket = self._login_seq

        _LOGGER.info("Logging in (%s)", credentials.mode.value)
        try:
            auth = await self._async_grant_for(credentials, bound)
        except InvalidCredentialsError:
            async with self._lock:
                if ticket > self._applied_login:
                    self._applied_login = ticket
                    self._epoch += 1
                    self._credentials.set_credentials(credentials, device=bound)
                    self._state = None
                    self._invalid = True
            _LOGGER.warning("Login (%s) rejected by the server", credentials.mode.value)
            raise

        async with self._lock:
            if ticket < self._applied_login:
                _LOGGER.debug("Login superseded by a newer login; discarding result")
                return auth
            self._applied_login = ticket
            self._epoch += 1
            self._credentials.set_credentials(credentials, device=bound)
            self._profile.reset(
                credentials.profile_id
                if isinstance(credentials, RefreshTokenWithProfile)
                else None
            )
            self._apply_locked(auth, previous_refresh=None)
        _LOGGER.info(
            "Login (%s) succeeded; token generation %d", credentials.mode.value, self._generation
        )
        return auth

    async def _async_grant_for(
        self, credentials: Credentials, device: DeviceIdentifier
    ) -> AuthResponse:
        match credentials:
            case Anonymous():
                return await self._retriever.async_anonymous(device)
            case EmailPassword(email=email, password=password):
                return await self._retriever.async_password(email, password, device)
            case RefreshTokenWithProfile(token=token, profile_id=profile_id):
                return await self._retriever.async_refresh_token_profile(
                    token, profile_id, device
                )
            case RefreshToken(token=token):
                return await self._retriever.async_refresh_token(token, device)
        raise TypeError(f"Unsupported credentials type: {type(credentials).__name__}")

    def _apply_locked(self, auth: AuthResponse, *, previous_refresh: str | None) -> None:
        self._generation += 1
        self._state = TokenState(
            access_token=auth.access_token,
            token_type=auth.token_type or "Bearer",
            expires_at=auth.expires_at(self._clock()),
            # Rotation is optional; keep the old refresh token when none is returned.
            refresh_token=auth.refresh_token or previous_refresh,
            account_id=auth.account_id
            or (self._state.account_id if self._state else None),
            generation=self._generation,
        )
        self._invalid = False
        self._stale = False

    # --- Token access ---

    def _check_usable_locked(self) -> TokenState:
        if self._invalid:
            raise ReauthenticationRequiredError(
                "Session is invalid; a new login is required"
            )
        if self._state is None:
            raise ReauthenticationRequiredError("Not logged in")
        return self._state

    async def async_ensure_token(self) -> AccessToken:
        """Return a token valid for at least the safety margin, refreshing if needed.

        Raises:
            ReauthenticationRequiredError: not logged in, or the session is INVALID.
        """
        async with self._lock:
            state = self._check_usable_locked()
            if not self._is_expired(state) and (
                self._refresh_task is None or self._refresh_task.done()
            ):
                return state.snapshot()
            task = self._start_refresh_locked()
        return await asyncio.shield(task)

    async def async_force_refresh(self, stale: AccessToken | None = None) -> AccessToken:
        """Refresh once even when VALID.

        When `stale` is older than the current generation, another caller has
        already refreshed; the newer token is returned without network I/O.
        """
        async with self._lock:
            state = self._check_usable_locked()
            running = self._refresh_task is not None and not self._refresh_task.done()
            if (
                stale is not None
                and stale.generation < state.generation
                and not running
                and not self._is_expired(state)
            ):
                _LOGGER.debug(
                    "Token already refreshed (generation %d > %d); reusing it",
                    state.generation,
                    stale.generation,
                )
                return state.snapshot()
            task = self._start_refresh_locked()
        return await asyncio.shield(task)

    # --- Refresh ---

    def _start_refresh_locked(self) -> asyncio.Task[AccessToken]:
        if self._refresh_task is not None and not self._refresh_task.done():
            return self._refresh_task
        task = asyncio.get_running_loop().create_task(
            self._async_refresh(self._epoch), name="crunchyapi-token-refresh"
        )
        task.add_done_callback(_consume_task_exception)
        self._refresh_task = task
        return task

    async def _async_refresh(self, epoch: int) -> AccessToken:
        credentials = self._credentials.credentials
        device = self._credentials.device
        state = self._state
        profile_id = self._profile.active_profile()
        if state is None:
            raise ReauthenticationRequiredError("Not logged in")

        _LOGGER.info(
            "Refreshing access token (generation %d, mode=%s)",
            state.generation,
            credentials.mode.value if credentials is not None else "unknown",
        )
        try:
            auth = await self._async_refresh_grant(credentials, state, device, profile_id)
        except BlockError:
            async with self._lock:
                if epoch == self._epoch:
                    self._stale = True
            _LOGGER.warning("Token refresh blocked by bot protection; token left expired")
            raise
        except InvalidProfileError:
            self._profile.revert(profile_id)
            raise
        except CrunchyrollError as err:
            async with self._lock:
                if epoch != self._epoch:
                    return self._check_usable_locked().snapshot()
                self._invalid = True
            _LOGGER.error("Token refresh failed; session is now invalid: %s", err)
            raise ReauthenticationRequiredError(
                "Session refresh failed; a new login is required",
                url=err.url,
                status=err.status,
                detail=err.message,
            ) from err

        async with self._lock:
            if epoch != self._epoch:
                _LOGGER.debug("Discarding refresh result from before a newer login")
                return self._check_usable_locked().snapshot()
            self._apply_locked(auth, previous_refresh=state.refresh_token)
            self._profile.confirm(profile_id)
            snapshot = self._check_usable_locked().snapshot()
        _LOGGER.info("Access token refreshed; generation %d", snapshot.generation)
        return snapshot

    async def _async_refresh_grant(
        self,
        credentials: Credentials | None,
        state: TokenState,
        device: DeviceIdentifier,
        profile_id: str | None,
    ) -> AuthResponse:
        if credentials is None or credentials.mode is LoginMode.ANONYMOUS:
            return await self._retriever.async_anonymous(device)
        if not state.refresh_token:
            raise InvalidCredentialsError("No refresh token available")
        if profile_id:
            return await self._retriever.async_refresh_token_profile(
                state.refresh_token, profile_id, device
            )
        return await self._retriever.async_refresh_token(state.refresh_token, device)


__all__ = ["AccessToken", "TokenManager", "TokenState", "TokenStatus"]
