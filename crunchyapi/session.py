# crunchyapi/session.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""
Session: the root aggregate of the client.

A Session bundles the credential store, profile context, token manager and
request executor over one aiohttp ClientSession. Create it through one of the
login entry points (they must run inside the event loop):

    async with await Session.async_login_with_credentials(email, password) as session:
        raw = await session.async_execute("GET", url)

After every login the index endpoint is fetched for the CMS signing data and,
for account sessions, the subscription benefits for the premium flag.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from types import TracebackType
from typing import Any, TypeVar

import aiohttp
import jwt

from .Auth.credentials import (
    Anonymous,
    CredentialStore,
    Credentials,
    DeviceIdentifier,
    EmailPassword,
    LoginMode,
    RefreshToken,
    RefreshTokenWithProfile,
)
from .Auth.profile_context import ProfileContext
from .Auth.token_cache import SessionStore, SessionToken
from .Auth.token_manager import AccessToken, TokenManager, TokenStatus
from .Auth.token_retrieval import TokenRetriever
from .config import ClientConfig, load_config
from .const import (
    BENEFITS_ENDPOINT,
    HTTP_CONNECTION_LIMIT,
    INDEX_ENDPOINT,
    PREMIUM_BENEFIT,
    PROFILES_ENDPOINT,
)
from .exceptions import DecodeError, InvalidProfileError, UpstreamError
from .models import BenefitsResponse, IndexResponse, Profiles
from .RestApi.rest_request import RawResponse, RequestExecutor
from .RestApi.util import clip
from .schema import SchemaValidator, get_validator

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

HTTP_NOT_FOUND = 404


class Session:
    """An authenticated (or anonymous) Crunchyroll session."""

    def __init__(
        self,
        *,
        http: aiohttp.ClientSession | None = None,
        config: ClientConfig | None = None,
        device: DeviceIdentifier | None = None,
        validator: SchemaValidator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or load_config()
        if validator is None:
            validator = (
                SchemaValidator(self.config.schema_mode)
                if self.config.schema_mode
                else get_validator()
            )
        self.validator = validator

        self._owns_http = http is None
        if http is None:
            # Requires a running event loop.
            http = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(
                    limit=HTTP_CONNECTION_LIMIT, enable_cleanup_closed=True
                )
            )
        self._http = http

        self._credentials = CredentialStore(device=device)
        self._profile = ProfileContext()
        self._tokens = TokenManager(
            TokenRetriever(http, self.config, validator=validator),
            self._credentials,
            self._profile,
            expiry_margin=self.config.expiry_margin,
            clock=clock,
        )
        self._executor = RequestExecutor(http, self._tokens, self.config, validator=validator)

        self._index: IndexResponse | None = None
        self._premium = False

    # --- Login entry points ---

    @classmethod
    async def _async_create(
        cls, credentials: Credentials, **kwargs: Any
    ) -> Session:
        session = cls(**kwargs)
        try:
            await session.async_login(credentials)
        except BaseException:
            await session.async_close()
            raise
        return session

    @classmethod
    async def async_login_anonymous(cls, **kwargs: Any) -> Session:
        """Start an anonymous session (no account, never premium)."""
        return await cls._async_create(Anonymous(), **kwargs)

    @classmethod
    async def async_login_with_credentials(
        cls, email: str, password: str, **kwargs: Any
    ) -> Session:
        return await cls._async_create(EmailPassword(email, password), **kwargs)

    @classmethod
    async def async_login_with_refresh_token(
        cls, token: str, device_id: str, device_type: str, **kwargs: Any
    ) -> Session:
        return await cls._async_create(
            RefreshToken(token, device_id, device_type), **kwargs
        )

    @classmethod
    async def async_login_with_refresh_token_and_profile(
        cls,
        token: str,
        device_id: str,
        device_type: str,
        profile_id: str,
        **kwargs: Any,
    ) -> Session:
        return await cls._async_create(
            RefreshTokenWithProfile(token, device_id, device_type, profile_id), **kwargs
        )

    @classmethod
    async def async_login_with_session_token(
        cls, token: SessionToken, **kwargs: Any
    ) -> Session:
        """Resume a session saved with `session_token()` / `SessionStore`."""
        kwargs.setdefault("device", token.device)
        return await cls._async_create(token.credentials(), **kwargs)

    @classmethod
    async def async_login_from_store(
        cls, store: SessionStore, **kwargs: Any
    ) -> Session | None:
        """Resume the session stored in `store`, or return None when it is empty."""
        token = await store.async_load()
        if token is None:
            return None
        return await cls.async_login_with_session_token(token, **kwargs)

    async def async_login(
        self, credentials: Credentials, *, device: DeviceIdentifier | None = None
    ) -> None:
        """Log in (again) on this session and reload index and premium data."""
        auth = await self._tokens.async_login(credentials, device=device)
        self._index = await self._executor.async_request("GET", INDEX_ENDPOINT, IndexResponse)
        self._premium = await self._async_fetch_premium(auth.account_id)
        _LOGGER.info(
            "Session ready: mode=%s account=%s premium=%s bucket=%s",
            credentials.mode.value,
            clip(auth.account_id),
            self._premium,
            self.bucket,
        )

    async def _async_fetch_premium(self, account_id: str | None) -> bool:
        if self.login_mode is LoginMode.ANONYMOUS or not account_id:
            return False
        url = BENEFITS_ENDPOINT.format(account_id=account_id)
        try:
            benefits = await self._executor.async_request("GET", url, BenefitsResponse)
        except UpstreamError as err:
            if err.status != HTTP_NOT_FOUND:
                raise
            _LOGGER.debug("No subscription benefits for account %s", clip(account_id))
            return False
        return benefits.has(PREMIUM_BENEFIT)

    # --- Read-only views ---

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    @property
    def executor(self) -> RequestExecutor:
        return self._executor

    @property
    def token_status(self) -> TokenStatus:
        return self._tokens.status

    @property
    def access_token(self) -> str | None:
        current = self._tokens.current()
        return current.value if current else None

    @property
    def expires_at(self) -> datetime | None:
        return self._tokens.expires_at

    @property
    def refresh_token(self) -> str | None:
        return self._tokens.refresh_token

    @property
    def account_id(self) -> str | None:
        return self._tokens.account_id

    @property
    def login_mode(self) -> LoginMode | None:
        return self._credentials.login_mode

    @property
    def device(self) -> DeviceIdentifier:
        return self._credentials.device

    @property
    def device_id(self) -> str:
        return self._credentials.device.device_id

    @property
    def device_type(self) -> str:
        return self._credentials.device.device_type

    @property
    def premium(self) -> bool:
        return self._premium

    @property
    def profile_id(self) -> str | None:
        return self._profile.active_profile()

    @property
    def locale(self) -> str:
        return self.config.locale

    @property
    def index(self) -> IndexResponse | None:
        return self._index

    @property
    def bucket(self) -> str:
        return self._index.bucket if self._index else ""

    def locale_query(self) -> list[tuple[str, str]]:
        """`locale` query pair, empty when no locale is configured."""
        return [("locale", self.locale)] if self.locale else []

    def preferred_audio_query(self) -> list[tuple[str, str]]:
        """`preferred_audio_language` query pair, empty when unset."""
        audio = self.config.preferred_audio_locale
        return [("preferred_audio_language", audio)] if audio else []

    def media_query(self) -> list[tuple[str, str]]:
        """Query pairs that sign CMS requests, plus the locale."""
        cms = self._index.cms if self._index else None
        return [
            *self.locale_query(),
            ("Signature", cms.signature if cms else ""),
            ("Policy", cms.policy if cms else ""),
            ("Key-Pair-Id", cms.key_pair_id if cms else ""),
        ]

    def token_profile_id(self) -> str | None:
        """Return the `profile_id` claim of the current access token.

        The claim is read without signature verification; it is informational.
        """
        token = self.access_token
        if not token:
            return None
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.DecodeError as err:
            raise DecodeError("Access token is not a JWT", detail=str(err)) from err
        value = claims.get("profile_id")
        return str(value) if value else None

    def session_token(self) -> SessionToken | None:
        """Snapshot for resuming this session later; None for anonymous sessions."""
        refresh_token = self.refresh_token
        if self.login_mode in (None, LoginMode.ANONYMOUS) or not refresh_token:
            return None
        device = self.device
        return SessionToken(
            refresh_token=refresh_token,
            device_id=device.device_id,
            device_type=device.device_type,
            device_name=device.device_name,
            profile_id=self._profile.confirmed_profile,
            account_id=self.account_id,
        )

    async def async_save(self, store: SessionStore) -> bool:
        """Persist `session_token()`; returns False when there is nothing to save."""
        token = self.session_token()
        if token is None:
            return False
        await store.async_save(token)
        return True

    # --- Requests ---

    async def async_execute(self, method: str, url: str, **kwargs: Any) -> RawResponse:
        return await self._executor.async_execute(method, url, **kwargs)

    async def async_request(self, method: str, url: str, model: type[T], **kwargs: Any) -> T:
        return await self._executor.async_request(method, url, model, **kwargs)

    async def async_ensure_token(self) -> AccessToken:
        return await self._tokens.async_ensure_token()

    async def async_refresh(self) -> AccessToken:
        """Force one token refresh."""
        return await self._tokens.async_force_refresh()

    # --- Profiles ---

    async def async_profiles(self) -> Profiles:
        """List the profiles of the account."""
        return await self._executor.async_request("GET", PROFILES_ENDPOINT, Profiles)

    def switch_profile(self, profile_id: str) -> None:
        """Scope subsequent requests to `profile_id` (verified by the server later)."""
        self._profile.switch_profile(profile_id)

    async def async_switch_profile(self, profile_id: str, *, verify: bool = False) -> None:
        """Switch profile; with `verify`, check membership against the profile list first."""
        if verify:
            profiles = await self.async_profiles()
            if profiles.get(profile_id) is None:
                raise InvalidProfileError(profile_id, "not a profile of this account")
        self._profile.switch_profile(profile_id)

    # --- Lifecycle ---

    async def async_close(self) -> None:
        """Close the HTTP session if this Session created it."""
        if self._owns_http and not self._http.closed:
            await self._http.close()

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.async_close()


# --- Module-level entry points ---


async def async_login_anonymous(**kwargs: Any) -> Session:
    return await Session.async_login_anonymous(**kwargs)


async def async_login_with_credentials(email: str, password: str, **kwargs: Any) -> Session:
    return await Session.async_login_with_credentials(email, password, **kwargs)


async def async_login_with_refresh_token(
    token: str, device_id: str, device_type: str, **kwargs: Any
) -> Session:
    return await Session.async_login_with_refresh_token(token, device_id, device_type, **kwargs)


async def async_login_with_refresh_token_and_profile(
    token: str, device_id: str, device_type: str, profile_id: str, **kwargs: Any
) -> Session:
    return await Session.async_login_with_refresh_token_and_profile(
        token, device_id, device_type, profile_id, **kwargs
    )


__all__ = [
    "Session",
    "async_login_anonymous",
    "async_login_with_credentials",
    "async_login_with_refresh_token",
    "async_login_with_refresh_token_and_profile",
]
