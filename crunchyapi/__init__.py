# crunchyapi/__init__.py

"""Async session client for the Crunchyroll web API.

Version: 0.14.0
- Four login entry points (anonymous, e-mail/password, refresh token, refresh
  token scoped to a profile) plus resuming a saved session token.
- Lazy, single-flight token refresh; one resend after an expired token.
- Cloudflare challenge detection; blocked requests are never retried.
- Lenient/strict response decoding (`CRUNCHYAPI_SCHEMA_MODE`).

Notes
-----
Everything that talks to the network is a coroutine prefixed with `async_`.
Secrets never reach the logs: bearer tokens, JWTs and e-mail addresses are
redacted or masked.
"""

from __future__ import annotations

from .Auth.credentials import (
    Anonymous,
    Credentials,
    DeviceIdentifier,
    EmailPassword,
    LoginMode,
    RefreshToken,
    RefreshTokenWithProfile,
)
from .Auth.token_cache import SessionStore, SessionToken
from .Auth.token_manager import AccessToken, TokenStatus
from .config import ClientConfig, config_from_env, load_config
from .const import PACKAGE_VERSION as __version__
from .exceptions import (
    BlockError,
    CrunchyrollError,
    DecodeError,
    InvalidConfigError,
    InvalidCredentialsError,
    InvalidProfileError,
    MissingFieldError,
    RateLimitError,
    ReauthenticationRequiredError,
    TransportError,
    UnknownFieldError,
    UpstreamError,
)
from .RestApi.rest_request import RawResponse
from .schema import SchemaMode, SchemaValidator
from .session import (
    Session,
    async_login_anonymous,
    async_login_with_credentials,
    async_login_with_refresh_token,
    async_login_with_refresh_token_and_profile,
)

__all__ = [
    "AccessToken",
    "Anonymous",
    "BlockError",
    "ClientConfig",
    "Credentials",
    "CrunchyrollError",
    "DecodeError",
    "DeviceIdentifier",
    "EmailPassword",
    "InvalidConfigError",
    "InvalidCredentialsError",
    "InvalidProfileError",
    "LoginMode",
    "MissingFieldError",
    "RateLimitError",
    "RawResponse",
    "ReauthenticationRequiredError",
    "RefreshToken",
    "RefreshTokenWithProfile",
    "SchemaMode",
    "SchemaValidator",
    "Session",
    "SessionStore",
    "SessionToken",
    "TokenStatus",
    "TransportError",
    "UnknownFieldError",
    "UpstreamError",
    "__version__",
    "async_login_anonymous",
    "async_login_with_credentials",
    "async_login_with_refresh_token",
    "async_login_with_refresh_token_and_profile",
    "config_from_env",
    "load_config",
]
