# crunchyapi/Auth/token_retrieval.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""Network calls against the token endpoint, one per grant type.

Every grant posts a form to `/auth/v1/token` with HTTP basic client auth and
the device fields. A rejection (400/401, or an OAuth error body) surfaces as
`InvalidCredentialsError`; a profile-scoped rejection as `InvalidProfileError`;
a Cloudflare challenge as `BlockError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..const import (
    GRANT_ANONYMOUS,
    GRANT_PASSWORD,
    GRANT_REFRESH_TOKEN,
    GRANT_REFRESH_TOKEN_PROFILE,
    HEADER_ANONYMOUS_ID,
    TOKEN_ENDPOINT,
    TOKEN_SCOPE,
)
from ..config import ClientConfig
from ..exceptions import (
    BlockError,
    CrunchyrollError,
    InvalidCredentialsError,
    InvalidProfileError,
    TransportError,
    UpstreamError,
)
from ..models import AuthResponse
from ..RestApi.block_detector import OutcomeKind, classify
from ..RestApi.util import clip, generate_random_uuid, mask_email, redact
from ..schema import SchemaValidator, get_validator
from .credentials import DeviceIdentifier

_LOGGER = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401

_REJECTION_CODES = frozenset(
    {"invalid_grant", "invalid_client", "unauthorized_client", "invalid_request"}
)


def _is_rejection(err: CrunchyrollError) -> bool:
    """Return True when the token endpoint judged the grant itself."""
    if err.status in (HTTP_BAD_REQUEST, HTTP_UNAUTHORIZED):
        return True
    text = f"{err.message} {err.detail or ''}".lower()
    return any(code in text for code in _REJECTION_CODES)


class TokenRetriever:
    """Performs token grants over a shared aiohttp session."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        config: ClientConfig,
        *,
        validator: SchemaValidator | None = None,
        endpoint: str = TOKEN_ENDPOINT,
    ) -> None:
        self._http = http
        self._config = config
        self._validator = validator or get_validator()
        self._endpoint = endpoint
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    # --- Grants ---

    async def async_anonymous(self, device: DeviceIdentifier) -> AuthResponse:
        form = {"grant_type": GRANT_ANONYMOUS, "scope": TOKEN_SCOPE, **device.form_fields()}
        headers = {HEADER_ANONYMOUS_ID: generate_random_uuid()}
        return await self._async_grant(
            form,
            client_auth=self._config.anonymous_client_auth,
            extra_headers=headers,
            what="anonymous",
        )

    async def async_password(
        self, email: str, password: str, device: DeviceIdentifier
    ) -> AuthResponse:
        form = {
            "username": email,
            "password": password,
            "grant_type": GRANT_PASSWORD,
            "scope": TOKEN_SCOPE,
            **device.form_fields(),
        }
        _LOGGER.debug("Requesting password grant for %s", mask_email(email))
        return await self._async_grant(form, what="password")

    async def async_refresh_token(
        self, token: str, device: DeviceIdentifier
    ) -> AuthResponse:
        form = {
            "refresh_token": token,
            "grant_type": GRANT_REFRESH_TOKEN,
            "scope": TOKEN_SCOPE,
            **device.form_fields(),
        }
        return await self._async_grant(form, what="refresh_token")

    async def async_refresh_token_profile(
        self, token: str, profile_id: str, device: DeviceIdentifier
    ) -> AuthResponse:
        form = {
            "refresh_token": token,
            "grant_type": GRANT_REFRESH_TOKEN_PROFILE,
            "profile_id": profile_id,
            "scope": TOKEN_SCOPE,
            **device.form_fields(),
        }
        try:
            return await self._async_grant(form, what="refresh_token_profile_id")
        except InvalidProfileError as err:
            raise InvalidProfileError(
                profile_id, err.detail or err.message, url=err.url, status=err.status
            ) from err

    # --- Transport ---

    async def _async_grant(
        self,
        form: dict[str, str],
        *,
        what: str,
        client_auth: str | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> AuthResponse:
        headers: dict[str, Any] = {
            "Authorization": f"Basic {client_auth or self._config.client_auth}",
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "User-Agent": self._config.user_agent,
        }
        if extra_headers:
            headers.update(extra_headers)

        try:
            async with self._http.post(
                self._endpoint,
                data=form,
                headers=headers,
                timeout=self._timeout,
                allow_redirects=False,
            ) as response:
                body = await response.read()
                status = response.status
                response_headers = response.headers
        except asyncio.CancelledError:
            raise
        except (TimeoutError, aiohttp.ClientError) as err:
            raise TransportError(
                f"Token request ({what}) failed: {type(err).__name__}",
                url=self._endpoint,
                detail=redact(str(err)) or None,
            ) from err

        _LOGGER.debug("Token request (%s): status=%d", what, status)
        outcome = classify(status, response_headers, body, url=self._endpoint)

        if outcome.kind is OutcomeKind.BLOCKED:
            raise BlockError(outcome.reason or "Blocked", url=self._endpoint, status=status)
        if outcome.kind is OutcomeKind.AUTH_EXPIRED:
            raise InvalidCredentialsError(
                f"Token request ({what}) rejected", url=self._endpoint, status=status
            )
        if outcome.kind is OutcomeKind.FAILED:
            err = outcome.error
            if err is None:
                raise UpstreamError(status, f"Token request ({what}) failed", url=self._endpoint)
            if isinstance(err, InvalidProfileError):
                raise err
            if _is_rejection(err):
                raise InvalidCredentialsError(
                    f"Token request ({what}) rejected",
                    url=self._endpoint,
                    status=err.status,
                    detail=err.message,
                ) from err
            raise err

        auth = self._validator.decode(AuthResponse, outcome.body)
        _LOGGER.debug(
            "Token request (%s) succeeded: account=%s expires_in=%ds",
            what,
            clip(auth.account_id),
            auth.expires_in,
        )
        return auth


__all__ = ["TokenRetriever"]
