# crunchyapi/RestApi/rest_request.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""
Request execution for the Crunchyroll web API (async-first).

`RequestExecutor.async_execute(...)` is the only path to the upstream API:

1. obtain a token (`TokenManager.async_ensure_token`),
2. build bearer, device and profile headers,
3. send through the shared aiohttp ClientSession and classify the response,
4. on an expired token: one forced refresh, headers rebuilt, one resend,
5. on a block or any other failure: raise the typed error, no retry.

Transport failures surface as `TransportError`; caller cancellation is
re-raised untouched.
"""

from __future__ import annotations

import asyncio
import json as jsonlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

import aiohttp

from ..Auth.token_manager import AccessToken, TokenManager
from ..config import ClientConfig
from ..const import HEADER_DEVICE_ID, HEADER_DEVICE_TYPE, HEADER_PROFILE_ID
from ..exceptions import (
    BlockError,
    DecodeError,
    InvalidProfileError,
    ReauthenticationRequiredError,
    TransportError,
    UpstreamError,
)
from ..schema import SchemaValidator, get_validator
from .block_detector import OutcomeKind, RequestOutcome, classify
from .util import clip, redact

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RawResponse:
    """A classified-OK upstream response."""

    status: int
    url: str
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        try:
            return jsonlib.loads(self.body or b"{}")
        except (UnicodeDecodeError, jsonlib.JSONDecodeError) as err:
            raise DecodeError("Response body is not valid JSON", url=self.url) from err


class RequestExecutor:
    """Sends authenticated requests with one retry after a token refresh."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        tokens: TokenManager,
        config: ClientConfig,
        *,
        validator: SchemaValidator | None = None,
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._config = config
        self._validator = validator or get_validator()
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    @property
    def validator(self) -> SchemaValidator:
        return self._validator

    def build_headers(
        self,
        token: AccessToken,
        profile_id: str | None,
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        headers = {
            "Authorization": token.authorization,
            "Accept": "application/json",
            "User-Agent": self._config.user_agent,
        }
        store = self._tokens.credentials
        if store.device_bound:
            device = store.device
            headers[HEADER_DEVICE_ID] = device.device_id
            headers[HEADER_DEVICE_TYPE] = device.device_type
        if profile_id:
            headers[HEADER_PROFILE_ID] = profile_id
        if extra:
            headers.update(extra)
        return headers

    async def async_execute(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | list[tuple[str, str]] | None = None,
        json: Any = None,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
        expect_json: bool = True,
    ) -> RawResponse:
        """Send one request, refreshing the token and resending at most once.

        Raises:
            ReauthenticationRequiredError: session invalid, or still unauthorized
                after the refresh.
            BlockError: bot mitigation answered instead of the API.
            InvalidProfileError: the active profile was rejected (scope reverted).
            RateLimitError / UpstreamError / DecodeError: other upstream failures.
            TransportError: network failure.
        """
        profiles = self._tokens.profile
        token = await self._tokens.async_ensure_token()
        profile_id = profiles.active_profile()

        outcome, status, response_headers = await self._async_send(
            method, url, token, profile_id, params, json, data, headers, expect_json
        )

        if outcome.retryable:
            _LOGGER.info(
                "Request %s %s: token rejected (generation %d). Refreshing token.",
                method,
                url,
                token.generation,
            )
            token = await self._tokens.async_force_refresh(stale=token)
            profile_id = profiles.active_profile()
            outcome, status, response_headers = await self._async_send(
                method, url, token, profile_id, params, json, data, headers, expect_json
            )
            if outcome.retryable:
                _LOGGER.warning(
                    "Request %s %s: still unauthorized after token refresh", method, url
                )
                raise ReauthenticationRequiredError(
                    "Unauthorized after token refresh", url=url, status=status
                )

        if outcome.kind is OutcomeKind.BLOCKED:
            raise BlockError(outcome.reason or "Blocked", url=url, status=status)

        if outcome.kind is OutcomeKind.FAILED:
            err = outcome.error
            if err is None:
                raise UpstreamError(status, "Request failed", url=url)
            if isinstance(err, InvalidProfileError):
                profiles.revert(profile_id)
            _LOGGER.debug("Request %s %s failed: %s", method, url, redact(str(err)))
            raise err

        profiles.confirm(profile_id)
        return RawResponse(
            status=status, url=url, body=outcome.body, headers=dict(response_headers)
        )

    async def async_request(
        self, method: str, url: str, model: type[T], **kwargs: Any
    ) -> T:
        """`async_execute` and decode the body into `model`."""
        response = await self.async_execute(method, url, **kwargs)
        try:
            return self._validator.decode(model, response.body)
        except DecodeError as err:
            raise err.with_url(url)

    async def _async_send(  # noqa: PLR0913
        self,
        method: str,
        url: str,
        token: AccessToken,
        profile_id: str | None,
        params: Any,
        json: Any,
        data: Any,
        extra_headers: Mapping[str, str] | None,
        expect_json: bool,
    ) -> tuple[RequestOutcome, int, Mapping[str, str]]:
        request_headers = self.build_headers(token, profile_id, extra_headers)
        try:
            async with self._http.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                headers=request_headers,
                timeout=self._timeout,
            ) as response:
                body = await response.read()
                status = response.status
                response_headers = response.headers
        except asyncio.CancelledError:
            raise
        except (TimeoutError, aiohttp.ClientError) as err:
            _LOGGER.debug("Request %s %s failed with %s", method, url, type(err).__name__)
            raise TransportError(
                f"Request failed: {type(err).__name__}",
                url=url,
                detail=redact(str(err)) or None,
            ) from err

        _LOGGER.debug(
            "Request %s %s: status=%d profile=%s", method, url, status, clip(profile_id)
        )
        outcome = classify(
            status,
            response_headers,
            body,
            url=url,
            expect_json=expect_json,
            profile_id=profile_id,
        )
        return outcome, status, response_headers


__all__ = ["RawResponse", "RequestExecutor"]
