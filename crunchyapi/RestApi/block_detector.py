# crunchyapi/RestApi/block_detector.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""
Response classification for the request pipeline.

`classify(...)` maps one HTTP response to a `RequestOutcome`:

- ``OK``: usable body (an empty body becomes ``b"{}"``).
- ``AUTH_EXPIRED``: the bearer token is no longer accepted (401, or a 403
  carrying a token-expiry marker). The executor refreshes once and resends.
- ``BLOCKED``: the upstream bot mitigation (Cloudflare) answered instead of the
  API. Never retried.
- ``FAILED``: any other error, carried as a typed exception. Never retried.

Upstream error bodies come in a few shapes; `extract_error_message()` renders
all of them into one line:

- ``{"message": ..., "type": ...}``
- ``{"code": ..., "context": [{"code": ..., "field": ...}], "message"|"error": ...}``
- ``{"code": ..., "context": [{"code": ..., "violated_constraints": [[k, v]]}]}``
- ``{"error": ..., "error_description": ...}`` (OAuth token endpoint)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from bs4 import BeautifulSoup

from ..exceptions import (
    CrunchyrollError,
    DecodeError,
    InvalidProfileError,
    RateLimitError,
    UpstreamError,
)
from .util import body_snippet, parse_retry_after

_LOGGER = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVICE_UNAVAILABLE = 503

CLOUDFLARE_BLOCK_REASON = "Triggered Cloudflare bot protection"
_CLOUDFLARE_TITLE = "Just a moment..."

# error/code values that mean "this bearer token is no longer accepted"
_EXPIRY_CODES = frozenset(
    {
        "invalid_token",
        "token_expired",
        "expired_token",
        "jwt_expired",
        "accounts.auth.token_expired",
        "accounts.auth.invalid_token",
    }
)


class OutcomeKind(StrEnum):
    OK = "ok"
    AUTH_EXPIRED = "auth_expired"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class RequestOutcome:
    """Classification of a single HTTP response."""

    kind: OutcomeKind
    body: bytes = b""
    reason: str | None = None
    error: CrunchyrollError | None = None

    @classmethod
    def ok(cls, body: bytes) -> RequestOutcome:
        return cls(OutcomeKind.OK, body=body or b"{}")

    @classmethod
    def auth_expired(cls) -> RequestOutcome:
        return cls(OutcomeKind.AUTH_EXPIRED)

    @classmethod
    def blocked(cls, reason: str) -> RequestOutcome:
        return cls(OutcomeKind.BLOCKED, reason=reason)

    @classmethod
    def failed(cls, error: CrunchyrollError) -> RequestOutcome:
        return cls(OutcomeKind.FAILED, error=error)

    @property
    def retryable(self) -> bool:
        """Only an expired token is worth one refresh and one resend."""
        return self.kind is OutcomeKind.AUTH_EXPIRED


# --- Helpers ---


def _lower_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _load_json(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


def _looks_like_html(body: bytes, content_type: str) -> bool:
    if "html" in content_type:
        return True
    head = body.lstrip()[:64].lower()
    return head.startswith(b"<!doctype html") or head.startswith(b"<html")


def is_cloudflare_challenge(status: int, headers: Mapping[str, str], body: bytes) -> bool:
    """Return True when the response is a Cloudflare challenge page."""
    lowered = _lower_headers(headers)
    if status not in (HTTP_FORBIDDEN, HTTP_SERVICE_UNAVAILABLE):
        return False
    if lowered.get("cf-mitigated", "").strip().lower() == "challenge":
        return True
    if not _looks_like_html(body, lowered.get("content-type", "").lower()):
        return False
    title = BeautifulSoup(body, "html.parser").title
    return title is not None and (title.string or "").strip() == _CLOUDFLARE_TITLE


def _is_expiry_marker(headers: Mapping[str, str], value: Any) -> bool:
    if "invalid_token" in headers.get("www-authenticate", "").lower():
        return True
    if not isinstance(value, Mapping):
        return False
    for key in ("error", "code"):
        code = value.get(key)
        if isinstance(code, str) and code.lower() in _EXPIRY_CODES:
            return True
    message = " ".join(
        str(value.get(key, "")) for key in ("message", "error_description")
    ).lower()
    return ("expired" in message or "invalid" in message) and (
        "token" in message or "jwt" in message
    )


def extract_error_message(value: Any) -> tuple[str, str | None] | None:
    """Render a known upstream error shape as (message, code), else None."""
    if not isinstance(value, Mapping):
        return None

    message = value.get("message")
    error_type = value.get("type")
    if isinstance(message, str) and isinstance(error_type, str):
        return f"{error_type} - {message}", error_type

    code = value.get("code")
    context = value.get("context")
    if isinstance(code, str) and isinstance(context, list):
        items = [item for item in context if isinstance(item, Mapping)]
        if any("violated_constraints" in item for item in items):
            details = []
            for item in items:
                pairs = item.get("violated_constraints") or []
                rendered = ", ".join(
                    f"{pair[0]}: {pair[1]}"
                    for pair in pairs
                    if isinstance(pair, (list, tuple)) and len(pair) == 2
                )
                details.append(f"{item.get('code', '')}: ({rendered})")
            return f"{code}: {', '.join(details)}", code
        details = ", ".join(f"{item.get('field', '')}: {item.get('code', '')}" for item in items)
        text = value.get("message") or value.get("error")
        if isinstance(text, str) and text:
            return f"{text} ({code}) - {details}", code
        return f"({code}) - {details}", code

    error = value.get("error")
    if isinstance(error, str) and "error_description" in value:
        description = value.get("error_description") or ""
        return (f"{error} - {description}" if description else error), error

    return None


def _is_profile_error(value: Any, code: str | None) -> bool:
    candidates = [code or ""]
    if isinstance(value, Mapping):
        for item in value.get("context") or []:
            if isinstance(item, Mapping):
                candidates.append(str(item.get("field", "")))
                candidates.append(str(item.get("code", "")))
    return any("profile" in candidate.lower() for candidate in candidates)


# --- Classification ---


def classify(
    status: int,
    headers: Mapping[str, str] | None,
    body: bytes,
    *,
    url: str | None = None,
    expect_json: bool = True,
    profile_id: str | None = None,
) -> RequestOutcome:
    """Classify one response. Pure: no I/O, no state."""
    lowered = _lower_headers(headers)

    if is_cloudflare_challenge(status, lowered, body):
        _LOGGER.debug("Cloudflare challenge detected for %s (status=%d)", url, status)
        return RequestOutcome.blocked(CLOUDFLARE_BLOCK_REASON)

    value = _load_json(body)

    if 200 <= status < 300:
        if expect_json and body.strip():
            if _looks_like_html(body, lowered.get("content-type", "").lower()):
                return RequestOutcome.failed(
                    DecodeError(
                        "Expected JSON but received HTML",
                        url=url,
                        status=status,
                        detail=body_snippet(body),
                    )
                )
            shaped = extract_error_message(value)
            if shaped is not None:
                return RequestOutcome.failed(
                    _upstream_error(status, shaped, value, url=url, profile_id=profile_id)
                )
        return RequestOutcome.ok(body)

    if status == HTTP_UNAUTHORIZED:
        return RequestOutcome.auth_expired()
    if status == HTTP_FORBIDDEN and _is_expiry_marker(lowered, value):
        return RequestOutcome.auth_expired()

    if status == HTTP_NOT_FOUND:
        return RequestOutcome.failed(
            UpstreamError(status, "The requested resource is not present (404)", url=url)
        )
    if status == HTTP_TOO_MANY_REQUESTS:
        return RequestOutcome.failed(
            RateLimitError(parse_retry_after(lowered.get("retry-after")), url=url)
        )

    shaped = extract_error_message(value)
    if shaped is None:
        return RequestOutcome.failed(
            UpstreamError(
                status,
                f"Request failed with status {status}",
                url=url,
                detail=body_snippet(body) or None,
            )
        )
    return RequestOutcome.failed(
        _upstream_error(status, shaped, value, url=url, profile_id=profile_id)
    )


def _upstream_error(
    status: int,
    shaped: tuple[str, str | None],
    value: Any,
    *,
    url: str | None,
    profile_id: str | None,
) -> CrunchyrollError:
    message, code = shaped
    if _is_profile_error(value, code):
        return InvalidProfileError(profile_id, message, url=url, status=status)
    return UpstreamError(status, message, url=url)


__all__ = [
    "CLOUDFLARE_BLOCK_REASON",
    "OutcomeKind",
    "RequestOutcome",
    "classify",
    "extract_error_message",
    "is_cloudflare_challenge",
]
