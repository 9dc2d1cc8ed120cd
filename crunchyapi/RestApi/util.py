# crunchyapi/RestApi/util.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
#
"""Small helpers shared by the request pipeline: redaction, snippets, Retry-After."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from bs4 import BeautifulSoup

_LOGGER = logging.getLogger(__name__)

MAX_RETRY_AFTER_S = 3600.0

# --- PII Redaction ---

_RE_BEARER = re.compile(r"Bearer\s+[A-Za-z0-9\-\._~\+\/]+=*", re.I)
_RE_EMAIL = re.compile(r"([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[^,\s]+)")
_RE_HEX16 = re.compile(r"\b[0-9a-fA-F]{16,}\b")
_RE_JWT = re.compile(r"\beyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]*")
_RE_FORM_SECRET = re.compile(r"((?:password|refresh_token)=)[^&\s]+", re.I)


def redact(s: str) -> str:
    """Redact sensitive information from a string for safe logging."""
    s = _RE_BEARER.sub("Bearer <redacted>", s)
    s = _RE_JWT.sub("<jwt-redacted>", s)
    s = _RE_FORM_SECRET.sub(r"\1<redacted>", s)
    s = _RE_EMAIL.sub(r"\1***\3", s)
    s = _RE_HEX16.sub("<hex-redacted>", s)
    return s


def mask_email(email: str | None) -> str:
    """Return a log-safe form of an e-mail address (``j***@example.com``)."""
    if not email:
        return "<none>"
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def clip(value: str | None, limit: int = 8) -> str:
    """Return the first `limit` characters of an opaque identifier for logs."""
    if not value:
        return "<none>"
    if len(value) <= limit:
        return value
    return f"{value[:limit]}…"


_ERROR_SNIPPET_MAX = 512


def beautify_text(resp_text: str) -> str:
    """Return a human-readable snippet of a response body for logging purposes."""

    if not resp_text:
        return ""

    text = BeautifulSoup(resp_text, "html.parser").get_text(separator=" ", strip=True)
    if text:
        return text[:_ERROR_SNIPPET_MAX]

    return resp_text[:_ERROR_SNIPPET_MAX]


def body_snippet(body: bytes) -> str:
    """Decode, beautify and redact a response body."""
    return redact(beautify_text(body.decode(errors="ignore")))


# --- Retry-After ---


def parse_retry_after(retry_after: str | None) -> float | None:
    """Return the Retry-After hint in seconds (delta-seconds or HTTP date)."""

    if not retry_after:
        return None
    delay: float | None
    try:
        delay = float(retry_after)
    except (TypeError, ValueError):
        try:
            retry_dt = parsedate_to_datetime(retry_after)
        except (TypeError, ValueError):
            _LOGGER.debug("Ignoring unparsable Retry-After header: %r", retry_after)
            return None
        if retry_dt.tzinfo is None:
            retry_dt = retry_dt.replace(tzinfo=UTC)
        delay = (retry_dt - datetime.now(UTC)).total_seconds()

    return min(max(0.0, delay), MAX_RETRY_AFTER_S)


def generate_random_uuid() -> str:
    return str(uuid.uuid4())


__all__ = [
    "beautify_text",
    "body_snippet",
    "clip",
    "generate_random_uuid",
    "mask_email",
    "parse_retry_after",
    "redact",
]
