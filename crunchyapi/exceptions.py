# crunchyapi/exceptions.py
#
#  CrunchyTools - A set of tools to interact with the Crunchyroll API
#  Copyright © 2024 Leon Böttger. All rights reserved.
"""Typed error taxonomy for the Crunchyroll session client.

Every terminal failure surfaces as one of these classes so callers can tell
"re-enter credentials" (`InvalidCredentialsError`, `ReauthenticationRequiredError`)
from "wait and retry" (`RateLimitError`, `TransportError`) from "the request is
permanently invalid" (`BlockError`, `DecodeError`, `UpstreamError`).
"""

from __future__ import annotations


class CrunchyrollError(Exception):
    """Base exception for all client errors."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        detail: str | None = None,
    ) -> None:
        self.message = message
        self.url = url
        self.status = status
        self.detail = detail
        super().__init__(self._render())

    def _render(self) -> str:
        text = self.message
        if self.url:
            text += f" ({self.url})"
        if self.detail:
            text += f": {self.detail}"
        return text

    def with_url(self, url: str) -> CrunchyrollError:
        """Attach the request URL if none is set yet and return self."""
        if self.url is None:
            self.url = url
            self.args = (self._render(),)
        return self


class InvalidCredentialsError(CrunchyrollError):
    """Raised when the server rejects a login (bad credentials, revoked token, device mismatch)."""


class ReauthenticationRequiredError(CrunchyrollError):
    """Raised when the session can no longer be renewed and a fresh login is needed."""


class BlockError(CrunchyrollError):
    """Raised when the upstream bot mitigation blocked the request.

    Never retried automatically: resending the same request unmodified will
    trigger the same challenge.
    """

    def __init__(self, reason: str, *, url: str | None = None, status: int | None = None) -> None:
        self.reason = reason
        super().__init__(reason, url=url, status=status)


class InvalidProfileError(CrunchyrollError):
    """Raised when the server rejects the active profile scope."""

    def __init__(
        self,
        profile_id: str | None,
        detail: str | None = None,
        *,
        url: str | None = None,
        status: int | None = None,
    ) -> None:
        self.profile_id = profile_id
        super().__init__(
            f"Profile '{profile_id}' is not available for this account",
            url=url,
            status=status,
            detail=detail,
        )


class DecodeError(CrunchyrollError):
    """Raised when a response body cannot be decoded into the expected record."""


class MissingFieldError(DecodeError):
    """Raised in strict mode when a field without a default is absent."""

    def __init__(self, path: str, *, model: str | None = None) -> None:
        self.path = path
        self.model = model
        where = f" in {model}" if model else ""
        super().__init__(f"Missing field '{path}'{where}")


class UnknownFieldError(DecodeError):
    """Raised in strict mode when the payload carries an undeclared field."""

    def __init__(self, path: str, *, model: str | None = None) -> None:
        self.path = path
        self.model = model
        where = f" in {model}" if model else ""
        super().__init__(f"Unknown field '{path}'{where}")


class TransportError(CrunchyrollError):
    """Raised on network-level failures below HTTP semantics."""


class UpstreamError(CrunchyrollError):
    """Raised for upstream error responses that are not retried."""

    def __init__(
        self,
        status: int | None,
        message: str,
        *,
        url: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, url=url, status=status, detail=detail)


class RateLimitError(UpstreamError):
    """Raised on 429 responses; `retry_after` holds the server hint in seconds."""

    def __init__(self, retry_after: float | None = None, *, url: str | None = None) -> None:
        self.retry_after = retry_after
        hint = (
            f"Try again in {retry_after:.0f} seconds"
            if retry_after is not None
            else "Try again later"
        )
        super().__init__(429, f"Rate limit detected. {hint}", url=url)


class InvalidConfigError(CrunchyrollError, ValueError):
    """Raised when client options fail validation."""


__all__ = [
    "BlockError",
    "CrunchyrollError",
    "DecodeError",
    "InvalidConfigError",
    "InvalidCredentialsError",
    "InvalidProfileError",
    "MissingFieldError",
    "RateLimitError",
    "ReauthenticationRequiredError",
    "TransportError",
    "UnknownFieldError",
    "UpstreamError",
]
