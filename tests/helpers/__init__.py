# tests/helpers/__init__.py
"""Helper utilities for the crunchyapi test suite."""

from __future__ import annotations

from .http import (
    CLOUDFLARE_PAGE,
    DummyResponse,
    DummySession,
    auth_payload,
    benefits_payload,
    index_payload,
    login_routes,
    token_response,
)
from .tokens import FakeClock, FakeRetriever, make_auth

__all__ = [
    "CLOUDFLARE_PAGE",
    "DummyResponse",
    "DummySession",
    "FakeClock",
    "FakeRetriever",
    "auth_payload",
    "benefits_payload",
    "index_payload",
    "login_routes",
    "make_auth",
    "token_response",
]
