"""tests/conftest.py: Common fixtures for the crunchyapi test suite."""

from __future__ import annotations

import os
from dataclasses import dataclass

import pytest

from crunchyapi.const import (
    ENV_DEVICE_ID,
    ENV_DEVICE_TYPE,
    ENV_EMAIL,
    ENV_IS_PREMIUM,
    ENV_PASSWORD,
    ENV_PROFILE_ID,
    ENV_REFRESH_TOKEN,
)
from tests.helpers import FakeClock


def _env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


@dataclass(frozen=True)
class LiveRefreshToken:
    token: str
    device_id: str
    device_type: str


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def live_credentials() -> tuple[str, str]:
    """E-mail and password of a real account, or skip."""
    email, password = _env(ENV_EMAIL), _env(ENV_PASSWORD)
    if not email or not password:
        pytest.skip(f"{ENV_EMAIL}/{ENV_PASSWORD} not set")
    return email, password


@pytest.fixture
def live_refresh_token() -> LiveRefreshToken:
    """A real refresh token with the device it is bound to, or skip."""
    token = _env(ENV_REFRESH_TOKEN)
    device_id = _env(ENV_DEVICE_ID)
    device_type = _env(ENV_DEVICE_TYPE)
    if not token or not device_id or not device_type:
        pytest.skip(f"{ENV_REFRESH_TOKEN}/{ENV_DEVICE_ID}/{ENV_DEVICE_TYPE} not set")
    return LiveRefreshToken(token, device_id, device_type)


@pytest.fixture
def live_profile_id() -> str:
    profile_id = _env(ENV_PROFILE_ID)
    if not profile_id:
        pytest.skip(f"{ENV_PROFILE_ID} not set")
    return profile_id


@pytest.fixture
def live_is_premium() -> bool | None:
    """Expected premium flag, or None when the harness does not say."""
    value = _env(ENV_IS_PREMIUM)
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")
