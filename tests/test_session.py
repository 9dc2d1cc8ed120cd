# tests/test_session.py
"""Tests for the Session aggregate and its login entry points."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import jwt
import pytest

from crunchyapi import Session
from crunchyapi.Auth.credentials import LoginMode
from crunchyapi.Auth.token_cache import SessionStore
from crunchyapi.Auth.token_manager import TokenStatus
from crunchyapi.config import load_config
from crunchyapi.const import (
    BENEFITS_ENDPOINT,
    HEADER_DEVICE_ID,
    INDEX_ENDPOINT,
    PROFILES_ENDPOINT,
    TOKEN_ENDPOINT,
)
from crunchyapi.exceptions import (
    BlockError,
    DecodeError,
    InvalidCredentialsError,
    InvalidProfileError,
)
from tests.helpers import (
    CLOUDFLARE_PAGE,
    DummyResponse,
    DummySession,
    FakeClock,
    login_routes,
)

_SIGNING_KEY = "crunchyapi-test-signing-key-0123456789abcdef"


def _profile(profile_id: str, name: str, *, selected: bool = False) -> dict[str, object]:
    return {
        "profile_id": profile_id,
        "profile_name": name,
        "username": name.lower(),
        "can_switch": True,
        "is_primary": selected,
        "is_selected": selected,
        "maturity_rating": "M3",
        "avatar": "0001-cr-white-orange.png",
    }


def test_anonymous_login_is_never_premium(clock: FakeClock) -> None:
    http = DummySession(routes=login_routes(account_id=None, refresh_token=None))

    async def _exercise() -> None:
        session = await Session.async_login_anonymous(http=http, clock=clock)

        assert session.login_mode is LoginMode.ANONYMOUS
        assert session.token_status is TokenStatus.VALID
        assert session.premium is False
        assert session.account_id is None
        assert session.bucket == "cms/v2/US/M3/crunchyroll"
        assert session.session_token() is None

    asyncio.run(_exercise())

    assert [call["url"] for call in http.calls] == [TOKEN_ENDPOINT, INDEX_ENDPOINT]


def test_credentials_login_reads_premium_from_benefits(clock: FakeClock) -> None:
    http = DummySession(routes=login_routes(benefits=("cr_premium", "concurrent_streams.4")))

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, clock=clock
        )

        assert session.login_mode is LoginMode.CREDENTIALS
        assert session.premium is True
        assert session.account_id == "acc-1"
        assert session.refresh_token == "refresh-1"
        assert session.access_token == "access-1"
        assert session.expires_at == clock.now + timedelta(seconds=300)

    asyncio.run(_exercise())

    grant = http.calls_to(TOKEN_ENDPOINT)[0]["data"]
    assert grant["grant_type"] == "password"
    index_call = http.calls_to(INDEX_ENDPOINT)[0]
    assert index_call["headers"][HEADER_DEVICE_ID] == grant["device_id"]
    assert http.calls_to(BENEFITS_ENDPOINT.format(account_id="acc-1"))


def test_missing_benefits_mean_not_premium(clock: FakeClock) -> None:
    routes = login_routes()
    routes[BENEFITS_ENDPOINT.format(account_id="acc-1")] = [DummyResponse(404, b"")]
    http = DummySession(routes=routes)

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, clock=clock
        )
        assert session.premium is False

    asyncio.run(_exercise())


def test_media_query_signs_with_index_data(clock: FakeClock) -> None:
    http = DummySession(routes=login_routes())

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, clock=clock
        )
        assert session.media_query() == [
            ("locale", "en-US"),
            ("Signature", "signature-value"),
            ("Policy", "policy-value"),
            ("Key-Pair-Id", "APKA-key-pair"),
        ]

    asyncio.run(_exercise())


def test_locale_queries_follow_config(clock: FakeClock) -> None:
    search = "https://www.crunchyroll.com/content/v2/discover/search"
    http = DummySession(routes=login_routes())
    http.add(search, DummyResponse(200, {}))
    config = load_config({"locale": "de-DE", "preferred_audio_locale": "ja-JP"})

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, config=config, clock=clock
        )
        assert session.locale_query() == [("locale", "de-DE")]
        assert session.preferred_audio_query() == [("preferred_audio_language", "ja-JP")]
        await session.async_execute(
            "GET",
            search,
            params=[("q", "frieren"), *session.locale_query(), *session.preferred_audio_query()],
        )

    asyncio.run(_exercise())

    assert http.calls_to(search)[0]["params"] == [
        ("q", "frieren"),
        ("locale", "de-DE"),
        ("preferred_audio_language", "ja-JP"),
    ]


def test_preferred_audio_query_is_empty_when_unset(clock: FakeClock) -> None:
    http = DummySession(routes=login_routes())

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, clock=clock
        )
        assert session.preferred_audio_query() == []
        assert session.locale_query() == [("locale", "en-US")]

    asyncio.run(_exercise())


def test_token_profile_claim_is_read_from_jwt(clock: FakeClock) -> None:
    access = jwt.encode({"profile_id": "p-7", "sub": "acc-1"}, _SIGNING_KEY, algorithm="HS256")
    http = DummySession(routes=login_routes(access_token=access))

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, clock=clock
        )
        assert session.token_profile_id() == "p-7"

    asyncio.run(_exercise())


def test_opaque_access_token_has_no_profile_claim(clock: FakeClock) -> None:
    http = DummySession(routes=login_routes())

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, clock=clock
        )
        with pytest.raises(DecodeError):
            session.token_profile_id()

    asyncio.run(_exercise())


def test_saved_session_resumes_with_profile(tmp_path: Path, clock: FakeClock) -> None:
    store = SessionStore(tmp_path / "session.json")
    first = DummySession(routes=login_routes())
    first.add("https://www.crunchyroll.com/content/v2/discover/browse", DummyResponse(200, {}))
    second = DummySession(routes=login_routes(refresh_token="refresh-2"))

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=first, clock=clock
        )
        session.switch_profile("p-1")
        await session.async_execute(
            "GET", "https://www.crunchyroll.com/content/v2/discover/browse"
        )
        assert await session.async_save(store) is True

        resumed = await Session.async_login_from_store(store, http=second, clock=clock)
        assert resumed is not None
        assert resumed.login_mode is LoginMode.REFRESH_TOKEN_PROFILE
        assert resumed.profile_id == "p-1"
        assert resumed.device_id == session.device_id
        assert resumed.refresh_token == "refresh-2"

    asyncio.run(_exercise())

    grant = second.calls_to(TOKEN_ENDPOINT)[0]["data"]
    assert grant["grant_type"] == "refresh_token_profile_id"
    assert grant["refresh_token"] == "refresh-1"
    assert grant["profile_id"] == "p-1"
    assert grant["device_id"] == first.calls_to(TOKEN_ENDPOINT)[0]["data"]["device_id"]


def test_empty_store_resumes_nothing(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "missing.json")
    http = DummySession()

    async def _exercise() -> None:
        assert await Session.async_login_from_store(store, http=http) is None

    asyncio.run(_exercise())

    assert http.calls == []


def test_refresh_token_login_binds_given_device(clock: FakeClock) -> None:
    http = DummySession(routes=login_routes())

    async def _exercise() -> None:
        session = await Session.async_login_with_refresh_token(
            "rt-1", "dev-9", "Firefox on Linux", http=http, clock=clock
        )
        assert session.device_id == "dev-9"
        assert session.device_type == "Firefox on Linux"
        assert session.login_mode is LoginMode.REFRESH_TOKEN

    asyncio.run(_exercise())

    grant = http.calls_to(TOKEN_ENDPOINT)[0]["data"]
    assert grant["refresh_token"] == "rt-1"
    assert grant["device_id"] == "dev-9"


def test_verified_profile_switch_rejects_unknown_profile(clock: FakeClock) -> None:
    profiles = {
        "profiles": [_profile("p-1", "Jane", selected=True), _profile("p-2", "Kid")],
        "tier_max_profiles": 4,
        "max_profiles": 5,
    }
    http = DummySession(routes=login_routes())
    http.add(PROFILES_ENDPOINT, DummyResponse(200, profiles), DummyResponse(200, profiles))

    async def _exercise() -> None:
        session = await Session.async_login_with_credentials(
            "jane@example.com", "secret", http=http, clock=clock
        )
        with pytest.raises(InvalidProfileError) as err:
            await session.async_switch_profile("p-404", verify=True)
        assert err.value.profile_id == "p-404"
        assert session.profile_id is None

        await session.async_switch_profile("p-2", verify=True)
        assert session.profile_id == "p-2"

    asyncio.run(_exercise())


def test_rejected_login_raises_and_leaves_passed_session_open() -> None:
    http = DummySession(
        routes={
            TOKEN_ENDPOINT: [
                DummyResponse(
                    401, {"error": "invalid_grant", "error_description": "bad password"}
                )
            ]
        }
    )

    async def _exercise() -> None:
        with pytest.raises(InvalidCredentialsError):
            await Session.async_login_with_credentials("jane@example.com", "wrong", http=http)

    asyncio.run(_exercise())

    assert http.closed is False
    assert len(http.calls) == 1


def test_blocked_login_raises_block_error() -> None:
    http = DummySession(
        routes={
            TOKEN_ENDPOINT: [DummyResponse(403, CLOUDFLARE_PAGE, {"Content-Type": "text/html"})]
        }
    )

    async def _exercise() -> None:
        with pytest.raises(BlockError):
            await Session.async_login_anonymous(http=http)

    asyncio.run(_exercise())


def test_context_manager_does_not_close_borrowed_http(clock: FakeClock) -> None:
    http = DummySession(routes=login_routes(account_id=None, refresh_token=None))

    async def _exercise() -> None:
        async with await Session.async_login_anonymous(http=http, clock=clock) as session:
            assert session.access_token == "access-1"

    asyncio.run(_exercise())

    assert http.closed is False
