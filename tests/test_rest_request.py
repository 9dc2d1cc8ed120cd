# tests/test_rest_request.py
"""Tests for the authenticated request pipeline."""

from __future__ import annotations

import asyncio

import aiohttp
import pytest

from crunchyapi.Auth.credentials import (
    Anonymous,
    CredentialStore,
    DeviceIdentifier,
    EmailPassword,
)
from crunchyapi.Auth.profile_context import ProfileContext
from crunchyapi.Auth.token_manager import TokenManager
from crunchyapi.config import load_config
from crunchyapi.const import HEADER_DEVICE_ID, HEADER_DEVICE_TYPE, HEADER_PROFILE_ID
from crunchyapi.exceptions import (
    BlockError,
    InvalidProfileError,
    ReauthenticationRequiredError,
    TransportError,
    UpstreamError,
)
from crunchyapi.models import BenefitsResponse
from crunchyapi.RestApi import rest_request
from crunchyapi.RestApi.block_detector import OutcomeKind, RequestOutcome
from crunchyapi.RestApi.rest_request import RequestExecutor
from crunchyapi.schema import SchemaMode, SchemaValidator
from tests.helpers import (
    CLOUDFLARE_PAGE,
    DummyResponse,
    DummySession,
    FakeClock,
    FakeRetriever,
    benefits_payload,
)

_URL = "https://www.crunchyroll.com/content/v2/discover/browse"
_DEVICE = DeviceIdentifier("dev-1", "Chrome on Windows")


def _build(
    session: DummySession, clock: FakeClock
) -> tuple[RequestExecutor, TokenManager, FakeRetriever]:
    retriever = FakeRetriever()
    tokens = TokenManager(
        retriever,  # type: ignore[arg-type]
        CredentialStore(device=_DEVICE),
        ProfileContext(),
        clock=clock,
    )
    executor = RequestExecutor(
        session,  # type: ignore[arg-type]
        tokens,
        load_config(),
        validator=SchemaValidator(SchemaMode.LENIENT),
    )
    return executor, tokens, retriever


async def _login(tokens: TokenManager) -> None:
    await tokens.async_login(EmailPassword("jane@example.com", "secret"))


def test_headers_carry_bearer_device_and_profile(clock: FakeClock) -> None:
    session = DummySession([DummyResponse(200, {"data": []})])
    executor, tokens, _ = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        tokens.profile.switch_profile("p-1")
        response = await executor.async_execute("GET", _URL, params={"n": "10"})
        assert response.json() == {"data": []}

    asyncio.run(_exercise())

    call = session.calls[0]
    assert call["params"] == {"n": "10"}
    headers = call["headers"]
    assert headers["Authorization"] == "Bearer access-1"
    assert headers[HEADER_DEVICE_ID] == "dev-1"
    assert headers[HEADER_DEVICE_TYPE] == "Chrome on Windows"
    assert headers[HEADER_PROFILE_ID] == "p-1"
    assert tokens.profile.confirmed_profile == "p-1"


def test_anonymous_requests_omit_device_headers(clock: FakeClock) -> None:
    session = DummySession([DummyResponse(200, b"")])
    executor, tokens, _ = _build(session, clock)

    async def _exercise() -> None:
        await tokens.async_login(Anonymous())
        response = await executor.async_execute("GET", _URL)
        assert response.body == b"{}"

    asyncio.run(_exercise())

    headers = session.calls[0]["headers"]
    assert HEADER_DEVICE_ID not in headers
    assert HEADER_PROFILE_ID not in headers


def test_expired_token_is_refreshed_and_request_resent_once(clock: FakeClock) -> None:
    session = DummySession(
        [DummyResponse(401, b""), DummyResponse(200, {"ok": True})]
    )
    executor, tokens, retriever = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        response = await executor.async_execute("GET", _URL)
        assert response.json() == {"ok": True}

    asyncio.run(_exercise())

    assert len(session.calls) == 2
    assert retriever.grants == ["password", "refresh_token"]
    assert session.calls[0]["headers"]["Authorization"] == "Bearer access-1"
    assert session.calls[1]["headers"]["Authorization"] == "Bearer access-2"
    assert tokens.generation == 2


def test_second_rejection_requires_reauthentication(clock: FakeClock) -> None:
    session = DummySession([DummyResponse(401, b""), DummyResponse(401, b"")])
    executor, tokens, retriever = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        with pytest.raises(ReauthenticationRequiredError):
            await executor.async_execute("GET", _URL)

    asyncio.run(_exercise())

    assert len(session.calls) == 2
    assert retriever.grants.count("refresh_token") == 1


def test_failure_without_error_detail_raises_upstream_error(
    clock: FakeClock, monkeypatch: pytest.MonkeyPatch
) -> None:
    session = DummySession([DummyResponse(500, b"")])
    executor, tokens, _ = _build(session, clock)
    monkeypatch.setattr(
        rest_request, "classify", lambda *args, **kwargs: RequestOutcome(OutcomeKind.FAILED)
    )

    async def _exercise() -> None:
        await _login(tokens)
        with pytest.raises(UpstreamError) as err:
            await executor.async_execute("GET", _URL)
        assert err.value.status == 500
        assert err.value.url == _URL

    asyncio.run(_exercise())


def test_concurrent_rejections_share_one_refresh(clock: FakeClock) -> None:
    session = DummySession(
        [
            DummyResponse(401, b""),
            DummyResponse(401, b""),
            DummyResponse(200, {"ok": 1}),
            DummyResponse(200, {"ok": 2}),
        ]
    )
    executor, tokens, retriever = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        gate = asyncio.Event()
        retriever.gate = gate
        first = asyncio.create_task(executor.async_execute("GET", _URL))
        second = asyncio.create_task(executor.async_execute("GET", _URL))
        for _ in range(10):
            await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(first, second)
        assert sorted(r.json()["ok"] for r in results) == [1, 2]

    asyncio.run(_exercise())

    assert retriever.grants == ["password", "refresh_token"]
    assert len(session.calls) == 4


def test_block_is_not_retried(clock: FakeClock) -> None:
    session = DummySession(
        [DummyResponse(403, CLOUDFLARE_PAGE, {"Content-Type": "text/html"})]
    )
    executor, tokens, retriever = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        with pytest.raises(BlockError) as err:
            await executor.async_execute("GET", _URL)
        assert err.value.url == _URL

    asyncio.run(_exercise())

    assert len(session.calls) == 1
    assert retriever.grants == ["password"]


def test_upstream_failure_is_raised_without_retry(clock: FakeClock) -> None:
    session = DummySession([DummyResponse(404, b"")])
    executor, tokens, _ = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        with pytest.raises(UpstreamError) as err:
            await executor.async_execute("GET", _URL)
        assert err.value.status == 404

    asyncio.run(_exercise())

    assert len(session.calls) == 1


def test_switch_profile_changes_header_without_refresh(clock: FakeClock) -> None:
    session = DummySession([DummyResponse(200, {}), DummyResponse(200, {})])
    executor, tokens, retriever = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        tokens.profile.switch_profile("p-1")
        await executor.async_execute("GET", _URL)
        tokens.profile.switch_profile("p-2")
        await executor.async_execute("GET", _URL)

    asyncio.run(_exercise())

    assert [call["headers"][HEADER_PROFILE_ID] for call in session.calls] == ["p-1", "p-2"]
    assert retriever.grants == ["password"]


def test_profile_rejection_reverts_scope(clock: FakeClock) -> None:
    rejection = {
        "code": "accounts.get_profile.forbidden",
        "context": [{"code": "invalid", "field": "profile_id"}],
    }
    session = DummySession(
        [DummyResponse(200, {}), DummyResponse(400, rejection), DummyResponse(200, {})]
    )
    executor, tokens, _ = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        tokens.profile.switch_profile("p-1")
        await executor.async_execute("GET", _URL)
        tokens.profile.switch_profile("p-bad")
        with pytest.raises(InvalidProfileError) as err:
            await executor.async_execute("GET", _URL)
        assert err.value.profile_id == "p-bad"
        assert tokens.profile.active_profile() == "p-1"
        await executor.async_execute("GET", _URL)

    asyncio.run(_exercise())

    assert session.calls[2]["headers"][HEADER_PROFILE_ID] == "p-1"


def test_transport_failure_is_typed(clock: FakeClock) -> None:
    session = DummySession([DummyResponse(exc=aiohttp.ServerDisconnectedError())])
    executor, tokens, _ = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        with pytest.raises(TransportError) as err:
            await executor.async_execute("GET", _URL)
        assert err.value.url == _URL

    asyncio.run(_exercise())


def test_request_without_login_requires_reauthentication(clock: FakeClock) -> None:
    session = DummySession()
    executor, _, _ = _build(session, clock)

    async def _exercise() -> None:
        with pytest.raises(ReauthenticationRequiredError):
            await executor.async_execute("GET", _URL)

    asyncio.run(_exercise())

    assert session.calls == []


def test_async_request_decodes_into_model(clock: FakeClock) -> None:
    session = DummySession([DummyResponse(200, benefits_payload("cr_premium"))])
    executor, tokens, _ = _build(session, clock)

    async def _exercise() -> None:
        await _login(tokens)
        benefits = await executor.async_request("GET", _URL, BenefitsResponse)
        assert isinstance(benefits, BenefitsResponse)
        assert benefits.has("cr_premium")
        assert benefits.total == 1

    asyncio.run(_exercise())
