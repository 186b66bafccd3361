"""Tests for CatalogClient using httpx.MockTransport."""

from __future__ import annotations

import httpx
import pytest
from pydantic import SecretStr

from shelfwise.config import CatalogConfig
from shelfwise.storage.models import ExpansionLink
from shelfwise.sync.client import (
    BatchOutcome,
    CatalogAPIError,
    CatalogAuthError,
    CatalogClient,
    CatalogSession,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_config(**overrides) -> CatalogConfig:
    values = {"base_url": "https://catalog.test", "retry_backoff": [0.0, 0.0, 0.0]}
    values.update(overrides)
    return CatalogConfig(**values)


_EXPANSION_XML = """<items>
  <item type="boardgameexpansion" id="2">
    <link type="boardgameexpansion" id="1" value="Carcassonne" inbound="true"/>
  </item>
  <item type="boardgame" id="1"/>
</items>"""

_VERSIONS_XML = """<items>
  <item type="boardgame" id="1"><versions>
    <item type="boardgameversion" id="9">
      <width value="12"/><length value="12"/><depth value="3"/>
    </item>
  </versions></item>
</items>"""


# ---------------------------------------------------------------------------
# Batched reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_expansions_ok() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=_EXPANSION_XML)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_expansions([1, 2])

    assert result.outcome is BatchOutcome.OK
    assert result.records == {1: [], 2: [ExpansionLink(base_id=1, base_name="Carcassonne")]}
    assert seen[0].url.path == "/xmlapi2/thing"
    assert seen[0].url.params["id"] == "1,2"
    assert "versions" not in seen[0].url.params


@pytest.mark.asyncio
async def test_fetch_dimensions_requests_versions() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=_VERSIONS_XML)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_dimensions([1])

    assert result.outcome is BatchOutcome.OK
    assert result.records[1].volume == 432.0
    assert seen[0].url.params["versions"] == "1"


@pytest.mark.asyncio
async def test_202_retried_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(202)
        return httpx.Response(200, text=_EXPANSION_XML)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_expansions([1, 2])

    assert calls["n"] == 3
    assert result.outcome is BatchOutcome.OK


@pytest.mark.asyncio
async def test_202_exhausted_gives_up_with_empty_result() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(202)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_expansions([1])

    # one initial attempt plus one per backoff step
    assert calls["n"] == 4
    assert result.outcome is BatchOutcome.RETRYABLE
    assert result.records == {}


@pytest.mark.asyncio
async def test_default_backoff_waits_2_4_8_seconds(monkeypatch: pytest.MonkeyPatch) -> None:
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr("shelfwise.sync.client.asyncio.sleep", fake_sleep)
    config = CatalogConfig(base_url="https://catalog.test")
    assert config.retry_backoff == [2.0, 4.0, 8.0]

    async with CatalogClient(config, _transport=httpx.MockTransport(lambda request: httpx.Response(202))) as client:
        result = await client.fetch_dimensions([1])

    assert delays == [2.0, 4.0, 8.0]
    assert result.outcome is BatchOutcome.RETRYABLE


@pytest.mark.asyncio
async def test_401_is_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_expansions([1])

    assert calls["n"] == 1
    assert result.unauthorized
    assert result.records == {}


@pytest.mark.asyncio
async def test_other_status_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_dimensions([1])

    assert result.outcome is BatchOutcome.FAILED
    assert result.status_code == 500
    assert not result.unauthorized


@pytest.mark.asyncio
async def test_network_error_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_expansions([1])

    assert result.outcome is BatchOutcome.FAILED
    assert result.records == {}


@pytest.mark.asyncio
async def test_batch_over_limit_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<items/>")

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ValueError, match="exceeds"):
            await client.fetch_expansions(list(range(16)))


@pytest.mark.asyncio
async def test_token_and_cookies_sent() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="<items/>")

    session = CatalogSession()
    session.cookies = {"bggusername": "meeple", "SessionID": "abc"}
    config = _make_config(api_token=SecretStr("tok"))

    async with CatalogClient(config, session, _transport=httpx.MockTransport(handler)) as client:
        await client.fetch_expansions([1])

    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert seen[0].headers["Cookie"] == "bggusername=meeple; SessionID=abc"


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_login_stores_cookies() -> None:
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(
            204,
            headers=[("Set-Cookie", "bggusername=meeple; Path=/"), ("Set-Cookie", "SessionID=xyz; Path=/")],
        )

    session = CatalogSession()
    async with CatalogClient(_make_config(), session, _transport=httpx.MockTransport(handler)) as client:
        await client.login("meeple", "hunter2")

    assert session.logged_in
    assert session.cookies == {"bggusername": "meeple", "SessionID": "xyz"}
    assert b'"credentials"' in bodies[0]


@pytest.mark.asyncio
async def test_login_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401)

    session = CatalogSession()
    async with CatalogClient(_make_config(), session, _transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(CatalogAuthError):
            await client.login("meeple", "wrong")

    assert not session.logged_in


@pytest.mark.asyncio
async def test_login_without_cookies_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(CatalogAuthError, match="no session cookies"):
            await client.login("meeple", "pw")


def test_session_clear():
    session = CatalogSession()
    session.cookies = {"a": "b"}
    session.clear()
    assert not session.logged_in


# ---------------------------------------------------------------------------
# Collection import
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_collection_ok() -> None:
    xml = """<items><item objectid="13" subtype="boardgame" collid="1">
      <name>Catan</name><numplays>0</numplays>
    </item></items>"""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=xml)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_collection("meeple")

    assert result.status_code == 200
    assert [i.name for i in result.items] == ["Catan"]
    params = seen[0].url.params
    assert params["username"] == "meeple"
    assert params["own"] == "1"
    assert params["excludesubtype"] == "boardgameexpansion"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [202, 401, 503])
async def test_fetch_collection_non_200(status: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        result = await client.fetch_collection("meeple")

    assert result.status_code == status
    assert result.items == []
    assert (result.error is None) == (status == 202)


@pytest.mark.asyncio
async def test_fetch_collection_network_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    async with CatalogClient(_make_config(), _transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(CatalogAPIError):
            await client.fetch_collection("meeple")
