"""Tests for the HTTP feed provider adapter, retry policy and feed locator."""

import asyncio
from datetime import date, timedelta

import httpx
import pytest

from rinkreel.errors import AuthenticationError, NotFoundError, TransientProviderError
from rinkreel.feed_locator import FeedLocator
from rinkreel.provider import HttpFeedProvider, call_with_retries
from rinkreel.schemas import Credentials, ProviderSession, utcnow

CREDS = Credentials(email="coach@example.com", password="pw")
GAME_DAY = date(2024, 3, 2)


def _provider(handler):
    return HttpFeedProvider("https://provider.test", transport=httpx.MockTransport(handler))


def _routes(feeds_status=200, clip_status=200, clip_type="video/mp4"):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if path == "/api/v1/auth/login":
            return httpx.Response(200, json={"token": "tok", "expires_in": 3600})
        if path == "/api/v1/rinks/lb-42/feeds":
            if feeds_status != 200:
                return httpx.Response(feeds_status)
            return httpx.Response(
                200,
                json={"feeds": [
                    {"id": "old", "url": "https://cdn.test/old", "date": "2024-03-01"},
                    {"id": "f1", "url": "https://cdn.test/f1", "date": "2024-03-02T18:00:00Z"},
                ]},
            )
        if path == "/f1/clip":
            return httpx.Response(clip_status, content=b"VIDEO", headers={"Content-Type": clip_type})
        return httpx.Response(404)

    return handler, seen


def test_authenticate_locate_and_fetch():
    handler, seen = _routes()
    provider = _provider(handler)

    async def _go():
        session = await provider.authenticate(CREDS)
        feed = await provider.locate(session, "lb-42", GAME_DAY)
        data = await provider.fetch_range(feed, 10_000, 40_000)
        await provider.close()
        return session, feed, data

    session, feed, data = asyncio.run(_go())

    assert session.token == "tok"
    assert session.expires_at is not None
    assert feed.feed_id == "f1"
    assert feed.url == "https://cdn.test/f1"
    assert data == b"VIDEO"
    clip_request = seen[-1]
    assert clip_request.url.params["start"] == "10.000"
    assert clip_request.url.params["end"] == "40.000"
    assert clip_request.headers["Authorization"] == "Bearer tok"
    assert seen[1].url.params["date"] == "2024-03-02"


@pytest.mark.parametrize(
    "status, error",
    [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (404, NotFoundError),
        (429, TransientProviderError),
        (503, TransientProviderError),
    ],
)
def test_clip_status_mapping(status, error):
    handler, _ = _routes(clip_status=status)
    provider = _provider(handler)

    async def _go():
        session = await provider.authenticate(CREDS)
        feed = await provider.locate(session, "lb-42", GAME_DAY)
        await provider.fetch_range(feed, 0, 30_000)

    with pytest.raises(error):
        asyncio.run(_go())


def test_wrong_content_type_is_rejected():
    handler, _ = _routes(clip_type="text/html")
    provider = _provider(handler)

    async def _go():
        session = await provider.authenticate(CREDS)
        feed = await provider.locate(session, "lb-42", GAME_DAY)
        await provider.fetch_range(feed, 0, 30_000)

    with pytest.raises(TransientProviderError, match="video"):
        asyncio.run(_go())


def test_missing_feed_for_date_is_not_found():
    handler, _ = _routes()
    provider = _provider(handler)

    async def _go():
        session = await provider.authenticate(CREDS)
        await provider.locate(session, "lb-42", date(2024, 4, 1))

    with pytest.raises(NotFoundError, match="Could not find rink feed for lb-42 on 2024-04-01"):
        asyncio.run(_go())


def test_rejected_login_is_authentication_error():
    provider = _provider(lambda request: httpx.Response(401))

    with pytest.raises(AuthenticationError):
        asyncio.run(provider.authenticate(CREDS))


def test_network_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    provider = _provider(handler)
    with pytest.raises(TransientProviderError):
        asyncio.run(provider.authenticate(CREDS))


def test_retries_stop_after_attempt_limit():
    calls = []
    sleeps = []

    async def op():
        calls.append(1)
        raise TransientProviderError("503")

    async def fake_sleep(delay):
        sleeps.append(delay)

    with pytest.raises(TransientProviderError):
        asyncio.run(call_with_retries(op, attempts=3, backoff_base=1.0, label="t", sleep=fake_sleep))

    assert len(calls) == 3
    assert len(sleeps) == 2
    assert 1.0 <= sleeps[0] <= 1.25
    assert 2.0 <= sleeps[1] <= 2.5


@pytest.mark.parametrize("error", [AuthenticationError("bad"), NotFoundError("none")])
def test_non_transient_errors_are_not_retried(error):
    calls = []

    async def op():
        calls.append(1)
        raise error

    with pytest.raises(type(error)):
        asyncio.run(call_with_retries(op, attempts=5, backoff_base=0, label="t"))
    assert len(calls) == 1


def test_retry_returns_first_success():
    outcomes = [TransientProviderError("timeout"), "ok"]

    async def op():
        item = outcomes.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    assert asyncio.run(call_with_retries(op, attempts=3, backoff_base=0, label="t")) == "ok"


def test_locator_refuses_expired_session(provider):
    locator = FeedLocator(provider, backoff_base=0)
    expired = ProviderSession(token="t", expires_at=utcnow() - timedelta(seconds=1))

    with pytest.raises(AuthenticationError):
        asyncio.run(locator.locate(expired, "lb-42", GAME_DAY))
    assert provider.locate_calls == 0


def test_locator_retries_transient_locate(provider):
    provider.locate_error = TransientProviderError("503")
    locator = FeedLocator(provider, max_attempts=2, backoff_base=0)

    with pytest.raises(TransientProviderError):
        asyncio.run(locator.locate(ProviderSession(token="t"), "lb-42", GAME_DAY))
    assert provider.locate_calls == 2
