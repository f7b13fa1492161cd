"""Remote feed provider adapter and the retry policy shared by its callers."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar

import httpx

from .errors import AuthenticationError, NotFoundError, TransientProviderError
from .schemas import Credentials, FeedHandle, ProviderSession, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


class FeedProvider(Protocol):
    """Interface for the service that records and serves rink video."""

    async def authenticate(self, credentials: Credentials) -> ProviderSession:
        """Open a provider session or raise ``AuthenticationError``."""

    async def locate(self, session: ProviderSession, rink_id: str, game_date: date) -> FeedHandle:
        """Return the recorded feed for ``rink_id`` on ``game_date``."""

    async def fetch_range(self, feed: FeedHandle, start_ms: int, end_ms: int) -> bytes:
        """Return raw media bytes for ``[start_ms, end_ms)`` of ``feed``."""

    async def close(self) -> None:
        """Release any network resources."""


async def call_with_retries(
    op: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff_base: float,
    label: str,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``op`` and retry only ``TransientProviderError`` with exponential backoff.

    ``attempts`` is the total number of tries. Every other exception is raised
    immediately.
    """

    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return await op()
        except TransientProviderError as exc:
            if attempt >= attempts:
                logger.error(
                    "provider_retries_exhausted",
                    extra={"op": label, "attempts": attempts, "error": str(exc)},
                )
                raise
            delay = max(0.0, float(backoff_base)) * (2 ** (attempt - 1))
            jitter = random.uniform(0, delay * 0.25)
            sleep_for = delay + jitter
            logger.warning(
                "provider_retry",
                extra={
                    "op": label,
                    "next_attempt": attempt + 1,
                    "sleep": round(sleep_for, 2),
                    "error": str(exc)[:200],
                },
            )
            await sleep(sleep_for)
    raise AssertionError("unreachable")  # pragma: no cover


def _raise_for_status(response: httpx.Response, what: str) -> None:
    status = response.status_code
    if status < 400:
        return
    body = response.text[:200] if response.text else ""
    if status in (401, 403):
        raise AuthenticationError(f"Provider rejected credentials while {what} ({status})")
    if status == 404:
        raise NotFoundError(f"Provider returned 404 while {what}")
    if status in _RETRYABLE_STATUS:
        raise TransientProviderError(f"Provider unavailable while {what} ({status}): {body}")
    raise TransientProviderError(f"Unexpected provider response while {what} ({status}): {body}")


def _ok_content_type(ct: str | None) -> None:
    if not ct:
        return
    normalized = ct.lower()
    if normalized.startswith("video/") or normalized.startswith("application/octet-stream"):
        return
    raise TransientProviderError(
        "Provider must serve video/* or application/octet-stream. "
        f"Received: {ct}"
    )


class HttpFeedProvider:
    """Feed provider speaking the provider's JSON API over ``httpx``.

    The session token from :meth:`authenticate` is kept on the instance and
    sent with range downloads, so one instance must only serve one job at a
    time.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._session: Optional[ProviderSession] = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, url: str, what: str, **kwargs) -> httpx.Response:
        try:
            return await self._http().request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(f"Provider timed out while {what}") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(f"Provider unreachable while {what}: {exc}") from exc

    def _auth_headers(self, session: Optional[ProviderSession]) -> Dict[str, str]:
        if session is None:
            raise AuthenticationError("Not authenticated with feed provider")
        if session.is_expired():
            raise AuthenticationError("Feed provider session expired")
        return {"Authorization": f"Bearer {session.token}"}

    async def authenticate(self, credentials: Credentials) -> ProviderSession:
        if not credentials.email or not credentials.password:
            raise AuthenticationError("Feed provider credentials are not configured")

        response = await self._request(
            "POST",
            "/api/v1/auth/login",
            "authenticating",
            json={"email": credentials.email, "password": credentials.password},
        )
        if response.status_code in (400, 404):
            raise AuthenticationError(f"Failed to authenticate with feed provider ({response.status_code})")
        _raise_for_status(response, "authenticating")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientProviderError("Invalid provider login response") from exc
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise AuthenticationError("Failed to authenticate with feed provider")

        issued = utcnow()
        expires_at = None
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            expires_at = issued + timedelta(seconds=float(expires_in))

        self._session = ProviderSession(token=str(token), issued_at=issued, expires_at=expires_at)
        logger.info("provider_authenticated", extra={"expires_at": expires_at})
        return self._session

    async def locate(self, session: ProviderSession, rink_id: str, game_date: date) -> FeedHandle:
        headers = self._auth_headers(session)
        day = game_date.isoformat()
        response = await self._request(
            "GET",
            f"/api/v1/rinks/{rink_id}/feeds",
            "locating rink feed",
            params={"date": day},
            headers=headers,
        )
        if response.status_code == 404:
            raise NotFoundError(f"Could not find rink feed for {rink_id} on {day}")
        _raise_for_status(response, "locating rink feed")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientProviderError("Invalid provider feed listing") from exc

        feeds: List[Dict[str, Any]] = []
        if isinstance(payload, dict):
            feeds = payload.get("feeds") or []
        elif isinstance(payload, list):
            feeds = payload

        for feed in feeds:
            if not isinstance(feed, dict) or not feed.get("url"):
                continue
            feed_day = str(feed.get("date") or day)[:10]
            if feed_day != day:
                continue
            logger.info("provider_feed_found", extra={"rink_id": rink_id, "date": day, "feeds": len(feeds)})
            return FeedHandle(
                feed_id=str(feed.get("id") or feed["url"]),
                url=str(feed["url"]),
                rink_id=rink_id,
                game_date=game_date,
            )

        raise NotFoundError(f"Could not find rink feed for {rink_id} on {day}")

    async def fetch_range(self, feed: FeedHandle, start_ms: int, end_ms: int) -> bytes:
        headers = self._auth_headers(self._session)
        # the provider addresses clips in seconds
        params = {"start": f"{start_ms / 1000.0:.3f}", "end": f"{end_ms / 1000.0:.3f}"}
        what = f"downloading {params['start']}s-{params['end']}s"
        response = await self._request(
            "GET",
            f"{feed.url.rstrip('/')}/clip",
            what,
            params=params,
            headers=headers,
        )
        _raise_for_status(response, what)
        _ok_content_type(response.headers.get("Content-Type"))
        return response.content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._session = None
