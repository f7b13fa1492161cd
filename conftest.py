"""Shared fakes for the feed provider and media encoder."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from rinkreel.errors import EncoderError
from rinkreel.schemas import (
    Caption,
    Comment,
    Credentials,
    FeedHandle,
    MediaInfo,
    ProviderSession,
    RinkLocation,
    Session,
)
from rinkreel.settings import Settings
from rinkreel.storage import LocalStorage


class FakeProvider:
    def __init__(self) -> None:
        self.auth_calls = 0
        self.locate_calls = 0
        self.fetch_calls: List[tuple] = []
        self.auth_error: Optional[Exception] = None
        self.locate_error: Optional[Exception] = None
        self.fetch_errors: Dict[int, List[Exception]] = {}
        self.auth_gate: Optional[asyncio.Event] = None
        self.auth_started: Optional[asyncio.Event] = None
        self.fetch_delay = 0.0
        self.active = 0
        self.max_active = 0

    async def authenticate(self, credentials: Credentials) -> ProviderSession:
        self.auth_calls += 1
        if self.auth_started is not None:
            self.auth_started.set()
        if self.auth_gate is not None:
            await self.auth_gate.wait()
        if self.auth_error is not None:
            raise self.auth_error
        return ProviderSession(token="token-123")

    async def locate(self, session: ProviderSession, rink_id: str, game_date: date) -> FeedHandle:
        self.locate_calls += 1
        if self.locate_error is not None:
            raise self.locate_error
        return FeedHandle(
            feed_id="feed-1",
            url="https://feeds.test/feed-1",
            rink_id=rink_id,
            game_date=game_date,
        )

    async def fetch_range(self, feed: FeedHandle, start_ms: int, end_ms: int) -> bytes:
        self.fetch_calls.append((start_ms, end_ms))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.fetch_delay)
            pending = self.fetch_errors.get(start_ms)
            if pending:
                raise pending.pop(0)
            return f"clip:{start_ms}-{end_ms}".encode()
        finally:
            self.active -= 1

    async def close(self) -> None:
        return None


class FakeEncoder:
    def __init__(self) -> None:
        self.concat_inputs: List[List[Path]] = []
        self.captions: List[Caption] = []
        self.concat_error: Optional[Exception] = None
        self.overlay_error: Optional[Exception] = None

    async def concatenate(self, inputs: Sequence[Path], output: Path) -> Path:
        self.concat_inputs.append(list(inputs))
        if self.concat_error is not None:
            raise self.concat_error
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"".join(Path(p).read_bytes() for p in inputs))
        return output

    async def burn_captions(self, source: Path, captions: Sequence[Caption], output: Path) -> Path:
        self.captions = list(captions)
        if self.overlay_error is not None:
            raise self.overlay_error
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(Path(source).read_bytes() + b"|captions")
        return output

    async def probe(self, path: Path) -> MediaInfo:
        return MediaInfo(duration_ms=0, resolution="unknown", size_bytes=Path(path).stat().st_size)


def make_session(timestamps: Sequence[int] = (0, 10_000, 40_000), session_id: str = "s1") -> Session:
    return Session(
        id=session_id,
        rink_location=RinkLocation(id="rink-1", name="Main Rink", provider_id="lb-42"),
        game_date=datetime(2024, 3, 2, 18, 30, tzinfo=timezone.utc),
        home_team="Hawks",
        away_team="Bears",
        comments=[
            Comment(id=f"c{index}", timestamp=ts, text=f"comment {index}")
            for index, ts in enumerate(timestamps)
        ],
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        WORK_DIR=tmp_path / "work",
        LOCAL_STORAGE_DIR=tmp_path / "published",
        PROVIDER_BACKOFF_BASE_SEC=0.0,
        JOB_WATCHDOG_SECONDS=30,
        webhook_url=None,
    )


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "published")
