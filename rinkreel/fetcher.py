"""Download the media behind each segment from the recorded feed."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .errors import FetchFailed, RinkReelError
from .provider import FeedProvider, call_with_retries
from .schemas import FeedHandle, Segment

logger = logging.getLogger(__name__)

SegmentDoneCB = Optional[Callable[[Segment], None]]


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class SegmentFetcher:
    def __init__(
        self,
        provider: FeedProvider,
        work_dir: Path | str,
        *,
        concurrency: int = 3,
        max_attempts: int = 3,
        backoff_base: float = 1.5,
    ) -> None:
        self.provider = provider
        self.work_dir = Path(work_dir)
        self.concurrency = max(1, int(concurrency))
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

    def destination_for(self, segment: Segment) -> Path:
        return self.work_dir / f"{segment.id}.mp4"

    async def fetch(self, feed: FeedHandle, segment: Segment) -> Path:
        """Download one segment, or return the cached file if already downloaded."""

        if segment.status == "downloaded" and segment.artifact_path:
            return Path(segment.artifact_path)

        segment.status = "downloading"
        logger.info(
            "segment_fetch_start",
            extra={"segment_id": segment.id, "start_ms": segment.start_ms, "end_ms": segment.end_ms},
        )
        try:
            data = await call_with_retries(
                lambda: self.provider.fetch_range(feed, segment.start_ms, segment.end_ms),
                attempts=self.max_attempts,
                backoff_base=self.backoff_base,
                label=f"fetch:{segment.id}",
            )
        except RinkReelError as exc:
            segment.status = "failed"
            logger.warning("segment_fetch_failed", extra={"segment_id": segment.id, "error": str(exc)})
            raise FetchFailed(segment.id, str(exc)) from exc

        if not data:
            segment.status = "failed"
            logger.warning("segment_fetch_empty", extra={"segment_id": segment.id})
            raise FetchFailed(segment.id, "provider returned no data")

        destination = self.destination_for(segment)
        try:
            await asyncio.to_thread(_write_bytes, destination, data)
        except OSError as exc:
            segment.status = "failed"
            raise FetchFailed(segment.id, f"could not write {destination}: {exc}") from exc

        segment.artifact_path = str(destination)
        segment.status = "downloaded"
        logger.info("segment_fetch_ok", extra={"segment_id": segment.id, "bytes": len(data)})
        return destination

    async def fetch_all(
        self,
        feed: FeedHandle,
        segments: Sequence[Segment],
        on_complete: SegmentDoneCB = None,
    ) -> List[Path]:
        """Fetch every segment with bounded concurrency and wait for all of them.

        Completion callbacks fire in whatever order downloads finish. Returns
        paths in segment order, or raises ``FetchFailed`` for the first failed
        segment once every download has settled.
        """

        sema = asyncio.Semaphore(self.concurrency)

        async def _one(segment: Segment) -> Path:
            async with sema:
                path = await self.fetch(feed, segment)
            if on_complete:
                on_complete(segment)
            return path

        results = await asyncio.gather(*(_one(segment) for segment in segments), return_exceptions=True)

        paths: List[Path] = []
        for segment, result in zip(segments, results):
            if isinstance(result, FetchFailed):
                raise result
            if isinstance(result, BaseException):
                raise FetchFailed(segment.id, str(result) or type(result).__name__) from result
            paths.append(result)
        return paths
