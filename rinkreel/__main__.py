"""Command line entry point: ``python -m rinkreel process SESSION_JSON...``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError as ModelValidationError

from .encoder import FfmpegEncoder
from .errors import RinkReelError
from .logging_setup import configure_logging
from .monitor import TERMINAL_EVENTS
from .provider import HttpFeedProvider
from .runner import JobRunner
from .schemas import Session
from .settings import Settings, settings
from .store import InMemorySessionStore

logger = logging.getLogger("rinkreel")


def load_session(path: Path) -> Session:
    return Session.model_validate_json(Path(path).read_text(encoding="utf-8"))


def build_encoder(cfg: Settings) -> FfmpegEncoder:
    return FfmpegEncoder(
        reencode=cfg.CONCAT_REENCODE,
        vcodec=cfg.CONCAT_VCODEC,
        preset=cfg.CONCAT_VPRESET,
        crf=cfg.CONCAT_VCRF,
        acodec=cfg.CONCAT_ACODEC,
        abitrate=cfg.CONCAT_ABITRATE,
        caption_style=cfg.CAPTION_FORCE_STYLE,
    )


async def process_sessions(paths: Sequence[Path], runner: JobRunner) -> int:
    """Submit one job per session file and stream snapshots until all settle."""

    feed = runner.events.subscribe()
    pending = set()
    failures = 0
    for path in paths:
        try:
            session = load_session(path)
            runner.store.create_session(session)
            job = runner.submit(session.id)
        except (OSError, ModelValidationError, RinkReelError) as exc:
            logger.error("session_rejected", extra={"path": str(path), "error": str(exc)})
            failures += 1
            continue
        pending.add(job.id)

    if not pending:
        feed.close()
        return 1

    runner.start()
    try:
        async for event in feed:
            print(json.dumps({"event": event.event, "job": event.job.model_dump(mode="json")}), flush=True)
            if event.event in TERMINAL_EVENTS and event.job.id in pending:
                pending.discard(event.job.id)
                if event.job.status != "completed":
                    failures += 1
                if not pending:
                    break
    finally:
        feed.close()
        await runner.stop()
    return 1 if failures else 0


async def _run(paths: Sequence[Path]) -> int:
    provider = HttpFeedProvider(settings.PROVIDER_BASE_URL, timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    runner = JobRunner(InMemorySessionStore(), provider, build_encoder(settings))
    try:
        return await process_sessions(paths, runner)
    finally:
        await provider.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="rinkreel", description="Build highlight videos from annotated game sessions")
    sub = parser.add_subparsers(dest="command", required=True)
    process = sub.add_parser("process", help="Process one or more session JSON files")
    process.add_argument("sessions", nargs="+", type=Path, help="Session JSON file(s)")
    process.add_argument("--log-level", default=None, help="Override the configured log level")

    args = parser.parse_args(argv)
    configure_logging(args.log_level or settings.logging_level)
    return asyncio.run(_run(args.sessions))


if __name__ == "__main__":
    sys.exit(main())
