from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set

from .assembler import VideoAssembler
from .encoder import MediaEncoder
from .errors import (
    AuthenticationError,
    InternalError,
    JobCancelled,
    JobNotFound,
    RinkReelError,
    SessionNotFound,
    StorageError,
    ValidationError,
)
from .feed_locator import FeedLocator
from .fetcher import SegmentFetcher
from .logging_setup import bind_job_context, reset_job_context
from .monitor import JobEvents
from .provider import FeedProvider
from .schemas import Credentials, ProcessingJob, Segment, SessionStatus, utcnow
from .segmenter import build_segments
from .settings import Settings, settings as default_settings
from .storage import Storage, get_storage
from .store import SessionStore
from .webhook import send_webhook

logger = logging.getLogger(__name__)

Notifier = Callable[..., object]


class JobRunner:
    """Serial job queue turning a session's comments into a highlight video."""

    def __init__(
        self,
        store: SessionStore,
        provider: FeedProvider,
        encoder: MediaEncoder,
        *,
        settings: Optional[Settings] = None,
        storage: Optional[Storage] = None,
        events: Optional[JobEvents] = None,
        credentials: Optional[Credentials] = None,
        notifier: Notifier = send_webhook,
    ):
        self.settings = settings or default_settings
        self.store = store
        self.provider = provider
        self.encoder = encoder
        self.storage: Storage = storage or get_storage(self.settings)
        self.events = events or JobEvents()
        self.notifier = notifier
        self._credentials = credentials
        self.locator = FeedLocator(
            provider,
            max_attempts=self.settings.PROVIDER_MAX_RETRIES,
            backoff_base=self.settings.PROVIDER_BACKOFF_BASE_SEC,
        )
        self.queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._cancels: Dict[str, asyncio.Event] = {}
        self._background: Set[asyncio.Task] = set()

    # --- lifecycle ---

    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def start(self) -> None:
        if self.is_running():
            logger.info("worker_start_noop", extra={"reason": "already_running"})
            return
        self._stop.clear()
        self._worker_task = asyncio.create_task(self._worker_loop(), name="jobrunner-worker")
        logger.info("worker_start_requested")

    def ensure_started(self) -> None:
        if not self.is_running():
            self.start()

    async def stop(self) -> None:
        if not self._worker_task:
            logger.info("worker_stop_noop", extra={"reason": "not_running"})
            return

        logger.info("worker_stop_requested")
        self._stop.set()
        try:
            await self._worker_task
        finally:
            self._worker_task = None
            if self._background:
                await asyncio.gather(*self._background, return_exceptions=True)
            logger.info("worker_stopped")

    async def join(self) -> None:
        """Wait until every job submitted so far has been handled."""

        await self.queue.join()

    async def _worker_loop(self) -> None:
        logger.info("worker_started")
        try:
            while not self._stop.is_set():
                try:
                    job_id = await asyncio.wait_for(self.queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self._run_one(job_id)
                except Exception:
                    logger.exception("worker_loop_error", extra={"job_id": job_id})
                finally:
                    self.queue.task_done()
                    await asyncio.sleep(0)
        except asyncio.CancelledError:
            logger.info("worker_cancelled")
            raise
        finally:
            logger.info("worker_exit")

    # --- public operations ---

    def submit(self, session_id: Optional[str]) -> ProcessingJob:
        if not session_id or not str(session_id).strip():
            raise ValidationError("Session ID is required")
        session = self.store.get_session(session_id)
        if session is None:
            raise ValidationError(f"Session {session_id} not found")
        active = self.store.active_job_for_session(session_id)
        if active is not None:
            raise ValidationError(f"Session {session_id} already has an active job ({active.id})")

        job = ProcessingJob(session_id=session_id)
        self._save(job, "job_queued")
        self.queue.put_nowait(job.id)
        logger.info("job_queued", extra={"job_id": job.id, "session_id": session_id})
        return job

    def get_job(self, job_id: str) -> ProcessingJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    def list_jobs(self) -> List[ProcessingJob]:
        return self.store.list_jobs()

    def cancel(self, job_id: str) -> ProcessingJob:
        job = self.get_job(job_id)
        if job.is_terminal:
            logger.info("job_cancel_noop", extra={"job_id": job_id, "status": job.status})
            return job

        ev = self._cancels.get(job_id)
        if ev is None and job.status == "queued":
            job.status = "cancelled"
            job.current_step = "Cancelled"
            job.completed_at = utcnow()
            self._save(job, "job_cancelled")
            logger.info("job_cancelled", extra={"job_id": job_id, "while": "queued"})
            self._notify_later(job)
            return job

        if ev:
            ev.set()
        logger.info("job_cancel_requested", extra={"job_id": job_id})
        return job

    # --- internals ---

    def _save(self, job: ProcessingJob, event: str) -> None:
        self.store.save_job(job)
        self.events.publish(event, job)

    def _set_stage(self, job: ProcessingJob, pct: int, detail: str) -> None:
        job.progress = max(job.progress, int(pct))
        job.current_step = detail
        self._save(job, "job_progress")

    def _ensure_not_cancelled(self, cancel_ev: asyncio.Event) -> None:
        if cancel_ev.is_set():
            raise JobCancelled("Job cancelled")

    def _set_session_status(
        self, session_id: str, status: SessionStatus, *, output_url: Optional[str] = None
    ) -> None:
        try:
            self.store.update_session_status(session_id, status, output_url=output_url)
        except SessionNotFound:
            logger.warning("session_missing", extra={"session_id": session_id, "status": status})

    def _credentials_for_job(self) -> Credentials:
        if self._credentials is not None:
            return self._credentials
        if not self.settings.has_provider_credentials:
            raise AuthenticationError("Feed provider credentials are not configured")
        return Credentials(email=self.settings.PROVIDER_EMAIL, password=self.settings.PROVIDER_PASSWORD)

    def _work_dir(self, job_id: str) -> Path:
        return Path(self.settings.WORK_DIR) / job_id

    async def _publish(self, job: ProcessingJob, final_path: Path) -> str:
        key = f"{job.session_id}/{job.id}.mp4"
        try:
            await asyncio.to_thread(self.storage.write_file, str(final_path), key)
            return await asyncio.to_thread(self.storage.url_for, key)
        except Exception as exc:
            raise StorageError(f"Failed to publish video: {exc}") from exc

    def _remove_segment_files(self, segments: Sequence[Segment]) -> None:
        if self.settings.KEEP_WORK_FILES:
            return
        for segment in segments:
            if segment.artifact_path:
                with contextlib.suppress(FileNotFoundError):
                    Path(segment.artifact_path).unlink()

    def _fail(self, job: ProcessingJob, message: str) -> None:
        job.status = "failed"
        job.error = message
        job.current_step = "Failed"
        job.completed_at = utcnow()
        self._save(job, "job_failed")
        self._set_session_status(job.session_id, "failed")

    async def _job_exec(self, job: ProcessingJob) -> None:
        cancel_ev = self._cancels[job.id]
        segments: List[Segment] = []
        work_dir = self._work_dir(job.id)

        try:
            session = self.store.get_session(job.session_id)
            if session is None:
                raise SessionNotFound(f"Session {job.session_id} not found")
            segments = build_segments(session.id, session.comments, self.settings.SEGMENT_WINDOW_MS)
            if not segments:
                raise ValidationError("No comments to process")
            job.segment_count = len(segments)
            self._set_stage(job, 5, f"Built {len(segments)} segments")
            self._ensure_not_cancelled(cancel_ev)

            self._set_stage(job, 10, "Authenticating with feed provider")
            provider_session = await self.locator.authenticate(self._credentials_for_job())
            self._set_stage(job, 20, "Locating rink feed")
            self._ensure_not_cancelled(cancel_ev)

            feed = await self.locator.locate(
                provider_session, session.rink_location.provider_id, session.local_game_date
            )
            total = len(segments)
            self._set_stage(job, 50, f"Downloading {total} segments")
            self._ensure_not_cancelled(cancel_ev)

            fetcher = SegmentFetcher(
                self.provider,
                work_dir / "segments",
                concurrency=self.settings.FETCH_CONCURRENCY,
                max_attempts=self.settings.PROVIDER_MAX_RETRIES,
                backoff_base=self.settings.PROVIDER_BACKOFF_BASE_SEC,
            )
            done = 0

            def _segment_done(_segment: Segment) -> None:
                nonlocal done
                done += 1
                self._set_stage(job, 50 + (30 * done) // total, f"Downloaded {done}/{total} segments")

            await fetcher.fetch_all(feed, segments, _segment_done)
            self._ensure_not_cancelled(cancel_ev)

            assembler = VideoAssembler(self.encoder, caption_ms=self.settings.CAPTION_DURATION_MS)
            self._set_stage(job, 80, "Stitching video segments")
            stitched = await assembler.stitch(segments, work_dir / "stitched.mp4")
            job.stitched_path = str(stitched)
            self._ensure_not_cancelled(cancel_ev)

            self._set_stage(job, 90, "Adding comment overlays")
            final = await assembler.overlay(stitched, segments, work_dir / "final.mp4")
            self._ensure_not_cancelled(cancel_ev)

            self._set_stage(job, 95, "Publishing video")
            output_url = await self._publish(job, final)

            job.status = "completed"
            job.progress = 100
            job.current_step = "Completed"
            job.output_url = output_url
            job.completed_at = utcnow()
            self._save(job, "job_completed")
            self._set_session_status(job.session_id, "completed", output_url=output_url)
            self._remove_segment_files(segments)
            logger.info("job_complete", extra={"output_url": output_url})
        except JobCancelled:
            job.status = "cancelled"
            job.current_step = "Cancelled"
            job.completed_at = utcnow()
            self._save(job, "job_cancelled")
            self._set_session_status(job.session_id, "active")
            self._remove_segment_files(segments)
            logger.info("job_cancelled", extra={"while": "running"})
        except RinkReelError as exc:
            logger.exception("job_failed", extra={"error": str(exc)})
            self._fail(job, str(exc))
        except Exception as exc:
            logger.exception("job_failed", extra={"error": str(exc)})
            self._fail(job, str(InternalError(f"Unexpected error: {exc}")))

    async def _notify(self, job: ProcessingJob) -> None:
        url = self.settings.webhook_url
        if not url:
            return
        payload = {"event": f"job_{job.status}", "job": job.model_dump(mode="json")}
        try:
            await asyncio.to_thread(self.notifier, url, payload, self.settings.webhook_hmac_secret)
        except Exception:
            logger.exception("webhook_error", extra={"job_id": job.id})

    def _notify_later(self, job: ProcessingJob) -> None:
        if not self.settings.webhook_url:
            return
        task = asyncio.get_running_loop().create_task(self._notify(job.model_copy(deep=True)))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_one(self, job_id: str) -> None:
        job = self.store.get_job(job_id)
        if job is None or job.status != "queued":
            logger.info("job_skipped", extra={"job_id": job_id, "status": job.status if job else None})
            return

        # claim the job before the first await so a concurrent cancel() sees it running
        self._cancels[job_id] = asyncio.Event()
        job.status = "running"
        job.started_at = utcnow()
        job.current_step = "Starting"
        self._save(job, "job_started")
        self._set_session_status(job.session_id, "processing")

        token = bind_job_context(job_id)
        logger.info("job_started", extra={"session_id": job.session_id})
        limit = float(self.settings.JOB_WATCHDOG_SECONDS)
        try:
            await asyncio.wait_for(self._job_exec(job), timeout=limit)
        except asyncio.TimeoutError:
            logger.error("job_timeout", extra={"limit": limit})
            self._fail(job, f"Job time limit exceeded: {int(limit)}s")
        finally:
            self._cancels.pop(job_id, None)
            reset_job_context(token)

        if job.is_terminal:
            self._notify_later(job)
