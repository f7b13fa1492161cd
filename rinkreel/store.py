"""Session store: CRUD access to sessions, their comments, and job records."""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol

from .errors import SessionNotFound
from .schemas import Comment, ProcessingJob, Session, SessionStatus, utcnow


class SessionStore(Protocol):
    """Persistence used by the job runner. Each call is individually atomic."""

    def create_session(self, session: Session) -> Session:
        ...

    def get_session(self, session_id: str) -> Optional[Session]:
        ...

    def list_sessions(self) -> List[Session]:
        ...

    def update_session_status(
        self, session_id: str, status: SessionStatus, *, output_url: Optional[str] = None
    ) -> Session:
        ...

    def delete_session(self, session_id: str) -> bool:
        ...

    def add_comment(self, session_id: str, comment: Comment) -> Comment:
        ...

    def save_job(self, job: ProcessingJob) -> None:
        ...

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        ...

    def list_jobs(self) -> List[ProcessingJob]:
        ...

    def active_job_for_session(self, session_id: str) -> Optional[ProcessingJob]:
        ...


class InMemorySessionStore:
    """Dictionary-backed store.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._jobs: Dict[str, ProcessingJob] = {}

    def create_session(self, session: Session) -> Session:
        self._sessions[session.id] = session.model_copy(deep=True)
        return session.model_copy(deep=True)

    def get_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def list_sessions(self) -> List[Session]:
        sessions = sorted(self._sessions.values(), key=lambda item: item.created_at, reverse=True)
        return [session.model_copy(deep=True) for session in sessions]

    def update_session_status(
        self, session_id: str, status: SessionStatus, *, output_url: Optional[str] = None
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        session.status = status
        if output_url is not None:
            session.output_url = output_url
        session.updated_at = utcnow()
        return session.model_copy(deep=True)

    def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def add_comment(self, session_id: str, comment: Comment) -> Comment:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        session.comments.append(comment.model_copy(deep=True))
        session.updated_at = utcnow()
        return comment

    def save_job(self, job: ProcessingJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def list_jobs(self) -> List[ProcessingJob]:
        jobs = sorted(self._jobs.values(), key=lambda item: item.started_at, reverse=True)
        return [job.model_copy(deep=True) for job in jobs]

    def active_job_for_session(self, session_id: str) -> Optional[ProcessingJob]:
        for job in self._jobs.values():
            if job.session_id == session_id and job.status in ("queued", "running"):
                return job.model_copy(deep=True)
        return None
