"""Structured logging utilities with job-level context."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

_JOB_ID: ContextVar[Optional[str]] = ContextVar("job_id", default=None)

_DEFAULT_LOG_KEYS: Iterable[str] = (
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
)


class JsonFormatter(logging.Formatter):
    """Emit log records as JSON with contextual metadata."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "msg": record.getMessage(),
            "module": record.name,
        }

        job_id = getattr(record, "job_id", None) or _JOB_ID.get()
        if job_id:
            payload["job_id"] = job_id

        for key, value in record.__dict__.items():
            if key in _DEFAULT_LOG_KEYS or key == "job_id":
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level_name: str) -> None:
    """Configure root logging to emit structured JSON lines."""

    level = getattr(logging, level_name.upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def bind_job_context(job_id: str) -> Token:
    """Bind the running job for downstream log records."""

    return _JOB_ID.set(job_id)


def reset_job_context(token: Optional[Token]) -> None:
    if token is not None:
        _JOB_ID.reset(token)

