"""Group a session's comments into the video windows that get downloaded."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .errors import ValidationError
from .schemas import Comment, Segment

DEFAULT_WINDOW_MS = 30_000


def build_segments(
    session_id: str,
    comments: Iterable[Comment],
    window_ms: int = DEFAULT_WINDOW_MS,
) -> List[Segment]:
    """Cluster comments into fixed-length, non-overlapping segments.

    Comments are ordered by timestamp; ``sorted`` is stable so comments that
    share a timestamp keep the order they were recorded in. Each segment runs
    ``window_ms`` from its first comment. A comment on the end boundary still joins
    the open segment; only one past it starts the next. Windows are never
    stretched by later comments.
    """

    if window_ms <= 0:
        raise ValidationError(f"Segment window must be positive, got {window_ms}ms")

    ordered = sorted(comments, key=lambda comment: comment.timestamp)

    segments: List[Segment] = []
    current: Optional[Segment] = None
    for comment in ordered:
        if current is not None and comment.timestamp <= current.end_ms:
            current.comments.append(comment)
            continue
        current = Segment(
            id=f"segment_{comment.id}",
            session_id=session_id,
            start_ms=comment.timestamp,
            end_ms=comment.timestamp + window_ms,
            comments=[comment],
        )
        segments.append(current)

    return segments
