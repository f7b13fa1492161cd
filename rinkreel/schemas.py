from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

SessionStatus = Literal["active", "processing", "completed", "failed"]
SegmentStatus = Literal["pending", "downloading", "downloaded", "failed"]
JobStatus = Literal["queued", "running", "completed", "failed", "cancelled"]

TERMINAL_JOB_STATUSES = frozenset({"completed", "failed", "cancelled"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Position(BaseModel):
    x: float
    y: float


class RinkLocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    address: str = ""
    provider_id: str = Field(validation_alias=AliasChoices("provider_id", "livebarnId", "livebarn_id"))
    timezone: str = "UTC"


class Comment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    timestamp: int = Field(ge=0, description="Milliseconds from recording start.")
    text: str
    author: str = ""
    game_time: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("game_time", "gameTime")
    )
    position: Optional[Position] = None
    color: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utcnow, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: datetime = Field(
        default_factory=utcnow, validation_alias=AliasChoices("updated_at", "updatedAt")
    )


class Session(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    rink_location: RinkLocation = Field(
        validation_alias=AliasChoices("rink_location", "rinkLocation")
    )
    game_date: datetime = Field(validation_alias=AliasChoices("game_date", "gameDate"))
    home_team: str = Field(validation_alias=AliasChoices("home_team", "homeTeam"))
    away_team: str = Field(validation_alias=AliasChoices("away_team", "awayTeam"))
    comments: List[Comment] = Field(default_factory=list)
    status: SessionStatus = "active"
    output_url: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utcnow, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: datetime = Field(
        default_factory=utcnow, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @property
    def local_game_date(self) -> date:
        """Calendar date of the game at the rink, used to pick the provider feed."""

        if self.game_date.tzinfo is None:
            return self.game_date.date()
        try:
            tz = ZoneInfo(self.rink_location.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return self.game_date.date()
        return self.game_date.astimezone(tz).date()


class Segment(BaseModel):
    id: str
    session_id: str
    start_ms: int = Field(ge=0)
    end_ms: int
    status: SegmentStatus = "pending"
    artifact_path: Optional[str] = None
    comments: List[Comment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_positive_window(self):
        if self.end_ms <= self.start_ms:
            raise ValueError("segment end must be after its start")
        return self

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def start_sec(self) -> float:
        return self.start_ms / 1000.0

    @property
    def end_sec(self) -> float:
        return self.end_ms / 1000.0


class ProcessingJob(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    status: JobStatus = "queued"
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str = "Queued for processing"
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    output_url: Optional[str] = None
    stitched_path: Optional[str] = None
    segment_count: int = 0

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, value):
        return max(0, min(100, int(value)))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class FeedHandle(BaseModel):
    feed_id: str
    url: str
    rink_id: str
    game_date: date


class ProviderSession(BaseModel):
    token: str
    issued_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at


class Credentials(BaseModel):
    email: str
    password: str


class Caption(BaseModel):
    start_ms: int
    end_ms: int
    text: str


class MediaInfo(BaseModel):
    duration_ms: int
    resolution: str
    size_bytes: int
