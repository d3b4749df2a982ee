"""Domain models for the biography job queue."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from lifestory.biography.chapters import ChapterOptions
from lifestory.core.models import Biography, NarrativeStyle, NarrativeTone, new_id, utcnow


class JobState(str, Enum):
    """Job lifecycle states.

    DELAYED is a job waiting out its retry backoff before it may become
    ACTIVE again.
    """

    QUEUED = "queued"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})


class GenerationOptions(BaseModel):
    include_media: bool = True
    include_sentiment: bool = True
    chapter_options: ChapterOptions = Field(default_factory=ChapterOptions)


class BiographyJobPayload(BaseModel):
    """What a client submits to request a biography."""

    user_id: str = Field(min_length=1)
    style: NarrativeStyle = NarrativeStyle.CHRONOLOGICAL
    tone: NarrativeTone = NarrativeTone.CONVERSATIONAL
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class RetryPolicy(BaseModel):
    """Attempt cap and exponential backoff.

    Attributes:
        attempts: Total attempts, including the first.
        backoff_delay_seconds: Delay before the first retry.
        backoff_type: Only ``"exponential"`` (delay doubles per attempt).
    """

    attempts: int = Field(default=3, ge=1)
    backoff_delay_seconds: float = Field(default=5.0, ge=0.0)
    backoff_type: Literal["exponential"] = "exponential"

    def delay_for(self, attempt: int) -> float:
        """Backoff after failed attempt number ``attempt`` (1-based)."""
        return self.backoff_delay_seconds * (2 ** max(attempt - 1, 0))


class BiographyJobResult(BaseModel):
    biography_id: str
    total_words: int
    total_chapters: int
    cost: float
    generation_time_ms: int
    biography: Biography | None = None


class Job(BaseModel):
    """One queued, retryable execution of the biography pipeline."""

    id: str = Field(default_factory=lambda: new_id("job"))
    queue_name: str
    payload: BiographyJobPayload
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    state: JobState = JobState.QUEUED
    progress: int = 0
    attempts_made: int = 0
    # Incremented on every claim; retry() does not reset it
    claim_token: int = 0
    result: BiographyJobResult | None = None
    failure_reason: str | None = None
    backoff_delays: list[float] = Field(default_factory=list)
    run_after: float | None = None
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: datetime | None = None
    finished_at: datetime | None = None


class JobStatusView(BaseModel):
    """What a status poll returns."""

    job_id: str
    status: JobState
    progress: int
    attempts_made: int = 0
    result: BiographyJobResult | None = None
    failure_reason: str | None = None


class SubmissionResponse(BaseModel):
    job_id: str
    status: JobState


class JobError(Exception):
    """A queue operation is not allowed in the job's current state."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class JobNotFoundError(JobError):
    """No job with the given id exists."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}", job_id)
