"""Job queue contract and the in-process implementation.

State machine::

    QUEUED ──claim──▶ ACTIVE ──complete──▶ COMPLETED
                        │
                        └─fail_attempt─▶ DELAYED ──(backoff)──▶ ACTIVE ...
                                    └──▶ FAILED (attempts exhausted)

    QUEUED / DELAYED / ACTIVE ──cancel──▶ CANCELLED
    FAILED / CANCELLED ──retry──▶ QUEUED

The backoff after failed attempt ``n`` is ``base * 2 ** (n - 1)``: with the
defaults, 5s after the first failure and 10s after the second.

Progress only moves forward within one attempt and resets to zero when a
new attempt starts. A cancelled job that is still running is allowed to
finish its current call, but its outcome is discarded and it is not
retried automatically. Every claim carries a ``claim_token``; outcomes
reported with a token that no longer owns the job (the job was cancelled
and re-queued meanwhile) are dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Protocol

from lifestory.core.models import utcnow
from lifestory.jobs.models import (
    BiographyJobPayload,
    BiographyJobResult,
    Job,
    JobError,
    JobNotFoundError,
    JobState,
    JobStatusView,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "biography-generation"


class JobQueue(Protocol):
    """What the worker and the submission surface need from a queue."""

    name: str

    def enqueue(self, payload: BiographyJobPayload, retry_policy: RetryPolicy | None = None) -> Job:
        ...

    def claim_next(self) -> Job | None:
        ...

    def next_ready_in(self) -> float | None:
        ...

    def update_progress(self, job_id: str, progress: int, claim_token: int | None = None) -> int:
        ...

    def complete(
        self, job_id: str, result: BiographyJobResult, claim_token: int | None = None
    ) -> Job:
        ...

    def fail_attempt(self, job_id: str, reason: str, claim_token: int | None = None) -> Job:
        ...

    def cancel(self, job_id: str) -> Job:
        ...

    def get_job(self, job_id: str) -> Job:
        ...

    def get_status(self, job_id: str) -> JobStatusView:
        ...


class InMemoryJobQueue:
    """Thread-safe queue held in process memory.

    Jobs are claimed in submission order. Callers always receive copies;
    the queue's own records change only through its methods.

    Attributes:
        name: Queue name stamped on every job.
        default_retry_policy: Policy for jobs enqueued without one.
    """

    def __init__(
        self,
        name: str = DEFAULT_QUEUE_NAME,
        default_retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.default_retry_policy = default_retry_policy or RetryPolicy()
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def enqueue(
        self, payload: BiographyJobPayload, retry_policy: RetryPolicy | None = None
    ) -> Job:
        job = Job(
            queue_name=self.name,
            payload=payload,
            retry_policy=retry_policy or self.default_retry_policy,
        )
        with self._lock:
            self._jobs[job.id] = job
        logger.info(f"Enqueued job {job.id} for user {payload.user_id} on '{self.name}'")
        return job.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def claim_next(self) -> Job | None:
        """Move the oldest ready job to ACTIVE and return it, if any."""
        now = self._clock()
        with self._lock:
            for job in self._jobs.values():
                ready = job.state == JobState.QUEUED or (
                    job.state == JobState.DELAYED and (job.run_after or 0.0) <= now
                )
                if not ready:
                    continue
                job.state = JobState.ACTIVE
                job.attempts_made += 1
                job.claim_token += 1
                job.progress = 0
                job.run_after = None
                job.processed_at = utcnow()
                logger.debug(f"Claimed job {job.id} (attempt {job.attempts_made})")
                return job.model_copy(deep=True)
        return None

    def next_ready_in(self) -> float | None:
        """Seconds until the next delayed job is ready; None when none wait."""
        now = self._clock()
        with self._lock:
            if any(job.state == JobState.QUEUED for job in self._jobs.values()):
                return 0.0
            waits = [
                max(0.0, (job.run_after or 0.0) - now)
                for job in self._jobs.values()
                if job.state == JobState.DELAYED
            ]
        return min(waits) if waits else None

    def _is_stale(self, job: Job, claim_token: int | None) -> bool:
        """True when an outcome belongs to an attempt that no longer owns the job."""
        if claim_token is None:
            return False
        return job.state != JobState.ACTIVE or job.claim_token != claim_token

    def update_progress(self, job_id: str, progress: int, claim_token: int | None = None) -> int:
        """Raise the progress of an ACTIVE job; lower values are ignored.

        Returns:
            The stored progress after the update.
        """
        with self._lock:
            job = self._get(job_id)
            if job.state == JobState.ACTIVE and not self._is_stale(job, claim_token):
                job.progress = max(job.progress, min(100, max(0, int(progress))))
            return job.progress

    def complete(
        self, job_id: str, result: BiographyJobResult, claim_token: int | None = None
    ) -> Job:
        """Store the result of the attempt holding ``claim_token``.

        Outcomes of a superseded attempt, or of a cancelled job, are
        discarded.
        """
        with self._lock:
            job = self._get(job_id)
            if job.state == JobState.CANCELLED or self._is_stale(job, claim_token):
                logger.info(f"Job {job_id} attempt finished after cancellation; result discarded")
                return job.model_copy(deep=True)
            if job.state != JobState.ACTIVE:
                raise JobError(f"Cannot complete job in state {job.state.value}", job_id)
            job.state = JobState.COMPLETED
            job.progress = 100
            job.result = result
            job.failure_reason = None
            job.finished_at = utcnow()
            logger.info(f"Job {job_id} completed after {job.attempts_made} attempt(s)")
            return job.model_copy(deep=True)

    def fail_attempt(self, job_id: str, reason: str, claim_token: int | None = None) -> Job:
        """Record a failed attempt and schedule a retry or fail the job."""
        with self._lock:
            job = self._get(job_id)
            if self._is_stale(job, claim_token):
                logger.info(f"Job {job_id} attempt failed after cancellation; ignored: {reason}")
                return job.model_copy(deep=True)
            job.failure_reason = reason
            if job.state == JobState.CANCELLED:
                return job.model_copy(deep=True)
            if job.state != JobState.ACTIVE:
                raise JobError(f"Cannot fail job in state {job.state.value}", job_id)

            policy = job.retry_policy
            if job.attempts_made < policy.attempts:
                delay = policy.delay_for(job.attempts_made)
                job.state = JobState.DELAYED
                job.run_after = self._clock() + delay
                job.backoff_delays.append(delay)
                logger.warning(
                    f"Job {job_id} attempt {job.attempts_made}/{policy.attempts} failed, "
                    f"retrying in {delay:.1f}s: {reason}"
                )
            else:
                job.state = JobState.FAILED
                job.finished_at = utcnow()
                logger.error(f"Job {job_id} failed after {job.attempts_made} attempt(s): {reason}")
            return job.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Management
    # -------------------------------------------------------------------------

    def cancel(self, job_id: str) -> Job:
        with self._lock:
            job = self._get(job_id)
            if job.state in (JobState.COMPLETED, JobState.FAILED):
                raise JobError(f"Cannot cancel job in state {job.state.value}", job_id)
            job.state = JobState.CANCELLED
            job.run_after = None
            job.finished_at = utcnow()
            logger.info(f"Job {job_id} cancelled")
            return job.model_copy(deep=True)

    def retry(self, job_id: str) -> Job:
        """Re-queue a FAILED or CANCELLED job with a fresh attempt budget."""
        with self._lock:
            job = self._get(job_id)
            if job.state not in (JobState.FAILED, JobState.CANCELLED):
                raise JobError(f"Cannot retry job in state {job.state.value}", job_id)
            job.state = JobState.QUEUED
            job.attempts_made = 0
            job.progress = 0
            job.failure_reason = None
            job.backoff_delays = []
            job.finished_at = None
            logger.info(f"Job {job_id} re-queued")
            return job.model_copy(deep=True)

    def remove(self, job_id: str) -> None:
        with self._lock:
            job = self._get(job_id)
            if job.state == JobState.ACTIVE:
                raise JobError("Cannot remove an active job", job_id)
            del self._jobs[job_id]

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            return self._get(job_id).model_copy(deep=True)

    def get_status(self, job_id: str) -> JobStatusView:
        with self._lock:
            job = self._get(job_id)
            return JobStatusView(
                job_id=job.id,
                status=job.state,
                progress=job.progress,
                attempts_made=job.attempts_made,
                result=job.result.model_copy(deep=True) if job.result else None,
                failure_reason=job.failure_reason if job.state != JobState.COMPLETED else None,
            )

    def get_metrics(self) -> dict[str, int]:
        """Job count per state plus the total."""
        with self._lock:
            metrics = {state.value: 0 for state in JobState}
            for job in self._jobs.values():
                metrics[job.state.value] += 1
            metrics["total"] = len(self._jobs)
        return metrics
