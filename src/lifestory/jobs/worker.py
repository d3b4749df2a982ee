"""Worker that consumes biography jobs from a queue.

Each claimed job gets exactly one pipeline attempt. Success completes the
job; any exception is reported to the queue, which decides between a
delayed retry and terminal failure. Up to ``concurrency`` jobs run at the
same time in background threads; each job's stages stay sequential.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from lifestory.jobs.models import (
    TERMINAL_STATES,
    BiographyJobPayload,
    Job,
    JobStatusView,
    RetryPolicy,
    SubmissionResponse,
)
from lifestory.jobs.pipeline import BiographyPipeline
from lifestory.jobs.queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class WorkerRunSummary:
    """Counters for one draining run."""

    processed: int = 0
    succeeded: int = 0
    failed_attempts: int = 0
    waits: int = 0


class BiographyWorker:
    """Executes queued jobs through a :class:`BiographyPipeline`.

    Attributes:
        queue: Source of jobs.
        pipeline: Pipeline run once per attempt.
        concurrency: Background threads started by :meth:`start`.
        poll_interval_seconds: Idle wait of a background thread.
    """

    def __init__(
        self,
        queue: JobQueue,
        pipeline: BiographyPipeline,
        concurrency: int = 2,
        poll_interval_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def run_job(self, job: Job) -> bool:
        """Run one attempt of ``job``. Returns True when it succeeded."""
        logger.info(f"Running job {job.id} (attempt {job.attempts_made}/{job.retry_policy.attempts})")

        def report(progress: int) -> None:
            self.queue.update_progress(job.id, progress, claim_token=job.claim_token)

        try:
            result = self.pipeline.run(job.payload, progress=report, label=f"job {job.id}")
        except Exception as e:
            self.queue.fail_attempt(job.id, str(e), claim_token=job.claim_token)
            return False

        self.queue.complete(job.id, result, claim_token=job.claim_token)
        return True

    def process_until_idle(self) -> WorkerRunSummary:
        """Run jobs one at a time until nothing is queued or waiting.

        Waits out retry backoffs with the worker's ``sleep``.
        """
        summary = WorkerRunSummary()
        while True:
            job = self.queue.claim_next()
            if job is not None:
                summary.processed += 1
                if self.run_job(job):
                    summary.succeeded += 1
                else:
                    summary.failed_attempts += 1
                continue

            wait = self.queue.next_ready_in()
            if wait is None:
                return summary
            if wait > 0:
                summary.waits += 1
                self._sleep(wait)

    # -------------------------------------------------------------------------
    # Background mode
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._poll_loop, name=f"biography-worker-{i}", daemon=True)
            for i in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Worker started with concurrency {self.concurrency}")

    def stop(self, timeout: float | None = None) -> None:
        """Stop polling and wait for running attempts to finish."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Worker stopped")

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            job = self.queue.claim_next()
            if job is None:
                self._stop_event.wait(self.poll_interval_seconds)
                continue
            try:
                self.run_job(job)
            except Exception:
                # A queue error on one job must not stop this thread
                logger.exception(f"Worker failed to record the outcome of job {job.id}")


# =============================================================================
# Submission surface
# =============================================================================


def submit_biography_job(
    queue: JobQueue,
    request: BiographyJobPayload,
    retry_policy: RetryPolicy | None = None,
) -> SubmissionResponse:
    """Enqueue a generation request and return its id and state."""
    job = queue.enqueue(request, retry_policy)
    return SubmissionResponse(job_id=job.id, status=job.state)


def get_job_status(queue: JobQueue, job_id: str) -> JobStatusView:
    """Status poll: state, progress and either the result or the failure.

    Raises:
        JobNotFoundError: If the job does not exist.
    """
    return queue.get_status(job_id)


def is_finished(status: JobStatusView) -> bool:
    return status.status in TERMINAL_STATES
