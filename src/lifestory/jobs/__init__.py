"""Biography jobs: queue, pipeline and worker."""

from lifestory.jobs.models import (
    BiographyJobPayload,
    BiographyJobResult,
    GenerationOptions,
    Job,
    JobError,
    JobNotFoundError,
    JobState,
    JobStatusView,
    RetryPolicy,
    SubmissionResponse,
)
from lifestory.jobs.pipeline import BiographyPipeline, PipelineError, ProgressReporter
from lifestory.jobs.queue import InMemoryJobQueue, JobQueue
from lifestory.jobs.worker import BiographyWorker, get_job_status, submit_biography_job

__all__ = [
    "BiographyJobPayload",
    "BiographyJobResult",
    "BiographyPipeline",
    "BiographyWorker",
    "GenerationOptions",
    "InMemoryJobQueue",
    "Job",
    "JobError",
    "JobNotFoundError",
    "JobQueue",
    "JobState",
    "JobStatusView",
    "PipelineError",
    "ProgressReporter",
    "RetryPolicy",
    "SubmissionResponse",
    "get_job_status",
    "submit_biography_job",
]
