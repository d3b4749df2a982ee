"""The biography pipeline: one full generation run for one user.

Stages run strictly in sequence, each reporting a progress checkpoint
when it is done:

    10  timeline built
    30  events categorized
    50  sentiment attached (only when requested)
    70  chapters generated
    90  narrative written
   100  complete

A failure in any stage is raised as :class:`PipelineError` naming the
stage. Nothing is resumed from a checkpoint: a retry reruns every stage.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from lifestory.biography.chapters import ChapterSegmenter
from lifestory.biography.narrative import NarrativeGenerator
from lifestory.core.timeline import TimelineConstructor
from lifestory.enrichment.categorization import CategorizationService
from lifestory.enrichment.sentiment import SentimentService
from lifestory.jobs.models import BiographyJobPayload, BiographyJobResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

PROGRESS_TIMELINE = 10
PROGRESS_CATEGORIZED = 30
PROGRESS_SENTIMENT = 50
PROGRESS_CHAPTERS = 70
PROGRESS_NARRATIVE = 90
PROGRESS_COMPLETE = 100


class PipelineError(Exception):
    """A pipeline stage failed.

    Attributes:
        stage: Name of the failing stage.
        message: Description including the underlying error message.
        original_error: The exception raised by the stage.
    """

    def __init__(self, stage: str, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


class ProgressReporter:
    """Best-effort progress reporting scoped to one pipeline run.

    Reports never raise: a failing callback is logged and the run goes on.
    Values lower than the last reported one are not forwarded.

    Example:
        >>> with ProgressReporter(queue_callback, label="job_1") as report:
        ...     report(10)
    """

    def __init__(self, callback: ProgressCallback | None, label: str = "") -> None:
        self.callback = callback
        self.label = label
        self.last_reported = 0
        self.failures = 0

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.failures:
            logger.warning(f"{self.label}: {self.failures} progress update(s) failed")
        return False

    def __call__(self, progress: int) -> None:
        if progress < self.last_reported:
            return
        self.last_reported = progress
        if self.callback is None:
            return
        try:
            self.callback(progress)
        except Exception as e:
            self.failures += 1
            logger.warning(f"{self.label}: progress update to {progress}% failed: {e}")


class BiographyPipeline:
    """Runs timeline, enrichment, segmentation and narrative for one payload."""

    def __init__(
        self,
        constructor: TimelineConstructor,
        categorizer: CategorizationService,
        sentiment: SentimentService,
        segmenter: ChapterSegmenter,
        narrator: NarrativeGenerator,
    ) -> None:
        self.constructor = constructor
        self.categorizer = categorizer
        self.sentiment = sentiment
        self.segmenter = segmenter
        self.narrator = narrator

    def run(
        self,
        payload: BiographyJobPayload,
        progress: ProgressCallback | None = None,
        label: str = "",
    ) -> BiographyJobResult:
        """Generate a biography for ``payload``.

        Raises:
            PipelineError: If any stage fails.
        """
        started = time.perf_counter()
        options = payload.options
        label = label or f"user {payload.user_id}"
        logger.info(f"Starting biography generation for {label}")

        with ProgressReporter(progress, label) as report:
            with _stage("timeline"):
                timeline = self.constructor.construct_timeline(payload.user_id)
            report(PROGRESS_TIMELINE)

            with _stage("categorization"):
                self.constructor.enrich_timeline(timeline, self.categorizer)
            report(PROGRESS_CATEGORIZED)

            if options.include_sentiment:
                with _stage("sentiment"):
                    self.sentiment.generate_mood_timeline(timeline.events)
                report(PROGRESS_SENTIMENT)

            with _stage("chapters"):
                chapters = self.segmenter.generate_chapters(timeline, options.chapter_options)
            report(PROGRESS_CHAPTERS)

            with _stage("narrative"):
                biography = self.narrator.generate_biography(
                    chapters,
                    timeline,
                    payload.style,
                    payload.tone,
                    include_media=options.include_media,
                )
            report(PROGRESS_NARRATIVE)

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            result = BiographyJobResult(
                biography_id=biography.id,
                total_words=biography.metadata.total_words,
                total_chapters=biography.metadata.total_chapters,
                cost=biography.metadata.cost,
                generation_time_ms=elapsed_ms,
                biography=biography,
            )
            report(PROGRESS_COMPLETE)

        logger.info(
            f"Biography {biography.id} complete for {label}: "
            f"{result.total_chapters} chapters, {result.total_words} words, {elapsed_ms}ms"
        )
        return result


@contextmanager
def _stage(name: str) -> Iterator[None]:
    """Re-raise any failure inside the block as a PipelineError for ``name``."""
    logger.debug(f"Pipeline stage '{name}' started")
    try:
        yield
    except PipelineError:
        raise
    except Exception as e:
        raise PipelineError(name, f"{name} failed: {e}", e) from e
