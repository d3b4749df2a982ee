"""Tests for the biography pipeline and progress reporting."""

from unittest.mock import MagicMock

import pytest

from lifestory.core.models import BiographyCategory
from lifestory.jobs.models import BiographyJobPayload, GenerationOptions
from lifestory.jobs.pipeline import PipelineError, ProgressReporter


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_forwards_values(self):
        seen = []
        reporter = ProgressReporter(seen.append)

        reporter(10)
        reporter(30)

        assert seen == [10, 30]

    def test_drops_lower_values(self):
        seen = []
        reporter = ProgressReporter(seen.append)

        reporter(50)
        reporter(30)

        assert seen == [50]

    def test_callback_errors_swallowed(self):
        callback = MagicMock(side_effect=RuntimeError("queue gone"))

        with ProgressReporter(callback, label="job_1") as reporter:
            reporter(10)
            reporter(30)

        assert callback.call_count == 2
        assert reporter.failures == 2

    def test_no_callback(self):
        reporter = ProgressReporter(None)

        reporter(70)

        assert reporter.last_reported == 70


class TestBiographyPipeline:
    """Tests for BiographyPipeline.run."""

    def test_progress_checkpoints(self, services):
        seen = []

        result = services.pipeline.run(BiographyJobPayload(user_id="user-1"), progress=seen.append)

        assert seen == [10, 30, 50, 70, 90, 100]
        assert result.total_chapters == 2
        assert result.biography.metadata.total_chapters == 2
        assert result.total_words == result.biography.metadata.total_words

    def test_sentiment_skipped(self, services, scripted_backend):
        seen = []
        payload = BiographyJobPayload(
            user_id="user-1", options=GenerationOptions(include_sentiment=False)
        )

        services.pipeline.run(payload, progress=seen.append)

        assert seen == [10, 30, 70, 90, 100]
        assert scripted_backend.count("sentiment") == 0

    def test_events_enriched(self, services, career_events):
        services.pipeline.run(BiographyJobPayload(user_id="user-1"))

        assert all(e.category == BiographyCategory.CAREER for e in career_events)
        assert all(e.sentiment is not None for e in career_events)

    def test_stage_failure_named(self, services, scripted_backend):
        scripted_backend.fail("sentiment", 1)

        with pytest.raises(PipelineError) as exc_info:
            services.pipeline.run(BiographyJobPayload(user_id="user-1"))

        assert exc_info.value.stage == "sentiment"
        assert exc_info.value.original_error is not None
        assert str(exc_info.value).startswith("sentiment failed:")

    def test_timeline_failure(self, services):
        services.constructor.event_store = MagicMock()
        services.constructor.event_store.fetch_events.side_effect = OSError("disk gone")

        with pytest.raises(PipelineError) as exc_info:
            services.pipeline.run(BiographyJobPayload(user_id="user-1"))

        assert exc_info.value.stage == "timeline"

    def test_unusable_categorization_still_completes(self, services, scripted_backend):
        """Unparseable categorization replies fall back and the run finishes."""
        scripted_backend.overrides["categorize"] = "Sorry, I cannot help with that {"
        seen = []

        result = services.pipeline.run(BiographyJobPayload(user_id="user-1"), progress=seen.append)

        assert seen[-1] == 100
        assert result.biography is not None

    def test_no_ai_titles(self, services, scripted_backend):
        options = GenerationOptions(chapter_options={"use_ai": False})

        result = services.pipeline.run(BiographyJobPayload(user_id="user-1", options=options))

        assert scripted_backend.count("title") == 0
        assert result.biography.chapters[0].title == "Career Journey - 2020"
