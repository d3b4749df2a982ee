"""Tests for narrative generation.

Tests cover:
- Full biography assembly, titles and cost accounting
- Per-step fallbacks for chapters, introduction and conclusion
- Chapter title generation errors
- Media placement heuristic
"""

import json

import pytest

from lifestory.biography.narrative import NarrativeGenerationError, NarrativeGenerator
from lifestory.core.models import (
    BiographyCategory,
    BiographyChapter,
    ChapterMetadata,
    NarrativeStyle,
    NarrativeTone,
)

CHAPTER_TEXT = "The launch party at the office marked a turning point in this busy season."


def make_chapter(events, title="Career Journey - 2020") -> BiographyChapter:
    return BiographyChapter(
        title=title,
        start_date=events[0].timestamp,
        end_date=events[-1].timestamp,
        event_ids=[e.id for e in events],
        summary="A busy stretch of work.",
        dominant_category=BiographyCategory.CAREER,
        significance=len(events),
        metadata=ChapterMetadata(
            event_count=len(events),
            duration_days=(events[-1].timestamp - events[0].timestamp).days,
            ai_generated=False,
        ),
    )


@pytest.fixture
def chapters(sample_timeline):
    return [make_chapter(sample_timeline.events[:6]), make_chapter(sample_timeline.events[6:], "Travel - 2021")]


# =============================================================================
# Biography
# =============================================================================


class TestGenerateBiography:
    """Tests for generate_biography."""

    def test_assembles_in_order(self, gateway, scripted_backend, sample_timeline, chapters):
        biography = NarrativeGenerator(gateway).generate_biography(
            chapters, sample_timeline, NarrativeStyle.CHRONOLOGICAL, NarrativeTone.NOSTALGIC
        )

        kinds = [call[0] for call in scripted_backend.calls]
        assert kinds == ["introduction", "chapter", "chapter", "conclusion"]
        assert biography.title == "My Journey: 2020-2021"
        assert biography.introduction == "Every life is a collection of small beginnings."
        assert biography.conclusion == "And so the story continues beyond these pages."
        assert [c.title for c in biography.chapters] == ["Career Journey - 2020", "Travel - 2021"]
        assert [c.chapter_id for c in biography.chapters] == [c.id for c in chapters]
        assert biography.metadata.total_chapters == 2
        assert biography.metadata.total_words == 28

    def test_cost_is_billed_total(self, gateway, sample_timeline, chapters):
        narrator = NarrativeGenerator(gateway)

        first = narrator.generate_biography(chapters, sample_timeline, NarrativeStyle.REFLECTIVE)
        second = narrator.generate_biography(chapters, sample_timeline, NarrativeStyle.REFLECTIVE)

        assert first.metadata.cost > 0
        assert first.metadata.cost == pytest.approx(gateway.total_cost)
        assert second.metadata.cost == 0.0

    @pytest.mark.parametrize(
        ("style", "title"),
        [
            (NarrativeStyle.REFLECTIVE, "Reflections on a Life: 2020-2021"),
            (NarrativeStyle.THEMATIC, "Themes of My Life: 2020-2021"),
            (NarrativeStyle.DOCUMENTARY, "A Life Documented: 2020-2021"),
            (NarrativeStyle.HIGHLIGHTS, "Milestones and Memories: 2020-2021"),
        ],
    )
    def test_title_per_style(self, sample_timeline, style, title):
        assert NarrativeGenerator.generate_biography_title(sample_timeline, style) == title

    def test_media_disabled(self, gateway, make_event, sample_timeline):
        events = [make_event("m", content="Launch party at the office", media_urls=["https://x/1.jpg"])]
        sample_timeline.events.extend(events)

        biography = NarrativeGenerator(gateway).generate_biography(
            [make_chapter(events)], sample_timeline, NarrativeStyle.CHRONOLOGICAL, include_media=False
        )

        assert biography.chapters[0].media_matches == []
        assert biography.media_count == 0


class TestFallbacks:
    """Backend failures degrade only the failing step."""

    def test_chapter_fallback(self, gateway, scripted_backend, sample_timeline, chapters):
        scripted_backend.fail("chapter", 1)

        biography = NarrativeGenerator(gateway).generate_biography(
            chapters, sample_timeline, NarrativeStyle.CHRONOLOGICAL
        )

        first, second = biography.chapters
        assert first.is_fallback
        assert first.word_count == 100
        assert first.narrative.startswith("During the period from 2020-03-01 to 2020-03-16, 6 significant events")
        assert first.narrative.endswith("A busy stretch of work.")
        assert not second.is_fallback
        assert biography.metadata.total_words == 100 + 14

    def test_introduction_and_conclusion_fallback(self, gateway, scripted_backend, sample_timeline, chapters):
        scripted_backend.fail("introduction", 1)
        scripted_backend.fail("conclusion", 1)

        biography = NarrativeGenerator(gateway).generate_biography(
            chapters, sample_timeline, NarrativeStyle.CHRONOLOGICAL
        )

        assert biography.introduction.startswith("This is the story of a life, captured through 12 moments")
        assert biography.conclusion == (
            "This journey, spanning 2 chapters, represents a life lived with purpose and meaning."
        )

    def test_fallbacks_cost_nothing(self, gateway, scripted_backend, sample_timeline, chapters):
        scripted_backend.fail("*", 10)

        biography = NarrativeGenerator(gateway).generate_biography(
            chapters, sample_timeline, NarrativeStyle.CHRONOLOGICAL
        )

        assert biography.metadata.cost == 0.0
        assert all(c.is_fallback for c in biography.chapters)


class TestChapterTitle:
    """Tests for generate_chapter_title_and_summary."""

    def test_success(self, gateway, career_events):
        title = NarrativeGenerator(gateway).generate_chapter_title_and_summary(
            career_events[:6], BiographyCategory.CAREER
        )

        assert title.title == "Building Something New"
        assert title.summary == "A busy stretch of work."
        assert title.confidence == pytest.approx(0.8)

    def test_uses_title_model(self, gateway, scripted_backend, career_events):
        NarrativeGenerator(gateway, title_model="gemini-1.5-flash").generate_chapter_title_and_summary(
            career_events[:2], BiographyCategory.CAREER
        )

        assert scripted_backend.calls[0][1] == "gemini-1.5-flash"

    def test_missing_confidence_defaults(self, gateway, scripted_backend, career_events):
        scripted_backend.overrides["title"] = json.dumps({"title": "Spring", "summary": "Busy."})

        title = NarrativeGenerator(gateway).generate_chapter_title_and_summary(
            career_events[:2], BiographyCategory.CAREER
        )

        assert title.confidence == 0.5

    def test_empty_events(self, gateway):
        with pytest.raises(NarrativeGenerationError):
            NarrativeGenerator(gateway).generate_chapter_title_and_summary([], BiographyCategory.CAREER)

    def test_unparseable_reply(self, gateway, scripted_backend, career_events):
        scripted_backend.overrides["title"] = "A lovely title"

        with pytest.raises(NarrativeGenerationError):
            NarrativeGenerator(gateway).generate_chapter_title_and_summary(
                career_events[:2], BiographyCategory.CAREER
            )

    def test_gateway_failure(self, gateway, scripted_backend, career_events):
        scripted_backend.fail("title", 1)

        with pytest.raises(NarrativeGenerationError) as exc_info:
            NarrativeGenerator(gateway).generate_chapter_title_and_summary(
                career_events[:2], BiographyCategory.CAREER
            )

        assert exc_info.value.original_error is not None


class TestMediaMatching:
    """Tests for match_media_to_narrative."""

    def test_matches_sorted_by_offset(self, make_event):
        events = [
            make_event("review", content="Office season review", media_urls=["https://x/review.jpg"]),
            make_event("launch", content="Launch party at the office tonight", media_urls=["https://x/launch.jpg"]),
        ]

        matches = NarrativeGenerator.match_media_to_narrative(CHAPTER_TEXT, events)

        assert [m.media_id for m in matches] == ["launch", "review"]
        assert matches[0].placement_index == CHAPTER_TEXT.lower().find("launch")
        assert matches[0].relevance_score == pytest.approx(0.6)
        assert matches[0].media_url == "https://x/launch.jpg"
        assert matches[1].relevance_score == pytest.approx(0.4)

    def test_single_hit_not_enough(self, make_event):
        events = [make_event("p", content="Party time", media_urls=["https://x/p.jpg"])]

        assert NarrativeGenerator.match_media_to_narrative(CHAPTER_TEXT, events) == []

    def test_events_without_media_skipped(self, make_event):
        events = [make_event("p", content="Launch party at the office")]

        assert NarrativeGenerator.match_media_to_narrative(CHAPTER_TEXT, events) == []

    def test_short_words_ignored(self, make_event):
        """Words under five characters never count."""
        events = [make_event("p", content="at the this busy in a", media_urls=["https://x/p.jpg"])]

        assert NarrativeGenerator.match_media_to_narrative(CHAPTER_TEXT, events) == []

    def test_only_first_five_keywords(self, make_event):
        content = "alpha bravo charlie delta echoes launch party office"
        events = [make_event("p", content=content, media_urls=["https://x/p.jpg"])]

        assert NarrativeGenerator.match_media_to_narrative(CHAPTER_TEXT, events) == []
