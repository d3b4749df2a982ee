"""Narrative generation.

Turns chapters into prose. A biography is built strictly in order:
introduction, then for every chapter its narrative followed by media
placement, then the conclusion. Chapters are never processed in
parallel.

Each generative step has a templated fallback, so a backend failure in
one step degrades that step only:

- chapter narrative: one sentence built from the chapter dates, event
  count and summary, ``word_count`` fixed at 100, ``is_fallback`` set
- introduction / conclusion: one stock sentence each

Chapter titles are the exception. :meth:`generate_chapter_title_and_summary`
raises :class:`NarrativeGenerationError` and leaves the fallback to the
chapter segmenter.

Example:
    >>> narrator = NarrativeGenerator(gateway)
    >>> biography = narrator.generate_biography(
    ...     chapters, timeline, NarrativeStyle.REFLECTIVE, NarrativeTone.NOSTALGIC
    ... )
    >>> biography.title
    'Reflections on a Life: 2015-2021'
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any

from lifestory.ai.gateway import AIGateway, AIGatewayError, CompletionOptions
from lifestory.ai.parsing import ResponseParseError, parse_json_object
from lifestory.ai.prompts import (
    CHAPTER_TITLE_PROMPT,
    format_event_lines,
    narrative_system_prompt,
    render_chapter_narrative,
    render_conclusion,
    render_introduction,
    style_instruction,
    tone_guideline,
)
from lifestory.core.models import (
    Biography,
    BiographyCategory,
    BiographyChapter,
    BiographyChapterNarrative,
    BiographyMetadata,
    ChapterTitle,
    MediaMatch,
    NarrativeStyle,
    NarrativeTone,
    Timeline,
    TimelineEvent,
    clamp,
)

logger = logging.getLogger(__name__)

NARRATIVE_TEMPERATURE = 0.7
CHAPTER_MAX_TOKENS = 600
BOOKEND_MAX_TOKENS = 300

CHAPTER_PROMPT_EVENTS = 15
CHAPTER_PROMPT_CHARS = 150
TITLE_PROMPT_EVENTS = 20
TITLE_PROMPT_CHARS = 100

FALLBACK_WORD_COUNT = 100
DEFAULT_CHAPTER_TITLE = "Untitled Chapter"
DEFAULT_TITLE_CONFIDENCE = 0.5

# Media placement heuristic
MEDIA_KEYWORD_MIN_LENGTH = 5
MEDIA_KEYWORDS_PER_EVENT = 5
MEDIA_SCORE_PER_KEYWORD = 0.2
MEDIA_MIN_RELEVANCE = 0.3

BIOGRAPHY_TITLES: dict[NarrativeStyle, str] = {
    NarrativeStyle.CHRONOLOGICAL: "My Journey: {start}-{end}",
    NarrativeStyle.REFLECTIVE: "Reflections on a Life: {start}-{end}",
    NarrativeStyle.THEMATIC: "Themes of My Life: {start}-{end}",
    NarrativeStyle.DOCUMENTARY: "A Life Documented: {start}-{end}",
    NarrativeStyle.HIGHLIGHTS: "Milestones and Memories: {start}-{end}",
}


class NarrativeGenerationError(Exception):
    """A generative narrative step failed and has no local fallback.

    Attributes:
        message: Human-readable description.
        original_error: The underlying exception.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


def _day(value: datetime) -> str:
    return value.date().isoformat()


def _label(value: Any) -> str:
    return getattr(value, "value", str(value))


def count_words(text: str) -> int:
    return len(text.split())


class NarrativeGenerator:
    """Writes biographies through the AI gateway.

    Attributes:
        gateway: AI gateway used for every call.
        narrative_model: Model for introductions, chapters and conclusions.
        title_model: Model for chapter titles and summaries.
    """

    def __init__(
        self,
        gateway: AIGateway,
        narrative_model: str | None = None,
        title_model: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.narrative_model = narrative_model
        self.title_model = title_model

    def _narrative_options(self, style: Any, tone: Any, max_tokens: int) -> CompletionOptions:
        return CompletionOptions(
            model=self.narrative_model,
            temperature=NARRATIVE_TEMPERATURE,
            max_tokens=max_tokens,
            system_prompt=narrative_system_prompt(style, tone),
        )

    # =========================================================================
    # Biography
    # =========================================================================

    def generate_biography(
        self,
        chapters: list[BiographyChapter],
        timeline: Timeline,
        style: NarrativeStyle,
        tone: NarrativeTone = NarrativeTone.CONVERSATIONAL,
        include_media: bool = True,
    ) -> Biography:
        """Write the full biography for ``chapters`` of ``timeline``.

        The recorded cost is the sum of what the gateway billed during
        this call; cache hits and fallbacks add nothing.
        """
        started = time.perf_counter()
        logger.info(
            f"Generating biography for user {timeline.user_id} "
            f"({_label(style)} style, {_label(tone)} tone, {len(chapters)} chapters)"
        )

        cost = 0.0
        introduction, spent = self.generate_introduction(timeline, style, tone)
        cost += spent

        narratives: list[BiographyChapterNarrative] = []
        for chapter in chapters:
            events = timeline.get_events(chapter.event_ids)
            narrative, spent = self.generate_chapter_narrative(chapter, events, style, tone)
            cost += spent
            if include_media:
                narrative.media_matches = self.match_media_to_narrative(narrative.narrative, events)
            narratives.append(narrative)

        conclusion, spent = self.generate_conclusion(chapters, style, tone)
        cost += spent

        total_words = sum(n.word_count for n in narratives)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        biography = Biography(
            user_id=timeline.user_id,
            title=self.generate_biography_title(timeline, style),
            style=style,
            tone=tone,
            chapters=tuple(narratives),
            introduction=introduction,
            conclusion=conclusion,
            metadata=BiographyMetadata(
                total_words=total_words,
                total_chapters=len(chapters),
                cost=cost,
                generation_time_ms=elapsed_ms,
            ),
        )
        logger.info(
            f"Biography generated: {total_words} words, {len(chapters)} chapters, "
            f"{elapsed_ms}ms, ${cost:.4f}"
        )
        return biography

    def generate_introduction(
        self, timeline: Timeline, style: Any, tone: Any
    ) -> tuple[str, float]:
        """Return the introduction text and its billed cost."""
        prompt = render_introduction(
            start_date=_day(timeline.start_date),
            end_date=_day(timeline.end_date),
            event_count=len(timeline.events),
            style=_label(style),
            tone=_label(tone),
        )
        try:
            result = self.gateway.generate_text(
                prompt, self._narrative_options(style, tone, BOOKEND_MAX_TOKENS)
            )
        except AIGatewayError as e:
            logger.error(f"Introduction generation failed, using fallback: {e.message}")
            return (
                f"This is the story of a life, captured through {len(timeline.events)} moments "
                f"spanning from {_day(timeline.start_date)} to {_day(timeline.end_date)}.",
                0.0,
            )
        return result.text.strip(), result.billed_cost

    def generate_conclusion(
        self, chapters: list[BiographyChapter], style: Any, tone: Any
    ) -> tuple[str, float]:
        """Return the conclusion text and its billed cost."""
        prompt = render_conclusion(
            chapter_count=len(chapters), style=_label(style), tone=_label(tone)
        )
        try:
            result = self.gateway.generate_text(
                prompt, self._narrative_options(style, tone, BOOKEND_MAX_TOKENS)
            )
        except AIGatewayError as e:
            logger.error(f"Conclusion generation failed, using fallback: {e.message}")
            return (
                f"This journey, spanning {len(chapters)} chapters, "
                "represents a life lived with purpose and meaning.",
                0.0,
            )
        return result.text.strip(), result.billed_cost

    # =========================================================================
    # Chapters
    # =========================================================================

    def generate_chapter_narrative(
        self,
        chapter: BiographyChapter,
        events: list[TimelineEvent],
        style: Any,
        tone: Any = NarrativeTone.CONVERSATIONAL,
    ) -> tuple[BiographyChapterNarrative, float]:
        """Write one chapter. Returns the narrative and its billed cost."""
        dominant = _label(chapter.dominant_category)
        prompt = render_chapter_narrative(
            title=chapter.title,
            start_date=_day(chapter.start_date),
            end_date=_day(chapter.end_date),
            dominant_category=dominant,
            duration_days=chapter.metadata.duration_days,
            event_count=chapter.metadata.event_count,
            events=format_event_lines(events, CHAPTER_PROMPT_EVENTS, CHAPTER_PROMPT_CHARS),
            style_instruction=style_instruction(style, dominant),
            tone=_label(tone),
            tone_guideline=tone_guideline(tone),
        )

        try:
            result = self.gateway.generate_text(
                prompt, self._narrative_options(style, tone, CHAPTER_MAX_TOKENS)
            )
        except AIGatewayError as e:
            logger.error(f"Narrative for chapter {chapter.id} failed, using fallback: {e.message}")
            return (
                BiographyChapterNarrative(
                    chapter_id=chapter.id,
                    title=chapter.title,
                    narrative=self.fallback_narrative(chapter, events),
                    word_count=FALLBACK_WORD_COUNT,
                    is_fallback=True,
                ),
                0.0,
            )

        text = result.text.strip()
        return (
            BiographyChapterNarrative(
                chapter_id=chapter.id,
                title=chapter.title,
                narrative=text,
                word_count=count_words(text),
            ),
            result.billed_cost,
        )

    @staticmethod
    def fallback_narrative(chapter: BiographyChapter, events: list[TimelineEvent]) -> str:
        return (
            f"During the period from {_day(chapter.start_date)} to {_day(chapter.end_date)}, "
            f"{len(events)} significant events shaped this chapter of life. {chapter.summary}"
        )

    def generate_chapter_title_and_summary(
        self, events: list[TimelineEvent], dominant_category: BiographyCategory
    ) -> ChapterTitle:
        """Ask the model for a chapter title and a 2-3 sentence summary.

        Raises:
            NarrativeGenerationError: If the call fails or the reply is not
                a JSON object.
        """
        if not events:
            raise NarrativeGenerationError("Cannot title a chapter without events")

        system, prompt = CHAPTER_TITLE_PROMPT.render(
            events=format_event_lines(events, TITLE_PROMPT_EVENTS, TITLE_PROMPT_CHARS),
            dominant_category=_label(dominant_category),
            total_events=len(events),
            start_date=_day(events[0].timestamp),
            end_date=_day(events[-1].timestamp),
        )
        try:
            result = self.gateway.generate_text(
                prompt,
                CompletionOptions(
                    model=self.title_model,
                    temperature=NARRATIVE_TEMPERATURE,
                    system_prompt=system,
                ),
            )
            data = parse_json_object(result.text)
        except (AIGatewayError, ResponseParseError) as e:
            raise NarrativeGenerationError(f"Chapter title generation failed: {e}", e) from e

        return ChapterTitle(
            title=str(data.get("title") or DEFAULT_CHAPTER_TITLE),
            summary=str(data.get("summary") or ""),
            confidence=clamp(
                data.get("confidence") or DEFAULT_TITLE_CONFIDENCE, 0.0, 1.0, DEFAULT_TITLE_CONFIDENCE
            ),
        )

    # =========================================================================
    # Media and titles
    # =========================================================================

    @staticmethod
    def match_media_to_narrative(
        narrative: str, events: list[TimelineEvent]
    ) -> list[MediaMatch]:
        """Place each media-bearing event where its words first appear.

        The first five words longer than four characters of the event text
        are searched for in the lowercase narrative. Each hit adds 0.2; an
        event is placed when its score exceeds 0.3, at the offset of its
        first hit. Matches come back ordered by offset.
        """
        haystack = narrative.lower()
        matches: list[MediaMatch] = []

        for event in events:
            if not event.has_media:
                continue
            keywords = [
                word for word in event.content.lower().split() if len(word) >= MEDIA_KEYWORD_MIN_LENGTH
            ][:MEDIA_KEYWORDS_PER_EVENT]

            hits = 0
            first_offset = -1
            for keyword in keywords:
                offset = haystack.find(keyword)
                if offset == -1:
                    continue
                hits += 1
                if first_offset == -1:
                    first_offset = offset

            relevance = round(hits * MEDIA_SCORE_PER_KEYWORD, 2)
            if relevance > MEDIA_MIN_RELEVANCE:
                matches.append(
                    MediaMatch(
                        media_id=event.id,
                        media_url=event.media_urls[0],
                        media_type=event.media_type,
                        placement_index=first_offset,
                        relevance_score=relevance,
                    )
                )

        return sorted(matches, key=lambda match: match.placement_index)

    @staticmethod
    def generate_biography_title(timeline: Timeline, style: NarrativeStyle) -> str:
        template = BIOGRAPHY_TITLES.get(NarrativeStyle(style), BIOGRAPHY_TITLES[NarrativeStyle.CHRONOLOGICAL])
        return template.format(start=timeline.start_date.year, end=timeline.end_date.year)
