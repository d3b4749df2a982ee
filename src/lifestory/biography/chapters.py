"""Chapter segmentation.

Splits a timeline into chapters in three steps:

1. **Scoring.** Every adjacent pair of events gets a boundary strength,
   the maximum of four heuristics:

   ============================================  ==========================
   Heuristic                                     Strength
   ============================================  ==========================
   gap longer than 90 days                       ``min(days / 365, 1.0)``
   category change into/out of a major category  at least 0.7
   calendar year changes                         at least 0.5
   gap within [min, max] chapter duration        at least 0.4
   ============================================  ==========================

   The first heuristic that fires names the boundary. Pairs scoring at
   least 0.4 become candidates.

2. **Filtering.** Candidates are ranked by strength (stable on ties). A
   candidate is kept only when it is at least 5 events away from every
   boundary kept before it.

3. **Assembly.** Kept boundaries cut the timeline in chronological order.
   Slices shorter than ``min_events_per_chapter`` are dropped; their
   events belong to no chapter. Slices longer than
   ``max_events_per_chapter`` are split, and a short remainder is merged
   into the sub-slice before it.
"""

from __future__ import annotations

import calendar
import logging
from collections import Counter

from pydantic import BaseModel, Field, model_validator

from lifestory.biography.narrative import NarrativeGenerationError, NarrativeGenerator
from lifestory.core.models import (
    MAJOR_CATEGORIES,
    BiographyCategory,
    BiographyChapter,
    ChapterBoundary,
    ChapterMetadata,
    ChapterTitle,
    Timeline,
    TimelineEvent,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

LONG_GAP_DAYS = 90
DAYS_PER_YEAR = 365
MAJOR_CHANGE_STRENGTH = 0.7
YEAR_CHANGE_STRENGTH = 0.5
NATURAL_BREAK_STRENGTH = 0.4
CANDIDATE_THRESHOLD = 0.4
MIN_BOUNDARY_DISTANCE = 5

SIMPLE_TITLES: dict[BiographyCategory, str] = {
    BiographyCategory.EDUCATION: "Education in {year}",
    BiographyCategory.CAREER: "Career Journey - {year}",
    BiographyCategory.FAMILY: "Family Life in {year}",
    BiographyCategory.TRAVEL: "Adventures in {year}",
    BiographyCategory.ACHIEVEMENTS: "Achievements of {year}",
    BiographyCategory.SIGNIFICANT_EVENTS: "Life Changes in {year}",
}
SUMMARY_UNAVAILABLE = "Chapter summary unavailable."


class ChapterOptions(BaseModel):
    """Tuning knobs for segmentation."""

    min_events_per_chapter: int = Field(default=5, ge=1)
    max_events_per_chapter: int = Field(default=50, ge=1)
    min_chapter_duration_days: float = Field(default=7, ge=0)
    max_chapter_duration_days: float = Field(default=365, ge=0)
    use_ai: bool = True

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChapterOptions":
        # Splitting below the minimum would emit undersized chapters
        if self.max_events_per_chapter < self.min_events_per_chapter:
            raise ValueError(
                f"max_events_per_chapter ({self.max_events_per_chapter}) must be at least "
                f"min_events_per_chapter ({self.min_events_per_chapter})"
            )
        if self.max_chapter_duration_days < self.min_chapter_duration_days:
            raise ValueError("max_chapter_duration_days must be at least min_chapter_duration_days")
        return self


# =============================================================================
# Boundary detection
# =============================================================================


def score_boundary(
    prev_event: TimelineEvent,
    event: TimelineEvent,
    index: int,
    options: ChapterOptions,
) -> ChapterBoundary | None:
    """Score the cut between ``prev_event`` and ``event`` (at ``index``).

    The natural-break window is closed: a gap of exactly
    ``min_chapter_duration_days`` or ``max_chapter_duration_days`` counts.

    Returns:
        A candidate boundary, or None when the strength is below 0.4.
    """
    days = (event.timestamp - prev_event.timestamp).total_seconds() / SECONDS_PER_DAY
    strength = 0.0
    reason = ""

    if days > LONG_GAP_DAYS:
        strength = min(days / DAYS_PER_YEAR, 1.0)
        reason = f"Significant time gap: {int(days)} days"

    prev_category, category = prev_event.category, event.category
    if (
        prev_category is not None
        and category is not None
        and prev_category != category
        and (prev_category in MAJOR_CATEGORIES or category in MAJOR_CATEGORIES)
    ):
        strength = max(strength, MAJOR_CHANGE_STRENGTH)
        reason = reason or f"Major category change: {prev_category.value} → {category.value}"

    prev_year, year = prev_event.timestamp.year, event.timestamp.year
    if prev_year != year:
        strength = max(strength, YEAR_CHANGE_STRENGTH)
        reason = reason or f"Year boundary: {prev_year} → {year}"

    if options.min_chapter_duration_days <= days <= options.max_chapter_duration_days:
        strength = max(strength, NATURAL_BREAK_STRENGTH)
        reason = reason or "Natural cluster boundary"

    if strength < CANDIDATE_THRESHOLD:
        return None
    return ChapterBoundary(index=index, timestamp=event.timestamp, reason=reason, strength=strength)


def detect_chapter_boundaries(
    events: list[TimelineEvent], options: ChapterOptions | None = None
) -> list[ChapterBoundary]:
    """Candidate boundaries that survive filtering, strongest first."""
    options = options or ChapterOptions()
    candidates = [
        boundary
        for index in range(1, len(events))
        if (boundary := score_boundary(events[index - 1], events[index], index, options))
    ]

    kept: list[ChapterBoundary] = []
    for candidate in sorted(candidates, key=lambda b: b.strength, reverse=True):
        if all(abs(candidate.index - k.index) >= MIN_BOUNDARY_DISTANCE for k in kept):
            kept.append(candidate)

    logger.debug(f"Boundary detection: {len(candidates)} candidates, {len(kept)} kept")
    return kept


def dominant_category(events: list[TimelineEvent]) -> BiographyCategory:
    """Most frequent category; ties go to the first encountered."""
    counts = Counter(e.category for e in events if e.category is not None)
    if not counts:
        return BiographyCategory.OTHER
    return counts.most_common(1)[0][0]


def generate_simple_title(category: BiographyCategory, events: list[TimelineEvent]) -> str:
    start = events[0].timestamp
    template = SIMPLE_TITLES.get(category)
    if template:
        return template.format(year=start.year)
    return f"{calendar.month_name[start.month]} {start.year}"


def split_oversized(
    events: list[TimelineEvent], options: ChapterOptions
) -> list[list[TimelineEvent]]:
    """Split a slice into runs of at most ``max_events_per_chapter`` events."""
    size = options.max_events_per_chapter
    if len(events) <= size:
        return [events]
    parts = [events[start : start + size] for start in range(0, len(events), size)]
    if len(parts[-1]) < options.min_events_per_chapter:
        remainder = parts.pop()
        parts[-1] = parts[-1] + remainder
    return parts


# =============================================================================
# Segmenter
# =============================================================================


class ChapterSegmenter:
    """Builds chapters from an (enriched) timeline.

    Attributes:
        narrator: Source of AI titles and summaries. Without one, chapters
            always get template titles.
    """

    def __init__(self, narrator: NarrativeGenerator | None = None) -> None:
        self.narrator = narrator

    def generate_chapters(
        self, timeline: Timeline, options: ChapterOptions | None = None
    ) -> list[BiographyChapter]:
        options = options or ChapterOptions()
        events = timeline.events
        logger.info(f"Generating chapters for user {timeline.user_id} from {len(events)} events")

        boundaries = detect_chapter_boundaries(events, options)
        cuts = sorted(boundary.index for boundary in boundaries)

        slices: list[list[TimelineEvent]] = []
        start = 0
        for cut in [*cuts, len(events)]:
            chapter_events = events[start:cut]
            if len(chapter_events) >= options.min_events_per_chapter:
                slices.extend(split_oversized(chapter_events, options))
            elif chapter_events:
                logger.debug(f"Dropping {len(chapter_events)}-event slice below chapter minimum")
            start = cut

        chapters = [self.create_chapter(chapter_events, options) for chapter_events in slices]
        logger.info(f"Generated {len(chapters)} chapters")
        return chapters

    def create_chapter(
        self, events: list[TimelineEvent], options: ChapterOptions
    ) -> BiographyChapter:
        start_date, end_date = events[0].timestamp, events[-1].timestamp
        duration_days = int((end_date - start_date).total_seconds() // SECONDS_PER_DAY)
        category = dominant_category(events)

        ai_generated = False
        if options.use_ai and self.narrator is not None:
            heading, ai_generated = self._ai_heading(self.narrator, events, category)
        else:
            heading = ChapterTitle(
                title=generate_simple_title(category, events),
                summary=(
                    f"A chapter covering {len(events)} events from "
                    f"{start_date.date().isoformat()} to {end_date.date().isoformat()}."
                ),
                confidence=0.0,
            )

        return BiographyChapter(
            title=heading.title,
            start_date=start_date,
            end_date=end_date,
            event_ids=[e.id for e in events],
            summary=heading.summary,
            dominant_category=category,
            significance=len(events),
            metadata=ChapterMetadata(
                event_count=len(events),
                duration_days=duration_days,
                ai_generated=ai_generated,
                confidence=heading.confidence,
            ),
        )

    @staticmethod
    def _ai_heading(
        narrator: NarrativeGenerator, events: list[TimelineEvent], category: BiographyCategory
    ) -> tuple[ChapterTitle, bool]:
        try:
            return narrator.generate_chapter_title_and_summary(events, category), True
        except NarrativeGenerationError as e:
            logger.warning(f"AI chapter title failed, using template: {e.message}")
            fallback = ChapterTitle(
                title=generate_simple_title(category, events),
                summary=SUMMARY_UNAVAILABLE,
                confidence=0.0,
            )
            return fallback, False
