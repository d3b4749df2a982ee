"""Data model for lifestory.

Everything that flows between pipeline stages is a pydantic model defined
here: timeline events and their typed metadata, the timeline with its
clusters and gaps, chapters, enrichment results and the finished
biography.

Ownership rules:
    - A :class:`Timeline` owns its events. Clusters and chapters only refer
      to them (clusters by object, chapters by id).
    - Events are mutated in place by the enrichment stage only.
    - A :class:`Biography` is frozen once built.

Example:
    >>> from datetime import datetime, timezone
    >>> event = TimelineEvent(
    ...     id="p1",
    ...     user_id="u1",
    ...     source_type=EventSourceType.POST,
    ...     source_id="p1",
    ...     timestamp=datetime(2020, 5, 1, tzinfo=timezone.utc),
    ...     content="Graduated today!",
    ...     metadata=PostMetadata(provider="instagram", media_urls=["https://x/y.jpg"]),
    ... )
    >>> event.has_media
    True
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, computed_field, field_validator


def new_id(prefix: str) -> str:
    """Generate a short unique identifier such as ``chapter_3f9a1c2b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp(value: Any, low: float, high: float, default: float) -> float:
    """Coerce ``value`` to a float inside ``[low, high]``.

    Non-numeric and NaN input yields ``default``.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return max(low, min(high, number))


# =============================================================================
# Enums
# =============================================================================


class EventSourceType(str, Enum):
    """Where a timeline event came from."""

    POST = "post"
    EMAIL = "email"
    DIARY = "diary"
    MEDIA = "media"


class BiographyCategory(str, Enum):
    """Life categories an event can be filed under."""

    EDUCATION = "Education"
    CAREER = "Career"
    FAMILY = "Family"
    RELATIONSHIPS = "Relationships"
    TRAVEL = "Travel"
    HEALTH = "Health"
    HOBBIES = "Hobbies"
    ACHIEVEMENTS = "Achievements"
    SIGNIFICANT_EVENTS = "Significant Events"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "BiographyCategory":
        """Map a model-supplied label to a category, OTHER when unknown.

        Both the display value (``"Career"``) and the member name
        (``"SIGNIFICANT_EVENTS"``) are accepted, case-insensitively.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.OTHER
        needle = value.strip().lower()
        for member in cls:
            if needle in (member.value.lower(), member.name.lower()):
                return member
        return cls.OTHER


# A change into or out of one of these is a strong chapter signal.
MAJOR_CATEGORIES = frozenset(
    {
        BiographyCategory.EDUCATION,
        BiographyCategory.CAREER,
        BiographyCategory.FAMILY,
        BiographyCategory.SIGNIFICANT_EVENTS,
    }
)

COMMON_TAGS = [
    "Graduation",
    "New Job",
    "Promotion",
    "Wedding",
    "Birth",
    "Moving",
    "Vacation",
    "Birthday",
    "Holiday",
    "Concert",
    "Sports",
    "Friends",
    "Pets",
    "Illness",
    "Recovery",
    "Award",
    "Project",
    "Loss",
]


class EmotionCategory(str, Enum):
    """Primary emotion labels used by sentiment analysis."""

    JOY = "Joy"
    SADNESS = "Sadness"
    ANGER = "Anger"
    FEAR = "Fear"
    SURPRISE = "Surprise"
    DISGUST = "Disgust"
    CONTENTMENT = "Contentment"
    EXCITEMENT = "Excitement"
    ANXIETY = "Anxiety"
    NEUTRAL = "Neutral"

    @classmethod
    def parse(cls, value: Any) -> "EmotionCategory":
        """Map a model-supplied label to an emotion, NEUTRAL when unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            needle = value.strip().lower()
            for member in cls:
                if needle == member.value.lower():
                    return member
        return cls.NEUTRAL


class ResultSource(str, Enum):
    """Whether an enrichment result came from the model or a fallback."""

    AI = "ai"
    FALLBACK = "fallback"


class NarrativeStyle(str, Enum):
    """Overall shape of the written biography."""

    CHRONOLOGICAL = "chronological"
    THEMATIC = "thematic"
    REFLECTIVE = "reflective"
    DOCUMENTARY = "documentary"
    HIGHLIGHTS = "highlights"


class NarrativeTone(str, Enum):
    """Emotional register of the written biography."""

    HUMOROUS = "humorous"
    CYNICAL = "cynical"
    OPTIMISTIC = "optimistic"
    NOSTALGIC = "nostalgic"
    MELANCHOLIC = "melancholic"
    EMPATHETIC = "empathetic"
    ROMANTIC = "romantic"
    FORMAL = "formal"
    ACADEMIC = "academic"
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    WITTY = "witty"
    SARCASTIC = "sarcastic"
    CONVERSATIONAL = "conversational"
    DRAMATIC = "dramatic"
    SUSPENSEFUL = "suspenseful"
    INSPIRATIONAL = "inspirational"


class AggregationPeriod(str, Enum):
    """Bucket size for mood timelines."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# =============================================================================
# Event Metadata
# =============================================================================


class GeoPoint(BaseModel):
    """A latitude/longitude pair."""

    lat: float
    lng: float


class PostMetadata(BaseModel):
    """Metadata of a social post."""

    kind: Literal["post"] = "post"
    provider: str | None = None
    platform_id: str | None = None
    engagement: int | None = None
    media_urls: list[str] = Field(default_factory=list)
    location: GeoPoint | None = None


class EmailMetadata(BaseModel):
    """Metadata of an email header."""

    kind: Literal["email"] = "email"
    provider: str | None = None
    sender: str | None = None
    recipient: str | None = None
    category: str | None = None


class MediaMetadata(BaseModel):
    """Metadata of a photo or video."""

    kind: Literal["media"] = "media"
    provider: str | None = None
    mime_type: str | None = None
    media_urls: list[str] = Field(default_factory=list)
    location: GeoPoint | None = None


class DiaryMetadata(BaseModel):
    """Metadata of a diary entry."""

    kind: Literal["diary"] = "diary"
    mood: str | None = None
    location: GeoPoint | None = None


class OpaqueMetadata(BaseModel):
    """Escape hatch for sources without a typed shape."""

    kind: Literal["opaque"] = "opaque"
    data: dict[str, Any] = Field(default_factory=dict)


EventMetadata = Annotated[
    Union[PostMetadata, EmailMetadata, MediaMetadata, DiaryMetadata, OpaqueMetadata],
    Field(discriminator="kind"),
]


# =============================================================================
# Enrichment Results
# =============================================================================


class SentimentScore(BaseModel):
    """Affect vector for one event.

    Values are clamped into range on construction whatever the model
    returned: valence in [-1, 1]; arousal, dominance and confidence in [0, 1].
    """

    valence: float = 0.0
    arousal: float = 0.5
    dominance: float = 0.5
    primary_emotion: EmotionCategory = EmotionCategory.NEUTRAL
    confidence: float = 0.0
    source: ResultSource = ResultSource.AI

    @field_validator("valence", mode="before")
    @classmethod
    def _clamp_valence(cls, value: Any) -> float:
        return clamp(value, -1.0, 1.0, 0.0)

    @field_validator("arousal", "dominance", mode="before")
    @classmethod
    def _clamp_unit(cls, value: Any) -> float:
        return clamp(value, 0.0, 1.0, 0.5)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp(value, 0.0, 1.0, 0.0)

    @field_validator("primary_emotion", mode="before")
    @classmethod
    def _parse_emotion(cls, value: Any) -> EmotionCategory:
        return EmotionCategory.parse(value)

    @classmethod
    def fallback(cls) -> "SentimentScore":
        return cls(source=ResultSource.FALLBACK)

    @property
    def is_fallback(self) -> bool:
        return self.source == ResultSource.FALLBACK


class CategorizationResult(BaseModel):
    """Category and tags assigned to one event."""

    category: BiographyCategory = BiographyCategory.OTHER
    tags: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    reasoning: str = ""
    source: ResultSource = ResultSource.AI

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value: Any) -> BiographyCategory:
        return BiographyCategory.parse(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(tag) for tag in value if tag is not None]

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp(value, 0.0, 1.0, 0.5)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @classmethod
    def fallback(cls) -> "CategorizationResult":
        return cls(
            category=BiographyCategory.OTHER,
            tags=[],
            confidence=0.0,
            reasoning="Failed to categorize",
            source=ResultSource.FALLBACK,
        )

    @property
    def is_fallback(self) -> bool:
        return self.source == ResultSource.FALLBACK


# =============================================================================
# Timeline
# =============================================================================

VIDEO_EXTENSIONS = (".mp4", ".mov", ".m4v", ".webm", ".avi", ".mkv")


class TimelineEvent(BaseModel):
    """One observed life moment.

    Naive timestamps are treated as UTC so events from different sources
    always compare.
    """

    id: str
    user_id: str
    source_type: EventSourceType
    source_id: str
    timestamp: datetime
    content: str = ""
    metadata: EventMetadata = Field(default_factory=OpaqueMetadata)

    # Set by the enrichment stage
    category: BiographyCategory | None = None
    tags: list[str] | None = None
    sentiment: SentimentScore | None = None
    ai_confidence: float | None = None
    ai_reasoning: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def media_urls(self) -> list[str]:
        return list(getattr(self.metadata, "media_urls", None) or [])

    @property
    def has_media(self) -> bool:
        return bool(self.media_urls)

    @property
    def media_type(self) -> Literal["image", "video"]:
        mime_type = getattr(self.metadata, "mime_type", None) or ""
        if mime_type.startswith("video/"):
            return "video"
        urls = self.media_urls
        if urls and urls[0].lower().split("?")[0].endswith(VIDEO_EXTENSIONS):
            return "video"
        return "image"

    def apply_categorization(self, result: CategorizationResult) -> None:
        self.category = result.category
        self.tags = list(result.tags)
        self.ai_confidence = result.confidence
        self.ai_reasoning = result.reasoning


class TimelineCluster(BaseModel):
    """A burst of events close together in time."""

    id: str = Field(default_factory=lambda: new_id("cluster"))
    start_date: datetime
    end_date: datetime
    events: list[TimelineEvent]
    significance: int

    @property
    def event_ids(self) -> list[str]:
        return [event.id for event in self.events]


class TimelineGap(BaseModel):
    """A silence between two consecutive events."""

    start_date: datetime
    end_date: datetime
    duration_days: int


class Timeline(BaseModel):
    """All of a user's events in ascending timestamp order."""

    user_id: str
    events: list[TimelineEvent] = Field(default_factory=list)
    clusters: list[TimelineCluster] = Field(default_factory=list)
    gaps: list[TimelineGap] = Field(default_factory=list)
    start_date: datetime = Field(default_factory=utcnow)
    end_date: datetime = Field(default_factory=utcnow)

    def get_events(self, event_ids: list[str]) -> list[TimelineEvent]:
        """Return the events with the given ids, in timeline order."""
        wanted = set(event_ids)
        return [event for event in self.events if event.id in wanted]


# =============================================================================
# Chapters
# =============================================================================


class ChapterBoundary(BaseModel):
    """A candidate cut between ``events[index - 1]`` and ``events[index]``."""

    index: int
    timestamp: datetime
    reason: str
    strength: float = Field(ge=0.0, le=1.0)


class ChapterMetadata(BaseModel):
    event_count: int
    duration_days: int
    ai_generated: bool
    confidence: float = 0.0


class BiographyChapter(BaseModel):
    """A contiguous slice of the timeline treated as one narrative unit."""

    id: str = Field(default_factory=lambda: new_id("chapter"))
    title: str
    start_date: datetime
    end_date: datetime
    event_ids: list[str] = Field(min_length=1)
    summary: str
    dominant_category: BiographyCategory
    significance: int
    metadata: ChapterMetadata


class ChapterTitle(BaseModel):
    """Title and summary proposed for a chapter."""

    title: str
    summary: str
    confidence: float = 0.0


# =============================================================================
# Narrative
# =============================================================================


class MediaMatch(BaseModel):
    """A media item placed at a character offset of a chapter narrative."""

    media_id: str
    media_url: str
    media_type: Literal["image", "video"] = "image"
    placement_index: int
    relevance_score: float
    caption: str | None = None


class BiographyChapterNarrative(BaseModel):
    chapter_id: str
    title: str
    narrative: str
    word_count: int
    media_matches: list[MediaMatch] = Field(default_factory=list)
    is_fallback: bool = False


class BiographyMetadata(BaseModel):
    total_words: int
    total_chapters: int
    generated_at: datetime = Field(default_factory=utcnow)
    cost: float = 0.0
    generation_time_ms: int = 0


class Biography(BaseModel):
    """A finished, narrated life story. Immutable once built."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: new_id("bio"))
    user_id: str
    title: str
    style: NarrativeStyle
    tone: NarrativeTone = NarrativeTone.CONVERSATIONAL
    chapters: tuple[BiographyChapterNarrative, ...]
    introduction: str
    conclusion: str
    metadata: BiographyMetadata

    @computed_field  # type: ignore[prop-decorator]
    @property
    def media_count(self) -> int:
        return sum(len(chapter.media_matches) for chapter in self.chapters)


# =============================================================================
# Mood Timeline
# =============================================================================


class MoodDataPoint(BaseModel):
    """Average affect over one aggregation bucket."""

    period_key: str
    date: datetime
    valence: float
    arousal: float
    dominance: float
    primary_emotion: EmotionCategory
    event_count: int


class EmotionalMilestone(BaseModel):
    """A single event with unusually strong positive or negative affect."""

    date: datetime
    type: Literal["peak", "valley"]
    emotion: EmotionCategory
    intensity: float
    reason: str
    event_ids: list[str]


class MoodAverages(BaseModel):
    valence: float = 0.0
    arousal: float = 0.5
    dominance: float = 0.5


class MoodTimeline(BaseModel):
    user_id: str
    data_points: list[MoodDataPoint] = Field(default_factory=list)
    averages: MoodAverages = Field(default_factory=MoodAverages)
    milestones: list[EmotionalMilestone] = Field(default_factory=list)
