"""Prompt templates for every generative call.

All prompts sent through the gateway are defined here. Templates use
``string.Template`` placeholders (``$name``) and render to a
``(system_instruction, user_prompt)`` pair.

Example:
    >>> system, user = CHAPTER_TITLE_PROMPT.render(
    ...     events="1. 2019-06-01: Started at Acme",
    ...     dominant_category="Career",
    ...     total_events=12,
    ...     start_date="2019-06-01",
    ...     end_date="2019-11-30",
    ... )
"""

from __future__ import annotations

import json
import textwrap
from dataclasses import dataclass, field
from enum import Enum
from string import Template
from typing import Any, Iterable

from lifestory.core.models import (
    COMMON_TAGS,
    BiographyCategory,
    EmotionCategory,
    NarrativeStyle,
    NarrativeTone,
    TimelineEvent,
)


class PromptCategory(str, Enum):
    ENRICHMENT = "enrichment"
    CHAPTERS = "chapters"
    NARRATIVE = "narrative"


@dataclass
class PromptTemplate:
    """A system instruction plus a user prompt with ``$placeholders``.

    Attributes:
        id: Unique identifier (e.g. ``"categorization_v1"``).
        category: Kind of task.
        system_instruction: Role and behaviour instructions.
        user_prompt_template: User prompt with ``$placeholder`` variables.
        required_variables: Variables that must be supplied to render.
        description: What the prompt is for.
    """

    id: str
    category: PromptCategory
    system_instruction: str
    user_prompt_template: str
    required_variables: set[str] = field(default_factory=set)
    description: str = ""

    def render(self, **variables: Any) -> tuple[str, str]:
        """Substitute variables and return ``(system, user)``.

        Raises:
            ValueError: If required variables are missing.
        """
        missing = sorted(self.required_variables - set(variables))
        if missing:
            raise ValueError(f"Missing required variables for prompt '{self.id}': {missing}")
        user = Template(self.user_prompt_template).safe_substitute(variables)
        return self.system_instruction, user


def _dedent(text: str) -> str:
    return textwrap.dedent(text).strip()


# =============================================================================
# Enrichment
# =============================================================================

CATEGORIZATION_SYSTEM = _dedent(
    f"""
    You are an expert biographer and archivist. Your task is to categorize life events into specific categories and assign relevant tags.

    Available Categories:
    {(chr(10) + '    ').join(f"- {c.value}" for c in BiographyCategory)}

    Available Tags (you can also create new ones if strictly necessary):
    {", ".join(COMMON_TAGS)}

    Output Format:
    Return a JSON array of objects, where each object corresponds to an input event in the same order.
    [
      {{"category": "Category Name", "tags": ["Tag1", "Tag2"], "confidence": 0.9, "reasoning": "Brief explanation"}}
    ]
    """
)

CATEGORIZATION_PROMPT = PromptTemplate(
    id="categorization_v1",
    category=PromptCategory.ENRICHMENT,
    description="Assign a category and tags to each event of a batch.",
    system_instruction=CATEGORIZATION_SYSTEM,
    user_prompt_template="Categorize the following events:\n\n$events",
    required_variables={"events"},
)

SENTIMENT_SYSTEM = "You are an expert in emotional analysis and sentiment detection."

SENTIMENT_PROMPT = PromptTemplate(
    id="sentiment_v1",
    category=PromptCategory.ENRICHMENT,
    description="Score valence, arousal and dominance for each event of a batch.",
    system_instruction=SENTIMENT_SYSTEM,
    user_prompt_template=_dedent(
        f"""
        Analyze the emotional sentiment of these life events. Return a JSON array with one object per event in the same order.

        Events:
        $events

        For each event, provide:
        - valence: -1.0 (very negative) to 1.0 (very positive)
        - arousal: 0.0 (very calm) to 1.0 (very excited)
        - dominance: 0.0 (powerless) to 1.0 (empowered)
        - primaryEmotion: {", ".join(e.value for e in EmotionCategory)}
        - confidence: 0.0 to 1.0

        Output format:
        [
          {{"valence": 0.8, "arousal": 0.6, "dominance": 0.7, "primaryEmotion": "Joy", "confidence": 0.9}}
        ]
        """
    ),
    required_variables={"events"},
)


# =============================================================================
# Chapters
# =============================================================================

CHAPTER_TITLE_PROMPT = PromptTemplate(
    id="chapter_title_v1",
    category=PromptCategory.CHAPTERS,
    description="Propose a title and short summary for one chapter.",
    system_instruction="You are an expert biographer creating chapter titles and summaries for life stories.",
    user_prompt_template=_dedent(
        """
        Based on the following life events, generate a compelling chapter title and a brief summary (2-3 sentences).

        Events:
        $events

        Dominant Category: $dominant_category
        Total Events: $total_events
        Time Period: $start_date to $end_date

        Output Format (JSON):
        {
          "title": "Engaging chapter title (max 8 words)",
          "summary": "Brief summary of this chapter (2-3 sentences)",
          "confidence": 0.9
        }
        """
    ),
    required_variables={"events", "dominant_category", "total_events", "start_date", "end_date"},
)


# =============================================================================
# Narrative
# =============================================================================

NARRATIVE_BASE_SYSTEM = "You are an expert biographer and storyteller."

STYLE_SYSTEM_PROMPTS: dict[NarrativeStyle, str] = {
    NarrativeStyle.CHRONOLOGICAL: "Write engaging life stories in chronological order with smooth narrative flow.",
    NarrativeStyle.REFLECTIVE: "Write intimate, first-person memoirs that capture personal growth and reflection.",
    NarrativeStyle.THEMATIC: "Organize life stories by themes, showing patterns and connections across time.",
    NarrativeStyle.DOCUMENTARY: "Write objective, third-person biographies with journalistic precision.",
    NarrativeStyle.HIGHLIGHTS: "Focus on achievements and milestones, creating inspirational narratives.",
}
GENERIC_STYLE_SYSTEM = "Write compelling life stories."

STYLE_INSTRUCTIONS: dict[NarrativeStyle, str] = {
    NarrativeStyle.CHRONOLOGICAL: _dedent(
        """
        Write a compelling narrative (300-500 words) that:
        - Flows naturally from event to event in chronological order
        - Captures the essence of this period
        - Uses vivid, engaging language
        - Maintains a clear timeline
        - Connects events with smooth transitions
        """
    ),
    NarrativeStyle.REFLECTIVE: _dedent(
        """
        Write a reflective first-person narrative (300-500 words) that:
        - Uses "I" perspective throughout
        - Includes personal insights and emotions
        - Reflects on growth and learning
        - Feels intimate and authentic
        - Shows vulnerability and honesty
        """
    ),
    NarrativeStyle.THEMATIC: _dedent(
        """
        Write a thematic narrative (300-500 words) that:
        - Groups related experiences by theme
        - Shows patterns and evolution
        - Connects disparate moments
        - Highlights personal growth in $dominant_category
        - May jump between time periods
        """
    ),
    NarrativeStyle.DOCUMENTARY: _dedent(
        """
        Write an objective third-person narrative (300-500 words) that:
        - Uses third-person perspective
        - Maintains journalistic objectivity
        - Presents facts and observations
        - Avoids emotional interpretation
        - Reads like a biography
        """
    ),
    NarrativeStyle.HIGHLIGHTS: _dedent(
        """
        Write a highlights-focused narrative (300-500 words) that:
        - Emphasizes major achievements and milestones
        - Skips mundane details
        - Celebrates successes
        - Shows progression and growth
        - Maintains an inspirational tone
        """
    ),
}
GENERIC_STYLE_INSTRUCTION = "Write a compelling narrative based on the events."

TONE_GUIDELINES: dict[NarrativeTone, str] = {
    NarrativeTone.HUMOROUS: "Find the lighter side of events. Use wit and playful language. Don't take things too seriously.",
    NarrativeTone.NOSTALGIC: "Evoke a sense of longing for the past. Focus on sensory details and cherished memories. Use warm, sentimental language.",
    NarrativeTone.INSPIRATIONAL: "Focus on overcoming challenges and personal growth. Use uplifting and motivating language.",
    NarrativeTone.CYNICAL: "Adopt a skeptical or world-weary perspective. Use dry wit and irony.",
    NarrativeTone.OPTIMISTIC: "Focus on the positive aspects and future possibilities. Maintain a hopeful and bright outlook.",
    NarrativeTone.MELANCHOLIC: "Capture the bittersweet nature of life. Allow for sadness and reflection on what has been lost.",
    NarrativeTone.EMPATHETIC: "Show deep understanding and compassion. Focus on emotional connection and shared humanity.",
    NarrativeTone.ROMANTIC: "Focus on love, beauty, and emotional intensity. Use poetic and passionate language.",
    NarrativeTone.FORMAL: "Use proper grammar, sophisticated vocabulary, and a respectful distance. Avoid slang.",
    NarrativeTone.ACADEMIC: "Analyze events with intellectual rigor. Use precise language and structured arguments.",
    NarrativeTone.PROFESSIONAL: "Maintain a competent and business-like demeanor. Focus on facts and achievements.",
    NarrativeTone.CASUAL: "Write as if talking to a friend. Use relaxed language and colloquialisms.",
    NarrativeTone.WITTY: "Use clever wordplay and sharp observations. Be entertaining and smart.",
    NarrativeTone.SARCASTIC: "Use irony and biting humor to make points. Be edgy and provocative.",
    NarrativeTone.CONVERSATIONAL: "Write in a natural, spoken style. Use simple language and direct address.",
    NarrativeTone.DRAMATIC: "Heighten the emotional stakes. Focus on conflict and resolution. Use intense language.",
    NarrativeTone.SUSPENSEFUL: "Build tension and anticipation. Hold back information to create mystery.",
}
GENERIC_TONE_GUIDELINE = "Maintain a consistent and appropriate tone."

CHAPTER_NARRATIVE_TEMPLATE = _dedent(
    """
    Chapter: $title
    Period: $start_date to $end_date
    Category: $dominant_category
    Duration: $duration_days days
    Events: $event_count

    Key Events:
    $events

    $style_instruction

    Tone Instruction:
    Write with a $tone tone. $tone_guideline
    """
)

INTRODUCTION_TEMPLATE = _dedent(
    """
    Write a compelling introduction (150-200 words) for a biography covering the period from $start_date to $end_date.

    Total events: $event_count
    Style: $style
    Tone: $tone

    The introduction should:
    - Set the stage for the life story
    - Capture the reader's attention
    - Provide context for the journey ahead
    - Match the $style narrative style and $tone tone
    """
)

CONCLUSION_TEMPLATE = _dedent(
    """
    Write a meaningful conclusion (150-200 words) for a biography with $chapter_count chapters.

    Style: $style
    Tone: $tone

    The conclusion should:
    - Reflect on the journey
    - Tie together major themes
    - Provide closure
    - Leave a lasting impression
    - Match the $style narrative style and $tone tone
    """
)


def _style_key(style: Any) -> NarrativeStyle | None:
    try:
        return NarrativeStyle(style)
    except ValueError:
        return None


def _tone_key(tone: Any) -> NarrativeTone | None:
    try:
        return NarrativeTone(tone)
    except ValueError:
        return None


def _label(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def narrative_system_prompt(style: Any, tone: Any) -> str:
    """System prompt for intros, chapters and conclusions of one style/tone."""
    style_prompt = STYLE_SYSTEM_PROMPTS.get(_style_key(style), GENERIC_STYLE_SYSTEM)  # type: ignore[arg-type]
    return f"{NARRATIVE_BASE_SYSTEM} {style_prompt} Adopt a {_label(tone)} tone throughout the narrative."


def style_instruction(style: Any, dominant_category: str) -> str:
    template = STYLE_INSTRUCTIONS.get(_style_key(style), GENERIC_STYLE_INSTRUCTION)  # type: ignore[arg-type]
    return Template(template).safe_substitute(dominant_category=dominant_category)


def tone_guideline(tone: Any) -> str:
    return TONE_GUIDELINES.get(_tone_key(tone), GENERIC_TONE_GUIDELINE)  # type: ignore[arg-type]


def render_chapter_narrative(**variables: Any) -> str:
    return Template(CHAPTER_NARRATIVE_TEMPLATE).safe_substitute(variables)


def render_introduction(**variables: Any) -> str:
    return Template(INTRODUCTION_TEMPLATE).safe_substitute(variables)


def render_conclusion(**variables: Any) -> str:
    return Template(CONCLUSION_TEMPLATE).safe_substitute(variables)


# =============================================================================
# Helpers
# =============================================================================


def format_date(event: TimelineEvent) -> str:
    return event.timestamp.date().isoformat()


def format_event_lines(
    events: Iterable[TimelineEvent], limit: int | None = None, max_chars: int = 150
) -> str:
    """Numbered ``N. YYYY-MM-DD: text`` lines for the first ``limit`` events."""
    selected = list(events)[:limit] if limit is not None else list(events)
    return "\n".join(
        f"{i}. {format_date(e)}: {e.content[:max_chars]}" for i, e in enumerate(selected, start=1)
    )


def format_events_for_categorization(events: list[TimelineEvent]) -> str:
    blocks = []
    for i, event in enumerate(events, start=1):
        metadata = event.metadata.model_dump(exclude_none=True, exclude_defaults=True)
        blocks.append(
            f"Event {i}:\n"
            f"Content: {event.content}\n"
            f"Source: {event.source_type.value}\n"
            f"Date: {event.timestamp.isoformat()}\n"
            f"Metadata: {json.dumps(metadata, default=str)}"
        )
    return "\n\n---\n\n".join(blocks)


def format_events_for_sentiment(events: list[TimelineEvent]) -> str:
    return "\n".join(f'{i}. "{e.content[:150]}"' for i, e in enumerate(events, start=1))
