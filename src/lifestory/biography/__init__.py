"""Chapter segmentation and narrative generation."""

from lifestory.biography.chapters import (
    ChapterOptions,
    ChapterSegmenter,
    detect_chapter_boundaries,
    score_boundary,
)
from lifestory.biography.narrative import NarrativeGenerationError, NarrativeGenerator

__all__ = [
    "ChapterOptions",
    "ChapterSegmenter",
    "NarrativeGenerationError",
    "NarrativeGenerator",
    "detect_chapter_boundaries",
    "score_boundary",
]
