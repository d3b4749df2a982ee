"""Core data model, event stores and timeline construction."""

from lifestory.core.events import (
    EventStore,
    EventStoreError,
    InMemoryEventStore,
    JsonFileEventStore,
)
from lifestory.core.models import (
    Biography,
    BiographyCategory,
    BiographyChapter,
    EventSourceType,
    NarrativeStyle,
    NarrativeTone,
    Timeline,
    TimelineEvent,
)
from lifestory.core.timeline import TimelineConstructor

__all__ = [
    "Biography",
    "BiographyCategory",
    "BiographyChapter",
    "EventSourceType",
    "EventStore",
    "EventStoreError",
    "InMemoryEventStore",
    "JsonFileEventStore",
    "NarrativeStyle",
    "NarrativeTone",
    "Timeline",
    "TimelineConstructor",
    "TimelineEvent",
]
