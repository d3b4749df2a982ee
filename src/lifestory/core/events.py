"""Event store adapters.

The timeline only depends on the :class:`EventStore` read contract:
``fetch_events(user_id)`` returns already-normalized events, any number of
them including zero, and raises :class:`EventStoreError` only for a genuine
I/O failure.

Two adapters are provided:

- :class:`InMemoryEventStore` for tests and embedding.
- :class:`JsonFileEventStore` which reads one export file per user and
  normalizes raw posts, emails, media and diary entries into
  :class:`~lifestory.core.models.TimelineEvent` objects.

Export file format (``<root>/<user_id>.json``)::

    {
      "posts":  [{"id": "p1", "timestamp": "2020-01-02T10:00:00Z", "text": "...",
                  "provider": "instagram", "media_urls": ["https://..."]}],
      "emails": [{"id": "e1", "timestamp": "...", "subject": "...", "sender": "..."}],
      "media":  [{"id": "m1", "taken_at": "...", "mime_type": "image/jpeg",
                  "url": "https://...", "latitude": 48.85, "longitude": 2.35}],
      "diary":  [{"id": "d1", "timestamp": "...", "text": "...", "mood": "calm"}]
    }
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from lifestory.core.models import (
    DiaryMetadata,
    EmailMetadata,
    EventSourceType,
    GeoPoint,
    MediaMetadata,
    PostMetadata,
    TimelineEvent,
)

logger = logging.getLogger(__name__)


class EventStoreError(Exception):
    """Raised when events cannot be read from the backing store."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class EventStore(Protocol):
    """Read contract the timeline constructor depends on."""

    def fetch_events(self, user_id: str) -> list[TimelineEvent]:
        ...


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryEventStore:
    """Event store backed by a dict. Returned lists are copies."""

    def __init__(self, events: Iterable[TimelineEvent] | None = None) -> None:
        self._events: dict[str, list[TimelineEvent]] = {}
        self._lock = threading.Lock()
        if events:
            self.add_events(events)

    def add_events(self, events: Iterable[TimelineEvent]) -> None:
        with self._lock:
            for event in events:
                self._events.setdefault(event.user_id, []).append(event)

    def fetch_events(self, user_id: str) -> list[TimelineEvent]:
        with self._lock:
            return list(self._events.get(user_id, []))


# =============================================================================
# Normalization
# =============================================================================


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _split_urls(value: Any) -> list[str]:
    if isinstance(value, str):
        return [url.strip() for url in value.split(",") if url.strip()]
    if isinstance(value, list):
        return [str(url) for url in value if url]
    return []


def _location(record: dict[str, Any]) -> GeoPoint | None:
    lat, lng = record.get("latitude"), record.get("longitude")
    if lat is None or lng is None:
        return None
    try:
        return GeoPoint(lat=float(lat), lng=float(lng))
    except (TypeError, ValueError):
        return None


def normalize_post(user_id: str, record: dict[str, Any]) -> TimelineEvent | None:
    timestamp = parse_timestamp(record.get("timestamp"))
    if timestamp is None or not record.get("id"):
        return None
    return TimelineEvent(
        id=str(record["id"]),
        user_id=user_id,
        source_type=EventSourceType.POST,
        source_id=str(record["id"]),
        timestamp=timestamp,
        content=record.get("text") or "",
        metadata=PostMetadata(
            provider=record.get("provider"),
            platform_id=record.get("platform_id"),
            engagement=record.get("engagement_likes"),
            media_urls=_split_urls(record.get("media_urls")),
            location=_location(record),
        ),
    )


def normalize_email(user_id: str, record: dict[str, Any]) -> TimelineEvent | None:
    timestamp = parse_timestamp(record.get("timestamp"))
    if timestamp is None or not record.get("id"):
        return None
    return TimelineEvent(
        id=str(record["id"]),
        user_id=user_id,
        source_type=EventSourceType.EMAIL,
        source_id=str(record["id"]),
        timestamp=timestamp,
        content=record.get("subject") or "",
        metadata=EmailMetadata(
            provider=record.get("provider"),
            sender=record.get("sender"),
            recipient=record.get("recipient"),
            category=record.get("category"),
        ),
    )


def normalize_media(user_id: str, record: dict[str, Any]) -> TimelineEvent | None:
    # Media without a capture time cannot be placed on the timeline
    timestamp = parse_timestamp(record.get("taken_at"))
    if timestamp is None or not record.get("id"):
        return None
    urls = _split_urls(record.get("url")) + _split_urls(record.get("media_urls"))
    return TimelineEvent(
        id=str(record["id"]),
        user_id=user_id,
        source_type=EventSourceType.MEDIA,
        source_id=str(record["id"]),
        timestamp=timestamp,
        content=record.get("caption") or "",
        metadata=MediaMetadata(
            provider=record.get("provider"),
            mime_type=record.get("mime_type"),
            media_urls=urls,
            location=_location(record),
        ),
    )


def normalize_diary(user_id: str, record: dict[str, Any]) -> TimelineEvent | None:
    timestamp = parse_timestamp(record.get("timestamp"))
    if timestamp is None or not record.get("id"):
        return None
    return TimelineEvent(
        id=str(record["id"]),
        user_id=user_id,
        source_type=EventSourceType.DIARY,
        source_id=str(record["id"]),
        timestamp=timestamp,
        content=record.get("text") or "",
        metadata=DiaryMetadata(mood=record.get("mood"), location=_location(record)),
    )


NORMALIZERS: dict[str, Callable[[str, dict[str, Any]], TimelineEvent | None]] = {
    "posts": normalize_post,
    "emails": normalize_email,
    "media": normalize_media,
    "diary": normalize_diary,
}


def normalize_export(user_id: str, export: dict[str, Any]) -> list[TimelineEvent]:
    """Turn a raw export into events, in source order (posts, emails, media, diary).

    Records without an id or a parseable timestamp are skipped.
    """
    events: list[TimelineEvent] = []
    skipped = 0
    for section, normalizer in NORMALIZERS.items():
        records = export.get(section) or []
        if not isinstance(records, list):
            logger.warning(f"Ignoring '{section}' for {user_id}: expected a list")
            continue
        for record in records:
            event = normalizer(user_id, record) if isinstance(record, dict) else None
            if event is None:
                skipped += 1
                continue
            events.append(event)

    if skipped:
        logger.warning(f"Skipped {skipped} record(s) without id or timestamp for {user_id}")
    return events


# =============================================================================
# JSON file store
# =============================================================================


class JsonFileEventStore:
    """Reads ``<root>/<user_id>.json`` export files.

    A missing file means the user has no data and yields zero events.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, user_id: str) -> Path:
        return self.root / f"{user_id}.json"

    def fetch_events(self, user_id: str) -> list[TimelineEvent]:
        path = self.path_for(user_id)
        if not path.exists():
            logger.info(f"No export found for {user_id} at {path}")
            return []

        try:
            export = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise EventStoreError(f"Cannot read {path}: {e}", original_error=e) from e
        except json.JSONDecodeError as e:
            raise EventStoreError(f"Malformed export {path}: {e}", original_error=e) from e

        if not isinstance(export, dict):
            raise EventStoreError(f"Malformed export {path}: top level must be an object")

        events = normalize_export(user_id, export)
        logger.debug(f"Loaded {len(events)} events for {user_id} from {path}")
        return events
