"""Tests for event stores and export normalization.

Tests cover:
- Timestamp parsing (ISO-8601, epoch seconds, naive values)
- Per-source normalization into typed metadata
- Skipping records without an id or timestamp
- The JSON file store: missing files, malformed files
- The in-memory store
"""

import json
from datetime import datetime, timezone

import pytest

from lifestory.core.events import (
    EventStoreError,
    InMemoryEventStore,
    JsonFileEventStore,
    normalize_export,
    normalize_media,
    normalize_post,
    parse_timestamp,
)
from lifestory.core.models import (
    DiaryMetadata,
    EmailMetadata,
    EventSourceType,
    MediaMetadata,
    PostMetadata,
)


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_iso_with_z_suffix(self):
        """A trailing Z is UTC."""
        assert parse_timestamp("2020-01-02T10:00:00Z") == datetime(2020, 1, 2, 10, tzinfo=timezone.utc)

    def test_naive_iso_treated_as_utc(self):
        """Naive timestamps get UTC attached."""
        parsed = parse_timestamp("2020-01-02T10:00:00")

        assert parsed.tzinfo == timezone.utc

    def test_epoch_seconds(self):
        """Numbers are Unix epoch seconds."""
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday", object()])
    def test_unparseable_values(self, value):
        """Anything else yields None."""
        assert parse_timestamp(value) is None


class TestNormalizers:
    """Tests for the per-source normalizers."""

    def test_post_with_comma_separated_media(self):
        """Comma-separated media URLs become a list."""
        event = normalize_post(
            "u1",
            {
                "id": "p1",
                "timestamp": "2020-05-01T08:00:00Z",
                "text": "Graduated!",
                "provider": "instagram",
                "media_urls": "https://x/a.jpg, https://x/b.jpg",
                "engagement_likes": 12,
            },
        )

        assert event.source_type == EventSourceType.POST
        assert event.content == "Graduated!"
        assert isinstance(event.metadata, PostMetadata)
        assert event.metadata.engagement == 12
        assert event.media_urls == ["https://x/a.jpg", "https://x/b.jpg"]
        assert event.has_media

    def test_post_without_id_skipped(self):
        """Records missing an id are dropped."""
        assert normalize_post("u1", {"timestamp": "2020-05-01T08:00:00Z"}) is None

    def test_media_requires_capture_time(self):
        """Media without taken_at cannot be placed."""
        assert normalize_media("u1", {"id": "m1", "url": "https://x/y.jpg"}) is None

    def test_media_location_and_type(self):
        """Coordinates become a GeoPoint; video mime types are videos."""
        event = normalize_media(
            "u1",
            {
                "id": "m1",
                "taken_at": "2020-05-01T08:00:00Z",
                "mime_type": "video/mp4",
                "url": "https://x/clip.mp4",
                "latitude": "48.85",
                "longitude": 2.35,
            },
        )

        assert isinstance(event.metadata, MediaMetadata)
        assert event.metadata.location.lat == 48.85
        assert event.media_type == "video"


class TestNormalizeExport:
    """Tests for normalize_export."""

    def test_sections_in_source_order(self, export_dir):
        """Posts, emails, media then diary; invalid records skipped."""
        export = json.loads((export_dir / "user-1.json").read_text())

        events = normalize_export("user-1", export)

        assert [e.id for e in events] == ["p0", "p1", "p2", "p3", "p4", "p5", "e1", "m1", "d1"]
        assert isinstance(events[6].metadata, EmailMetadata)
        assert events[6].metadata.sender == "hr@example.com"
        assert isinstance(events[8].metadata, DiaryMetadata)
        assert events[8].metadata.mood == "calm"

    def test_non_list_section_ignored(self):
        """A section that is not a list is skipped with a warning."""
        events = normalize_export("user-1", {"posts": {"id": "p1"}, "diary": []})

        assert events == []


class TestJsonFileEventStore:
    """Tests for JsonFileEventStore."""

    def test_reads_user_export(self, export_dir):
        """Events are loaded from <root>/<user_id>.json."""
        store = JsonFileEventStore(export_dir)

        events = store.fetch_events("user-1")

        assert len(events) == 9
        assert all(e.user_id == "user-1" for e in events)
        assert events[0].media_urls == ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"]

    def test_missing_file_means_no_events(self, tmp_path):
        """A user without an export has zero events."""
        assert JsonFileEventStore(tmp_path).fetch_events("nobody") == []

    def test_malformed_file_raises(self, tmp_path):
        """Broken JSON is an I/O failure."""
        (tmp_path / "user-1.json").write_text("{not json")

        with pytest.raises(EventStoreError, match="Malformed export"):
            JsonFileEventStore(tmp_path).fetch_events("user-1")

    def test_top_level_must_be_object(self, tmp_path):
        """A list at the top level is rejected."""
        (tmp_path / "user-1.json").write_text("[]")

        with pytest.raises(EventStoreError):
            JsonFileEventStore(tmp_path).fetch_events("user-1")


class TestInMemoryEventStore:
    """Tests for InMemoryEventStore."""

    def test_returns_copies(self, make_event):
        """Mutating the returned list does not change the store."""
        store = InMemoryEventStore([make_event("a")])

        fetched = store.fetch_events("user-1")
        fetched.clear()

        assert len(store.fetch_events("user-1")) == 1

    def test_add_events(self, make_event):
        store = InMemoryEventStore()
        store.add_events([make_event("a"), make_event("b", user_id="user-2")])

        assert [e.id for e in store.fetch_events("user-2")] == ["b"]
