"""Central Pytest Fixtures for lifestory.

Reusable test data, a scripted AI backend and fully wired services so
tests never reach the network.

Fixtures included:
- Events: make_event, career_events, sample_timeline, export_dir
- AI: scripted_backend, memory_cache, gateway
- Services: fake_clock, services
- Config: clean_env, restore_package_logger
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from lifestory.ai.backend import AIBackendError, BackendCompletion
from lifestory.ai.cache import MemoryCacheStore
from lifestory.ai.gateway import AIGateway
from lifestory.ai.usage_tracker import UsageTracker
from lifestory.config import AIConfig, AppConfig, reset_config
from lifestory.core.events import InMemoryEventStore
from lifestory.core.models import (
    BiographyCategory,
    EventSourceType,
    MediaMetadata,
    OpaqueMetadata,
    PostMetadata,
    Timeline,
    TimelineEvent,
)
from lifestory.core.timeline import TimelineConstructor
from lifestory.services import build_services

USER_ID = "user-1"
BASE_TIME = datetime(2020, 3, 1, 9, 0, tzinfo=timezone.utc)

# =============================================================================
# Helper Classes
# =============================================================================


class ScriptedBackend:
    """In-process stand-in for the Gemini backend.

    Replies are chosen from the kind of prompt received: categorization
    and sentiment batches get a JSON array sized to the batch, chapter
    titles a JSON object, narrative prompts plain prose.

    Attributes:
        overrides: Reply text per prompt kind, replacing the default reply.
        failures: Remaining failures per prompt kind (``"*"`` for any kind).
        calls: Every (kind, model, messages) received, in order.
    """

    KINDS = {
        "categorize": "Categorize the following events",
        "sentiment": "Analyze the emotional sentiment",
        "title": "generate a compelling chapter title",
        "introduction": "Write a compelling introduction",
        "conclusion": "Write a meaningful conclusion",
        "chapter": "Chapter: ",
    }

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.overrides: dict[str, str] = {}
        self.failures: dict[str, int] = {}
        self.calls: list[tuple[str, str, list[dict[str, str]]]] = []
        self.category = "Career"
        self.valence = 0.4
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        return self.configured

    def classify(self, prompt: str) -> str:
        for kind, marker in self.KINDS.items():
            if marker in prompt:
                return kind
        return "other"

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)

    def fail(self, kind: str = "*", times: int = 1) -> None:
        self.failures[kind] = times

    def _maybe_fail(self, kind: str) -> None:
        for key in (kind, "*"):
            remaining = self.failures.get(key, 0)
            if remaining > 0:
                self.failures[key] = remaining - 1
                raise AIBackendError("Service unavailable", retriable=True, status_code=503)

    def reply_for(self, kind: str, prompt: str) -> str:
        if kind in self.overrides:
            return self.overrides[kind]
        if kind == "categorize":
            size = len(re.findall(r"^Event \d+:", prompt, re.MULTILINE))
            return json.dumps(
                [
                    {
                        "category": self.category,
                        "tags": ["Project"],
                        "confidence": 0.9,
                        "reasoning": "Work related",
                    }
                    for _ in range(size)
                ]
            )
        if kind == "sentiment":
            size = len(re.findall(r'^\d+\. "', prompt, re.MULTILINE))
            return json.dumps(
                [
                    {
                        "valence": self.valence,
                        "arousal": 0.6,
                        "dominance": 0.5,
                        "primaryEmotion": "Joy",
                        "confidence": 0.8,
                    }
                    for _ in range(size)
                ]
            )
        if kind == "title":
            return json.dumps(
                {"title": "Building Something New", "summary": "A busy stretch of work.", "confidence": 0.8}
            )
        if kind == "introduction":
            return "Every life is a collection of small beginnings."
        if kind == "conclusion":
            return "And so the story continues beyond these pages."
        if kind == "chapter":
            return "The launch party at the office marked a turning point in this busy season."
        return "Hello!"

    def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> BackendCompletion:
        prompt = messages[-1]["content"]
        kind = self.classify(prompt)
        with self._lock:
            self.calls.append((kind, model, messages))
            self._maybe_fail(kind)
        text = self.reply_for(kind, prompt)
        return BackendCompletion(
            content=text,
            prompt_tokens=len(prompt) // 4 + 1,
            completion_tokens=len(text) // 4 + 1,
            finish_reason="STOP",
        )

    def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> Iterator[str]:
        prompt = messages[-1]["content"]
        kind = self.classify(prompt)
        with self._lock:
            self.calls.append((kind, model, messages))
        for word in self.reply_for(kind, prompt).split(" "):
            with self._lock:
                self._maybe_fail("stream")
            yield word + " "

    def embed(self, text: str, model: str) -> list[float]:
        with self._lock:
            self._maybe_fail("embed")
        return [float(len(text)), 0.5, 1.0]


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Event Fixtures
# =============================================================================


@pytest.fixture
def make_event() -> Callable[..., TimelineEvent]:
    """Factory for timeline events.

    ``at`` is either a datetime or an offset in days from ``BASE_TIME``.
    """

    def factory(
        event_id: str,
        at: datetime | float = 0,
        content: str = "",
        category: BiographyCategory | None = None,
        media_urls: list[str] | None = None,
        source_type: EventSourceType = EventSourceType.POST,
        user_id: str = USER_ID,
    ) -> TimelineEvent:
        timestamp = at if isinstance(at, datetime) else BASE_TIME + timedelta(days=at)
        if source_type == EventSourceType.MEDIA:
            metadata: Any = MediaMetadata(media_urls=media_urls or [])
        elif media_urls is not None or source_type == EventSourceType.POST:
            metadata = PostMetadata(provider="instagram", media_urls=media_urls or [])
        else:
            metadata = OpaqueMetadata()
        return TimelineEvent(
            id=event_id,
            user_id=user_id,
            source_type=source_type,
            source_id=event_id,
            timestamp=timestamp,
            content=content or f"Event {event_id}",
            metadata=metadata,
            category=category,
        )

    return factory


@pytest.fixture
def career_events(make_event) -> list[TimelineEvent]:
    """Twelve events over two years: a 2020 job phase and a 2021 trip phase."""
    events = [
        make_event(f"w{i}", at=i * 3, content=f"Shipped project milestone number {i} at work")
        for i in range(6)
    ]
    events += [
        make_event(f"t{i}", at=400 + i * 2, content=f"Travelled through the mountains, day {i}")
        for i in range(6)
    ]
    return events


@pytest.fixture
def sample_timeline(career_events) -> Timeline:
    """Timeline built from ``career_events``."""
    return TimelineConstructor(InMemoryEventStore(career_events)).construct_timeline(USER_ID)


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    """Directory holding a raw ``user-1.json`` export."""
    export = {
        "posts": [
            {
                "id": f"p{i}",
                "timestamp": (BASE_TIME + timedelta(days=i * 2)).isoformat(),
                "text": f"Started the new project sprint {i} with the team",
                "provider": "instagram",
                "media_urls": "https://cdn.example.com/a.jpg,https://cdn.example.com/b.jpg" if i == 0 else [],
            }
            for i in range(6)
        ],
        "emails": [
            {"id": "e1", "timestamp": "2020-03-04T12:00:00Z", "subject": "Offer letter", "sender": "hr@example.com"},
            {"id": "e-bad", "timestamp": "not a date", "subject": "Broken"},
        ],
        "media": [
            {
                "id": "m1",
                "taken_at": "2020-03-05T18:30:00",
                "mime_type": "video/mp4",
                "url": "https://cdn.example.com/clip.mp4",
                "latitude": 48.85,
                "longitude": 2.35,
            },
            {"id": "m2", "mime_type": "image/jpeg", "url": "https://cdn.example.com/x.jpg"},
        ],
        "diary": [{"id": "d1", "timestamp": 1583150400, "text": "Tired but happy", "mood": "calm"}],
    }
    path = tmp_path / "exports"
    path.mkdir()
    (path / f"{USER_ID}.json").write_text(json.dumps(export), encoding="utf-8")
    return path


# =============================================================================
# AI Fixtures
# =============================================================================


@pytest.fixture
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def memory_cache() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def gateway(scripted_backend: ScriptedBackend, memory_cache: MemoryCacheStore) -> AIGateway:
    """Gateway over the scripted backend with an in-memory cache and no batch delay."""
    return AIGateway(
        scripted_backend,
        cache=memory_cache,
        usage_tracker=UsageTracker(),
        config=AIConfig(batch_delay_seconds=0.0),
        sleep=lambda seconds: None,
    )


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Defaults with every path under ``tmp_path``."""
    return AppConfig(
        paths={
            "data_dir": str(tmp_path / "data"),
            "cache_dir": str(tmp_path / "cache"),
            "output_dir": str(tmp_path / "output"),
            "log_dir": str(tmp_path / "logs"),
        },
        cache={"enabled": True, "backend": "memory"},
    )


@pytest.fixture
def services(app_config, scripted_backend, career_events):
    """Fully wired services over the scripted backend and ``career_events``."""
    return build_services(
        app_config,
        backend=scripted_backend,
        event_store=InMemoryEventStore(career_events),
        usage_tracker=UsageTracker(),
    )


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
    """Remove lifestory and API key variables and reset the cached config."""
    for name in list(os.environ):
        if name.startswith("LIFESTORY_") or name in ("GEMINI_API_KEY", "GOOGLE_API_KEY"):
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield monkeypatch
    reset_config()


@pytest.fixture
def restore_package_logger() -> Iterator[logging.Logger]:
    """Undo setup_logging() changes to the package logger."""
    package_logger = logging.getLogger("lifestory")
    handlers, level, propagate = package_logger.handlers[:], package_logger.level, package_logger.propagate
    yield package_logger
    for handler in package_logger.handlers:
        if handler not in handlers:
            handler.close()
    package_logger.handlers = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate
