"""Explicit wiring of the long-lived service objects.

Everything is built once from an :class:`AppConfig` and handed to its
consumers; nothing is a module-level singleton. Tests and embedding
applications pass their own backend, event store or queue to substitute
any piece.

Example:
    >>> services = build_services(get_config())
    >>> response = submit_biography_job(services.queue, BiographyJobPayload(user_id="u1"))
    >>> services.worker.process_until_idle()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from lifestory.ai.backend import AIBackend, GeminiBackend
from lifestory.ai.cache import CacheStore, FileCacheStore, MemoryCacheStore
from lifestory.ai.gateway import AIGateway
from lifestory.ai.usage_tracker import UsageTracker
from lifestory.biography.chapters import ChapterSegmenter
from lifestory.biography.narrative import NarrativeGenerator
from lifestory.config import AppConfig, CacheBackend, find_api_key
from lifestory.core.events import EventStore, JsonFileEventStore
from lifestory.core.timeline import TimelineConstructor
from lifestory.enrichment.categorization import CategorizationService
from lifestory.enrichment.sentiment import SentimentService
from lifestory.jobs.models import RetryPolicy
from lifestory.jobs.pipeline import BiographyPipeline
from lifestory.jobs.queue import InMemoryJobQueue, JobQueue
from lifestory.jobs.worker import BiographyWorker

logger = logging.getLogger(__name__)

USAGE_FILENAME = "usage.json"


def usage_path(config: AppConfig) -> Path:
    """Usage ledger location, beside the cache directory rather than inside it."""
    return config.paths.cache_dir.parent / USAGE_FILENAME


@dataclass
class Services:
    """The assembled object graph."""

    config: AppConfig
    event_store: EventStore
    cache: CacheStore | None
    usage_tracker: UsageTracker
    gateway: AIGateway
    constructor: TimelineConstructor
    categorizer: CategorizationService
    sentiment: SentimentService
    narrator: NarrativeGenerator
    segmenter: ChapterSegmenter
    pipeline: BiographyPipeline
    queue: JobQueue
    worker: BiographyWorker


def build_cache(config: AppConfig) -> CacheStore | None:
    if not config.cache.enabled:
        return None
    if config.cache.backend == CacheBackend.FILE:
        return FileCacheStore(config.paths.cache_dir)
    return MemoryCacheStore()


def build_services(
    config: AppConfig,
    backend: AIBackend | None = None,
    event_store: EventStore | None = None,
    cache: CacheStore | None = None,
    queue: JobQueue | None = None,
    usage_tracker: UsageTracker | None = None,
) -> Services:
    """Construct every service from ``config``.

    Any argument left as None is built from the configuration; the Gemini
    backend picks up the API key from the environment or keyring.
    """
    backend = backend or GeminiBackend(api_key=find_api_key())
    event_store = event_store or JsonFileEventStore(config.paths.data_dir)
    cache = cache if cache is not None else build_cache(config)
    usage_tracker = usage_tracker or UsageTracker(storage_path=usage_path(config))

    gateway = AIGateway(backend, cache=cache, usage_tracker=usage_tracker, config=config.ai)
    constructor = TimelineConstructor(event_store)
    categorizer = CategorizationService(
        gateway,
        batch_size=config.ai.enrichment_batch_size,
        model=config.ai.enrichment_model,
    )
    sentiment = SentimentService(
        gateway,
        batch_size=config.ai.enrichment_batch_size,
        model=config.ai.enrichment_model,
    )
    narrator = NarrativeGenerator(
        gateway,
        narrative_model=config.ai.narrative_model,
        title_model=config.ai.enrichment_model,
    )
    segmenter = ChapterSegmenter(narrator)
    pipeline = BiographyPipeline(constructor, categorizer, sentiment, segmenter, narrator)

    queue = queue or InMemoryJobQueue(
        name=config.jobs.queue_name,
        default_retry_policy=RetryPolicy(
            attempts=config.jobs.attempts,
            backoff_delay_seconds=config.jobs.backoff_delay_seconds,
        ),
    )
    worker = BiographyWorker(
        queue,
        pipeline,
        concurrency=config.jobs.concurrency,
        poll_interval_seconds=config.jobs.poll_interval_seconds,
    )

    logger.debug(
        f"Services built: cache={type(cache).__name__ if cache else 'disabled'}, "
        f"queue={queue.name}, concurrency={config.jobs.concurrency}"
    )
    return Services(
        config=config,
        event_store=event_store,
        cache=cache,
        usage_tracker=usage_tracker,
        gateway=gateway,
        constructor=constructor,
        categorizer=categorizer,
        sentiment=sentiment,
        narrator=narrator,
        segmenter=segmenter,
        pipeline=pipeline,
        queue=queue,
        worker=worker,
    )
