"""Timeline construction.

Turns a user's normalized events into a :class:`~lifestory.core.models.Timeline`:
events sorted by timestamp, bursts of activity grouped into clusters and
long silences recorded as gaps.

- Sorting is stable, so events sharing a timestamp keep their fetch order.
- A cluster accumulates while each event follows the previous one within
  ``cluster_gap`` (24h). Clusters smaller than ``min_cluster_size`` (3) are
  discarded. Clusters never overlap.
- A gap is any adjacent pair at least ``significant_gap`` (30 days) apart.

Example:
    >>> constructor = TimelineConstructor(InMemoryEventStore(events))
    >>> timeline = constructor.construct_timeline("user-1")
    >>> [len(c.events) for c in timeline.clusters]
    [3]
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from lifestory.core.events import EventStore
from lifestory.core.models import (
    Timeline,
    TimelineCluster,
    TimelineEvent,
    TimelineGap,
    utcnow,
)

if TYPE_CHECKING:
    from lifestory.enrichment.categorization import CategorizationService

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class TimelineConstructor:
    """Builds timelines from an event store.

    Attributes:
        event_store: Source of normalized events.
        cluster_gap: Largest spacing between events of one cluster.
        min_cluster_size: Smallest cluster that is kept.
        significant_gap: Smallest silence recorded as a gap.
    """

    def __init__(
        self,
        event_store: EventStore,
        cluster_gap_hours: float = 24,
        min_cluster_size: int = 3,
        significant_gap_days: float = 30,
    ) -> None:
        self.event_store = event_store
        self.cluster_gap = timedelta(hours=cluster_gap_hours)
        self.min_cluster_size = min_cluster_size
        self.significant_gap = timedelta(days=significant_gap_days)

    def construct_timeline(self, user_id: str) -> Timeline:
        """Fetch, sort and analyse every event of ``user_id``.

        Event store failures propagate unchanged.
        """
        logger.info(f"Constructing timeline for user {user_id}")

        events = self.sort_events(self.event_store.fetch_events(user_id))
        clusters = self.generate_clusters(events)
        gaps = self.detect_gaps(events)

        if events:
            start_date, end_date = events[0].timestamp, events[-1].timestamp
        else:
            start_date = end_date = utcnow()

        timeline = Timeline(
            user_id=user_id,
            events=events,
            clusters=clusters,
            gaps=gaps,
            start_date=start_date,
            end_date=end_date,
        )
        logger.info(
            f"Timeline constructed with {len(events)} events, "
            f"{len(clusters)} clusters and {len(gaps)} gaps"
        )
        return timeline

    @staticmethod
    def sort_events(events: list[TimelineEvent]) -> list[TimelineEvent]:
        # sorted() is stable: equal timestamps keep fetch order
        return sorted(events, key=lambda event: event.timestamp)

    def generate_clusters(self, events: list[TimelineEvent]) -> list[TimelineCluster]:
        """Group sorted events into bursts of closely spaced activity."""
        if not events:
            return []

        clusters: list[TimelineCluster] = []
        current = [events[0]]

        for prev_event, event in zip(events, events[1:]):
            if event.timestamp - prev_event.timestamp <= self.cluster_gap:
                current.append(event)
                continue
            self._close_cluster(current, clusters)
            current = [event]

        self._close_cluster(current, clusters)
        return clusters

    def _close_cluster(
        self, members: list[TimelineEvent], clusters: list[TimelineCluster]
    ) -> None:
        if len(members) < self.min_cluster_size:
            return
        clusters.append(
            TimelineCluster(
                start_date=members[0].timestamp,
                end_date=members[-1].timestamp,
                events=members,
                significance=len(members),
            )
        )

    def detect_gaps(self, events: list[TimelineEvent]) -> list[TimelineGap]:
        """Record every adjacent pair of sorted events far enough apart."""
        gaps: list[TimelineGap] = []
        for prev_event, event in zip(events, events[1:]):
            delta = event.timestamp - prev_event.timestamp
            if delta >= self.significant_gap:
                gaps.append(
                    TimelineGap(
                        start_date=prev_event.timestamp,
                        end_date=event.timestamp,
                        duration_days=int(delta.total_seconds() // SECONDS_PER_DAY),
                    )
                )
        return gaps

    def enrich_timeline(
        self, timeline: Timeline, categorizer: "CategorizationService"
    ) -> Timeline:
        """Categorize every event of ``timeline`` in place and return it."""
        logger.info(f"Enriching timeline for user {timeline.user_id} with AI categorization")

        results = categorizer.categorize_batch(timeline.events)
        fallbacks = 0
        for event in timeline.events:
            result = results.get(event.id)
            if result is None:
                continue
            event.apply_categorization(result)
            fallbacks += result.is_fallback

        logger.info(f"Enriched {len(timeline.events)} events ({fallbacks} with fallback category)")
        return timeline
