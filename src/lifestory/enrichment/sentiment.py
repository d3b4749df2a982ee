"""Sentiment analysis and mood timelines.

Each event gets a :class:`SentimentScore` (valence, arousal, dominance,
primary emotion). Scores are clamped into range by the model class, so
out-of-range model output never leaks through. Batches follow the same
parsing rules as categorization: an unusable reply gives every event of
the batch :meth:`SentimentScore.fallback`.

A mood timeline buckets scored events by day, week or month, averages
each bucket and flags single events whose valence passes the milestone
threshold in either direction.

Period keys use 1-based, zero-padded months: ``2021-03-07`` (daily),
``2021-03-W1`` (weekly, ``W`` is ``day // 7``), ``2021-03`` (monthly).
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any

from lifestory.ai.gateway import AIGateway, CompletionOptions
from lifestory.ai.parsing import ResponseParseError, parse_json_array
from lifestory.ai.prompts import SENTIMENT_PROMPT, format_events_for_sentiment
from lifestory.core.models import (
    AggregationPeriod,
    EmotionalMilestone,
    MoodAverages,
    MoodDataPoint,
    MoodTimeline,
    SentimentScore,
    TimelineEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
MILESTONE_THRESHOLD = 0.7
SENTIMENT_TEMPERATURE = 0.3
SINGLE_MAX_TOKENS = 150
BATCH_MAX_TOKENS = 800
MILESTONE_REASON_CHARS = 100


def period_key(timestamp: datetime, period: AggregationPeriod) -> str:
    """Bucket key of ``timestamp`` for the given aggregation period."""
    if period == AggregationPeriod.DAILY:
        return f"{timestamp.year}-{timestamp.month:02d}-{timestamp.day:02d}"
    if period == AggregationPeriod.WEEKLY:
        return f"{timestamp.year}-{timestamp.month:02d}-W{timestamp.day // 7}"
    return f"{timestamp.year}-{timestamp.month:02d}"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


class SentimentService:
    """Scores events and builds mood timelines.

    Attributes:
        gateway: AI gateway used for every call.
        batch_size: Events per gateway call.
        milestone_threshold: Absolute valence above which an event is a
            peak (positive) or valley (negative).
        model: Model override; the gateway default when None.
    """

    def __init__(
        self,
        gateway: AIGateway,
        batch_size: int = DEFAULT_BATCH_SIZE,
        milestone_threshold: float = MILESTONE_THRESHOLD,
        model: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.batch_size = batch_size
        self.milestone_threshold = milestone_threshold
        self.model = model

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def analyze_event(self, event: TimelineEvent) -> SentimentScore:
        """Score a single event."""
        return self._analyze([event], SINGLE_MAX_TOKENS)[0]

    def analyze_batch(self, events: list[TimelineEvent]) -> dict[str, SentimentScore]:
        """Score ``events`` in sequential batches.

        Raises:
            AIGatewayError: If a gateway call fails.
        """
        results: dict[str, SentimentScore] = {}
        for start in range(0, len(events), self.batch_size):
            batch = events[start : start + self.batch_size]
            for event, score in zip(batch, self._analyze(batch, BATCH_MAX_TOKENS)):
                results[event.id] = score
        return results

    def _analyze(self, batch: list[TimelineEvent], max_tokens: int) -> list[SentimentScore]:
        system, prompt = SENTIMENT_PROMPT.render(events=format_events_for_sentiment(batch))
        response = self.gateway.generate_text(
            prompt,
            CompletionOptions(
                model=self.model,
                temperature=SENTIMENT_TEMPERATURE,
                max_tokens=max_tokens,
                system_prompt=system,
            ),
        )

        try:
            items = parse_json_array(response.text, expected_length=len(batch))
        except ResponseParseError as e:
            logger.warning(f"Sentiment reply unusable for batch of {len(batch)} events: {e}")
            return [SentimentScore.fallback() for _ in batch]

        return [self._to_score(item) for item in items]

    @staticmethod
    def _to_score(item: Any) -> SentimentScore:
        if not isinstance(item, dict):
            return SentimentScore.fallback()
        return SentimentScore(
            valence=item.get("valence"),
            arousal=item.get("arousal"),
            dominance=item.get("dominance"),
            primary_emotion=item.get("primaryEmotion", item.get("primary_emotion")),
            confidence=item.get("confidence"),
        )

    # -------------------------------------------------------------------------
    # Mood timeline
    # -------------------------------------------------------------------------

    def generate_mood_timeline(
        self,
        events: list[TimelineEvent],
        period: AggregationPeriod = AggregationPeriod.WEEKLY,
    ) -> MoodTimeline:
        """Score ``events``, attach the scores in place and aggregate them."""
        logger.info(f"Generating mood timeline for {len(events)} events")

        scores = self.analyze_batch(events)
        for event in events:
            score = scores.get(event.id)
            if score is not None:
                event.sentiment = score

        data_points = self.aggregate_by_period(events, period)
        return MoodTimeline(
            user_id=events[0].user_id if events else "",
            data_points=data_points,
            averages=self.calculate_averages(data_points),
            milestones=self.detect_emotional_milestones(events),
        )

    @staticmethod
    def aggregate_by_period(
        events: list[TimelineEvent], period: AggregationPeriod
    ) -> list[MoodDataPoint]:
        """Average the sentiment of each period bucket, oldest bucket first."""
        groups: dict[str, list[TimelineEvent]] = {}
        for event in events:
            groups.setdefault(period_key(event.timestamp, period), []).append(event)

        data_points: list[MoodDataPoint] = []
        for key, group in groups.items():
            scores = [e.sentiment for e in group if e.sentiment is not None]
            if not scores:
                continue
            # most_common keeps first-encountered order on ties
            emotion = Counter(s.primary_emotion for s in scores).most_common(1)[0][0]
            data_points.append(
                MoodDataPoint(
                    period_key=key,
                    date=group[0].timestamp,
                    valence=_mean([s.valence for s in scores]),
                    arousal=_mean([s.arousal for s in scores]),
                    dominance=_mean([s.dominance for s in scores]),
                    primary_emotion=emotion,
                    event_count=len(group),
                )
            )

        return sorted(data_points, key=lambda point: point.date)

    @staticmethod
    def calculate_averages(data_points: list[MoodDataPoint]) -> MoodAverages:
        if not data_points:
            return MoodAverages()
        return MoodAverages(
            valence=_mean([p.valence for p in data_points]),
            arousal=_mean([p.arousal for p in data_points]),
            dominance=_mean([p.dominance for p in data_points]),
        )

    def detect_emotional_milestones(self, events: list[TimelineEvent]) -> list[EmotionalMilestone]:
        """Flag events whose valence is beyond the threshold, in date order."""
        milestones: list[EmotionalMilestone] = []
        for event in events:
            score = event.sentiment
            if score is None:
                continue
            intensity = abs(score.valence)
            if intensity <= self.milestone_threshold:
                continue
            milestones.append(
                EmotionalMilestone(
                    date=event.timestamp,
                    type="peak" if score.valence > 0 else "valley",
                    emotion=score.primary_emotion,
                    intensity=intensity,
                    reason=event.content[:MILESTONE_REASON_CHARS],
                    event_ids=[event.id],
                )
            )
        return sorted(milestones, key=lambda milestone: milestone.date)
