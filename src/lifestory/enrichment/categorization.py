"""Event categorization.

Events are sent to the model in fixed-size batches, one gateway call per
batch. The reply must be a JSON array aligned with the batch. A reply
that cannot be parsed, is not an array, or has the wrong length gives
every event of that batch :meth:`CategorizationResult.fallback`; the
remaining batches still run.

Gateway failures are not recovered here. They propagate so the job retry
policy decides what happens next.
"""

from __future__ import annotations

import logging
from typing import Any

from lifestory.ai.gateway import AIGateway, CompletionOptions
from lifestory.ai.parsing import ResponseParseError, parse_json_array
from lifestory.ai.prompts import CATEGORIZATION_PROMPT, format_events_for_categorization
from lifestory.core.models import CategorizationResult, TimelineEvent

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
CATEGORIZATION_TEMPERATURE = 0.3
DEFAULT_CONFIDENCE = 0.5


class CategorizationService:
    """Assigns a :class:`BiographyCategory` and tags to events.

    Attributes:
        gateway: AI gateway used for every call.
        batch_size: Events per gateway call.
        model: Model override; the gateway default when None.
    """

    def __init__(
        self,
        gateway: AIGateway,
        batch_size: int = DEFAULT_BATCH_SIZE,
        model: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.batch_size = batch_size
        self.model = model

    def _options(self, system_prompt: str) -> CompletionOptions:
        return CompletionOptions(
            model=self.model,
            temperature=CATEGORIZATION_TEMPERATURE,
            system_prompt=system_prompt,
        )

    def categorize_event(self, event: TimelineEvent) -> CategorizationResult:
        """Categorize a single event."""
        return self._categorize(event_batch=[event])[0]

    def categorize_batch(self, events: list[TimelineEvent]) -> dict[str, CategorizationResult]:
        """Categorize ``events`` in sequential batches.

        Returns:
            Mapping of event id to result, one entry per input event.

        Raises:
            AIGatewayError: If a gateway call fails.
        """
        results: dict[str, CategorizationResult] = {}
        if not events:
            return results

        for start in range(0, len(events), self.batch_size):
            batch = events[start : start + self.batch_size]
            for event, result in zip(batch, self._categorize(batch)):
                results[event.id] = result

        fallbacks = sum(1 for r in results.values() if r.is_fallback)
        logger.info(f"Categorized {len(results)} events ({fallbacks} fallbacks)")
        return results

    def _categorize(self, event_batch: list[TimelineEvent]) -> list[CategorizationResult]:
        system, prompt = CATEGORIZATION_PROMPT.render(
            events=format_events_for_categorization(event_batch)
        )
        response = self.gateway.generate_text(prompt, self._options(system))

        try:
            items = parse_json_array(response.text, expected_length=len(event_batch))
        except ResponseParseError as e:
            logger.warning(
                f"Categorization reply unusable for batch of {len(event_batch)} events: {e}"
            )
            return [CategorizationResult.fallback() for _ in event_batch]

        return [self._to_result(item) for item in items]

    @staticmethod
    def _to_result(item: Any) -> CategorizationResult:
        if not isinstance(item, dict):
            return CategorizationResult.fallback()
        return CategorizationResult(
            category=item.get("category"),
            tags=item.get("tags"),
            confidence=item.get("confidence", DEFAULT_CONFIDENCE),
            reasoning=item.get("reasoning"),
        )
