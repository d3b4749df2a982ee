"""Token and cost accounting for generative calls.

Every live (non-cached) gateway call is recorded here with its token
counts and its cost computed from :data:`PRICING`. Cached responses are
never recorded, so totals reflect what was actually billed.

Example:
    >>> tracker = UsageTracker()
    >>> record = tracker.record(
    ...     model="gemini-1.5-pro",
    ...     operation="chat_completion",
    ...     prompt_tokens=1000,
    ...     completion_tokens=500,
    ...     latency_ms=900.0,
    ... )
    >>> round(record.estimated_cost_usd, 6)
    0.003125

Privacy:
    Only metadata is stored (tokens, timing, operation type). Prompt and
    response text never reach the tracker.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Pricing
# =============================================================================

PRICING: dict[str, dict[str, float]] = {
    "gemini-1.5-pro": {
        "input": 0.00125,  # per 1K input tokens
        "output": 0.00375,  # per 1K output tokens
    },
    "gemini-1.5-flash": {
        "input": 0.000075,
        "output": 0.0003,
    },
    "gemini-2.0-flash": {
        "input": 0.0001,
        "output": 0.0004,
    },
    "text-embedding-004": {
        "input": 0.0,
        "output": 0.0,
    },
}
"""Approximate USD pricing per 1K tokens. Estimates only."""

# Rates used for any model missing from PRICING
DEFAULT_PRICING_MODEL = "gemini-1.5-pro"


def calculate_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    pricing: dict[str, dict[str, float]] | None = None,
) -> float:
    """Cost of one call: ``prompt/1000 * input + completion/1000 * output``."""
    table = pricing if pricing is not None else PRICING
    rates = table.get(model) or table[DEFAULT_PRICING_MODEL]
    return (prompt_tokens / 1000) * rates["input"] + (completion_tokens / 1000) * rates["output"]


# =============================================================================
# Records
# =============================================================================


class UsageRecord(BaseModel):
    """One live API call. Failed calls carry zero tokens and zero cost."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    model: str
    operation: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    success: bool = True
    error_type: str | None = None
    estimated_cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class UsageLedger(BaseModel):
    """On-disk shape of the usage file."""

    records: list[UsageRecord] = Field(default_factory=list)


@dataclass
class UsageSummary:
    total_requests: int = 0
    failed_requests: int = 0
    total_tokens: int = 0
    total_estimated_cost_usd: float = 0.0
    by_operation: dict[str, int] = field(default_factory=dict)

    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return (self.total_requests - self.failed_requests) / self.total_requests


# =============================================================================
# Tracker
# =============================================================================


class UsageTracker:
    """Thread-safe ledger of API calls.

    Records live in memory. When ``storage_path`` is given they are loaded
    from and saved to that JSON file.

    Attributes:
        storage_path: Optional JSON file backing the ledger.
        pricing: Price table used for cost estimates.
    """

    def __init__(
        self,
        storage_path: Path | None = None,
        pricing: dict[str, dict[str, float]] | None = None,
    ) -> None:
        self.storage_path = storage_path
        self.pricing = pricing if pricing is not None else PRICING
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

        if self.storage_path is not None:
            self.load()

    def record(
        self,
        model: str,
        operation: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: float,
    ) -> UsageRecord:
        """Record a successful call and return it with its estimated cost."""
        cost = calculate_cost(model, prompt_tokens, completion_tokens, self.pricing)
        record = UsageRecord(
            model=model,
            operation=operation,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
            estimated_cost_usd=cost,
        )
        with self._lock:
            self._records.append(record)
        logger.debug(f"Recorded: {operation} on {model}, {record.total_tokens} tokens, ${cost:.4f}")
        return record

    def record_failure(self, model: str, operation: str, error_type: str) -> UsageRecord:
        record = UsageRecord(model=model, operation=operation, success=False, error_type=error_type)
        with self._lock:
            self._records.append(record)
        return record

    def get_total_cost(self) -> float:
        with self._lock:
            return sum(r.estimated_cost_usd for r in self._records)

    def get_summary(self) -> UsageSummary:
        with self._lock:
            records = list(self._records)
        summary = UsageSummary(total_requests=len(records))
        for record in records:
            summary.failed_requests += not record.success
            summary.total_tokens += record.total_tokens
            summary.total_estimated_cost_usd += record.estimated_cost_usd
            summary.by_operation[record.operation] = summary.by_operation.get(record.operation, 0) + 1
        return summary

    def save(self) -> None:
        if self.storage_path is None:
            return
        with self._lock:
            ledger = UsageLedger(records=list(self._records))
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            self.storage_path.write_text(ledger.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to save usage data: {type(e).__name__}")

    def load(self) -> None:
        """Replace in-memory records with the stored ledger; unreadable files are ignored."""
        if self.storage_path is None or not self.storage_path.exists():
            return
        try:
            ledger = UsageLedger.model_validate_json(self.storage_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load usage data: {type(e).__name__}")
            return
        with self._lock:
            self._records = ledger.records
        logger.debug(f"Loaded {len(ledger.records)} usage records")
