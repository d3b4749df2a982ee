"""AI layer for lifestory.

The gateway is the only component allowed to call the generative backend;
enrichment and narrative code go through it.

Exports:
    - AIGateway: caching, cost-tracking front door to a backend
    - GeminiBackend: google-genai implementation of AIBackend
    - MemoryCacheStore / FileCacheStore: response caches
    - UsageTracker: token and cost ledger
    - Exception types for typed error handling
"""

from lifestory.ai.backend import AIBackend, AIBackendError, BackendCompletion, GeminiBackend
from lifestory.ai.cache import CacheStore, FileCacheStore, MemoryCacheStore, build_cache_key
from lifestory.ai.gateway import (
    AIGateway,
    AIGatewayError,
    ChatCompletionResult,
    CompletionOptions,
    TextGenerationResult,
    TokenUsage,
)
from lifestory.ai.parsing import ResponseParseError
from lifestory.ai.usage_tracker import PRICING, UsageTracker, calculate_cost

__all__ = [
    "AIBackend",
    "AIBackendError",
    "AIGateway",
    "AIGatewayError",
    "BackendCompletion",
    "CacheStore",
    "ChatCompletionResult",
    "CompletionOptions",
    "FileCacheStore",
    "GeminiBackend",
    "MemoryCacheStore",
    "PRICING",
    "ResponseParseError",
    "TextGenerationResult",
    "TokenUsage",
    "UsageTracker",
    "build_cache_key",
    "calculate_cost",
]
