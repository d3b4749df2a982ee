"""AI Gateway: the only component that calls the generative backend.

Responsibilities:
    - Content-addressed response caching (key covers the full message list
      including the injected system prompt, the model, the temperature and
      the token budget). Cache hits are returned with ``cached=True`` and
      are not billed again.
    - Token and cost accounting through :class:`UsageTracker`.
    - Streaming (never cached) and fixed-window batch mode.
    - Wrapping every backend failure into :class:`AIGatewayError`.

The gateway never retries. Callers own their retry policy; for biography
jobs that is the job queue.

Example:
    >>> gateway = AIGateway(backend, cache=MemoryCacheStore())
    >>> first = gateway.generate_text("Describe 2019 in one line")
    >>> second = gateway.generate_text("Describe 2019 in one line")
    >>> second.cached, second.text == first.text
    (True, True)
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterator

from pydantic import BaseModel, Field

from lifestory.ai.backend import AIBackend, AIBackendError
from lifestory.ai.cache import CacheStore, build_cache_key
from lifestory.ai.usage_tracker import UsageTracker
from lifestory.config import AIConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================


class AIGatewayError(Exception):
    """A generative call failed.

    Attributes:
        operation: Gateway operation that failed (e.g. ``chat_completion``).
        message: Human-readable description including the original message.
        retriable: Whether the backend flagged the failure as transient.
        original_error: The underlying exception.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        retriable: bool = False,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.message = message
        self.retriable = retriable
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Options and Results
# =============================================================================


class CompletionOptions(BaseModel):
    """Per-call overrides. Unset fields use the gateway's AIConfig."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    use_cache: bool = True


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResult(BaseModel):
    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    model: str = ""
    cached: bool = False

    @property
    def billed_cost(self) -> float:
        """Cost actually incurred by this call (zero for cache hits)."""
        return 0.0 if self.cached else self.cost


class TextGenerationResult(BaseModel):
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    model: str = ""
    cached: bool = False

    @property
    def billed_cost(self) -> float:
        return 0.0 if self.cached else self.cost


# =============================================================================
# Gateway
# =============================================================================


class AIGateway:
    """Caching, cost-tracking front door to an :class:`AIBackend`.

    Attributes:
        backend: The generative backend.
        cache: Response cache, or None to disable caching entirely.
        usage_tracker: Ledger of live calls.
        config: Defaults for model, sampling, TTL and batch mode.
    """

    def __init__(
        self,
        backend: AIBackend,
        cache: CacheStore | None = None,
        usage_tracker: UsageTracker | None = None,
        config: AIConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.usage_tracker = usage_tracker or UsageTracker()
        self.config = config or AIConfig()
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return bool(getattr(self.backend, "is_configured", True))

    @property
    def total_cost(self) -> float:
        return self.usage_tracker.get_total_cost()

    def _resolve(self, options: CompletionOptions | None) -> tuple[CompletionOptions, str, float, int]:
        opts = options or CompletionOptions()
        model = opts.model or self.config.default_model
        temperature = opts.temperature if opts.temperature is not None else self.config.temperature
        max_tokens = opts.max_tokens or self.config.max_output_tokens
        return opts, model, temperature, max_tokens

    @staticmethod
    def _with_system_prompt(
        messages: list[dict[str, str]], system_prompt: str | None
    ) -> list[dict[str, str]]:
        if not system_prompt:
            return list(messages)
        return [{"role": "system", "content": system_prompt}, *messages]

    # -------------------------------------------------------------------------
    # Cache access (best effort)
    # -------------------------------------------------------------------------

    def _cache_get(self, key: str) -> dict[str, Any] | None:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed, treating as miss: {type(e).__name__}")
            return None

    def _cache_set(self, key: str, value: dict[str, Any]) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(key, value, ttl_seconds=self.config.cache_ttl_seconds)
        except Exception as e:
            logger.warning(f"Cache write failed: {type(e).__name__}")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def chat_completion(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions | None = None,
    ) -> ChatCompletionResult:
        """Run a chat completion, served from cache when possible.

        Raises:
            AIGatewayError: If the backend call fails.
        """
        opts, model, temperature, max_tokens = self._resolve(options)
        full_messages = self._with_system_prompt(messages, opts.system_prompt)
        cache_key = build_cache_key(full_messages, model, temperature, max_tokens)
        short_key = cache_key.split(":", 1)[1][:12]

        if opts.use_cache:
            cached = self._cache_get(cache_key)
            if cached is not None:
                logger.debug(f"chat_completion cache hit: model={model} key={short_key}")
                return ChatCompletionResult.model_validate({**cached, "cached": True})

        start = time.perf_counter()
        try:
            completion = self.backend.complete(
                model=model,
                messages=full_messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except AIBackendError as e:
            self.usage_tracker.record_failure(model, "chat_completion", type(e).__name__)
            logger.error(f"chat_completion failed: model={model} error={e.message}")
            raise AIGatewayError(
                "chat_completion", f"AI backend error: {e.message}", e.retriable, e
            ) from e
        except Exception as e:
            self.usage_tracker.record_failure(model, "chat_completion", type(e).__name__)
            logger.error(f"chat_completion failed: model={model} error={type(e).__name__}")
            raise AIGatewayError("chat_completion", f"AI backend error: {e}", False, e) from e

        latency_ms = (time.perf_counter() - start) * 1000
        record = self.usage_tracker.record(
            model=model,
            operation="chat_completion",
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            latency_ms=latency_ms,
        )
        result = ChatCompletionResult(
            content=completion.content,
            usage=TokenUsage(
                prompt_tokens=completion.prompt_tokens,
                completion_tokens=completion.completion_tokens,
                total_tokens=completion.prompt_tokens + completion.completion_tokens,
            ),
            cost=record.estimated_cost_usd,
            model=model,
            cached=False,
        )
        logger.debug(
            f"chat_completion: model={model} key={short_key} messages={len(full_messages)} "
            f"tokens={result.usage.total_tokens} cost=${result.cost:.5f} latency={latency_ms:.0f}ms"
        )

        if opts.use_cache:
            self._cache_set(cache_key, result.model_dump(exclude={"cached"}))
        return result

    def generate_text(
        self, prompt: str, options: CompletionOptions | None = None
    ) -> TextGenerationResult:
        """Single-prompt convenience wrapper over :meth:`chat_completion`."""
        result = self.chat_completion([{"role": "user", "content": prompt}], options)
        return TextGenerationResult(
            text=result.content,
            usage=result.usage,
            cost=result.cost,
            model=result.model,
            cached=result.cached,
        )

    def stream_chat_completion(
        self,
        messages: list[dict[str, str]],
        on_chunk: Callable[[str], None],
        options: CompletionOptions | None = None,
    ) -> str:
        """Stream a completion, calling ``on_chunk`` for every text chunk.

        Streams are never cached. Returns the concatenated text. Exceptions
        raised by ``on_chunk`` propagate unchanged and end the stream.

        Raises:
            AIGatewayError: If the backend fails mid-stream; the stream stops.
        """
        opts, model, temperature, max_tokens = self._resolve(options)
        full_messages = self._with_system_prompt(messages, opts.system_prompt)
        chunks: list[str] = []

        for chunk in self._backend_stream(model, full_messages, temperature, max_tokens):
            chunks.append(chunk)
            on_chunk(chunk)

        logger.debug(f"stream_chat_completion: model={model} chunks={len(chunks)}")
        return "".join(chunks)

    def _backend_stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> Iterator[str]:
        try:
            yield from self.backend.stream(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except AIBackendError as e:
            logger.error(f"stream_chat_completion failed: model={model} error={e.message}")
            raise AIGatewayError(
                "stream_chat_completion", f"AI streaming error: {e.message}", e.retriable, e
            ) from e
        except Exception as e:
            logger.error(f"stream_chat_completion failed: model={model} error={type(e).__name__}")
            raise AIGatewayError("stream_chat_completion", f"AI streaming error: {e}", False, e) from e

    def batch_generate(
        self,
        prompts: list[str],
        options: CompletionOptions | None = None,
        batch_size: int | None = None,
        delay_seconds: float | None = None,
    ) -> list[TextGenerationResult]:
        """Generate many prompts in fixed-size concurrent groups.

        Each group runs concurrently; the gateway then sleeps a fixed delay
        before the next group. Results come back in prompt order.

        Raises:
            AIGatewayError: If any request fails.
        """
        size = batch_size or self.config.batch_size
        delay = self.config.batch_delay_seconds if delay_seconds is None else delay_seconds
        results: list[TextGenerationResult] = []

        for start in range(0, len(prompts), size):
            group = prompts[start : start + size]
            with ThreadPoolExecutor(max_workers=len(group), thread_name_prefix="ai-batch") as pool:
                futures = [pool.submit(self.generate_text, prompt, options) for prompt in group]
                results.extend(future.result() for future in futures)

            if start + size < len(prompts):
                self._sleep(delay)

        logger.debug(f"batch_generate: {len(prompts)} prompts in groups of {size}")
        return results

    def generate_embedding(self, text: str, model: str | None = None) -> list[float]:
        """Embed ``text`` into a vector.

        Raises:
            AIGatewayError: If the backend call fails.
        """
        model = model or self.config.embedding_model
        try:
            embedding = self.backend.embed(text, model)
        except AIBackendError as e:
            raise AIGatewayError("generate_embedding", f"AI embedding error: {e.message}", e.retriable, e) from e
        except Exception as e:
            raise AIGatewayError("generate_embedding", f"AI embedding error: {e}", False, e) from e

        logger.debug(f"generate_embedding: model={model} chars={len(text)} dims={len(embedding)}")
        return embedding

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough token count: one token per four characters."""
        return math.ceil(len(text) / 4)

    def test_connection(self) -> bool:
        """Make a tiny uncached call and report whether it succeeded."""
        try:
            self.generate_text(
                "Hello, this is a test.",
                CompletionOptions(max_tokens=10, use_cache=False),
            )
        except AIGatewayError as e:
            logger.warning(f"Connection test failed: {e.message}")
            return False
        return True
