"""Generative backend contract and the Gemini implementation.

The gateway talks to the model through :class:`AIBackend` only:

- ``complete``: messages in, text plus token usage out.
- ``stream``: messages in, text chunks out as they arrive.
- ``embed``: text in, a fixed-length vector out.

Messages use the chat shape ``{"role": "system" | "user" | "assistant",
"content": str}``. :class:`GeminiBackend` maps system messages onto the
Gemini system instruction and assistant turns onto the ``model`` role.

Example:
    >>> backend = GeminiBackend(api_key=get_api_key())
    >>> completion = backend.complete(
    ...     model="gemini-2.0-flash",
    ...     messages=[{"role": "user", "content": "Say hello"}],
    ...     temperature=0.3,
    ...     max_tokens=20,
    ... )
    >>> completion.content
    'Hello!'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import SecretStr

logger = logging.getLogger(__name__)

RETRIABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class AIBackendError(Exception):
    """Raised by a backend when a call fails.

    Attributes:
        message: Human-readable error description (safe to log).
        retriable: Whether retrying the same request may succeed.
        status_code: HTTP status reported by the service, if any.
        original_error: The underlying exception.
    """

    def __init__(
        self,
        message: str,
        retriable: bool = False,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retriable = retriable
        self.status_code = status_code
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


@dataclass
class BackendCompletion:
    """Raw result of one completion call."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    finish_reason: str | None = None


class AIBackend(Protocol):
    """What the gateway requires from a generative backend."""

    def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> BackendCompletion:
        ...

    def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> Iterator[str]:
        ...

    def embed(self, text: str, model: str) -> list[float]:
        ...

    @property
    def is_configured(self) -> bool:
        ...


# =============================================================================
# Gemini
# =============================================================================


def split_messages(messages: list[dict[str, str]]) -> tuple[str | None, list[types.Content]]:
    """Separate system messages from the conversation turns.

    Returns:
        The joined system instruction (or None) and Gemini contents.
    """
    system_parts: list[str] = []
    contents: list[types.Content] = []
    for message in messages:
        role = message.get("role", "user")
        text = message.get("content", "")
        if role == "system":
            system_parts.append(text)
            continue
        contents.append(
            types.Content(
                role="model" if role == "assistant" else "user",
                parts=[types.Part(text=text)],
            )
        )
    return ("\n\n".join(system_parts) if system_parts else None), contents


class GeminiBackend:
    """Backend on the ``google-genai`` SDK.

    Attributes:
        timeout_seconds: Per-request timeout handed to the HTTP client.
    """

    def __init__(
        self,
        api_key: SecretStr | str | None,
        client: genai.Client | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._client = client
        if self._client is None and api_key:
            secret = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
            http_options = (
                types.HttpOptions(timeout=int(timeout_seconds * 1000)) if timeout_seconds else None
            )
            self._client = genai.Client(api_key=secret, http_options=http_options)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> genai.Client:
        if self._client is None:
            raise AIBackendError("No Gemini API key configured", retriable=False)
        return self._client

    @staticmethod
    def _config(
        system_instruction: str | None, temperature: float, max_tokens: int
    ) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            max_output_tokens=max_tokens,
        )

    @staticmethod
    def _wrap(error: genai_errors.APIError) -> AIBackendError:
        code = getattr(error, "code", None)
        return AIBackendError(
            f"Gemini API error ({code}): {getattr(error, 'message', None) or error}",
            retriable=code in RETRIABLE_STATUS_CODES,
            status_code=code,
            original_error=error,
        )

    def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> BackendCompletion:
        client = self._require_client()
        system_instruction, contents = split_messages(messages)
        try:
            response = client.models.generate_content(
                model=model,
                contents=contents,
                config=self._config(system_instruction, temperature, max_tokens),
            )
        except genai_errors.APIError as e:
            raise self._wrap(e) from e

        usage: Any = getattr(response, "usage_metadata", None)
        finish_reason = None
        if response.candidates:
            finish_reason = str(response.candidates[0].finish_reason)

        return BackendCompletion(
            content=response.text or "",
            prompt_tokens=(usage.prompt_token_count or 0) if usage else 0,
            completion_tokens=(usage.candidates_token_count or 0) if usage else 0,
            finish_reason=finish_reason,
        )

    def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> Iterator[str]:
        client = self._require_client()
        system_instruction, contents = split_messages(messages)
        try:
            for chunk in client.models.generate_content_stream(
                model=model,
                contents=contents,
                config=self._config(system_instruction, temperature, max_tokens),
            ):
                if chunk.text:
                    yield chunk.text
        except genai_errors.APIError as e:
            raise self._wrap(e) from e

    def embed(self, text: str, model: str) -> list[float]:
        client = self._require_client()
        try:
            result = client.models.embed_content(model=model, contents=text)
        except genai_errors.APIError as e:
            raise self._wrap(e) from e

        if not result.embeddings:
            return []
        return list(result.embeddings[0].values or [])
