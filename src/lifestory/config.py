"""Central configuration for lifestory.

Every module that needs settings receives them from here, either through
:func:`get_config` or, preferably, through the objects built by
:func:`lifestory.services.build_services`.

Configuration priority (highest wins):
    1. Environment variables (``LIFESTORY_*``, nested with ``__``)
    2. YAML config file
    3. In-code defaults

Example:
    >>> from lifestory.config import get_config, get_api_key
    >>> cfg = get_config()
    >>> cfg.jobs.attempts
    3

Config File Format (YAML):
    ```yaml
    ai:
      default_model: gemini-2.0-flash
      narrative_model: gemini-1.5-pro
      temperature: 0.7
      max_output_tokens: 4000
      cache_ttl_seconds: 604800
      batch_size: 5
      batch_delay_seconds: 1.0

    cache:
      backend: file        # memory | file
      enabled: true

    jobs:
      attempts: 3
      backoff_delay_seconds: 5
      concurrency: 2

    paths:
      data_dir: ./data
      cache_dir: ~/.lifestory/cache

    debug: false
    verbose: false
    ```
"""

from __future__ import annotations

import functools
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import keyring
import keyring.errors
import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class APIKeyNotFoundError(ConfigError):
    """Raised when no Gemini API key is available in any source."""

    pass


# =============================================================================
# Sections
# =============================================================================


class CacheBackend(str, Enum):
    """Where AI responses are cached."""

    MEMORY = "memory"
    FILE = "file"


class AIConfig(BaseModel):
    """Settings for the generative backend and the AI gateway.

    Attributes:
        default_model: Model used when a caller does not ask for one.
        narrative_model: Model for introductions, chapters and conclusions.
        enrichment_model: Model for categorization and sentiment batches.
        embedding_model: Model for text embeddings.
        temperature: Default sampling temperature.
        max_output_tokens: Default completion budget.
        cache_ttl_seconds: Lifetime of cached responses.
        batch_size: Concurrent requests per group in batch mode.
        batch_delay_seconds: Pause between batch groups.
        enrichment_batch_size: Events per categorization/sentiment call.
    """

    default_model: str = Field(default="gemini-2.0-flash")
    narrative_model: str = Field(default="gemini-1.5-pro")
    enrichment_model: str = Field(default="gemini-2.0-flash")
    embedding_model: str = Field(default="text-embedding-004")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4000, ge=1)
    cache_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=1)
    batch_size: int = Field(default=5, ge=1)
    batch_delay_seconds: float = Field(default=1.0, ge=0.0)
    enrichment_batch_size: int = Field(default=10, ge=1)


class CacheConfig(BaseModel):
    """AI response cache settings."""

    enabled: bool = True
    backend: CacheBackend = CacheBackend.MEMORY


class JobConfig(BaseModel):
    """Background job settings.

    Attributes:
        queue_name: Name of the biography queue.
        attempts: Total attempts per job, including the first.
        backoff_delay_seconds: First retry delay; doubles on every retry.
        concurrency: Jobs a worker runs at the same time.
        poll_interval_seconds: Idle wait between queue polls.
    """

    queue_name: str = "biography-generation"
    attempts: int = Field(default=3, ge=1)
    backoff_delay_seconds: float = Field(default=5.0, ge=0.0)
    concurrency: int = Field(default=2, ge=1, le=8)
    poll_interval_seconds: float = Field(default=0.5, gt=0.0)


class PathsConfig(BaseModel):
    """Filesystem locations."""

    data_dir: Path = Field(default=Path("./data"))
    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".lifestory" / "cache")
    output_dir: Path = Field(default=Path("./output"))
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".lifestory" / "logs")

    @field_validator("data_dir", "cache_dir", "output_dir", "log_dir", mode="before")
    @classmethod
    def expand_user(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Path(value).expanduser()
        if isinstance(value, Path):
            return value.expanduser()
        return value


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Example:
        >>> import os
        >>> os.environ["LIFESTORY_JOBS__CONCURRENCY"] = "1"
        >>> AppConfig().jobs.concurrency
        1
    """

    ai: AIConfig = Field(default_factory=AIConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    jobs: JobConfig = Field(default_factory=JobConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    debug: bool = Field(default=False, description="Enable debug mode.")
    verbose: bool = Field(default=False, description="Enable verbose output.")

    model_config = {
        "env_prefix": "LIFESTORY_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Values from the YAML file arrive as init kwargs; env must still win.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @property
    def log_level(self) -> str:
        if self.debug:
            return "DEBUG"
        return "INFO" if self.verbose else "WARNING"


# =============================================================================
# API Key
# =============================================================================

KEYRING_SERVICE = "lifestory"
KEYRING_USERNAME = "gemini"
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


def _read_key_from_keyring() -> str | None:
    try:
        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except keyring.errors.KeyringError as e:
        logger.debug(f"Keyring unavailable: {type(e).__name__}")
        return None


def find_api_key() -> SecretStr | None:
    """Look up the Gemini API key without raising.

    Sources are tried in order: ``GEMINI_API_KEY``, ``GOOGLE_API_KEY``,
    then the system keyring.
    """
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            logger.debug(f"API key loaded from {name}")
            return SecretStr(value)

    value = _read_key_from_keyring()
    if value:
        logger.debug("API key loaded from system keyring")
        return SecretStr(value.strip())

    return None


def get_api_key() -> SecretStr:
    """Return the Gemini API key.

    Raises:
        APIKeyNotFoundError: If no key is configured in any source.
    """
    key = find_api_key()
    if key is None:
        raise APIKeyNotFoundError(
            "No API key found. Set GEMINI_API_KEY or store one with "
            "'lifestory config set-key'."
        )
    return key


def store_api_key(value: str) -> None:
    """Save the Gemini API key in the system keyring.

    Raises:
        ConfigError: If the keyring backend rejects the write.
    """
    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, value.strip())
    except keyring.errors.KeyringError as e:
        raise ConfigError(f"Could not store API key in keyring: {type(e).__name__}") from e
    logger.info("API key stored in system keyring")


# =============================================================================
# Loading
# =============================================================================


def _default_search_paths() -> list[Path]:
    return [
        Path("./lifestory.yaml"),
        Path("./lifestory.yml"),
        Path.home() / ".lifestory" / "config.yaml",
    ]


def _read_yaml(config_file: Path) -> dict[str, Any]:
    try:
        content = config_file.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to read config file {config_file}: {type(e).__name__}. Using defaults.")
        return {}

    try:
        loaded = yaml.safe_load(content) if content.strip() else None
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse config file {config_file}: {e}. Using defaults.")
        return {}

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        logger.warning(f"Config file {config_file} has unexpected format. Using defaults.")
        return {}
    return loaded


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file, environment and defaults.

    A missing config file is not an error. A malformed one logs a warning
    and falls back to defaults. Environment variables override file values.

    Args:
        path: Optional config file. If None, default locations are searched.

    Returns:
        Fully-populated AppConfig instance.
    """
    search_paths = [path] if path is not None else _default_search_paths()
    config_file = next((p for p in search_paths if p is not None and p.exists()), None)

    file_data = _read_yaml(config_file) if config_file is not None else {}

    try:
        return AppConfig(**file_data)
    except ValueError as e:
        logger.warning(f"Error parsing config values: {e}. Using defaults.")
        return AppConfig.model_construct()


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the cached configuration singleton."""
    return load_config()


def reset_config() -> None:
    """Clear the configuration cache so the next get_config() reloads."""
    get_config.cache_clear()
