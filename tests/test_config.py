"""Tests for configuration loading and API key lookup.

Tests cover:
- Defaults and YAML loading
- Environment variables overriding file values
- Malformed files falling back to defaults
- API key sources and keyring storage
"""

from pathlib import Path
from unittest.mock import patch

import keyring.errors
import pytest

from lifestory.config import (
    APIKeyNotFoundError,
    AppConfig,
    CacheBackend,
    ConfigError,
    find_api_key,
    get_api_key,
    get_config,
    load_config,
    reset_config,
    store_api_key,
)


@pytest.fixture
def write_yaml(tmp_path):
    def factory(content: str) -> Path:
        path = tmp_path / "lifestory.yaml"
        path.write_text(content, encoding="utf-8")
        return path

    return factory


class TestDefaults:
    """Tests for in-code defaults."""

    def test_values(self, clean_env):
        config = AppConfig()

        assert config.jobs.attempts == 3
        assert config.jobs.backoff_delay_seconds == 5.0
        assert config.jobs.queue_name == "biography-generation"
        assert config.ai.narrative_model == "gemini-1.5-pro"
        assert config.ai.enrichment_batch_size == 10
        assert config.cache.backend == CacheBackend.MEMORY

    @pytest.mark.parametrize(
        ("debug", "verbose", "level"),
        [(False, False, "WARNING"), (False, True, "INFO"), (True, False, "DEBUG"), (True, True, "DEBUG")],
    )
    def test_log_level(self, clean_env, debug, verbose, level):
        assert AppConfig(debug=debug, verbose=verbose).log_level == level

    def test_paths_expand_user(self, clean_env):
        config = AppConfig(paths={"cache_dir": "~/somewhere"})

        assert config.paths.cache_dir == Path.home() / "somewhere"


class TestLoadConfig:
    """Tests for load_config."""

    def test_yaml_file(self, clean_env, write_yaml):
        path = write_yaml("jobs:\n  attempts: 2\ncache:\n  backend: file\nai:\n  temperature: 0.2\n")

        config = load_config(path)

        assert config.jobs.attempts == 2
        assert config.cache.backend == CacheBackend.FILE
        assert config.ai.temperature == 0.2

    def test_env_overrides_file(self, clean_env, write_yaml):
        path = write_yaml("jobs:\n  attempts: 2\n")
        clean_env.setenv("LIFESTORY_JOBS__ATTEMPTS", "6")

        assert load_config(path).jobs.attempts == 6

    def test_missing_file(self, clean_env, tmp_path):
        assert load_config(tmp_path / "absent.yaml").jobs.attempts == 3

    @pytest.mark.parametrize("content", ["jobs: [unclosed", "- just\n- a list\n", ""])
    def test_unusable_file_gives_defaults(self, clean_env, write_yaml, content):
        config = load_config(write_yaml(content))

        assert config.jobs.attempts == 3

    def test_invalid_values_give_defaults(self, clean_env, write_yaml):
        config = load_config(write_yaml("jobs:\n  concurrency: 50\n"))

        assert config.jobs.concurrency == 2

    def test_get_config_is_cached(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)

        first = get_config()

        assert get_config() is first
        reset_config()
        assert get_config() is not first


class TestApiKey:
    """Tests for API key lookup and storage."""

    def test_gemini_env_first(self, clean_env):
        clean_env.setenv("GEMINI_API_KEY", " gemini-key ")
        clean_env.setenv("GOOGLE_API_KEY", "google-key")

        assert find_api_key().get_secret_value() == "gemini-key"

    def test_google_env(self, clean_env):
        clean_env.setenv("GOOGLE_API_KEY", "google-key")

        assert find_api_key().get_secret_value() == "google-key"

    def test_keyring(self, clean_env):
        with patch("lifestory.config.keyring.get_password", return_value="stored-key") as get_password:
            key = find_api_key()

        assert key.get_secret_value() == "stored-key"
        get_password.assert_called_once_with("lifestory", "gemini")

    def test_keyring_unavailable(self, clean_env):
        with patch(
            "lifestory.config.keyring.get_password",
            side_effect=keyring.errors.NoKeyringError("no backend"),
        ):
            assert find_api_key() is None

    def test_get_api_key_raises(self, clean_env):
        with patch("lifestory.config.keyring.get_password", return_value=None):
            with pytest.raises(APIKeyNotFoundError):
                get_api_key()

    def test_key_not_in_repr(self, clean_env):
        clean_env.setenv("GEMINI_API_KEY", "super-secret-value")

        assert "super-secret-value" not in repr(find_api_key())

    def test_store(self):
        with patch("lifestory.config.keyring.set_password") as set_password:
            store_api_key("  new-key-123  ")

        set_password.assert_called_once_with("lifestory", "gemini", "new-key-123")

    def test_store_failure(self):
        with patch(
            "lifestory.config.keyring.set_password",
            side_effect=keyring.errors.PasswordSetError("locked"),
        ):
            with pytest.raises(ConfigError):
                store_api_key("new-key-123")
