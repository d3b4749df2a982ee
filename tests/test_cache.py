"""Tests for the AI response cache.

Tests cover:
- Cache key determinism and sensitivity
- TTL expiry in both stores
- Pattern deletion, clearing and statistics
- File store resilience to corrupt entries
"""

import pytest

from lifestory.ai.cache import FileCacheStore, MemoryCacheStore, build_cache_key

MESSAGES = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hi"}]


class Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestCacheKey:
    """Tests for build_cache_key."""

    def test_deterministic(self):
        """Identical requests share a key."""
        assert build_cache_key(MESSAGES, "m", 0.7, 100) == build_cache_key(list(MESSAGES), "m", 0.7, 100)

    def test_prefix(self):
        assert build_cache_key(MESSAGES, "m", 0.7, 100).startswith("ai_response:")

    @pytest.mark.parametrize(
        "changed",
        [
            ([{"role": "user", "content": "Hi"}], "m", 0.7, 100),
            (MESSAGES, "other-model", 0.7, 100),
            (MESSAGES, "m", 0.3, 100),
            (MESSAGES, "m", 0.7, 200),
        ],
    )
    def test_every_parameter_matters(self, changed):
        """System prompt, model, temperature and budget are all part of the key."""
        assert build_cache_key(*changed) != build_cache_key(MESSAGES, "m", 0.7, 100)


@pytest.fixture(params=["memory", "file"])
def store_and_clock(request, tmp_path):
    clock = Clock()
    if request.param == "memory":
        return MemoryCacheStore(clock=clock), clock
    return FileCacheStore(tmp_path / "cache", clock=clock), clock


class TestStores:
    """Behaviour shared by both stores."""

    def test_set_then_get(self, store_and_clock):
        store, _ = store_and_clock

        assert store.set("ai_response:a", {"content": "hello"}, ttl_seconds=60)
        assert store.get("ai_response:a") == {"content": "hello"}
        assert store.exists("ai_response:a")

    def test_missing_key(self, store_and_clock):
        store, _ = store_and_clock

        assert store.get("ai_response:nope") is None
        assert not store.exists("ai_response:nope")

    def test_entries_expire(self, store_and_clock):
        """Entries vanish once their TTL has passed."""
        store, clock = store_and_clock
        store.set("ai_response:a", {"content": "hello"}, ttl_seconds=60)

        clock.now += 60

        assert store.get("ai_response:a") is None

    def test_no_ttl_never_expires(self, store_and_clock):
        store, clock = store_and_clock
        store.set("ai_response:a", {"content": "hello"})

        clock.now += 10**9

        assert store.get("ai_response:a") == {"content": "hello"}

    def test_delete(self, store_and_clock):
        store, _ = store_and_clock
        store.set("ai_response:a", {"v": 1})

        assert store.delete("ai_response:a") is True
        assert store.delete("ai_response:a") is False

    def test_delete_pattern(self, store_and_clock):
        """Only matching keys are deleted."""
        store, _ = store_and_clock
        store.set("ai_response:aa", {"v": 1})
        store.set("ai_response:ab", {"v": 2})
        store.set("other:aa", {"v": 3})

        removed = store.delete_pattern("ai_response:*")

        assert removed == 2
        assert store.get("other:aa") == {"v": 3}

    def test_clear(self, store_and_clock):
        store, _ = store_and_clock
        store.set("ai_response:a", {"v": 1})
        store.set("ai_response:b", {"v": 2})

        assert store.clear() == 2
        assert store.get_stats()["entry_count"] == 0


class TestMemoryCacheStore:
    """Tests specific to the memory store."""

    def test_hit_and_miss_counters(self):
        store = MemoryCacheStore()
        store.set("k", {"v": 1})
        store.get("k")
        store.get("missing")

        stats = store.get_stats()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["backend"] == "memory"

    def test_returned_value_is_a_copy(self):
        store = MemoryCacheStore()
        store.set("k", {"v": 1})

        store.get("k")["v"] = 99

        assert store.get("k") == {"v": 1}


class TestFileCacheStore:
    """Tests specific to the file store."""

    def test_survives_new_instance(self, tmp_path):
        """Entries persist across store instances."""
        FileCacheStore(tmp_path).set("ai_response:a", {"content": "persisted"})

        assert FileCacheStore(tmp_path).get("ai_response:a") == {"content": "persisted"}

    def test_corrupt_entry_is_a_miss(self, tmp_path):
        store = FileCacheStore(tmp_path)
        store.set("ai_response:a", {"content": "x"})
        for path in tmp_path.glob("*.json"):
            path.write_text("{garbage")

        assert store.get("ai_response:a") is None

    def test_undecodable_entry_is_skipped(self, tmp_path):
        store = FileCacheStore(tmp_path)
        store.set("ai_response:a", {"content": "kept"})
        (tmp_path / "binary.json").write_bytes(b"\xff\xfe\x00garbage")

        assert store.get_stats()["entry_count"] == 1
        assert store.delete_pattern("ai_response:*") == 1
        assert store.clear() == 1

    def test_disabled_store_is_a_noop(self, tmp_path):
        store = FileCacheStore(tmp_path, enabled=False)

        assert store.set("ai_response:a", {"v": 1}) is False
        assert store.get("ai_response:a") is None
        assert store.clear() == 0

    def test_stats(self, tmp_path):
        clock = Clock()
        store = FileCacheStore(tmp_path, clock=clock)
        store.set("ai_response:a", {"v": 1}, ttl_seconds=10)
        store.set("ai_response:b", {"v": 2}, ttl_seconds=100)
        clock.now += 50

        stats = store.get_stats()

        assert stats["backend"] == "file"
        assert stats["entry_count"] == 2
        assert stats["expired_count"] == 1
        assert stats["total_size_bytes"] > 0
