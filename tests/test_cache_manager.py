"""Unit tests for the cache manager and the get-or-populate protocol."""

import logging
import os
import time
from unittest.mock import MagicMock

import pytest
from filelock import FileLock

from simplecache.bypass import bypass_signal
from simplecache.config import CacheConfig
from simplecache.manager import Cache
from simplecache.sentinels import NO_DATA, NO_EXPIRY


class Terminated(Exception):
    """Raised by the test terminate hook instead of exiting."""


def fake_terminate(status):
    raise Terminated(status)


def set_age(cache, key, seconds):
    """Move an entry's modification time into the past."""
    stamp = time.time() - seconds
    os.utime(cache.path_for(key), (stamp, stamp))


def failing_producer():
    raise RuntimeError("backend down")


@pytest.fixture
def cache_config(tmp_path):
    """Create test cache configuration with a 10 minute TTL."""
    return CacheConfig(cache_path=tmp_path / "cache", default_ttl=10)


@pytest.fixture
def cache(cache_config):
    """Create test cache without bypass."""
    return Cache(cache_config, bypass_predicate=lambda keyword: False)


@pytest.fixture
def bypass_cache(tmp_path):
    """Create test cache whose bypass signal is always present."""
    config = CacheConfig(
        cache_path=tmp_path / "cache", default_ttl=10, allow_cache_bypass=True
    )
    return Cache(config, bypass_predicate=lambda keyword: True, terminate=fake_terminate)


class TestDirectAccessors:
    """Test read/write/delete/has/age."""

    def test_write_then_read(self, cache):
        """Test that a written payload reads back unchanged within TTL."""
        assert cache.write("user.42", {"n": 1}) is True
        assert cache.read("user.42") == {"n": 1}

    def test_write_creates_nested_layout(self, cache, cache_config):
        """Test that key segments become nested directories."""
        cache.write("a.b.c", [1])
        assert (cache_config.cache_path / "a" / "b" / "c.json").is_file()

    def test_read_missing_returns_fallback(self, cache):
        """Test that the caller fallback is returned on a miss."""
        assert cache.read("missing") is None
        assert cache.read("missing", fallback="default") == "default"

    def test_read_expired_returns_fallback(self, cache):
        """Test that expired entries are not served by read."""
        cache.write("user.42", {"n": 1})
        set_age(cache, "user.42", 11 * 60)

        assert cache.read("user.42", fallback="old") == "old"
        assert cache.read("user.42", ttl=60) == {"n": 1}

    def test_read_corrupt_returns_fallback(self, cache):
        """Test that an undecodable entry is treated as a miss."""
        path = cache.path_for("broken")
        path.parent.mkdir(parents=True)
        path.write_text("not json")

        assert cache.read("broken", fallback="fb") == "fb"

    def test_zero_ttl_is_expired(self, cache):
        """Test that a TTL of zero expires immediately instead of using the default."""
        cache.write("k", 1)

        assert cache.has("k", ttl=0) is False
        assert cache.has("k") is True

    def test_no_expiry_default(self, tmp_path):
        """Test that the default policy keeps entries forever."""
        cache = Cache(CacheConfig(cache_path=tmp_path))
        cache.write("k", 1)
        set_age(cache, "k", 10 * 365 * 86400)

        assert cache.config.default_ttl is NO_EXPIRY
        assert cache.has("k") is True

    def test_no_expiry_override(self, cache):
        """Test that NO_EXPIRY can be requested per call."""
        cache.write("k", 1)
        set_age(cache, "k", 86400)

        assert cache.has("k") is False
        assert cache.has("k", ttl=NO_EXPIRY) is True

    def test_has_false_after_delete(self, cache):
        """Test that has() is false right after delete()."""
        cache.write("user.42", {"n": 1})
        assert cache.has("user.42") is True

        assert cache.delete("user.42") is True
        assert cache.has("user.42") is False

    def test_delete_missing_is_success(self, cache):
        """Test that deleting an absent key succeeds."""
        assert cache.delete("never.written") is True

    def test_delete_directory_removes_siblings(self, cache, cache_config):
        """Test that deleting with the directory flag removes the whole key group."""
        for key in ("user.42", "user.7", "user.8"):
            cache.write(key, {"id": key})
        cache.write("other.1", 1)

        assert cache.delete("user.42", also_delete_directory=True) is True

        assert not (cache_config.cache_path / "user").exists()
        assert cache.has("user.7") is False
        assert cache.has("user.8") is False
        assert cache.has("other.1") is True

    def test_age_none_when_missing(self, cache):
        """Test that a missing entry has no age."""
        assert cache.age("missing") is None

    def test_age_increases(self, cache):
        """Test that age starts near zero and grows."""
        cache.write("k", 1)
        first = cache.age("k")
        assert 0 <= first < 5

        time.sleep(0.05)
        assert cache.age("k") > first


class TestGetOrPopulate:
    """Test the get-or-populate protocol."""

    def test_hit_does_not_call_producer(self, cache):
        """Test that a valid entry is served without recomputation."""
        cache.write("k", "cached")
        producer = MagicMock(return_value="fresh")

        assert cache.get("k", producer) == "cached"
        producer.assert_not_called()

    def test_miss_refills(self, cache):
        """Test that a miss calls the producer and stores its result."""
        producer = MagicMock(return_value={"n": 1})

        assert cache.get("k", producer) == {"n": 1}
        producer.assert_called_once_with()
        assert cache.read("k") == {"n": 1}

    def test_falsy_values_are_data(self, cache):
        """Test that 0, '' and [] are cached like any other value."""
        for index, value in enumerate([0, "", []]):
            key = f"falsy.{index}"
            assert cache.get(key, lambda: value) == value
            assert cache.has(key) is True

    def test_failed_write_still_returns_value(self, cache, caplog):
        """Test that a persistence failure does not change the result."""
        value = {"bad": object()}

        with caplog.at_level(logging.WARNING, logger="simplecache"):
            assert cache.get("k", lambda: value) is value

        assert cache.has("k") is False
        assert "write failed" in caplog.text

    def test_producer_error_without_entry_returns_no_data(self, cache):
        """Test that a failing producer and no entry give NO_DATA."""
        assert cache.get("k", failing_producer) is NO_DATA

    @pytest.mark.parametrize("empty", [None, False])
    def test_empty_result_without_entry_returns_no_data(self, cache, empty):
        """Test that an empty result and no entry give NO_DATA."""
        assert cache.get("k", lambda: empty) is NO_DATA
        assert cache.path_for("k").exists() is False

    def test_producer_error_serves_stale(self, cache):
        """Test that a failing producer falls back to the expired entry."""
        cache.write("k", {"n": 1})
        set_age(cache, "k", 60 * 60)

        assert cache.get("k", failing_producer) == {"n": 1}

    def test_stale_recovery_extends_freshness(self, cache):
        """Test that the stale entry is touched, throttling retries for a TTL."""
        cache.write("k", {"n": 1})
        set_age(cache, "k", 60 * 60)

        cache.get("k", failing_producer)

        assert cache.age("k") < 5
        assert cache.has("k") is True
        producer = MagicMock(return_value={"n": 2})
        assert cache.get("k", producer) == {"n": 1}
        producer.assert_not_called()

    def test_stale_recovery_keeps_content(self, cache):
        """Test that stale recovery does not rewrite the entry."""
        cache.write("k", {"n": 1})
        set_age(cache, "k", 60 * 60)
        before = cache.path_for("k").read_bytes()

        cache.get("k", failing_producer)

        assert cache.path_for("k").read_bytes() == before

    @pytest.mark.parametrize("empty", [None, False])
    def test_empty_result_serves_stale(self, cache, empty):
        """Test that None/False results are handled like failures."""
        cache.write("k", "old")
        set_age(cache, "k", 60 * 60)

        assert cache.get("k", lambda: empty) == "old"
        assert cache.read("k") == "old"

    def test_corrupt_stale_entry_gives_no_data(self, cache):
        """Test that an unreadable stale entry cannot be served."""
        path = cache.path_for("k")
        path.parent.mkdir(parents=True)
        path.write_text("{")

        assert cache.get("k", failing_producer) is NO_DATA

    def test_corrupt_entry_is_refilled(self, cache):
        """Test that an unreadable but fresh entry is recomputed."""
        path = cache.path_for("k")
        path.parent.mkdir(parents=True)
        path.write_text("{")

        assert cache.get("k", lambda: "fresh") == "fresh"
        assert cache.read("k") == "fresh"

    def test_ttl_override(self, cache):
        """Test that a per-call TTL decides freshness."""
        cache.write("k", "old")
        set_age(cache, "k", 5 * 60)

        assert cache.get("k", lambda: "new", ttl=60) == "old"
        assert cache.get("k", lambda: "new", ttl=1) == "new"

    def test_keyboard_interrupt_propagates(self, cache):
        """Test that non-Exception errors are not swallowed."""

        def interrupted():
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            cache.get("k", interrupted)

    def test_scenario_hit_then_refill(self, cache):
        """Test a hit at 5 minutes and a refill at 11 minutes with a 10 minute TTL."""
        cache.write("user.42", {"n": 1})

        set_age(cache, "user.42", 5 * 60)
        second = MagicMock(return_value={"n": 2})
        assert cache.get("user.42", second) == {"n": 1}
        second.assert_not_called()

        set_age(cache, "user.42", 11 * 60)
        third = MagicMock(return_value={"n": 3})
        assert cache.get("user.42", third) == {"n": 3}
        third.assert_called_once()
        assert cache.read("user.42") == {"n": 3}


class TestBypass:
    """Test bypass mode."""

    def test_bypass_makes_everything_invalid(self, bypass_cache):
        """Test that valid entries are invisible in bypass mode."""
        bypass_cache.write("k", 1)

        assert bypass_cache.bypassing() is True
        assert bypass_cache.has("k") is False
        assert bypass_cache.read("k", fallback="fb") == "fb"

    def test_bypass_recomputes(self, bypass_cache):
        """Test that get() always calls the producer in bypass mode."""
        bypass_cache.write("k", "old")
        producer = MagicMock(return_value="new")

        assert bypass_cache.get("k", producer) == "new"
        producer.assert_called_once()

    def test_bypass_empty_result_serves_stale(self, bypass_cache):
        """Test that only producer errors are fatal in bypass mode."""
        bypass_cache.write("k", "old")

        assert bypass_cache.get("k", lambda: None) == "old"

    def test_bypass_failure_is_fatal(self, bypass_cache, caplog):
        """Test that a producer error in bypass mode logs and terminates."""
        bypass_cache.write("k", "old")

        with caplog.at_level(logging.ERROR, logger="simplecache"):
            with pytest.raises(Terminated) as exc_info:
                bypass_cache.get("k", failing_producer)

        assert exc_info.value.args == (1,)
        assert "fatal error" in caplog.text
        assert "backend down" in caplog.text

    def test_bypass_failure_without_hook_exits(self, tmp_path):
        """Test that the default terminate hook exits the process."""
        config = CacheConfig(cache_path=tmp_path, allow_cache_bypass=True)
        cache = Cache(config, bypass_predicate=lambda keyword: True)

        with pytest.raises(SystemExit) as exc_info:
            cache.get("k", failing_producer)
        assert exc_info.value.code == 1

    def test_returning_hook_gives_no_data(self, tmp_path):
        """Test that a terminate hook that returns does not lead to stale data."""
        config = CacheConfig(cache_path=tmp_path, allow_cache_bypass=True)
        statuses = []
        cache = Cache(
            config, bypass_predicate=lambda keyword: True, terminate=statuses.append
        )
        cache.write("k", "old")

        assert cache.get("k", failing_producer) is NO_DATA
        assert statuses == [1]

    def test_bypass_not_allowed(self, tmp_path):
        """Test that the signal is ignored unless bypass is allowed."""
        cache = Cache(CacheConfig(cache_path=tmp_path), bypass_predicate=lambda k: True)
        cache.write("k", 1)

        assert cache.bypassing() is False
        assert cache.has("k") is True

    def test_predicate_receives_keyword(self, tmp_path):
        """Test that the configured keyword is passed to the predicate."""
        seen = []
        config = CacheConfig(
            cache_path=tmp_path, allow_cache_bypass=True, cache_bypass_keyword="nocache"
        )
        cache = Cache(config, bypass_predicate=lambda k: seen.append(k) or False)

        cache.has("k")
        assert seen == ["nocache"]

    def test_default_predicate_uses_context_signal(self, tmp_path):
        """Test that bypass_signal() activates bypass for the block only."""
        config = CacheConfig(cache_path=tmp_path, allow_cache_bypass=True)
        cache = Cache(config)
        cache.write("k", 1)

        assert cache.has("k") is True
        with bypass_signal("disablecache"):
            assert cache.has("k") is False
        assert cache.has("k") is True


class TestLocking:
    """Test optional per-key locking."""

    def test_get_with_locks(self, tmp_path):
        """Test that get works with locking enabled."""
        config = CacheConfig(cache_path=tmp_path, use_locks=True)
        cache = Cache(config)

        assert cache.get("user.42", lambda: {"n": 1}) == {"n": 1}
        assert (tmp_path / ".locks").is_dir()
        assert cache.read("user.42") == {"n": 1}

    def test_lock_timeout_continues_unlocked(self, tmp_path, caplog):
        """Test that a held lock delays get and then lets it run anyway."""
        config = CacheConfig(cache_path=tmp_path, use_locks=True, lock_timeout=0.05)
        cache = Cache(config)
        (tmp_path / ".locks").mkdir()
        holder = FileLock(str(tmp_path / ".locks" / "user_42.lock"))

        with holder:
            with caplog.at_level(logging.WARNING, logger="simplecache"):
                assert cache.get("user.42", lambda: "value") == "value"

        assert "continuing unlocked" in caplog.text
