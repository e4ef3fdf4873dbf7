"""Cache manager implementing the get-or-populate protocol."""

import contextlib
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Iterator, NoReturn, Optional

from filelock import FileLock, Timeout

from simplecache.bypass import signal_present
from simplecache.config import CacheConfig
from simplecache.paths import clean_key, resolve_cache_path
from simplecache.sentinels import NO_DATA, OutcomeKind, ProducerOutcome
from simplecache.storage import CacheStorage
from simplecache.validation import TTL, get_age, is_valid

logger = logging.getLogger(__name__)


class Cache:
    """Filesystem-backed read-through cache with TTL expiry.

    Each call re-derives validity from the filesystem, nothing about entries
    is kept in memory. ``get`` recomputes missing or expired entries through a
    caller-supplied producer and, if that fails or produces nothing, serves
    the stale entry instead (pushing its expiry forward by a full TTL).

    In bypass mode every entry counts as expired. A producer failure is then
    fatal: it is logged and ``terminate(1)`` is called, so that nobody
    debugging with the cache disabled is shown stale data.

    Args:
        config: Cache configuration (defaults if None)
        bypass_predicate: Called with ``config.cache_bypass_keyword`` to
            decide if bypass was requested. Defaults to
            :func:`simplecache.bypass.signal_present`.
        terminate: Called with an exit status on a fatal bypass failure.
            Defaults to :func:`sys.exit`.

    Examples:
        >>> cache = Cache(CacheConfig(cache_path='/tmp/cache', default_ttl=10))
        >>> cache.get('user.42', lambda: {'n': 1})
        {'n': 1}
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        bypass_predicate: Optional[Callable[[str], bool]] = None,
        terminate: Optional[Callable[[int], NoReturn]] = None,
    ):
        self._config = config or CacheConfig()
        self._bypass_predicate = bypass_predicate or signal_present
        self._terminate = terminate or sys.exit
        self.storage = CacheStorage(self._config.cache_path)

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def cache_path(self) -> Path:
        return self._config.cache_path

    def path_for(self, key: str) -> Path:
        """Get the entry file path for ``key``."""
        return resolve_cache_path(self._config.cache_path, key)

    def bypassing(self) -> bool:
        """Check if bypass mode is active for the current call.

        Returns:
            True if bypass is allowed by configuration and requested by the
            bypass predicate
        """
        return self._config.allow_cache_bypass is True and bool(
            self._bypass_predicate(self._config.cache_bypass_keyword)
        )

    def _resolve_ttl(self, ttl: Optional[TTL]) -> TTL:
        # Only None falls back to the default; 0 means "already expired"
        return self._config.default_ttl if ttl is None else ttl

    def _check(self, path: Path, ttl: Optional[TTL]) -> bool:
        return is_valid(path, self._resolve_ttl(ttl), self.bypassing())

    def read(self, key: str, ttl: Optional[TTL] = None, fallback: Any = None) -> Any:
        """Read an entry if it is valid.

        Args:
            key: Cache key (``.`` creates subdirectories)
            ttl: Minutes the entry must be newer than; None uses the default
            fallback: Returned when the entry is missing, expired, bypassed
                or unreadable

        Returns:
            Cached payload or ``fallback``
        """
        path = self.path_for(key)

        if self._check(path, ttl):
            payload, ok = self.storage.read(path)
            if ok:
                return payload

        logger.debug(f"[cache][read][fail] {key}")
        return fallback

    def write(self, key: str, payload: Any) -> bool:
        """Write an entry.

        Args:
            key: Cache key
            payload: JSON-serializable data

        Returns:
            True on success
        """
        path = self.path_for(key)
        success = self.storage.write(path, payload)

        logger.debug(f"[cache][write][{'true' if success else 'false'}] {key}")
        return success

    def delete(self, key: str, also_delete_directory: bool = False) -> bool:
        """Delete an entry.

        Args:
            key: Cache key
            also_delete_directory: Also remove the key's directory and all
                entries below it

        Returns:
            True on success, including when nothing existed
        """
        path = self.path_for(key)
        kind = "folder" if also_delete_directory else "file"
        logger.debug(f"[cache][delete][{kind}] {key}")
        return self.storage.delete(path, also_delete_directory)

    def age(self, key: str) -> Optional[float]:
        """Get seconds since the entry was last written or refreshed.

        Args:
            key: Cache key

        Returns:
            Age in seconds, or None if there is no entry
        """
        return get_age(self.path_for(key))

    def has(self, key: str, ttl: Optional[TTL] = None) -> bool:
        """Check if a valid entry exists.

        Args:
            key: Cache key
            ttl: Minutes the entry must be newer than; None uses the default

        Returns:
            True if the entry exists, is fresh and bypass is not active
        """
        return self._check(self.path_for(key), ttl)

    def get(self, key: str, producer: Callable[[], Any], ttl: Optional[TTL] = None) -> Any:
        """Get an entry, recomputing it with ``producer`` if needed.

        Outcomes:
        - valid entry: returned without calling ``producer``
        - ``producer`` returns data: data is written and returned (a failed
          write is logged only)
        - ``producer`` raises, or returns None/False: the existing entry,
          however old, is touched and returned; NO_DATA if there is none
        - ``producer`` raises while bypassing: logged, then ``terminate(1)``

        Args:
            key: Cache key
            producer: Zero-argument callable computing fresh data
            ttl: Minutes the entry must be newer than; None uses the default

        Returns:
            Cached, fresh or stale payload, or NO_DATA
        """
        path = self.path_for(key)

        with self._key_lock(key):
            return self._get_locked(key, path, producer, ttl)

    def _get_locked(
        self,
        key: str,
        path: Path,
        producer: Callable[[], Any],
        ttl: Optional[TTL],
    ) -> Any:
        """Run the get-or-populate protocol with the key lock held."""
        if self._check(path, ttl):
            payload, ok = self.storage.read(path)
            if ok:
                logger.debug(f"[cache][get][cached] {key}")
                return payload

        outcome = ProducerOutcome.run(producer)

        if outcome.kind is OutcomeKind.FAILED:
            if self.bypassing():
                logger.error(
                    f"[cache][get][fatal error - unable to load cache in bypass mode] "
                    f"{key} : {outcome.error}",
                    exc_info=outcome.error,
                )
                self._terminate(1)
                # A terminate hook that returns still must not serve stale data
                return NO_DATA
            logger.debug(f"[cache][get][fail - producer raised {outcome.error!r}] {key}")
            return self._force_read(key, path)

        if outcome.kind is OutcomeKind.EMPTY:
            logger.debug(f"[cache][get][fail - producer returned {outcome.value!r}] {key}")
            return self._force_read(key, path)

        logger.debug(f"[cache][get][un-cached] {key}")
        if not self.storage.write(path, outcome.value):
            logger.warning(f"[cache][get][write failed] {key}")

        return outcome.value

    def _force_read(self, key: str, path: Path) -> Any:
        """Serve an expired entry after a failed refresh.

        The entry is touched so the producer is not retried until another
        TTL period has passed.

        Returns:
            Stale payload, or NO_DATA if there is no usable entry
        """
        if self.storage.exists(path):
            self.storage.touch(path)
            payload, ok = self.storage.read(path)
            if ok:
                logger.debug(f"[cache][get][return from expired cache] {key}")
                return payload

        logger.debug(f"[cache][get][no data] {key}")
        return NO_DATA

    @contextlib.contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        """Hold the per-key file lock if locking is enabled.

        If the lock cannot be acquired in time the block runs unlocked.
        """
        if not self._config.use_locks:
            yield
            return

        lock_dir = self._config.cache_path / ".locks"
        lock_name = clean_key(key).strip("/").replace("/", "_") or "_root"
        lock = FileLock(str(lock_dir / f"{lock_name}.lock"), timeout=self._config.lock_timeout)

        acquired = False
        try:
            lock_dir.mkdir(parents=True, exist_ok=True)
            lock.acquire()
            acquired = True
        except (Timeout, OSError) as e:
            logger.warning(f"Could not lock cache key {key}, continuing unlocked: {e}")

        try:
            yield
        finally:
            if acquired:
                lock.release()
