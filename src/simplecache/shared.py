"""Process-wide shared cache.

The shared :class:`~simplecache.manager.Cache` is created lazily from
:meth:`CacheConfig.from_env` on first use. :func:`fresh` replaces it with a
new instance instead of changing the existing one, so code that already
holds the old instance keeps its old configuration.

Examples:
    >>> from simplecache import shared
    >>> cache = shared.configure(cache_path='/tmp/cache', default_ttl=10)
    >>> shared.get('user.42', lambda: {'n': 1})
    {'n': 1}
"""

from typing import Any, Callable, Optional

from simplecache.config import CacheConfig
from simplecache.manager import Cache
from simplecache.validation import TTL

_shared_cache: Optional[Cache] = None


def instance() -> Cache:
    """Get the shared cache, creating it if needed.

    Returns:
        Shared Cache instance
    """
    global _shared_cache
    if _shared_cache is None:
        _shared_cache = Cache(CacheConfig.from_env())
    return _shared_cache


def fresh(config: Optional[CacheConfig] = None, **options) -> Cache:
    """Replace the shared cache with a newly configured one.

    Args:
        config: Configuration to use (environment defaults if None)
        **options: Configuration fields overriding ``config``, e.g.
            ``cache_path``, ``default_ttl``, ``allow_cache_bypass``.
            ``bypass_predicate`` and ``terminate`` are passed to the Cache.

    Returns:
        The new shared Cache instance
    """
    global _shared_cache
    cache_kwargs = {
        name: options.pop(name)
        for name in ("bypass_predicate", "terminate")
        if name in options
    }
    base = config if config is not None else CacheConfig.from_env()
    _shared_cache = Cache(CacheConfig.from_options(base, **options), **cache_kwargs)
    return _shared_cache


configure = fresh


def reset() -> None:
    """Drop the shared cache; the next call creates a new one."""
    global _shared_cache
    _shared_cache = None


def read(key: str, ttl: Optional[TTL] = None, fallback: Any = None) -> Any:
    return instance().read(key, ttl, fallback)


def write(key: str, payload: Any) -> bool:
    return instance().write(key, payload)


def delete(key: str, also_delete_directory: bool = False) -> bool:
    return instance().delete(key, also_delete_directory)


def age(key: str) -> Optional[float]:
    return instance().age(key)


def has(key: str, ttl: Optional[TTL] = None) -> bool:
    return instance().has(key, ttl)


def get(key: str, producer: Callable[[], Any], ttl: Optional[TTL] = None) -> Any:
    return instance().get(key, producer, ttl)
