"""simplecache: File-backed read-through cache with TTL expiry and stale fallback."""

__version__ = "0.1.0"

from simplecache.bypass import bypass_signal
from simplecache.config import CacheConfig
from simplecache.manager import Cache
from simplecache.sentinels import NO_DATA, NO_EXPIRY

__all__ = [
    "Cache",
    "CacheConfig",
    "NO_DATA",
    "NO_EXPIRY",
    "bypass_signal",
    "__version__",
]
