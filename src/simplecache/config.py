"""Cache configuration management."""

import json
import math
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Union

from simplecache.sentinels import NO_EXPIRY
from simplecache.validation import TTL

_NO_EXPIRY_WORDS = ("", "none", "never", "false")


def default_cache_path() -> Path:
    """Pick a writable location for the cache when none is configured.

    Uses ``~/.simplecache`` if the home directory (or an existing
    ``~/.simplecache``) is writable, otherwise ``<tempdir>/simplecache``.

    Returns:
        Cache root directory (not created)
    """
    home_cache = Path.home() / ".simplecache"
    probe = home_cache if home_cache.exists() else home_cache.parent
    if os.access(probe, os.W_OK):
        return home_cache
    return Path(tempfile.gettempdir()) / "simplecache"


def parse_ttl(value: Union[str, int, float, None]) -> TTL:
    """Convert a configured TTL into minutes or NO_EXPIRY.

    Args:
        value: Minutes as a number or string; None or "none"/"never"/"false"
            for no expiry

    Returns:
        Number of minutes, or NO_EXPIRY

    Raises:
        ValueError: If the value is not a number or a recognized word
    """
    if value is None or value is NO_EXPIRY:
        return NO_EXPIRY
    if isinstance(value, bool):
        raise ValueError(f"TTL must be a number of minutes, not {value!r}")
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _NO_EXPIRY_WORDS:
            return NO_EXPIRY
        number = float(text)
        if not math.isfinite(number):
            raise ValueError(f"TTL must be finite: {value!r}")
        return int(number) if number.is_integer() else number
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError(f"TTL must be a finite number of minutes: {value!r}")
    return value


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CacheConfig:
    """Configuration for a :class:`~simplecache.manager.Cache`.

    Attributes:
        cache_path: Root directory for cache entries. Defaults to
            ``~/.simplecache`` or a temp directory (see ``default_cache_path``)
        allow_cache_bypass: Whether bypass mode may be activated at all
        cache_bypass_keyword: Signal name looked up to detect bypass mode
        default_ttl: TTL in minutes used when a call gives none, or NO_EXPIRY
        use_locks: Serialize ``get`` per key with file locks
        lock_timeout: Seconds to wait for a key lock before going on unlocked
    """

    cache_path: Path = field(default_factory=default_cache_path)
    allow_cache_bypass: bool = False
    cache_bypass_keyword: str = "disablecache"
    default_ttl: TTL = NO_EXPIRY
    use_locks: bool = False
    lock_timeout: float = 10.0

    def __post_init__(self):
        """Normalize the cache path and the default TTL."""
        if self.cache_path is None:
            self.cache_path = default_cache_path()
        else:
            self.cache_path = Path(self.cache_path).expanduser()
        self.default_ttl = parse_ttl(self.default_ttl)
        if self.default_ttl is not NO_EXPIRY and self.default_ttl < 0:
            raise ValueError(f"default_ttl must not be negative: {self.default_ttl}")

    @classmethod
    def load(cls, config_path: Path) -> "CacheConfig":
        """Load configuration from a JSON file.

        Args:
            config_path: Path to config file

        Returns:
            CacheConfig instance (defaults if the file does not exist)
        """
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to a JSON file.

        Args:
            config_path: Path to config file
        """
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "cache_path": str(self.cache_path),
            "allow_cache_bypass": self.allow_cache_bypass,
            "cache_bypass_keyword": self.cache_bypass_keyword,
            "default_ttl": None if self.default_ttl is NO_EXPIRY else self.default_ttl,
            "use_locks": self.use_locks,
            "lock_timeout": self.lock_timeout,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            SIMPLECACHE_DIR: Cache root directory
            SIMPLECACHE_ALLOW_BYPASS: Allow bypass mode (true/false)
            SIMPLECACHE_BYPASS_KEYWORD: Bypass signal name
            SIMPLECACHE_DEFAULT_TTL: Default TTL in minutes ("none" for no expiry)
            SIMPLECACHE_USE_LOCKS: Enable per-key locking (true/false)

        Returns:
            CacheConfig instance
        """
        options = {}

        if os.getenv("SIMPLECACHE_DIR"):
            options["cache_path"] = Path(os.getenv("SIMPLECACHE_DIR"))

        if os.getenv("SIMPLECACHE_ALLOW_BYPASS"):
            options["allow_cache_bypass"] = _parse_bool(os.getenv("SIMPLECACHE_ALLOW_BYPASS"))

        if os.getenv("SIMPLECACHE_BYPASS_KEYWORD"):
            options["cache_bypass_keyword"] = os.getenv("SIMPLECACHE_BYPASS_KEYWORD")

        if os.getenv("SIMPLECACHE_DEFAULT_TTL") is not None:
            options["default_ttl"] = parse_ttl(os.getenv("SIMPLECACHE_DEFAULT_TTL"))

        if os.getenv("SIMPLECACHE_USE_LOCKS"):
            options["use_locks"] = _parse_bool(os.getenv("SIMPLECACHE_USE_LOCKS"))

        return cls(**options)

    @classmethod
    def from_options(cls, config: Optional["CacheConfig"] = None, **options) -> "CacheConfig":
        """Build a configuration from keyword options.

        Args:
            config: Base configuration; its values are used for any option
                not given
            **options: Field values, e.g. ``cache_path=...``

        Returns:
            New CacheConfig instance

        Raises:
            TypeError: If an option is not a configuration field
        """
        if config is None:
            return cls(**options)

        return replace(config, **options)
