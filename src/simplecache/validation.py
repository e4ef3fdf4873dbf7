"""Cache validation utilities for TTL and bypass checks.

An entry's modification time is its only staleness signal. TTLs are given
in minutes; ``NO_EXPIRY`` means the entry stays valid for as long as the
file exists.
"""

import time
from pathlib import Path
from typing import Optional, Union

from simplecache.sentinels import NO_EXPIRY, Sentinel

TTL = Union[int, float, Sentinel]


def get_age(path: Path) -> Optional[float]:
    """Get seconds since the entry at ``path`` was last written or touched.

    Args:
        path: Entry file

    Returns:
        Age in seconds, or None if the file does not exist
    """
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return None
    return time.time() - mtime


def is_ttl_valid(age_seconds: float, ttl: TTL) -> bool:
    """Check if an entry of the given age is still within its TTL.

    Args:
        age_seconds: Seconds since last write
        ttl: Minutes, or NO_EXPIRY

    Returns:
        True if still fresh, False if expired
    """
    if ttl is NO_EXPIRY:
        return True
    return age_seconds < ttl * 60


def is_valid(path: Path, ttl: TTL, bypass_active: bool = False) -> bool:
    """Check if the entry at ``path`` can be served.

    Args:
        path: Entry file
        ttl: Minutes, or NO_EXPIRY. Zero expires immediately.
        bypass_active: When True every check fails

    Returns:
        True if the entry exists, is fresh and bypass is not active
    """
    if bypass_active:
        return False

    age = get_age(path)
    if age is None:
        return False

    return is_ttl_valid(age, ttl)


def get_ttl_remaining(path: Path, ttl: TTL) -> Optional[int]:
    """Get remaining seconds until the entry at ``path`` expires.

    Args:
        path: Entry file
        ttl: Minutes, or NO_EXPIRY

    Returns:
        Seconds remaining (0 when expired), or None if the entry never
        expires or does not exist
    """
    if ttl is NO_EXPIRY:
        return None

    age = get_age(path)
    if age is None:
        return None

    remaining = ttl * 60 - age
    return max(0, int(remaining))
