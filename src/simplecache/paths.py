"""Mapping of cache keys to file paths."""

import re
from pathlib import Path
from typing import Union

CACHE_SUFFIX = ".json"

_UNWANTED_CHARS = re.compile(r"[^A-Za-z0-9_\-/]")


def clean_key(key: str) -> str:
    """Reduce a cache key to its relative storage path (without suffix).

    Surrounding whitespace is trimmed, spaces and ``/`` become ``-``, ``.``
    becomes a directory separator and anything else outside
    ``[A-Za-z0-9_-]`` is dropped. Different keys can reduce to the same
    path (``"a b"`` and ``"a/b"`` both give ``"a-b"``).

    Args:
        key: Cache key

    Returns:
        Relative path using ``/`` separators

    Examples:
        >>> clean_key("user.42")
        'user/42'
        >>> clean_key(" report for/today! ")
        'report-for-today'
    """
    key = key.strip()
    key = key.replace(" ", "-").replace("/", "-")
    key = key.replace(".", "/")
    return _UNWANTED_CHARS.sub("", key)


def resolve_cache_path(cache_root: Union[str, Path], key: str) -> Path:
    """Get the file path where the entry for ``key`` lives.

    Pure function, does not touch the filesystem.

    Args:
        cache_root: Root directory of the cache
        key: Cache key

    Returns:
        Path of the entry file

    Examples:
        >>> resolve_cache_path("/tmp/cache", "user.42")
        PosixPath('/tmp/cache/user/42.json')
    """
    relative = clean_key(key).strip("/") + CACHE_SUFFIX
    return Path(cache_root) / relative
