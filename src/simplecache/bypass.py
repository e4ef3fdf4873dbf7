"""Ambient bypass signal.

Bypass mode disables the cache for debugging. Whether it was requested is
looked up at call time, by keyword, in two places: signals raised with
:func:`bypass_signal` in the current context, and the comma-separated
``SIMPLECACHE_BYPASS`` environment variable. ``Cache`` only consults this
when its configuration allows bypassing.
"""

import contextlib
import os
from contextvars import ContextVar
from typing import FrozenSet, Iterator

BYPASS_ENV_VAR = "SIMPLECACHE_BYPASS"

_active_signals: ContextVar[FrozenSet[str]] = ContextVar(
    "simplecache_bypass_signals", default=frozenset()
)


@contextlib.contextmanager
def bypass_signal(keyword: str = "disablecache") -> Iterator[None]:
    """Raise the bypass signal ``keyword`` for the duration of the block.

    The signal is stored in a context variable, so it only applies to the
    current thread or task.

    Args:
        keyword: Signal name, matched against ``cache_bypass_keyword``

    Examples:
        >>> with bypass_signal("disablecache"):
        ...     signal_present("disablecache")
        True
    """
    token = _active_signals.set(_active_signals.get() | {keyword})
    try:
        yield
    finally:
        _active_signals.reset(token)


def signal_present(keyword: str) -> bool:
    """Check if the bypass signal ``keyword`` is present in the current context.

    Args:
        keyword: Signal name

    Returns:
        True if raised via :func:`bypass_signal` or listed in
        ``SIMPLECACHE_BYPASS``
    """
    if keyword in _active_signals.get():
        return True

    env_value = os.getenv(BYPASS_ENV_VAR, "")
    return keyword in {part.strip() for part in env_value.split(",") if part.strip()}
