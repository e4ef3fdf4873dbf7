"""Sentinel values and the tagged producer result used by the cache.

This module defines the markers that let callers tell "no expiry" apart from
"use the default TTL", and "no data" apart from a cached ``None``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional


class Sentinel(Enum):
    """Marker values with a meaning of their own.

    Members:
        NO_EXPIRY: TTL policy where an entry is valid for as long as it exists
        NO_DATA: Returned by ``Cache.get`` when nothing could be produced and
            no stale entry was available

    Examples:
        >>> NO_DATA is Sentinel.NO_DATA
        True
        >>> bool(NO_DATA)
        False
    """

    NO_EXPIRY = "no_expiry"
    NO_DATA = "no_data"

    def __bool__(self) -> bool:
        return self is not Sentinel.NO_DATA

    def __repr__(self) -> str:
        return self.name


NO_EXPIRY = Sentinel.NO_EXPIRY
NO_DATA = Sentinel.NO_DATA


class OutcomeKind(Enum):
    """How a producer call ended."""

    VALUE = "value"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class ProducerOutcome:
    """Tagged result of running a producer.

    Attributes:
        kind: Which of the three outcomes occurred
        value: The produced value (only meaningful for ``VALUE``)
        error: The raised exception (only set for ``FAILED``)
    """

    kind: OutcomeKind
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.VALUE

    @classmethod
    def run(cls, producer: Callable[[], Any]) -> "ProducerOutcome":
        """Call ``producer`` and classify what happened.

        ``None`` and ``False`` both count as an empty result. Only
        ``Exception`` subclasses are captured; ``KeyboardInterrupt`` and
        ``SystemExit`` propagate.

        Args:
            producer: Zero-argument callable computing the fresh value

        Returns:
            ProducerOutcome describing the call
        """
        try:
            value = producer()
        except Exception as e:
            return cls(OutcomeKind.FAILED, error=e)

        if value is None or value is False:
            return cls(OutcomeKind.EMPTY, value=value)
        return cls(OutcomeKind.VALUE, value=value)
