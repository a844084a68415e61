"""Compute-once cells shared by concurrent requester construction."""

from __future__ import annotations

from enum import Enum
from threading import Lock
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class CellState(str, Enum):
    UNSET = "unset"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class LazyCell(Generic[T]):
    """A value computed at most once, read without locking afterwards.

    If the computation raises, the cell goes back to ``UNSET`` and the error
    propagates to that caller; the next caller gets a fresh attempt.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = Lock()
        self._state = CellState.UNSET
        self._value: Optional[T] = None

    @property
    def state(self) -> CellState:
        return self._state

    def peek(self) -> Optional[T]:
        return self._value if self._state is CellState.RESOLVED else None

    def get(self, compute: Callable[[], T]) -> T:
        if self._state is CellState.RESOLVED:
            return self._value  # type: ignore[return-value]
        with self._lock:
            if self._state is CellState.RESOLVED:
                return self._value  # type: ignore[return-value]
            self._state = CellState.RESOLVING
            try:
                value = compute()
            except BaseException:
                self._state = CellState.UNSET
                raise
            self._value = value
            self._state = CellState.RESOLVED
            return value

    def clear(self) -> Optional[T]:
        """Reset to ``UNSET`` and hand back whatever was cached."""
        with self._lock:
            value = self.peek()
            self._value = None
            self._state = CellState.UNSET
            return value
