"""
Single-level rollback holder for manifold-valued estimates.

The tracker proposes a pose, evaluates it, and either keeps it or reverts to
the value held before the proposal. Only one pending proposal is tracked.
"""

from __future__ import annotations

from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Revertable(Generic[T]):
    """
    Holds a current value and the value before the last update.

    Example:
        >>> pose = Revertable(0)
        >>> pose.update(1)
        >>> pose.revert()
        >>> pose.current
        0
    """

    __slots__ = ("_current", "_previous", "_pending")

    def __init__(self, value: T):
        self._current: T = value
        self._previous: Optional[T] = None
        self._pending = False

    @property
    def current(self) -> T:
        return self._current

    @property
    def has_pending_update(self) -> bool:
        return self._pending

    def update(self, value: T) -> None:
        """Replace the current value, remembering the old one for revert()."""
        self._previous = self._current
        self._current = value
        self._pending = True

    def revert(self) -> None:
        """Restore the value held before the last update."""
        if not self._pending:
            raise RuntimeError("revert() requires a preceding update()")
        self._current = self._previous
        self._previous = None
        self._pending = False

    def __repr__(self) -> str:
        return f"Revertable(current={self._current!r}, pending={self._pending})"
