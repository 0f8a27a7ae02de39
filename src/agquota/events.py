"""Ordered observer lists."""

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Subscribers(Generic[T]):
    """
    Callbacks notified synchronously, in registration order.

    A callback that raises is logged and skipped; the remaining callbacks
    still receive the value.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._callbacks: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, value: T) -> None:
        # Copy so a callback may unsubscribe itself during delivery
        for callback in list(self._callbacks):
            try:
                callback(value)
            except Exception:
                logger.exception("%s subscriber %r failed", self._name, callback)
