"""Cancellation scopes shared between threads."""

from __future__ import annotations

import threading
import weakref


class Cancelled(Exception):
    """Raised when work is abandoned because its context was cancelled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class Context:
    """A cancellation flag; cancelling a context cancels all of its children."""

    def __init__(self, parent: Context | None = None) -> None:
        self.parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: weakref.WeakSet[Context] = weakref.WeakSet()
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: Context) -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.add(child)
                return
        child.cancel()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)
            self._children = weakref.WeakSet()
        for child in children:
            child.cancel()

    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` passes; True if cancelled."""
        return self._event.wait(timeout)

    def child(self) -> Context:
        return Context(self)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()