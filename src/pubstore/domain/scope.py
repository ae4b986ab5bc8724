"""
Request scope — deadline and cooperative cancellation for one caller request.

A RequestScope is created once per incoming HTTP request and passed
explicitly to the entitlement service, which hands the remaining time to
every remote call as its timeout. When the client goes away the serving
layer calls cancel(); the service checks the scope before persisting.

Blocking remote calls go through run(): the call executes on a shared
worker pool while the caller waits for either its result or the scope
ending, so a cancelled request returns at once instead of waiting for
the remote timeout. Adapters register cleanup with on_cancel() (closing
their HTTP client) so the abandoned call is torn down as well.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")

_REMOTE_CALLS = ThreadPoolExecutor(max_workers=64, thread_name_prefix="remote-call")


class ScopeCancelled(Exception):
    """Raised by RequestScope.run when the scope ends before the call returns."""


class RequestScope:
    """
    Thread-safe deadline and cancellation token.

        >>> scope = RequestScope(timeout=10.0)
        >>> scope.is_cancelled()
        False
        >>> scope.cancel()
        >>> scope.is_cancelled()
        True
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._cancelled = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], Any]] = []

    def cancel(self) -> None:
        """Cancel the scope and run the registered callbacks once."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            _run_callback(callback)

    def is_cancelled(self) -> bool:
        """True once cancel() was called or the deadline has passed."""
        if self._cancelled.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout_for(self, ceiling: float) -> float:
        """Per-call timeout: the configured ceiling capped by the remaining time."""
        remaining = self.remaining()
        if remaining is None:
            return ceiling
        return min(ceiling, remaining)

    def on_cancel(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """
        Register a callback for cancel(); returns a function that unregisters it.

        On an already cancelled scope the callback runs immediately.
        """
        with self._lock:
            if not self._cancelled.is_set():
                self._callbacks.append(callback)
                return lambda: self._discard(callback)
        _run_callback(callback)
        return lambda: None

    def run(self, call: Callable[[], T]) -> T:
        """
        Run a blocking call, giving up as soon as the scope ends.

        Returns the call's result or re-raises its exception. Raises
        ScopeCancelled when the scope is cancelled or its deadline passes
        first (a passed deadline cancels the scope so callbacks still run);
        whatever the abandoned call produces afterwards is dropped.
        """
        if self.is_cancelled():
            raise ScopeCancelled("Request scope already ended")
        finished = threading.Event()
        future = _REMOTE_CALLS.submit(call)
        future.add_done_callback(lambda _: finished.set())
        unregister = self.on_cancel(finished.set)
        try:
            finished.wait(self.remaining())
        finally:
            unregister()
        if future.done() and not self._cancelled.is_set():
            return future.result()
        self.cancel()
        raise ScopeCancelled("Request scope ended while waiting for a remote call")

    def _discard(self, callback: Callable[[], Any]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


def _run_callback(callback: Callable[[], Any]) -> None:
    try:
        callback()
    except Exception:
        log.warning("scope.cancel_callback_failed", callback=repr(callback), exc_info=True)
