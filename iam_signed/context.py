"""
Cancellation and deadline token for a single delivery.

A Context is created by the caller and passed to a delivery. Cancelling it,
or letting its deadline pass, aborts the in-flight request; the delivery
then fails with a TransportError whose ``cancelled`` flag is set.

Usage:
    ctx = Context.with_timeout(5)
    body = api_gateway(payload, endpoint, "us-west-2", "POST", context=ctx)

    # From another thread or task
    ctx.cancel()
"""

import threading
import time
from typing import Callable, Optional

from .exceptions import TransportError


class Context:
    """
    Thread-safe cancellation token with an optional deadline.

    Attributes:
        deadline: Monotonic clock time after which the context is expired,
            or None for no deadline
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize the context.

        Args:
            timeout: Seconds until the deadline, or None for no deadline
        """
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must be non-negative")
        self.deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @classmethod
    def background(cls) -> "Context":
        """A context that is never cancelled and has no deadline."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> "Context":
        return cls(timeout=seconds)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative), or None."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self) -> None:
        """Cancel the context and run its callbacks once."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_done_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback run when the context is cancelled.

        The callback runs immediately if the context is already cancelled.
        Deadlines do not trigger callbacks; deliveries enforce them as
        timeouts.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            if not self._cancelled.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove
        callback()
        return lambda: None

    def raise_if_done(self) -> None:
        """
        Raises:
            TransportError: If the context is cancelled or expired
        """
        if self.cancelled:
            raise TransportError("could not send request: context canceled", cancelled=True)
        if self.expired:
            raise TransportError("could not send request: context deadline exceeded", cancelled=True)

    def __repr__(self) -> str:
        return f"Context(cancelled={self.cancelled}, remaining={self.remaining()})"
