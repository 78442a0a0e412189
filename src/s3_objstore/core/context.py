"""Cancellation and deadline propagation for blocking storage calls.

A ``Context`` is handed to every upload. Callers on other threads can cancel
it, or give it a deadline up front; the retry loop checks it between attempts
and races its backoff sleep against it, so a cancelled upload stops promptly
without blocking anything but its own thread.
"""

import threading
import time
from typing import Optional

from .exceptions import UploadCanceledError


class Context:
    """Cancellation token with an optional monotonic deadline."""

    def __init__(
        self,
        deadline: Optional[float] = None,
        _event: Optional[threading.Event] = None,
    ):
        self._event = _event if _event is not None else threading.Event()
        self.deadline = deadline

    @classmethod
    def background(cls) -> "Context":
        """Return a context that is never cancelled and has no deadline."""
        return cls()

    @classmethod
    def with_deadline_in(cls, seconds: float) -> "Context":
        """Return a fresh context expiring ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def with_timeout(self, seconds: float) -> "Context":
        """Derive a child sharing this context's cancellation.

        The child's deadline is the earlier of the parent's and ``seconds``
        from now. Cancelling the child cancels the parent too.
        """
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return Context(deadline=deadline, _event=self._event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        """True once the context is cancelled or past its deadline."""
        return self.cancelled or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def reason(self) -> str:
        if self.cancelled:
            return "context canceled"
        if self.expired:
            return "context deadline exceeded"
        return ""

    def raise_if_done(
        self, bucket: Optional[str] = None, key: Optional[str] = None
    ) -> None:
        """Raise UploadCanceledError if the context has ended."""
        if self.done():
            raise UploadCanceledError(self.reason(), bucket=bucket, key=key)

    def wait(self, seconds: float) -> bool:
        """Block the calling thread for up to ``seconds``.

        Returns True if the context ended before the delay elapsed.
        """
        end = time.monotonic() + max(0.0, seconds)
        if self.deadline is not None:
            end = min(end, self.deadline)

        while True:
            timeout = end - time.monotonic()
            if timeout <= 0:
                break
            if self._event.wait(timeout):
                return True
        return self.done()
