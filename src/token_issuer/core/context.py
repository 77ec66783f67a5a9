"""Per-request cancellation and deadline handling.

A :class:`RequestContext` is created by the transport layer for every token
request and handed to each pipeline stage and to every storage and gate call.
Collaborators that block on I/O should poll :attr:`RequestContext.cancelled`
(or call :meth:`RequestContext.raise_if_cancelled`) so that a cancelled
request aborts promptly.
"""

from __future__ import annotations

import threading

from token_issuer.core.clock import Clock, default_clock
from token_issuer.core.errors import RequestCancelledError


class RequestContext:
    """Cancellation flag plus optional absolute deadline (UNIX seconds)."""

    def __init__(
        self,
        *,
        deadline: float | None = None,
        clock: Clock = default_clock,
        correlation_id: str | None = None,
    ) -> None:
        self.deadline = deadline
        self.correlation_id = correlation_id
        self._clock = clock
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(
        cls,
        timeout: float | None,
        *,
        clock: Clock = default_clock,
        correlation_id: str | None = None,
    ) -> "RequestContext":
        """Return a context expiring *timeout* seconds from now (``None``: never)."""
        deadline = clock() + timeout if timeout is not None else None
        return cls(deadline=deadline, clock=clock, correlation_id=correlation_id)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.deadline is not None and self._clock() >= self.deadline

    def raise_if_cancelled(self) -> None:
        """Raise :class:`RequestCancelledError` if the request must stop."""
        if self._cancelled.is_set():
            raise RequestCancelledError()
        if self.deadline is not None and self._clock() >= self.deadline:
            raise RequestCancelledError("request deadline exceeded")

    def wait(self, timeout: float) -> bool:
        """Block up to *timeout* seconds; return *True* if cancelled meanwhile."""
        return self._cancelled.wait(timeout)
