"""Cooperative cancellation for operations that touch the rule store."""

from __future__ import annotations

import threading
import time

from universal_config.errors import OperationCancelled


class CancellationToken:
    """Cancel flag with an optional monotonic deadline.

    Tokens derived with ``with_timeout`` share the parent's cancel flag, so
    cancelling the parent cancels every child.
    """

    def __init__(self, timeout: float | None = None, _event: threading.Event | None = None):
        self._event = _event or threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def with_timeout(self, timeout: float) -> CancellationToken:
        """Child token with the tighter of the two deadlines."""
        child = CancellationToken(timeout, _event=self._event)
        if self._deadline is not None and (child._deadline is None or self._deadline < child._deadline):
            child._deadline = self._deadline
        return child

    def check(self, operation: str = "operation") -> None:
        """Raise OperationCancelled if cancelled or past the deadline."""
        if self._event.is_set():
            raise OperationCancelled(f"{operation} was cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise OperationCancelled(f"{operation} timed out")


def resolve_token(
    token: CancellationToken | None, timeout: float | None
) -> CancellationToken:
    """Combine an optional caller token with an optional timeout."""
    if token is None:
        return CancellationToken(timeout)
    if timeout is not None:
        return token.with_timeout(timeout)
    return token
