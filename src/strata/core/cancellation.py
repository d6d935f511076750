"""Cooperative cancellation for long-running data-layer work.

A :class:`CancellationToken` is checked by the executor before each
statement is sent and by the migration runner between units.  A
statement already in flight is never interrupted.

Usage::

    token = CancellationToken()
    worker = threading.Thread(target=migrator.run, kwargs={"token": token})
    worker.start()
    ...
    token.cancel()      # the batch stops before the next migration
"""

from __future__ import annotations

import threading

from strata.core.errors import OperationCancelledError


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise :class:`OperationCancelledError` once :meth:`cancel` was called."""
        if self._event.is_set():
            raise OperationCancelledError(f"Operation cancelled: {self._reason}")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


__all__ = ["CancellationToken"]
