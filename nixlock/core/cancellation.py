"""Cooperative cancellation for crawls and cache requests.

Blocking operations check the token between steps; nothing is interrupted
mid-request.
"""

from __future__ import annotations

import threading


class OperationCancelledError(RuntimeError):
    """Raised when work is abandoned because its token was cancelled."""


class CancellationToken:
    """Thread-safe flag that long-running operations poll.

    Examples
    --------
    >>> token = CancellationToken()
    >>> token.is_cancelled()
    False
    >>> token.cancel()
    >>> token.is_cancelled()
    True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, what: str = "operation") -> None:
        """Raise :class:`OperationCancelledError` if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError(f"{what} cancelled")


def check_cancelled(token: CancellationToken | None, what: str = "operation") -> None:
    """``token.raise_if_cancelled`` that tolerates a missing token."""
    if token is not None:
        token.raise_if_cancelled(what)
