"""
Cooperative cancellation for long-running discovery and extraction calls.
"""
import threading
from typing import Optional


class OperationCancelled(Exception):
    """Raised at an I/O boundary after cancellation was requested."""


class CancellationToken:
    """
    A thread-safe flag checked before each network call, archive read and file write.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._event.is_set():
            raise OperationCancelled(f"Operation cancelled{f' before {stage}' if stage else ''}")


def check_cancelled(token: Optional[CancellationToken], stage: Optional[str] = None) -> None:
    """Convenience wrapper for callers that accept an optional token."""
    if token is not None:
        token.raise_if_cancelled(stage)
