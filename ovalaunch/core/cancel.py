"""
Cancellation token shared between the orchestrator and blocking calls.
"""

import threading
from typing import Optional


class CancelToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float]) -> bool:
        """Sleep up to ``timeout`` seconds; return True as soon as cancelled."""
        return self._event.wait(timeout)
