"""Pass-scoped cancellation: an abort flag with an optional deadline."""

import threading
import time
from typing import Optional

from meeting_sync.errors import SyncCancelled


class CancellationToken:
    """
    Shared by every suspension point of one pass (page fetch, retry delay,
    credential refresh, participant lookup). ``cancel()`` may be called from any thread.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, where: str = "") -> None:
        if self.cancelled:
            suffix = f" during {where}" if where else ""
            raise SyncCancelled(f"Sync pass cancelled{suffix}")

    def wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the pass is cancelled first, in which case raise."""
        if seconds > 0:
            if self._deadline is not None:
                seconds = min(seconds, max(0.0, self._deadline - time.monotonic()))
            self._event.wait(seconds)
        self.raise_if_cancelled("retry delay")
