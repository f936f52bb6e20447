"""Thread-safe output queue shared by concurrent account passes."""

import queue
from typing import Iterator, Optional, Tuple

from meeting_sync.models import SyncEvent


class EventQueue:
    """
    Append-only FIFO of ``(account_id, SyncEvent)`` pairs. Each account has a single
    producer thread, so the events of one account come out in the order they were put.
    """

    def __init__(self):
        self._queue: "queue.Queue[Tuple[str, SyncEvent]]" = queue.Queue()

    def put(self, account_id: str, event: SyncEvent) -> None:
        self._queue.put((account_id, event))

    def get(self, timeout: Optional[float] = None) -> Optional[Tuple[str, SyncEvent]]:
        """Return the next item, or None if nothing arrived within ``timeout`` seconds."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> Iterator[Tuple[str, SyncEvent]]:
        """Yield everything currently queued without blocking."""
        while True:
            try:
                yield self._queue.get_nowait()
            except queue.Empty:
                return

    def __len__(self) -> int:
        return self._queue.qsize()
