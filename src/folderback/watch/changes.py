"""Thread-safe FIFO of pending change events."""

from __future__ import annotations

import queue
from typing import Optional

from folderback.records import ChangeEvent


class ChangeQueue:
    """Unbounded multi-producer queue drained by a single dispatcher.

    Producers never block. A consumer that cannot handle an event yet puts it
    back at the tail with :meth:`requeue`.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[ChangeEvent] = queue.Queue()

    def put(self, event: ChangeEvent) -> None:
        """Append ``event`` at the tail."""
        self._queue.put_nowait(event)

    def requeue(self, event: ChangeEvent) -> None:
        """Append ``event`` at the tail again, counting the retry."""
        event.requeues += 1
        self._queue.put_nowait(event)

    def get_nowait(self) -> Optional[ChangeEvent]:
        """Return the head event, or ``None`` when the queue is empty."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()


__all__ = ["ChangeQueue"]
