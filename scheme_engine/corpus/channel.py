"""FIFO channel carrying corpus change events to consumers."""

import queue
from typing import Iterable, List, Optional

from scheme_engine.domain.models import ChangeEvent


class ChangeEventChannel:
    """Thread-safe FIFO of ChangeEvents.

    The corpus publishes into every subscribed channel while holding its write
    lock, so each channel sees events in the version order they were produced.
    """

    def __init__(self):
        self._queue: "queue.Queue[ChangeEvent]" = queue.Queue()

    def publish(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            self._queue.put_nowait(event)

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Take the next event, waiting up to ``timeout`` seconds (None = don't wait)."""
        try:
            if timeout is None:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self, max_events: Optional[int] = None) -> List[ChangeEvent]:
        """Take up to ``max_events`` pending events without waiting."""
        events: List[ChangeEvent] = []
        while max_events is None or len(events) < max_events:
            event = self.get()
            if event is None:
                break
            events.append(event)
        return events

    @property
    def pending(self) -> int:
        """Approximate number of events waiting."""
        return self._queue.qsize()
