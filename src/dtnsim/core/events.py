"""
Events and the time-ordered event queue.

Ordering is total and deterministic: (timestamp, kind priority, insertion
sequence). Kind priority puts expiries first, so an expiry always wins over
a simultaneous transfer, and contact ends before starts, so back-to-back
windows of the same pair never overlap.

Superseded events (e.g. the expiry of a bundle that was already delivered)
are not removed from the heap. They are flagged and skipped when popped.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any
import heapq

from dtnsim.errors import InvariantViolation


class EventKind(IntEnum):
    """Event kinds; the value is the tie-break priority at equal timestamps."""

    EXPIRY = 0
    CONTACT_END = 1
    INJECTION = 2
    CONTACT_START = 3


class EventStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass(order=True)
class Event:
    """A scheduled event. Compared on (time, kind, seq) only."""

    time: float
    kind: EventKind
    seq: int
    payload: Any = field(default=None, compare=False)
    status: EventStatus = field(default=EventStatus.PENDING, compare=False)
    superseded: bool = field(default=False, compare=False)


class EventQueue:
    """
    Min-ordered event queue with a logical clock.

    `now` only moves forward. Scheduling an event before `now` is an engine
    defect and raises InvariantViolation.
    """

    def __init__(self, start_time: float = 0.0):
        self.now = start_time
        self._heap: list[Event] = []
        self._seq = 0

    def push(self, time: float, kind: EventKind, payload: Any = None) -> Event:
        if time < self.now:
            raise InvariantViolation(
                f"Event {kind.name} scheduled at t={time} before clock t={self.now}"
            )
        event = Event(time=time, kind=kind, seq=self._seq, payload=payload)
        self._seq += 1
        heapq.heappush(self._heap, event)
        return event

    def pop(self) -> Event:
        if not self._heap:
            raise IndexError("pop from empty event queue")
        return heapq.heappop(self._heap)

    def peek_time(self) -> float | None:
        """Timestamp of the next event (superseded or not), None if empty."""
        return self._heap[0].time if self._heap else None

    def advance_to(self, time: float):
        """Move the clock forward. Moving it backwards is fatal."""
        if time < self.now:
            raise InvariantViolation(f"Clock moved backwards: t={self.now} -> t={time}")
        self.now = time

    @staticmethod
    def supersede(event: Event):
        """Mark an event as moot; it stays queued and is skipped at dispatch."""
        event.superseded = True

    def __len__(self) -> int:
        return len(self._heap)

    def live_count(self) -> int:
        return sum(1 for e in self._heap if not e.superseded)
