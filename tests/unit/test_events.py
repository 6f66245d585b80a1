"""Unit tests for the event queue."""

import pytest

from dtnsim.errors import InvariantViolation
from dtnsim.core.events import EventKind, EventQueue, EventStatus


class TestEventQueue:
    """Tests for EventQueue ordering and clock."""

    def test_pops_in_time_order(self):
        q = EventQueue()
        for t in (5.0, 1.0, 3.0):
            q.push(t, EventKind.INJECTION)
        assert [q.pop().time for _ in range(3)] == [1.0, 3.0, 5.0]

    def test_kind_priority_at_equal_time(self):
        q = EventQueue()
        q.push(2.0, EventKind.CONTACT_START)
        q.push(2.0, EventKind.INJECTION)
        q.push(2.0, EventKind.CONTACT_END)
        q.push(2.0, EventKind.EXPIRY)
        kinds = [q.pop().kind for _ in range(4)]
        assert kinds == [EventKind.EXPIRY, EventKind.CONTACT_END, EventKind.INJECTION, EventKind.CONTACT_START]

    def test_insertion_order_breaks_remaining_ties(self):
        q = EventQueue()
        q.push(1.0, EventKind.INJECTION, "first")
        q.push(1.0, EventKind.INJECTION, "second")
        assert [q.pop().payload for _ in range(2)] == ["first", "second"]

    def test_push_before_clock_is_fatal(self):
        q = EventQueue(start_time=10.0)
        with pytest.raises(InvariantViolation):
            q.push(9.0, EventKind.EXPIRY)
        q.push(10.0, EventKind.EXPIRY)

    def test_clock_never_moves_backwards(self):
        q = EventQueue()
        q.advance_to(4.0)
        assert q.now == 4.0
        with pytest.raises(InvariantViolation):
            q.advance_to(3.0)

    def test_supersede_keeps_event_queued(self):
        q = EventQueue()
        event = q.push(1.0, EventKind.EXPIRY, 7)
        q.push(2.0, EventKind.INJECTION)
        q.supersede(event)
        assert len(q) == 2
        assert q.live_count() == 1
        popped = q.pop()
        assert popped is event
        assert popped.superseded

    def test_peek_time(self):
        q = EventQueue()
        assert q.peek_time() is None
        q.push(3.0, EventKind.INJECTION)
        assert q.peek_time() == 3.0

    def test_new_events_are_pending(self):
        q = EventQueue()
        event = q.push(0.0, EventKind.INJECTION)
        assert event.status is EventStatus.PENDING
        assert not event.superseded

    def test_pop_empty(self):
        with pytest.raises(IndexError):
            EventQueue().pop()
