"""
Event scheduler: the discrete-event loop.

Each dispatch:
1. Pop the next event in (time, kind, seq) order; skip it if superseded
2. If time moved, advance the clock and sweep expired bundles out of every store
3. Run the handler (expiry, contact end, injection, contact start)
4. Check invariants (custody, capacity, expiry)

Contacts and injections are pulled lazily: only the next window and the next
injection are ever queued, and each dispatch pulls its successor. Pending
contact ends and expiries are queued as they become known.

With an energy game attached, each contact start first settles both nodes'
participation (see core/energy.py); a node that stays out sits the contact out.

Every bundle reaches exactly one terminal state (delivered, expired
undelivered, dropped at capacity). All terminal bookkeeping goes through
`_terminate`, which also purges surviving copies and supersedes the
bundle's expiry event.

IMPORTANT: handlers for different contacts are not commutative (they share
the stores they touch). The loop is strictly sequential.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Iterator
import logging

import numpy as np

from dtnsim.analysis.metrics import (
    Delivered,
    DroppedAtCapacity,
    ExpiredUndelivered,
    Injected,
    MetricsCollector,
    TerminalRecord,
)
from dtnsim.core import invariants
from dtnsim.core.bundles import BundleFactory, Injection
from dtnsim.core.contacts import ContactAnomaly, ContactStream, ContactWindow
from dtnsim.core.energy import EnergyGame
from dtnsim.core.events import Event, EventKind, EventQueue, EventStatus
from dtnsim.core.game import ActiveContact, ForwardingGameEngine
from dtnsim.core.node import Node

logger = logging.getLogger(__name__)


@dataclass
class SimulationState:
    """Everything the loop mutates, in one place."""

    nodes: dict[int, Node]
    queue: EventQueue = field(default_factory=EventQueue)
    custody: dict[int, set[int]] = field(default_factory=dict)     # bundle id -> holders
    expiry_events: dict[int, Event] = field(default_factory=dict)  # bundle id -> pending expiry
    active: dict[tuple[int, int], ActiveContact] = field(default_factory=dict)
    anomalies: list[ContactAnomaly] = field(default_factory=list)

    @property
    def time(self) -> float:
        return self.queue.now


@dataclass
class EventScheduler:
    """Drives a SimulationState forward one event at a time."""

    state: SimulationState
    engine: ForwardingGameEngine
    metrics: MetricsCollector
    contacts: Iterator[ContactWindow]
    injections: Iterator[Injection]
    factory: BundleFactory = field(default_factory=BundleFactory)
    check_invariants: bool = True
    energy_game: EnergyGame | None = None
    positions: Callable[[float], np.ndarray] | None = None  # Needed by the energy game

    events_processed: int = field(default=0, init=False)
    _pending_injection: Event | None = field(default=None, init=False)

    def __post_init__(self):
        self.contacts = ContactStream(self.contacts, self.state.anomalies)
        self.injections = iter(self.injections)

    def seed(self):
        """Queue the first contact and the first injection."""
        self._schedule_next_contact()
        self._schedule_next_injection()

    @property
    def injections_exhausted(self) -> bool:
        return self._pending_injection is None

    def restart_injections(self, injections: Iterator[Injection]):
        """Replace the injection source, discarding any pending injection."""
        if self._pending_injection is not None:
            self.state.queue.supersede(self._pending_injection)
        self.injections = iter(injections)
        self._schedule_next_injection()

    def run_until(self, t_end: float, should_stop: Callable[[], bool] = lambda: False) -> bool:
        """
        Process every event with time <= t_end, then move the clock to t_end.

        `should_stop` is polled between events. Returns True if it fired
        before t_end was reached; the clock then stays at the last processed event.
        """
        queue = self.state.queue
        while queue.peek_time() is not None and queue.peek_time() <= t_end:
            if should_stop():
                return True
            self.step()

        if t_end > self.state.time:
            self._advance(t_end)
        return False

    def step(self):
        """Dispatch the next event."""
        queue = self.state.queue
        event = queue.pop()
        if event.superseded:
            logger.debug("t=%s: skipping superseded %s", event.time, event.kind.name)
            return
        if event.time > queue.now:
            self._advance(event.time)
            # The sweep may have made this event moot
            if event.superseded:
                return

        event.status = EventStatus.PROCESSING
        handler = {
            EventKind.EXPIRY: self._on_expiry,
            EventKind.CONTACT_END: self._on_contact_end,
            EventKind.INJECTION: self._on_injection,
            EventKind.CONTACT_START: self._on_contact_start,
        }[event.kind]
        handler(event)
        event.status = EventStatus.COMPLETED
        self.events_processed += 1

        if self.check_invariants:
            invariants.enforce(
                self.state.nodes, self.state.custody, self.engine.config.max_replicas, self.state.time
            )

    # --- clock and terminal bookkeeping ---

    def _advance(self, t: float):
        self.state.queue.advance_to(t)
        self._sweep(t)

    def _sweep(self, t: float):
        """Drop every expired bundle from every store."""
        for node_id in sorted(self.state.nodes):
            for bundle in self.state.nodes[node_id].store.expire_sweep(t):
                holders = self.state.custody.get(bundle.bundle_id, set())
                holders.discard(node_id)
                if not holders:
                    self._terminate(bundle.bundle_id, ExpiredUndelivered(bundle_id=bundle.bundle_id, time=t))

    def _terminate(self, bundle_id: int, record: TerminalRecord):
        for holder in sorted(self.state.custody.pop(bundle_id, ())):
            store = self.state.nodes[holder].store
            if store.holds(bundle_id):
                store.remove(bundle_id)
        expiry = self.state.expiry_events.pop(bundle_id, None)
        if expiry is not None:
            self.state.queue.supersede(expiry)
        self.metrics.record(record)

    def _drop_orphans(self, evicted, now: float):
        """Victims evicted from a store are dropped if that was their last copy."""
        for bundle, node_id in evicted:
            if not self.state.custody.get(bundle.bundle_id):
                logger.debug("t=%s: bundle %s dropped at node %s (evicted)", now, bundle.bundle_id, node_id)
                self._terminate(bundle.bundle_id, DroppedAtCapacity(bundle_id=bundle.bundle_id, time=now, node_id=node_id))

    # --- pull-on-dispatch sources ---

    def _schedule_next_contact(self):
        window = next(self.contacts, None)
        if window is not None:
            self.state.queue.push(window.start, EventKind.CONTACT_START, window)

    def _schedule_next_injection(self):
        injection = next(self.injections, None)
        if injection is None:
            self._pending_injection = None
            return
        self._pending_injection = self.state.queue.push(injection.time, EventKind.INJECTION, injection)

    # --- handlers ---

    def _on_expiry(self, event: Event):
        self._sweep(event.time)

    def _on_contact_end(self, event: Event):
        window: ContactWindow = event.payload
        self.state.active.pop(window.pair, None)

    def _on_injection(self, event: Event):
        injection: Injection = event.payload
        now = self.state.time
        self._schedule_next_injection()

        bundle = self.factory.create(injection)
        self.metrics.record(Injected(
            bundle_id=bundle.bundle_id,
            time=now,
            source=bundle.source,
            destination=bundle.destination,
        ))
        self.state.expiry_events[bundle.bundle_id] = self.state.queue.push(
            bundle.expires_at, EventKind.EXPIRY, bundle.bundle_id
        )

        result = self.state.nodes[bundle.source].store.admit(bundle)
        evicted = []
        for victim in result.evicted:
            self.state.custody.get(victim.bundle_id, set()).discard(bundle.source)
            evicted.append((victim, bundle.source))
        self._drop_orphans(evicted, now)

        if result.rejected:
            logger.debug("t=%s: bundle %s rejected at source %s", now, bundle.bundle_id, bundle.source)
            self._terminate(
                bundle.bundle_id,
                DroppedAtCapacity(bundle_id=bundle.bundle_id, time=now, node_id=bundle.source),
            )
            return

        self.state.custody[bundle.bundle_id] = {bundle.source}
        self._offer_at(bundle.source)

    def _on_contact_start(self, event: Event):
        window: ContactWindow = event.payload
        self._schedule_next_contact()
        self.state.queue.push(window.end, EventKind.CONTACT_END, window)

        a = self.state.nodes[window.node_a]
        b = self.state.nodes[window.node_b]
        a.record_encounter(b.node_id)
        b.record_encounter(a.node_id)

        contact = ActiveContact(window=window, remaining=window.capacity)
        if self.energy_game is not None:
            now = self.state.time
            contact.entered = self.energy_game.play(a, b, self.state.nodes, self.positions(now), now)
        self.state.active[window.pair] = contact
        self._play(contact)

    def _play(self, contact: ActiveContact):
        """One round at an open contact, then follow-up rounds wherever bundles landed."""
        now = self.state.time
        window = contact.window
        result = self.engine.play(
            self.state.nodes[window.node_a],
            self.state.nodes[window.node_b],
            contact,
            now,
            self.state.custody,
        )
        outcome = result.outcome
        if outcome.round == 0 or outcome.transfers or outcome.capacity_rejections or outcome.energy_skips:
            self.metrics.observe(outcome)

        self._drop_orphans(result.evicted, now)
        for bundle in result.delivered:
            self._terminate(bundle.bundle_id, Delivered(
                bundle_id=bundle.bundle_id,
                time=now,
                latency=now - bundle.created_at,
                hops=bundle.hop_count,
            ))

        for node_id in dict.fromkeys(result.receivers):
            self._offer_at(node_id, exclude=window.pair)

    def _offer_at(self, node_id: int, exclude: tuple[int, int] | None = None):
        """A node gained a bundle: replay its other open contacts."""
        for pair in sorted(self.state.active):
            if node_id in pair and pair != exclude:
                contact = self.state.active.get(pair)
                if contact is not None and contact.remaining > 0:
                    self._play(contact)
