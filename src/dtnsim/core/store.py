"""
Node store: bounded bundle storage with admission, eviction and expiry.

Each node owns one store. Capacity is an aggregate bundle size; with unit
size bundles this is the same as a bundle-count bound. The store never holds
more than its capacity: an admission that does not fit either evicts
victims chosen by the eviction policy or is rejected. Nothing overflows.

Eviction is a local decision. The store knows nothing about other nodes.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, Protocol

from dtnsim.core.bundles import Bundle

# Slack for float size accounting
SIZE_EPS = 1e-9


@dataclass(frozen=True)
class BundleView:
    """What a node discloses about a stored bundle: metadata, never payload."""

    bundle_id: int
    destination: int
    created_at: float
    expires_at: float
    size: float
    hop_count: int


@dataclass(frozen=True)
class AdmitResult:
    """Outcome of an admission attempt."""

    accepted: bool
    evicted: tuple[Bundle, ...] = ()

    @property
    def rejected(self) -> bool:
        return not self.accepted


class EvictionPolicy(Protocol):
    """Protocol for eviction policies."""

    def select_victims(self, store: "NodeStore", incoming: Bundle) -> list[Bundle] | None:
        """
        Choose stored bundles to evict so `incoming` fits.

        Returns:
            Victims to evict, or None to reject the incoming bundle
        """
        ...


class DeadlineEviction:
    """
    Evict soonest-expiring bundles, but only for a longer-lived newcomer.

    Admitting is assumed to improve expected delivery only if every victim
    has strictly less remaining lifetime than the incoming bundle.
    """

    def select_victims(self, store: "NodeStore", incoming: Bundle) -> list[Bundle] | None:
        needed = incoming.size - store.free
        victims: list[Bundle] = []
        freed = 0.0
        for candidate in store:
            if freed >= needed - SIZE_EPS:
                break
            if candidate.bundle_id == incoming.bundle_id:
                continue
            if not candidate.expires_at < incoming.expires_at:
                return None
            victims.append(candidate)
            freed += candidate.size
        if freed < needed - SIZE_EPS:
            return None
        return victims


class RejectWhenFull:
    """Never evict: a bundle that does not fit is rejected."""

    def select_victims(self, store: "NodeStore", incoming: Bundle) -> list[Bundle] | None:
        return None


EVICTION_POLICIES = {
    "deadline": DeadlineEviction,
    "reject": RejectWhenFull,
}


class NodeStore:
    """
    Bundles held in custody by one node.

    Iteration yields bundles in deadline order (soonest expiry first,
    ties by bundle id).
    """

    def __init__(self, capacity: float, policy: EvictionPolicy | None = None):
        self.capacity = capacity
        self.policy = policy if policy is not None else DeadlineEviction()
        self._bundles: dict[int, Bundle] = {}

    @property
    def used(self) -> float:
        return sum(b.size for b in self._bundles.values())

    @property
    def free(self) -> float:
        return max(0.0, self.capacity - self.used)

    @property
    def pressure(self) -> float:
        """Occupancy fraction in [0, 1]."""
        if self.capacity <= 0:
            return 1.0
        return min(1.0, self.used / self.capacity)

    def __len__(self) -> int:
        return len(self._bundles)

    def __contains__(self, bundle_id: int) -> bool:
        return bundle_id in self._bundles

    def __iter__(self) -> Iterator[Bundle]:
        return iter(sorted(self._bundles.values(), key=Bundle.sort_key))

    def holds(self, bundle_id: int) -> bool:
        return bundle_id in self._bundles

    def get(self, bundle_id: int) -> Bundle:
        return self._bundles[bundle_id]

    def admit(self, bundle: Bundle) -> AdmitResult:
        """
        Store a bundle, evicting victims if the policy allows it.

        A second copy of a bundle already held is rejected.
        """
        if bundle.bundle_id in self._bundles or bundle.size > self.capacity + SIZE_EPS:
            return AdmitResult(accepted=False)

        if bundle.size <= self.free + SIZE_EPS:
            self._bundles[bundle.bundle_id] = bundle
            return AdmitResult(accepted=True)

        victims = self.policy.select_victims(self, bundle)
        if victims is None:
            return AdmitResult(accepted=False)

        for victim in victims:
            del self._bundles[victim.bundle_id]
        self._bundles[bundle.bundle_id] = bundle
        return AdmitResult(accepted=True, evicted=tuple(victims))

    def remove(self, bundle_id: int) -> Bundle:
        return self._bundles.pop(bundle_id)

    def expire_sweep(self, now: float) -> list[Bundle]:
        """Remove and return every bundle whose deadline is <= now."""
        expired = [b for b in self if b.is_expired(now)]
        for bundle in expired:
            del self._bundles[bundle.bundle_id]
        return expired

    def contents_visible_to(self, peer_id: int) -> frozenset[BundleView]:
        """
        Holdings disclosed to `peer_id` during a contact.

        Default is full disclosure of destination and age for every bundle.
        """
        return frozenset(
            BundleView(
                bundle_id=b.bundle_id,
                destination=b.destination,
                created_at=b.created_at,
                expires_at=b.expires_at,
                size=b.size,
                hop_count=b.hop_count,
            )
            for b in self._bundles.values()
        )
