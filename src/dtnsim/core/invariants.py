"""Invariant checks run by the scheduler after each dispatched event."""

from __future__ import annotations

from typing import Mapping, TYPE_CHECKING

from dtnsim.errors import InvariantViolation
from dtnsim.core.store import SIZE_EPS

if TYPE_CHECKING:
    from dtnsim.core.node import Node


def custody(nodes: Mapping[int, "Node"], holders: Mapping[int, set[int]], max_copies: int) -> list[str]:
    """Every live bundle has between 1 and max_copies custodians, and the ledger matches the stores."""

    problems = []
    stored: dict[int, set[int]] = {}
    for node_id, node in nodes.items():
        for bundle in node.store:
            stored.setdefault(bundle.bundle_id, set()).add(node_id)
            if bundle.custodian != node_id:
                problems.append(
                    f"bundle {bundle.bundle_id} in store of node {node_id} names custodian {bundle.custodian}"
                )

    for bundle_id, ids in stored.items():
        if not 1 <= len(ids) <= max_copies:
            problems.append(f"bundle {bundle_id} has {len(ids)} custodians (max {max_copies})")
        if holders.get(bundle_id, set()) != ids:
            problems.append(f"bundle {bundle_id} ledger {holders.get(bundle_id)} != stores {ids}")

    for bundle_id, ids in holders.items():
        if ids and bundle_id not in stored:
            problems.append(f"bundle {bundle_id} in ledger but in no store")
    return problems


def capacity(nodes: Mapping[int, "Node"]) -> list[str]:
    """No store holds more than its capacity."""

    return [
        f"node {node_id} stores {node.store.used} > capacity {node.capacity}"
        for node_id, node in nodes.items()
        if node.store.used > node.capacity + SIZE_EPS
    ]


def expiry(nodes: Mapping[int, "Node"], now: float) -> list[str]:
    """No store holds a bundle whose deadline has passed."""

    return [
        f"node {node_id} still holds bundle {bundle.bundle_id} expired at {bundle.expires_at} (t={now})"
        for node_id, node in nodes.items()
        for bundle in node.store
        if bundle.expires_at <= now
    ]


def enforce(nodes: Mapping[int, "Node"], holders: Mapping[int, set[int]], max_copies: int, now: float):
    """Raise InvariantViolation listing every broken invariant."""

    problems = custody(nodes, holders, max_copies) + capacity(nodes) + expiry(nodes, now)
    if problems:
        raise InvariantViolation("; ".join(problems))
