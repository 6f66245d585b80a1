"""
Error taxonomy for the simulation core.

Only two of these ever leave the engine:
- ConfigError: a scenario option is outside its documented domain
- InvariantViolation: the engine itself is broken (fatal)

MalformedContact is raised while building contact windows but is always
caught at ingestion and turned into an anomaly record. Capacity pressure is
never an exception at all: it is reported as data (AdmitResult, drop records).
"""

from __future__ import annotations
from typing import Any


class ConfigError(ValueError):
    """Invalid scenario parameter. Raised before any simulation state exists."""


class MalformedContact(ValueError):
    """Contact window with non-positive duration, or overlapping its pair's previous window."""


class InvariantViolation(RuntimeError):
    """
    An engine invariant was broken (double custody, out-of-order dispatch, ...).

    The simulation halts. `snapshot` holds the last valid snapshot, when one
    was available, so the failure can be diagnosed.
    """

    def __init__(self, message: str, snapshot: Any = None):
        super().__init__(message)
        self.snapshot = snapshot
