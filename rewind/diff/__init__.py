"""Diff engine and clone utilities.

Submodules:
    engine -- analyze()/apply() over dot-joined paths, REMOVED sentinel,
              DiffError hierarchy.
    clone  -- deep_clone, selective_deep_clone, compute_hash.
"""

from rewind.diff.clone import compute_hash, deep_clone, selective_deep_clone
from rewind.diff.engine import (
    REMOVED,
    CyclicStateError,
    DiffError,
    DiffResult,
    DiffTypeMismatch,
    Patch,
    analyze,
    apply,
)

__all__ = [
    "REMOVED",
    "CyclicStateError",
    "DiffError",
    "DiffResult",
    "DiffTypeMismatch",
    "Patch",
    "analyze",
    "apply",
    "compute_hash",
    "deep_clone",
    "selective_deep_clone",
]
