"""Exception types raised by the skeletonization engine."""
from __future__ import annotations


class SkeletonizationError(Exception):
    """Base class for all engine faults."""


class NumericDegenerateError(SkeletonizationError, ArithmeticError):
    """A computation hit a degenerate geometric configuration it cannot recover from."""


class TopologyInvariantError(SkeletonizationError):
    """A proposed collapse or split would break the 2-manifold invariants."""


class SolverFaultError(SkeletonizationError, RuntimeError):
    """The sparse solver failed to factorize or returned a non-finite solution."""


class InputInvariantError(SkeletonizationError, ValueError):
    """Input mesh is not a single closed 2-manifold, or has isolated vertices."""
