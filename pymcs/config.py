from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from .mesh import SurfaceMesh

_COLLAPSE_PLACEMENTS = ("midpoint", "endpoint")
_SPLIT_PLACEMENTS = ("midpoint", "projection")
_DEGENERACY_POLICIES = ("topology", "area", "both")
_WEIGHT_TYPES = ("cotangent", "mean_value")


@dataclass
class SkeletonConfig:
    """Parameters of one skeletonization run.

    Attributes
    ----------
    omega_L : float, default 1.0
        Laplacian contraction strength.
    omega_H : float, default 0.1
        Attraction to the current positions.
    omega_P : float, default 0.0
        Attraction to medial (Voronoi pole) targets; 0 disables it.
    edge_length_threshold : float, optional
        Edges shorter than this are collapsed. Defaults to 0.002 x the bounding box
        diagonal of the input mesh.
    split_threshold : float, optional
        Edges longer than this are split. Defaults to twice the longest input edge
        (and never less than twice ``edge_length_threshold``).
    zero_threshold : float, default 1e-7
        Near-zero one-ring area used by the degeneracy detector, relative to the
        square of ``edge_length_threshold``.
    max_iterations : int, default 100
        Cap on contraction cycles.
    max_fixed_fraction : float, default 0.95
        Stop once the fraction of fixed vertices exceeds this.
    max_simplify_sweeps : int, default 10
        Cap on collapse/split alternations per cycle.
    displacement_tolerance : float, optional
        A cycle without topology changes or new fixed vertices only counts as a
        fixpoint when no vertex moved farther than this. Defaults to
        ``edge_length_threshold``.
    collapse_placement : {"midpoint", "endpoint"}
    split_placement : {"midpoint", "projection"}
    degeneracy_policy : {"topology", "area", "both"}
    weight : {"cotangent", "mean_value"}
    """

    omega_L: float = 1.0
    omega_H: float = 0.1
    omega_P: float = 0.0
    edge_length_threshold: Optional[float] = None
    split_threshold: Optional[float] = None
    zero_threshold: float = 1e-7
    max_iterations: int = 100
    max_fixed_fraction: float = 0.95
    max_simplify_sweeps: int = 10
    displacement_tolerance: Optional[float] = None
    collapse_placement: str = "midpoint"
    split_placement: str = "midpoint"
    degeneracy_policy: str = "both"
    weight: str = "cotangent"

    def validate(self) -> "SkeletonConfig":
        if not self.omega_L > 0 or not self.omega_H > 0:
            raise ValueError("omega_L and omega_H must be > 0")
        if self.omega_P < 0:
            raise ValueError("omega_P must be >= 0")
        if self.edge_length_threshold is not None and not self.edge_length_threshold > 0:
            raise ValueError("edge_length_threshold must be > 0")
        if self.split_threshold is not None and not self.split_threshold > 0:
            raise ValueError("split_threshold must be > 0")
        if (
            self.edge_length_threshold is not None
            and self.split_threshold is not None
            and self.split_threshold <= 2.0 * self.edge_length_threshold
        ):
            raise ValueError("split_threshold must exceed twice edge_length_threshold")
        if self.zero_threshold < 0:
            raise ValueError("zero_threshold must be >= 0")
        if int(self.max_iterations) < 0:
            raise ValueError("max_iterations must be >= 0")
        if not 0.0 < self.max_fixed_fraction <= 1.0:
            raise ValueError("max_fixed_fraction must be in (0, 1]")
        if int(self.max_simplify_sweeps) < 1:
            raise ValueError("max_simplify_sweeps must be >= 1")
        if self.displacement_tolerance is not None and self.displacement_tolerance < 0:
            raise ValueError("displacement_tolerance must be >= 0")
        if self.collapse_placement not in _COLLAPSE_PLACEMENTS:
            raise ValueError(f"Unknown collapse_placement: {self.collapse_placement}")
        if self.split_placement not in _SPLIT_PLACEMENTS:
            raise ValueError(f"Unknown split_placement: {self.split_placement}")
        if self.degeneracy_policy not in _DEGENERACY_POLICIES:
            raise ValueError(f"Unknown degeneracy_policy: {self.degeneracy_policy}")
        if self.weight not in _WEIGHT_TYPES:
            raise ValueError(f"Unknown weight type: {self.weight}")
        return self

    def resolved(self, mesh: SurfaceMesh) -> "SkeletonConfig":
        """Return a copy with mesh-relative defaults filled in."""
        return self.resolved_for(
            mesh.bounding_box_diagonal(), float(mesh.edge_lengths().max(initial=0.0))
        )

    def resolved_for(self, bbox_diagonal: float, longest_edge: float) -> "SkeletonConfig":
        """Fill unset thresholds from the input mesh's scale.

        Fields left as None here are derived again on every call, so a later change
        to ``edge_length_threshold`` carries over to the split threshold and the
        displacement tolerance unless those were given explicitly.
        """
        edge_th = self.edge_length_threshold
        if edge_th is None:
            edge_th = 0.002 * bbox_diagonal
        split_th = self.split_threshold
        if split_th is None:
            split_th = max(2.0 * longest_edge, 2.0 * edge_th * (1.0 + 1e-9))
        disp = self.displacement_tolerance
        if disp is None:
            disp = edge_th
        return replace(
            self,
            edge_length_threshold=float(edge_th),
            split_threshold=float(split_th),
            displacement_tolerance=float(disp),
        ).validate()

    @classmethod
    def for_mesh(cls, mesh: SurfaceMesh, **overrides) -> "SkeletonConfig":
        return cls(**overrides).validate().resolved(mesh)
