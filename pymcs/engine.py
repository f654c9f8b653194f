"""
Driving loop of the mean curvature skeleton.

``MeanCurvatureSkeleton`` owns one mesh for the duration of a run and cycles through

    CONTRACTING -> SIMPLIFYING -> DETECTING_DEGENERACIES -> (CONTRACTING | CONVERGED)

until the fixed fraction bound, the iteration cap, or a geometric fixpoint is reached.
Every cycle starts from a snapshot; when a cycle fails the mesh is rolled back to
the last completed cycle and the engine ends in ``FAILED``.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Optional, Union

import logging
import numpy as np
import trimesh as tm

from .config import SkeletonConfig
from .contraction import ContractionResult, contract_geometry
from .degeneracy import detect_degeneracies
from .errors import SkeletonizationError, SolverFaultError
from .medial import mesh_poles
from .mesh import SurfaceMesh
from .solver import LeastSquaresSolver
from .topology import collapse_short_edges, simplify, split_long_edges
from .weights import WeightCalculator, make_weight_calculator

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class EngineState(enum.Enum):
    INITIALIZED = "initialized"
    CONTRACTING = "contracting"
    SIMPLIFYING = "simplifying"
    DETECTING_DEGENERACIES = "detecting_degeneracies"
    CONVERGED = "converged"
    FAILED = "failed"


@dataclass
class CycleStats:
    iteration: int
    collapses: int
    splits: int
    new_fixed: int
    n_vertices: int
    n_fixed: int
    mean_displacement: float
    max_displacement: float


@dataclass
class SkeletonResult:
    mesh: SurfaceMesh  # final simplified mesh
    fixed_points: np.ndarray  # (k,3) in the order the points were fixed
    config: SkeletonConfig
    iterations: int
    reason: str  # "fixed_fraction" | "max_iterations" | "fixpoint" | "stopped"
    history: list[CycleStats] = field(default_factory=list)


class MeanCurvatureSkeleton:
    """Contraction-and-simplification engine for one closed triangle mesh.

    Parameters
    ----------
    mesh : SurfaceMesh or trimesh.Trimesh
        Single connected, closed 2-manifold. It is copied; the caller's object is never
        modified.
    config : SkeletonConfig, optional
        Run parameters; mesh-relative defaults are resolved here. Keyword overrides
        are applied on top.
    weight_calculator : WeightCalculator, optional
        Overrides ``config.weight``.
    solver : LeastSquaresSolver, optional
        Sparse solver collaborator.
    verbose : bool, default False
        If True, log progress at INFO level.
    log : logging.Logger, optional
        Custom logger. If None, use module logger.

    Raises
    ------
    InputInvariantError
        The input is not a single closed 2-manifold or has isolated vertices.
    """

    def __init__(
        self,
        mesh: Union[SurfaceMesh, tm.Trimesh],
        config: Optional[SkeletonConfig] = None,
        *,
        weight_calculator: Optional[WeightCalculator] = None,
        solver: Optional[LeastSquaresSolver] = None,
        verbose: bool = False,
        log: Optional[logging.Logger] = None,
        **overrides,
    ):
        if isinstance(mesh, tm.Trimesh):
            mesh = SurfaceMesh.from_trimesh(mesh)
        elif isinstance(mesh, SurfaceMesh):
            mesh = mesh.copy()
            mesh.validate()
        else:
            raise TypeError("MeanCurvatureSkeleton expects a SurfaceMesh or trimesh.Trimesh")

        base = config if config is not None else SkeletonConfig()
        self._requested = replace(base, **overrides).validate()
        self._scale = (mesh.bounding_box_diagonal(), float(mesh.edge_lengths().max()))
        self.config = self._requested.resolved_for(*self._scale)

        self.verbose = verbose
        self._log = log or logger
        self.weight_calculator = weight_calculator or make_weight_calculator(self.config.weight)
        self.solver = solver or LeastSquaresSolver()

        self._mesh = mesh
        self._fixed_points: list[np.ndarray] = [p for p in mesh.fixed_points()]
        self._stop_requested = False
        self.iterations = 0
        self.history: list[CycleStats] = []

        if self.config.omega_P > 0:
            self._mesh.poles = mesh_poles(self._mesh)

        self._state = EngineState.INITIALIZED
        if self.verbose:
            self._log.info(
                "MCS: %d vertices, %d faces; omega_L=%.3g omega_H=%.3g edge_th=%.3g split_th=%.3g",
                mesh.n_vertices, mesh.n_faces, self.config.omega_L, self.config.omega_H,
                self.config.edge_length_threshold, self.config.split_threshold,
            )

    # =================================================================
    # ACCESSORS AND PARAMETERS
    # =================================================================

    @property
    def mesh(self) -> SurfaceMesh:
        return self._mesh

    @property
    def state(self) -> EngineState:
        return self._state

    def get_fixed_points(self) -> np.ndarray:
        """Fixed skeleton points in the order they were detected, shape (k,3)."""
        if not self._fixed_points:
            return np.zeros((0, 3), dtype=float)
        return np.vstack(self._fixed_points)

    def _update(self, **changes) -> None:
        # thresholds the caller never set follow the new values
        requested = replace(self._requested, **changes).validate()
        self.config = requested.resolved_for(*self._scale)
        self._requested = requested

    def set_omega_L(self, value: float) -> None:
        self._update(omega_L=float(value))

    def set_omega_H(self, value: float) -> None:
        self._update(omega_H=float(value))

    def set_edge_length_threshold(self, value: float) -> None:
        self._update(edge_length_threshold=float(value))

    def set_zero_threshold(self, value: float) -> None:
        self._update(zero_threshold=float(value))

    def request_stop(self) -> None:
        """Ask ``run`` to stop after the current cycle."""
        self._stop_requested = True

    # =================================================================
    # SINGLE STEPS
    # =================================================================

    def contract_geometry(self) -> ContractionResult:
        self._state = EngineState.CONTRACTING
        cfg = self.config
        try:
            return contract_geometry(
                self._mesh,
                omega_L=cfg.omega_L,
                omega_H=cfg.omega_H,
                omega_P=cfg.omega_P,
                weight_calculator=self.weight_calculator,
                solver=self.solver,
                verbose=self.verbose,
                log=self._log,
            )
        except SolverFaultError:
            self._state = EngineState.FAILED
            raise

    def collapse_short_edges(self) -> int:
        self._state = EngineState.SIMPLIFYING
        return collapse_short_edges(
            self._mesh,
            self.config.edge_length_threshold,
            placement=self.config.collapse_placement,
            verbose=self.verbose,
            log=self._log,
        )

    def iteratively_split_triangles(self) -> int:
        self._state = EngineState.SIMPLIFYING
        return split_long_edges(
            self._mesh,
            self.config.split_threshold,
            placement=self.config.split_placement,
            verbose=self.verbose,
            log=self._log,
        )

    def detect_degeneracies(self) -> int:
        """Fix degenerate vertices and record their positions. Returns the number added."""
        self._state = EngineState.DETECTING_DEGENERACIES
        new = detect_degeneracies(
            self._mesh,
            edge_length_threshold=self.config.edge_length_threshold,
            zero_threshold=self.config.zero_threshold,
            policy=self.config.degeneracy_policy,
            verbose=self.verbose,
            log=self._log,
        )
        self._fixed_points.extend(self._mesh.vertices[new].copy())
        return int(new.size)

    # =================================================================
    # DRIVING LOOP
    # =================================================================

    def _cycle(self) -> CycleStats:
        cfg = self.config
        step = self.contract_geometry()
        self._state = EngineState.SIMPLIFYING
        collapses, splits = simplify(
            self._mesh,
            cfg.edge_length_threshold,
            cfg.split_threshold,
            collapse_placement=cfg.collapse_placement,
            split_placement=cfg.split_placement,
            max_sweeps=cfg.max_simplify_sweeps,
            verbose=self.verbose,
            log=self._log,
        )
        new_fixed = self.detect_degeneracies()
        return CycleStats(
            iteration=self.iterations + 1,
            collapses=collapses,
            splits=splits,
            new_fixed=new_fixed,
            n_vertices=self._mesh.n_vertices,
            n_fixed=int(self._mesh.fixed.sum()),
            mean_displacement=step.mean_displacement,
            max_displacement=step.max_displacement,
        )

    def run(self, max_iterations: Optional[int] = None) -> SkeletonResult:
        """Run contraction cycles until convergence.

        Stops when the fraction of fixed vertices exceeds ``max_fixed_fraction``, the
        iteration cap is reached, a cycle changes neither topology nor fixed set while
        moving no vertex farther than ``displacement_tolerance``, or
        :meth:`request_stop` was called.

        Raises
        ------
        SolverFaultError, TopologyInvariantError
            The mesh is restored to the last completed cycle and the state is FAILED.
        """
        cfg = self.config
        cap = cfg.max_iterations if max_iterations is None else int(max_iterations)
        reason = "max_iterations"
        start = self.iterations

        while True:
            if self._stop_requested:
                reason = "stopped"
                break
            if self.iterations - start >= cap:
                reason = "max_iterations"
                break

            snapshot = self._mesh.copy()
            n_points = len(self._fixed_points)
            try:
                stats = self._cycle()
            except SkeletonizationError as exc:
                self._mesh = snapshot
                del self._fixed_points[n_points:]
                self._state = EngineState.FAILED
                self._log.error(
                    "MCS: %s in cycle %d; mesh restored to last completed cycle",
                    type(exc).__name__, self.iterations + 1,
                )
                raise

            self.iterations += 1
            self.history.append(stats)
            if self.verbose:
                self._log.info(
                    "MCS cycle %d: %d collapses, %d splits, %d new fixed (%d/%d fixed)",
                    stats.iteration, stats.collapses, stats.splits, stats.new_fixed,
                    stats.n_fixed, stats.n_vertices,
                )

            if stats.n_fixed / max(1, stats.n_vertices) > cfg.max_fixed_fraction:
                reason = "fixed_fraction"
                break
            if (
                stats.collapses == 0
                and stats.splits == 0
                and stats.new_fixed == 0
                and stats.max_displacement <= cfg.displacement_tolerance
            ):
                reason = "fixpoint"
                break
            self._state = EngineState.CONTRACTING

        self._state = EngineState.CONVERGED
        self._stop_requested = False
        if self.verbose:
            self._log.info("MCS: converged after %d cycles (%s)", self.iterations, reason)
        return SkeletonResult(
            mesh=self._mesh,
            fixed_points=self.get_fixed_points(),
            config=self.config,
            iterations=self.iterations,
            reason=reason,
            history=list(self.history),
        )

    contract = run


def skeletonize(
    mesh: Union[SurfaceMesh, tm.Trimesh],
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
    **config,
) -> SkeletonResult:
    """Run the full contraction loop on ``mesh`` with keyword configuration.

    Keyword arguments are ``SkeletonConfig`` fields, e.g.
    ``skeletonize(mesh, omega_H=0.2, edge_length_threshold=0.01)``.
    """
    engine = MeanCurvatureSkeleton(mesh, SkeletonConfig(**config), verbose=verbose, log=log)
    return engine.run()
