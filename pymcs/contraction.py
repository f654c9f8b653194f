from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import logging
import numpy as np

from .mesh import SurfaceMesh
from .solver import LeastSquaresSolver
from .system import assemble_system
from .weights import CotangentWeight, WeightCalculator

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass
class ContractionResult:
    vertices: np.ndarray  # (n,3) positions after the step
    n_solved: int  # number of movable vertices solved for
    mean_displacement: float
    max_displacement: float
    degenerate_faces: int  # faces skipped by the weight calculator


def contract_geometry(
    mesh: SurfaceMesh,
    *,
    omega_L: float = 1.0,
    omega_H: float = 0.1,
    omega_P: float = 0.0,
    weight_calculator: Optional[WeightCalculator] = None,
    solver: Optional[LeastSquaresSolver] = None,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> ContractionResult:
    """One implicit contraction step over the whole mesh.

    Edge weights are recomputed from the current geometry, the system

        [omega_L L; omega_H I] X = [0; omega_H V]

    is assembled and solved in the least-squares sense for the x, y and z channels
    through a single factorization. Fixed vertices are not unknowns: their columns are
    moved to the right-hand side and their rows dropped, so they never move.

    The step is all-or-nothing. Positions are written back only after all three
    channels have been solved; a ``SolverFaultError`` leaves ``mesh`` untouched.

    Parameters
    ----------
    mesh : SurfaceMesh
        Mesh to contract in place.
    omega_L : float, default 1.0
        Laplacian contraction strength.
    omega_H : float, default 0.1
        Attraction to the current positions.
    omega_P : float, default 0.0
        Attraction to ``mesh.poles``; 0 disables medial guidance.
    weight_calculator : WeightCalculator, optional
        Edge-weight strategy. Defaults to cotangent weights.
    solver : LeastSquaresSolver, optional
        Sparse solver collaborator.
    verbose : bool, default False
        If True, log basic progress information.
    log : logging.Logger, optional
        Custom logger. If None, use module logger.

    Returns
    -------
    ContractionResult
    """
    _log = log or logger
    calc = weight_calculator or CotangentWeight()
    solver = solver or LeastSquaresSolver()

    V = mesh.vertices
    n = mesh.n_vertices
    weights = calc.edge_weights(mesh)
    system = assemble_system(mesh, weights, omega_L=omega_L, omega_H=omega_H, omega_P=omega_P)

    movable = np.flatnonzero(~mesh.fixed)
    fixed = np.flatnonzero(mesh.fixed)
    if movable.size == 0:
        if verbose:
            _log.info("Contract: all %d vertices fixed; nothing to solve", n)
        return ContractionResult(V.copy(), 0, 0.0, 0.0, calc.degenerate_count)

    n_blocks = system.A.shape[0] // n
    rows = np.concatenate([movable + k * n for k in range(n_blocks)])
    A_rows = system.A[rows]
    A_mov = A_rows[:, movable]
    B = system.rhs[rows]
    if fixed.size:
        B = B - A_rows[:, fixed] @ V[fixed]

    with solver.factorize(A_mov) as fac:
        X = np.column_stack([fac.solve(B[:, k]) for k in range(3)])

    V_new = V.copy()
    V_new[movable] = X
    disp = np.linalg.norm(V_new - V, axis=1)
    mesh.vertices = V_new

    if verbose:
        _log.info(
            "Contract: solved %d/%d vertices, mean displacement %.3g, max %.3g (degenerate faces: %d)",
            movable.size, n, float(disp.mean()), float(disp.max()), calc.degenerate_count,
        )
    return ContractionResult(
        vertices=V_new,
        n_solved=int(movable.size),
        mean_displacement=float(disp.mean()),
        max_displacement=float(disp.max()),
        degenerate_faces=calc.degenerate_count,
    )
