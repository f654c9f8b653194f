from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import logging
import numpy as np
import scipy.sparse as sp

from .errors import InputInvariantError
from .mesh import SurfaceMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass
class LinearSystem:
    A: sp.csr_matrix  # (2n, n) or (3n, n) with medial rows
    bx: np.ndarray
    by: np.ndarray
    bz: np.ndarray
    n_vertices: int

    @property
    def rhs(self) -> np.ndarray:
        """Right-hand sides stacked as columns, shape (rows, 3)."""
        return np.column_stack([self.bx, self.by, self.bz])

    def laplacian_block(self) -> sp.csr_matrix:
        return self.A[: self.n_vertices]


def assemble_system(
    mesh: SurfaceMesh,
    weights: np.ndarray,
    *,
    omega_L: float = 1.0,
    omega_H: float = 0.1,
    omega_P: float = 0.0,
    poles: Optional[np.ndarray] = None,
    verbose: bool = False,
) -> LinearSystem:
    """Assemble the contraction system [omega_L L; omega_H I] X = [0; omega_H V].

    Row i (i < n) is the weighted Laplacian of vertex i: A(i,j) = 2 w_ij omega_L for
    each neighbor j, and A(i,i) is minus the sum of the row's off-diagonal entries so
    every Laplacian row sums to zero. Rows n..2n-1 hold omega_H on the diagonal with
    the current positions scaled by omega_H on the right-hand side.

    With ``omega_P > 0`` a third block pulls each vertex toward ``poles`` (medial
    targets), giving a (3n, n) system.

    The system is meant to be solved in the least-squares sense.

    Parameters
    ----------
    mesh : SurfaceMesh
    weights : (E,) float array
        Non-negative edge weights indexed by edge id.
    omega_L, omega_H : float
        Contraction and attraction strength, both > 0.
    omega_P : float, default 0.0
        Medial attraction strength; 0 disables the third block.
    poles : (n,3) array, optional
        Medial targets; defaults to ``mesh.poles``.

    Returns
    -------
    LinearSystem
    """
    if omega_L <= 0 or omega_H <= 0:
        raise ValueError("omega_L and omega_H must be > 0")
    if omega_P < 0:
        raise ValueError("omega_P must be >= 0")
    n = mesh.n_vertices
    w = np.asarray(weights, dtype=float).ravel()
    if w.shape[0] != mesh.n_edges:
        raise ValueError(f"weights must have one entry per edge ({mesh.n_edges}), got {w.shape[0]}")
    if not np.all(np.isfinite(w)) or np.any(w < 0):
        raise ValueError("edge weights must be finite and non-negative")

    degree = mesh.vertex_degrees()
    isolated = np.flatnonzero(degree == 0)
    if isolated.size:
        raise InputInvariantError(
            f"cannot assemble Laplacian: {isolated.size} vertices have no incident edges (first: {int(isolated[0])})"
        )

    use_poles = omega_P > 0
    if use_poles:
        poles = mesh.poles if poles is None else poles
        if poles is None:
            raise ValueError("omega_P > 0 requires medial poles")
        poles = np.asarray(poles, dtype=float)
        if poles.shape != mesh.vertices.shape:
            raise ValueError("poles must match vertices shape (n,3)")
    n_rows = 3 * n if use_poles else 2 * n

    i, j = mesh.edges[:, 0], mesh.edges[:, 1]
    off = 2.0 * w * omega_L
    I_off = np.concatenate([i, j])
    J_off = np.concatenate([j, i])
    W_off = np.concatenate([off, off])
    diag = -np.bincount(I_off, weights=W_off, minlength=n)

    ids = np.arange(n)
    I = [I_off, ids, ids + n]
    J = [J_off, ids, ids]
    W = [W_off, diag, np.full(n, float(omega_H))]
    if use_poles:
        I.append(ids + 2 * n)
        J.append(ids)
        W.append(np.full(n, float(omega_P)))

    A = sp.coo_matrix(
        (np.concatenate(W), (np.concatenate(I), np.concatenate(J))), shape=(n_rows, n)
    ).tocsr()

    B = np.zeros((n_rows, 3), dtype=float)
    B[n:2 * n] = omega_H * mesh.vertices
    if use_poles:
        B[2 * n:] = omega_P * poles

    if verbose:
        logger.info("System assembled: %d x %d, nnz=%d", n_rows, n, A.nnz)
    return LinearSystem(A=A, bx=B[:, 0].copy(), by=B[:, 1].copy(), bz=B[:, 2].copy(), n_vertices=n)
