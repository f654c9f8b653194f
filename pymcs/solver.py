from __future__ import annotations

import logging
import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from .errors import SolverFaultError

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class Factorization:
    """Factorized normal equations (A^T A) x = A^T b for one (rows, n) matrix.

    Use as a context manager; the factor is released on exit even when a solve
    raises, after which :meth:`solve` refuses to run.
    """

    def __init__(self, A: sp.spmatrix):
        A = sp.csr_matrix(A)
        if A.shape[0] < A.shape[1]:
            raise ValueError("least-squares system needs at least as many rows as columns")
        self.shape = A.shape
        self._At = A.T.tocsr()
        normal = (self._At @ A).tocsc()
        try:
            self._solve = spla.factorized(normal)
        except (RuntimeError, ValueError) as exc:
            raise SolverFaultError(f"factorization failed: {exc}") from exc

    @property
    def released(self) -> bool:
        return self._solve is None

    def solve(self, b: np.ndarray) -> np.ndarray:
        if self._solve is None:
            raise SolverFaultError("factorization has been released")
        b = np.asarray(b, dtype=float).ravel()
        if b.shape[0] != self.shape[0]:
            raise ValueError(f"right-hand side must have length {self.shape[0]}")
        rhs = self._At @ b
        with np.errstate(all="ignore"):
            try:
                x = self._solve(rhs)
            except (RuntimeError, ValueError, ArithmeticError) as exc:
                raise SolverFaultError(f"triangular solve failed: {exc}") from exc
        x = np.asarray(x, dtype=float)
        if not np.all(np.isfinite(x)):
            raise SolverFaultError("solver returned non-finite values (singular or ill-conditioned system)")
        return x

    def release(self) -> None:
        self._solve = None
        self._At = None

    def __enter__(self) -> "Factorization":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class LeastSquaresSolver:
    """Sparse least-squares solver through one shared factorization of A^T A."""

    def factorize(self, A: sp.spmatrix) -> Factorization:
        fac = Factorization(A)
        logger.debug("Factorized normal equations for %d x %d system", *fac.shape)
        return fac

    def solve(self, A: sp.spmatrix, B: np.ndarray) -> np.ndarray:
        """Solve each column of B against A, reusing a single factorization."""
        B = np.asarray(B, dtype=float)
        if B.ndim == 1:
            B = B[:, None]
        with self.factorize(A) as fac:
            return np.column_stack([fac.solve(B[:, k]) for k in range(B.shape[1])])
