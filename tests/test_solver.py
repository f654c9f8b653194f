import numpy as np
import pytest
import scipy.sparse as sp

from pymcs.errors import SolverFaultError
from pymcs.solver import LeastSquaresSolver


def test_matches_dense_least_squares():
    rng = np.random.default_rng(0)
    A = rng.standard_normal((20, 8))
    B = rng.standard_normal((20, 3))
    X = LeastSquaresSolver().solve(sp.csr_matrix(A), B)
    X_ref = np.linalg.lstsq(A, B, rcond=None)[0]
    assert X.shape == (8, 3)
    assert np.allclose(X, X_ref, atol=1e-8)


def test_shared_factorization_per_column():
    rng = np.random.default_rng(1)
    A = sp.csr_matrix(rng.standard_normal((12, 5)))
    b = rng.standard_normal(12)
    with LeastSquaresSolver().factorize(A) as fac:
        x1 = fac.solve(b)
        x2 = fac.solve(2.0 * b)
    assert np.allclose(x2, 2.0 * x1)
    assert fac.released


def test_singular_system_raises():
    A = sp.csr_matrix(np.array([[1.0, 0.0], [1.0, 0.0]]))
    with pytest.raises(SolverFaultError):
        LeastSquaresSolver().solve(A, np.array([1.0, 2.0]))


def test_solve_after_release_raises():
    A = sp.csr_matrix(np.eye(3))
    fac = LeastSquaresSolver().factorize(A)
    fac.release()
    with pytest.raises(SolverFaultError):
        fac.solve(np.ones(3))


def test_underdetermined_rejected():
    with pytest.raises(ValueError):
        LeastSquaresSolver().factorize(sp.csr_matrix(np.ones((2, 3))))
