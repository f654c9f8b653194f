from __future__ import annotations

import logging
import numpy as np

from .mesh import SurfaceMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def _face_areas(V: np.ndarray, F: np.ndarray) -> np.ndarray:
    v0 = V[F[:, 0]]
    v1 = V[F[:, 1]]
    v2 = V[F[:, 2]]
    return 0.5 * np.linalg.norm(np.cross(v1 - v0, v2 - v0), axis=1)


def _edge_lengths(V: np.ndarray, F: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    # edge lengths opposite to vertices 0,1,2
    a = np.linalg.norm(V[F[:, 1]] - V[F[:, 2]], axis=1)
    b = np.linalg.norm(V[F[:, 2]] - V[F[:, 0]], axis=1)
    c = np.linalg.norm(V[F[:, 0]] - V[F[:, 1]], axis=1)
    return a, b, c


def _cot_angles_from_edges(
    a: np.ndarray, b: np.ndarray, c: np.ndarray, area: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    # cot(alpha) opposite edge a, etc. Using 4A in denominator (since |u x v| = 2A)
    cot_alpha = (b * b + c * c - a * a) / (4.0 * area)
    cot_beta = (c * c + a * a - b * b) / (4.0 * area)
    cot_gamma = (a * a + b * b - c * c) / (4.0 * area)
    return cot_alpha, cot_beta, cot_gamma


def _angles_from_edges(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return angles at the triangle vertices given opposite edge lengths.

    For a triangle with vertex indices (i0, i1, i2), we define:
    - a opposite i0 (edge length |v1-v2|)
    - b opposite i1 (edge length |v2-v0|)
    - c opposite i2 (edge length |v0-v1|)
    Returns (alpha, beta, gamma) corresponding to angles at (i0,i1,i2).
    """
    def acos_clipped(x: np.ndarray) -> np.ndarray:
        return np.arccos(np.clip(x, -1.0, 1.0))

    alpha = acos_clipped((b * b + c * c - a * a) / (2.0 * b * c))
    beta = acos_clipped((c * c + a * a - b * b) / (2.0 * c * a))
    gamma = acos_clipped((a * a + b * b - c * c) / (2.0 * a * b))
    return alpha, beta, gamma


class WeightCalculator:
    """Per-edge scalar weight strategy.

    Subclasses implement :meth:`_corner_weights`, returning for each face the
    contribution of each corner to the edge opposite it. Degenerate faces (area below
    ``eps`` times the squared longest edge) contribute nothing; the number skipped in
    the last call is kept in ``degenerate_count``.
    """

    name = "base"

    def __init__(self, eps: float = 1e-10):
        if eps < 0:
            raise ValueError("eps must be non-negative")
        self.eps = float(eps)
        self.degenerate_count = 0

    def _corner_weights(self, V: np.ndarray, F: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        raise NotImplementedError

    def weight(self, mesh: SurfaceMesh, edge: int) -> float:
        """Weight of a single edge from its two incident triangles."""
        faces = mesh.edge_faces[edge]
        W, bad = self._corner_weights(mesh.vertices, mesh.faces[faces])
        corner = mesh.face_edges[faces] == edge
        self.degenerate_count = int(bad.sum())
        return float(W[corner].sum())

    def edge_weights(self, mesh: SurfaceMesh, *, verbose: bool = False) -> np.ndarray:
        """Dense weight table indexed by edge id, recomputed from current positions."""
        W, bad = self._corner_weights(mesh.vertices, mesh.faces)
        w = np.zeros(mesh.n_edges, dtype=float)
        np.add.at(w, mesh.face_edges.reshape(-1), W.reshape(-1))
        self.degenerate_count = int(bad.sum())
        if self.degenerate_count:
            logger.debug("%s weights: skipped %d degenerate faces", self.name, self.degenerate_count)
        if verbose:
            logger.info("Edge weights (%s) for %d edges: min=%.3g max=%.3g", self.name, w.size, w.min(initial=0.0), w.max(initial=0.0))
        return w

    def _degenerate_mask(self, a, b, c, area) -> np.ndarray:
        longest = np.maximum(np.maximum(a, b), c)
        return ~(area > self.eps * longest * longest)

    def __call__(self, mesh: SurfaceMesh, edge: int) -> float:
        return self.weight(mesh, edge)


class CotangentWeight(WeightCalculator):
    """w_ij = (cot alpha + cot beta) / 2, negative cotangents clamped to zero."""

    name = "cotangent"

    def _corner_weights(self, V: np.ndarray, F: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        a, b, c = _edge_lengths(V, F)
        area = _face_areas(V, F)
        bad = self._degenerate_mask(a, b, c, area)
        ok = ~bad
        cot = np.zeros((F.shape[0], 3), dtype=float)
        if np.any(ok):
            cot[ok] = np.column_stack(_cot_angles_from_edges(a[ok], b[ok], c[ok], area[ok]))
        return 0.5 * np.maximum(cot, 0.0), bad


class MeanValueWeight(WeightCalculator):
    """Mean-value style weight: sum_t tan(theta_t / 2) / |e_ij|.

    theta_t is the angle opposite the edge in triangle t (symmetric variant).
    """

    name = "mean_value"

    def _corner_weights(self, V: np.ndarray, F: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        a, b, c = _edge_lengths(V, F)
        area = _face_areas(V, F)
        bad = self._degenerate_mask(a, b, c, area)
        ok = ~bad
        W = np.zeros((F.shape[0], 3), dtype=float)
        if np.any(ok):
            alpha, beta, gamma = _angles_from_edges(a[ok], b[ok], c[ok])
            W[ok] = np.column_stack([
                np.tan(alpha / 2.0) / a[ok],
                np.tan(beta / 2.0) / b[ok],
                np.tan(gamma / 2.0) / c[ok],
            ])
        return W, bad


_WEIGHTS = {
    "cotangent": CotangentWeight,
    "mean_value": MeanValueWeight,
}


def make_weight_calculator(kind: str = "cotangent", **kwargs) -> WeightCalculator:
    try:
        cls = _WEIGHTS[kind]
    except KeyError:
        raise ValueError(f"Unknown weight type: {kind}") from None
    return cls(**kwargs)
