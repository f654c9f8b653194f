from __future__ import annotations

from typing import Optional

import logging
import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

from .mesh import SurfaceMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def _short_edge_regions(mesh: SurfaceMesh, edge_length_threshold: float) -> np.ndarray:
    """Boolean mask of vertices whose short-edge region is not a disk.

    Vertices joined by edges shorter than the threshold form regions. Each region is a
    small complex of its vertices, its short edges and the faces whose three edges are
    all short; a disk (or a tree of short edges) has Euler characteristic 1. Any other
    value means the surface has pinched into a cycle or closed blob there.
    """
    n = mesh.n_vertices
    short = mesh.edge_lengths() < edge_length_threshold
    E = mesh.edges[short]
    G = sp.coo_matrix((np.ones(E.shape[0]), (E[:, 0], E[:, 1])), shape=(n, n))
    n_regions, labels = connected_components(G, directed=False)

    n_v = np.bincount(labels, minlength=n_regions)
    n_e = np.bincount(labels[E[:, 0]], minlength=n_regions)
    face_short = short[mesh.face_edges].all(axis=1)
    n_f = np.bincount(labels[mesh.faces[face_short, 0]], minlength=n_regions)
    euler = n_v - n_e + n_f
    return euler[labels] != 1


def detect_degeneracies(
    mesh: SurfaceMesh,
    *,
    edge_length_threshold: float,
    zero_threshold: float = 1e-7,
    policy: str = "both",
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Flag vertices whose neighborhood has degenerated into a skeletal point.

    Policies
    --------
    "topology"
        The vertex belongs to a region of short edges whose Euler characteristic is
        not 1 (a pinched ring of edges all below ``edge_length_threshold``).
    "area"
        The one-ring area is below ``zero_threshold * edge_length_threshold**2``, or a
        neighbor lies within ``sqrt(zero_threshold) * edge_length_threshold`` of the
        vertex. Both bounds scale with the collapse threshold, so the result does not
        depend on the units of the mesh.
    "both" (default)
        Either of the above.

    Fixed flags are only ever set, never cleared. Returns the ids of the newly fixed
    vertices.
    """
    _log = log or logger
    if policy not in ("topology", "area", "both"):
        raise ValueError(f"Unknown degeneracy policy: {policy}")

    degenerate = np.zeros(mesh.n_vertices, dtype=bool)
    if policy in ("topology", "both"):
        degenerate |= _short_edge_regions(mesh, edge_length_threshold)
    if policy in ("area", "both"):
        area_th = zero_threshold * edge_length_threshold ** 2
        degenerate |= mesh.one_ring_areas() < area_th
        near = mesh.edge_lengths() < np.sqrt(area_th)
        degenerate[mesh.edges[near].reshape(-1)] = True

    new = np.flatnonzero(degenerate & ~mesh.fixed)
    mesh.fixed[new] = True
    if verbose:
        _log.info("Degeneracy: %d new fixed vertices (%d total)", new.size, int(mesh.fixed.sum()))
    return new
