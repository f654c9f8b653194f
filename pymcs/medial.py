from __future__ import annotations

import logging
import numpy as np
from scipy.spatial import QhullError, Voronoi

from .errors import NumericDegenerateError
from .mesh import SurfaceMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def compute_voronoi_poles(vertices: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Approximate medial targets (inner Voronoi poles) for each surface vertex.

    For each vertex p with normal n, we compute the Voronoi region of p in 3D and
    select the farthest finite Voronoi vertex lying in the -n direction ("inner"
    pole). If none lie in -n, the vertex keeps its own position as target.

    Returns
    -------
    poles : (n,3) float
        Medial target positions for each vertex.
    """
    P = np.asarray(vertices, dtype=float)
    N = np.asarray(normals, dtype=float)
    n = P.shape[0]
    if n == 0:
        return P.copy()
    if N.shape != P.shape:
        raise ValueError("normals must match vertices shape (n,3)")

    try:
        vor = Voronoi(P)
    except QhullError as exc:
        raise NumericDegenerateError(f"Voronoi diagram failed: {exc}") from exc

    poles = P.copy()
    Vverts = vor.vertices  # (m,3)
    point_region = vor.point_region
    regions = vor.regions

    # keep poles within the bounding box; far Voronoi vertices come from flat patches
    lo = P.min(axis=0)
    hi = P.max(axis=0)
    found = 0
    for i in range(n):
        r_idx = point_region[i]
        if r_idx == -1 or r_idx >= len(regions):
            continue
        reg = [v_idx for v_idx in regions[r_idx] if 0 <= v_idx < len(Vverts)]
        if not reg:
            continue

        C = Vverts[np.asarray(reg, dtype=int)]  # candidate Voronoi vertices
        inside = np.all((C >= lo) & (C <= hi), axis=1)
        diffs = C - P[i]
        dists = np.linalg.norm(diffs, axis=1)
        # Inner direction (opposite normal)
        inner = np.flatnonzero((diffs @ N[i] < 0) & inside)
        if inner.size == 0:
            continue
        poles[i] = C[inner[np.argmax(dists[inner])]]
        found += 1

    logger.debug("Voronoi poles: %d/%d vertices have an inner pole", found, n)
    return poles


def mesh_poles(mesh: SurfaceMesh) -> np.ndarray:
    """Inner poles of a mesh from its area-weighted vertex normals."""
    return compute_voronoi_poles(mesh.vertices, mesh.vertex_normals())
