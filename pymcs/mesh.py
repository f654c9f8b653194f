"""
Surface mesh model used by the contraction engine.

A ``SurfaceMesh`` stores vertex positions and triangles as numpy arrays together with
dense index maps (edges, edge->faces, face->edges, vertex->edges) that are rebuilt from
scratch after every topology change, so that ids always stay contiguous in ``[0, N)``
and ``[0, E)``.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components
import trimesh

from .errors import InputInvariantError, TopologyInvariantError

# Module-level logger
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class SurfaceMesh:
    """Closed 2-manifold triangle mesh with per-vertex fixed flags.

    Parameters
    ----------
    vertices : (n,3) float array
    faces : (m,3) int array, consistently oriented triangles
    fixed : (n,) bool array, optional
        Vertices already frozen as skeleton points. Defaults to all movable.
    poles : (n,3) float array, optional
        Per-vertex medial targets carried through topology edits.
    validate : bool, default True
        Check the closed 2-manifold invariants and raise ``InputInvariantError``
        when they do not hold.
    """

    def __init__(
        self,
        vertices: np.ndarray,
        faces: np.ndarray,
        *,
        fixed: Optional[np.ndarray] = None,
        poles: Optional[np.ndarray] = None,
        validate: bool = True,
    ):
        self.vertices = np.array(vertices, dtype=np.float64).reshape(-1, 3)
        self.faces = np.array(faces, dtype=np.int64).reshape(-1, 3)
        n = self.vertices.shape[0]
        if fixed is None:
            self.fixed = np.zeros(n, dtype=bool)
        else:
            self.fixed = np.array(fixed, dtype=bool).reshape(-1)
            if self.fixed.shape[0] != n:
                raise ValueError("fixed must have length n (num vertices)")
        self.poles: Optional[np.ndarray] = None
        if poles is not None:
            self.poles = np.array(poles, dtype=np.float64).reshape(-1, 3)
            if self.poles.shape[0] != n:
                raise ValueError("poles must match vertices shape (n,3)")

        if validate:
            self.validate()
        self.rebuild_index()

    # =================================================================
    # CONSTRUCTION AND CONVERSION
    # =================================================================

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh, **kwargs) -> "SurfaceMesh":
        if not isinstance(mesh, trimesh.Trimesh):
            raise TypeError("from_trimesh expects a trimesh.Trimesh")
        return cls(
            mesh.vertices.view(np.ndarray),
            mesh.faces.view(np.ndarray),
            **kwargs,
        )

    def to_trimesh(self) -> trimesh.Trimesh:
        return trimesh.Trimesh(vertices=self.vertices.copy(), faces=self.faces.copy(), process=False)

    def copy(self) -> "SurfaceMesh":
        other = SurfaceMesh.__new__(SurfaceMesh)
        other.vertices = self.vertices.copy()
        other.faces = self.faces.copy()
        other.fixed = self.fixed.copy()
        other.poles = None if self.poles is None else self.poles.copy()
        other.rebuild_index()
        return other

    def replace_topology(
        self,
        vertices: np.ndarray,
        faces: np.ndarray,
        fixed: np.ndarray,
        poles: Optional[np.ndarray] = None,
    ) -> None:
        """Swap in new connectivity and re-derive every index map."""
        self.vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        self.faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        self.fixed = np.asarray(fixed, dtype=bool).reshape(-1)
        self.poles = None if poles is None else np.asarray(poles, dtype=np.float64).reshape(-1, 3)
        self.rebuild_index()

    # =================================================================
    # INDEX MAPS
    # =================================================================

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_faces(self) -> int:
        return int(self.faces.shape[0])

    @property
    def n_edges(self) -> int:
        return int(self.edges.shape[0])

    def rebuild_index(self) -> None:
        """Assign dense edge ids and rebuild all adjacency tables.

        Edges are the sorted unique vertex pairs of the faces. ``face_edges[f, k]``
        is the edge opposite corner ``k`` of face ``f``; ``edge_faces[e]`` holds the
        two faces bordering edge ``e``.
        """
        F = self.faces
        n = self.vertices.shape[0]
        m = F.shape[0]

        # half-edges opposite corners 0, 1, 2
        he = np.concatenate([F[:, [1, 2]], F[:, [2, 0]], F[:, [0, 1]]], axis=0)
        key = np.sort(he, axis=1)
        if m == 0:
            self.edges = np.zeros((0, 2), dtype=np.int64)
            self.face_edges = np.zeros((0, 3), dtype=np.int64)
            self.edge_faces = np.zeros((0, 2), dtype=np.int64)
        else:
            edges, inverse, counts = np.unique(key, axis=0, return_inverse=True, return_counts=True)
            inverse = np.asarray(inverse).reshape(-1)
            if np.any(counts != 2):
                raise TopologyInvariantError(
                    f"{int(np.count_nonzero(counts != 2))} edges do not border exactly two faces"
                )
            self.edges = edges.astype(np.int64)
            self.face_edges = inverse.reshape(3, m).T.copy()
            face_ids = np.tile(np.arange(m, dtype=np.int64), 3)
            order = np.argsort(inverse, kind="stable")
            self.edge_faces = face_ids[order].reshape(-1, 2)

        # vertex -> incident edges (CSR layout)
        ends = self.edges.reshape(-1)
        edge_ids = np.repeat(np.arange(self.edges.shape[0], dtype=np.int64), 2)
        order = np.argsort(ends, kind="stable")
        self._vertex_edge_idx = edge_ids[order]
        self._vertex_edge_ptr = np.zeros(n + 1, dtype=np.int64)
        np.cumsum(np.bincount(ends, minlength=n), out=self._vertex_edge_ptr[1:])

    def validate(self) -> None:
        """Raise ``InputInvariantError`` unless this is a single closed 2-manifold."""
        V, F = self.vertices, self.faces
        n, m = V.shape[0], F.shape[0]
        if n == 0 or m == 0:
            raise InputInvariantError("mesh has no vertices or no faces")
        if not np.all(np.isfinite(V)):
            raise InputInvariantError("vertex positions must be finite")
        if F.min() < 0 or F.max() >= n:
            raise InputInvariantError("face indices out of range")
        if np.any((F[:, 0] == F[:, 1]) | (F[:, 1] == F[:, 2]) | (F[:, 2] == F[:, 0])):
            raise InputInvariantError("faces must reference three distinct vertices")

        used = np.bincount(F.reshape(-1), minlength=n)
        isolated = np.flatnonzero(used == 0)
        if isolated.size:
            raise InputInvariantError(
                f"mesh has {isolated.size} isolated vertices (first: {int(isolated[0])})"
            )

        # closed and edge-manifold: every undirected edge in exactly two faces,
        # every directed half-edge exactly once (consistent orientation)
        he = np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]], axis=0)
        _, ucounts = np.unique(np.sort(he, axis=1), axis=0, return_counts=True)
        if np.any(ucounts < 2):
            raise InputInvariantError("mesh is not closed (boundary edges present)")
        if np.any(ucounts > 2):
            raise InputInvariantError("mesh has non-manifold edges")
        _, dcounts = np.unique(he, axis=0, return_counts=True)
        if np.any(dcounts != 1):
            raise InputInvariantError("faces are not consistently oriented")

        # vertex-manifold: corners around each vertex form one fan
        if _corner_fan_count(F) != n:
            raise InputInvariantError("mesh has non-manifold vertices")

        adj = sp.coo_matrix(
            (np.ones(he.shape[0]), (he[:, 0], he[:, 1])), shape=(n, n)
        )
        n_comp, _ = connected_components(adj, directed=False)
        if n_comp != 1:
            raise InputInvariantError(f"mesh has {n_comp} connected components; expected 1")

    # =================================================================
    # ADJACENCY QUERIES
    # =================================================================

    def incident_edges(self, v: int) -> np.ndarray:
        return self._vertex_edge_idx[self._vertex_edge_ptr[v]:self._vertex_edge_ptr[v + 1]]

    def vertex_degrees(self) -> np.ndarray:
        return np.diff(self._vertex_edge_ptr)

    def neighbors(self, v: int) -> np.ndarray:
        E = self.edges[self.incident_edges(v)]
        return np.where(E[:, 0] == v, E[:, 1], E[:, 0])

    def faces_of_edge(self, e: int) -> np.ndarray:
        return self.edge_faces[e]

    def find_edge(self, u: int, v: int) -> int:
        """Return the id of edge (u, v), or -1 if the vertices are not adjacent."""
        for e in self.incident_edges(u):
            a, b = self.edges[e]
            if (a == v) or (b == v):
                return int(e)
        return -1

    def opposite_vertices(self, e: Optional[int] = None) -> np.ndarray:
        """Vertices opposite each edge in its two faces: (E,2), or (2,) for one edge."""
        if e is not None:
            faces = self.faces[self.edge_faces[e]]
            return faces.sum(axis=1) - self.edges[e].sum()
        return self.faces[self.edge_faces].sum(axis=2) - self.edges.sum(axis=1)[:, None]

    # =================================================================
    # GEOMETRY
    # =================================================================

    def edge_lengths(self) -> np.ndarray:
        return np.linalg.norm(self.vertices[self.edges[:, 0]] - self.vertices[self.edges[:, 1]], axis=1)

    def face_areas(self) -> np.ndarray:
        v0 = self.vertices[self.faces[:, 0]]
        v1 = self.vertices[self.faces[:, 1]]
        v2 = self.vertices[self.faces[:, 2]]
        return 0.5 * np.linalg.norm(np.cross(v1 - v0, v2 - v0), axis=1)

    def one_ring_areas(self) -> np.ndarray:
        """Sum of the areas of the faces incident to each vertex."""
        areas = self.face_areas()
        out = np.zeros(self.n_vertices, dtype=float)
        for k in range(3):
            np.add.at(out, self.faces[:, k], areas)
        return out

    def vertex_normals(self) -> np.ndarray:
        """Area-weighted unit vertex normals."""
        V, F = self.vertices, self.faces
        fn = np.cross(V[F[:, 1]] - V[F[:, 0]], V[F[:, 2]] - V[F[:, 0]])
        N = np.zeros_like(V)
        for k in range(3):
            np.add.at(N, F[:, k], fn)
        norms = np.linalg.norm(N, axis=1)
        norms = np.where(norms > 0, norms, 1.0)
        return N / norms[:, None]

    def mean_edge_length(self) -> float:
        lengths = self.edge_lengths()
        return float(lengths.mean()) if lengths.size else 0.0

    def bounding_box_diagonal(self) -> float:
        return float(np.linalg.norm(self.vertices.max(axis=0) - self.vertices.min(axis=0)))

    def centroid(self) -> np.ndarray:
        return self.vertices.mean(axis=0)

    def fixed_points(self) -> np.ndarray:
        return self.vertices[self.fixed].copy()

    def __repr__(self) -> str:
        return (
            f"SurfaceMesh(vertices={self.n_vertices}, edges={self.n_edges}, "
            f"faces={self.n_faces}, fixed={int(self.fixed.sum())})"
        )


def _corner_fan_count(F: np.ndarray) -> int:
    """Number of face fans summed over all vertices.

    Two corners of the same vertex are linked when their faces share an edge through
    that vertex. On a 2-manifold every vertex has exactly one fan.
    """
    m = F.shape[0]
    corner_ids = np.arange(3 * m, dtype=np.int64).reshape(m, 3)
    # directed half-edge (a -> b) in face f: corner of a is (f, k), of b is (f, k+1)
    rows_a, rows_b, keys = [], [], []
    for k in range(3):
        a = F[:, k]
        b = F[:, (k + 1) % 3]
        keys.append(np.stack([np.minimum(a, b), np.maximum(a, b)], axis=1))
        rows_a.append(np.where(a < b, corner_ids[:, k], corner_ids[:, (k + 1) % 3]))
        rows_b.append(np.where(a < b, corner_ids[:, (k + 1) % 3], corner_ids[:, k]))
    keys = np.concatenate(keys)
    ca = np.concatenate(rows_a)  # corner of the smaller endpoint
    cb = np.concatenate(rows_b)  # corner of the larger endpoint
    _, inverse = np.unique(keys, axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    order = np.argsort(inverse, kind="stable")
    pairs = order.reshape(-1, 2)
    src = np.concatenate([ca[pairs[:, 0]], cb[pairs[:, 0]]])
    dst = np.concatenate([ca[pairs[:, 1]], cb[pairs[:, 1]]])
    G = sp.coo_matrix((np.ones(src.shape[0]), (src, dst)), shape=(3 * m, 3 * m))
    n_fans, _ = connected_components(G, directed=False)
    return int(n_fans)


def example_mesh(
    kind: str = "cylinder",
    *,
    # Cylinder params
    radius: float = 0.5,
    height: float = 2.0,
    sections: int = 16,
    stacks: int = 8,
    # Torus params
    major_radius: float = 1.0,
    minor_radius: float = 0.3,
    major_sections: int = 32,
    minor_sections: int = 12,
    # Sphere params
    subdivisions: int = 2,
) -> SurfaceMesh:
    """Create a simple closed demo mesh.

    Parameters
    ----------
    kind : {"cylinder", "torus", "sphere", "octahedron"}
        Type of primitive to generate. Default "cylinder".
    radius : float
        Cylinder or sphere radius. Default 0.5.
    height : float
        Cylinder height along z, centered at the origin. Default 2.0.
    sections : int
        Cylinder radial resolution. Default 16.
    stacks : int
        Number of bands along the cylinder axis. Default 8.
    major_radius, minor_radius, major_sections, minor_sections
        Torus parameters, passed to ``trimesh.creation.torus``.
    subdivisions : int
        Icosphere subdivision level. Default 2.

    Returns
    -------
    SurfaceMesh

    Examples
    --------
    >>> m = example_mesh("cylinder", radius=0.4, height=4.0, stacks=16)
    >>> o = example_mesh("octahedron")
    """
    k = kind.lower()
    if k == "cylinder":
        V, F = _capped_tube(float(radius), float(height), int(sections), int(stacks))
        return SurfaceMesh(V, F)
    elif k == "octahedron":
        V = np.array(
            [[1, 0, 0], [-1, 0, 0], [0, 1, 0], [0, -1, 0], [0, 0, 1], [0, 0, -1]],
            dtype=float,
        ) * float(radius)
        F = np.array(
            [[0, 2, 4], [2, 1, 4], [1, 3, 4], [3, 0, 4],
             [2, 0, 5], [1, 2, 5], [3, 1, 5], [0, 3, 5]],
            dtype=np.int64,
        )
        return SurfaceMesh(V, F)
    elif k == "sphere":
        return SurfaceMesh.from_trimesh(trimesh.creation.icosphere(subdivisions=int(subdivisions), radius=float(radius)))
    elif k == "torus":
        return SurfaceMesh.from_trimesh(
            trimesh.creation.torus(
                major_radius=float(major_radius),
                minor_radius=float(minor_radius),
                major_sections=int(major_sections),
                minor_sections=int(minor_sections),
            )
        )
    else:
        raise ValueError("example_mesh kind must be 'cylinder', 'torus', 'sphere' or 'octahedron'")


def _capped_tube(radius: float, height: float, sections: int, stacks: int) -> tuple[np.ndarray, np.ndarray]:
    """Closed tube along z with ``stacks + 1`` rings and a fan cap at each end."""
    if sections < 3 or stacks < 1:
        raise ValueError("cylinder needs sections >= 3 and stacks >= 1")
    theta = 2.0 * np.pi * np.arange(sections) / sections
    z = np.linspace(-0.5 * height, 0.5 * height, stacks + 1)
    ring = np.stack([radius * np.cos(theta), radius * np.sin(theta)], axis=1)
    V = np.concatenate(
        [np.column_stack([ring, np.full(sections, zk)]) for zk in z]
        + [np.array([[0.0, 0.0, z[0]], [0.0, 0.0, z[-1]]])],
        axis=0,
    )
    bottom = (stacks + 1) * sections
    top = bottom + 1

    def idx(k, j):
        return k * sections + (j % sections)

    F = []
    for k in range(stacks):
        for j in range(sections):
            a, b = idx(k, j), idx(k, j + 1)
            c, d = idx(k + 1, j + 1), idx(k + 1, j)
            F.append((a, b, c))
            F.append((a, c, d))
    for j in range(sections):
        F.append((bottom, idx(0, j + 1), idx(0, j)))
        F.append((top, idx(stacks, j), idx(stacks, j + 1)))
    return V, np.asarray(F, dtype=np.int64)
