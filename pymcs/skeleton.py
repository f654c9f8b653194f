"""
Curve-skeleton graph extracted from a contracted mesh, with SWC export.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, TYPE_CHECKING

import logging
import networkx as nx
import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

from .mesh import SurfaceMesh

if TYPE_CHECKING:
    from .engine import SkeletonResult

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def _make_graph(nodes: np.ndarray, edges: np.ndarray) -> nx.Graph:
    G = nx.Graph()
    for i, p in enumerate(nodes):
        G.add_node(i, pos=np.asarray(p, dtype=float))
    for u, v in edges:
        u, v = int(u), int(v)
        G.add_edge(u, v, weight=float(np.linalg.norm(nodes[u] - nodes[v])))
    return G


@dataclass
class Skeleton:
    nodes: np.ndarray  # (k,3)
    edges: np.ndarray  # (q,2) int
    graph: nx.Graph
    radii: Optional[np.ndarray] = None  # (k,) optional SWC radius column

    @classmethod
    def from_mesh(cls, mesh: SurfaceMesh, merge_length: Optional[float] = None) -> "Skeleton":
        """Collapse a contracted mesh into a graph.

        Vertices joined by edges shorter than ``merge_length`` become one node at
        their centroid; the remaining mesh edges connect nodes. With ``merge_length``
        None or 0 every vertex is its own node.
        """
        n = mesh.n_vertices
        E = mesh.edges
        if merge_length:
            short = mesh.edge_lengths() < float(merge_length)
            S = E[short]
            G = sp.coo_matrix((np.ones(S.shape[0]), (S[:, 0], S[:, 1])), shape=(n, n))
            k, labels = connected_components(G, directed=False)
        else:
            k, labels = n, np.arange(n)

        counts = np.bincount(labels, minlength=k).astype(float)
        nodes = np.zeros((k, 3), dtype=float)
        for d in range(3):
            nodes[:, d] = np.bincount(labels, weights=mesh.vertices[:, d], minlength=k) / counts

        L = labels[E]
        L = L[L[:, 0] != L[:, 1]]
        L = np.unique(np.sort(L, axis=1), axis=0) if L.size else np.zeros((0, 2), dtype=np.int64)
        G = _make_graph(nodes, L)
        fixed = np.bincount(labels, weights=mesh.fixed.astype(float), minlength=k) > 0
        nx.set_node_attributes(G, {i: bool(fixed[i]) for i in range(k)}, "fixed")
        logger.debug("Skeleton graph: %d nodes, %d edges from %d mesh vertices", k, L.shape[0], n)
        return cls(nodes=nodes, edges=L.astype(np.int64), graph=G)

    @classmethod
    def from_result(cls, result: "SkeletonResult") -> "Skeleton":
        return cls.from_mesh(result.mesh, merge_length=result.config.edge_length_threshold)

    @property
    def n_nodes(self) -> int:
        return int(self.nodes.shape[0])

    @property
    def n_edges(self) -> int:
        return int(self.edges.shape[0])

    def write_swc(
        self,
        path: str,
        *,
        break_cycles: str = "mst",
        annotate: bool = True,
        type_index: int = 5,
    ) -> None:
        """Write the skeleton to an SWC file.

        Each row is ``n T x y z R p`` with 1-based ids and parent ``-1`` for roots.
        SWC needs a forest, so cycles are broken first: with ``break_cycles="mst"`` the
        minimum spanning forest (by edge length) is kept and every dropped edge is
        listed in the header as ``# removed_edge u v`` (SWC ids). Each component is
        rooted at its lowest-z node and written in BFS order, so a parent always
        precedes its children.
        """
        if break_cycles not in ("mst", "none"):
            raise ValueError("break_cycles must be 'mst' or 'none'")
        t_code = int(type_index)
        G = self.graph
        radii = self.radii if self.radii is not None else np.zeros(self.n_nodes, dtype=float)

        if break_cycles == "mst":
            H = nx.minimum_spanning_tree(G, weight="weight")
        else:
            H = G
            if G.number_of_edges() > G.number_of_nodes() - nx.number_connected_components(G):
                raise ValueError("graph has cycles; use break_cycles='mst'")
        removed = [(u, v) for u, v in G.edges() if not H.has_edge(u, v)]

        def _z(n) -> float:
            return float(self.nodes[n][2])

        components = sorted(nx.connected_components(H), key=lambda comp: min(_z(n) for n in comp))
        swc_index: dict[int, int] = {}
        rows: list[tuple[int, int, float, float, float, float, int]] = []
        for comp in components:
            root = min(comp, key=_z)
            parents = dict(nx.bfs_predecessors(H, root))
            for n in [root] + [child for _, child in nx.bfs_edges(H, root)]:
                parent = -1 if n == root else swc_index[parents[n]]
                swc_index[n] = len(rows) + 1
                x, y, z = (float(c) for c in self.nodes[n])
                rows.append((swc_index[n], t_code, x, y, z, float(radii[n]), parent))

        with open(path, "w", encoding="utf-8") as f:
            f.write("# SWC exported by pymcs Skeleton.write_swc\n")
            f.write(f"# Date: {datetime.now().isoformat()}\n")
            f.write("# Columns: n T x y z R p\n")
            f.write(f"# Type index (T) used for all samples: {t_code}\n")
            if len(components) > 1:
                f.write(f"# Note: {len(components)} disconnected components; each begins with a root (parent -1).\n")
            if annotate and removed:
                f.write(f"# Removed {len(removed)} edge(s) to break cycles for SWC format.\n")
                for u, v in removed:
                    f.write(f"# removed_edge {swc_index[u]} {swc_index[v]}\n")
            for n, T, x, y, z, R, p in rows:
                f.write(f"{n} {T} {x:.6f} {y:.6f} {z:.6f} {R:.6f} {p}\n")
        logger.debug("Wrote %d SWC rows to %s (%d edges removed)", len(rows), path, len(removed))
