"""
Manifold-preserving topology edits: short-edge collapse and long-edge split.

Both passes work on an editable view of a ``SurfaceMesh`` (face lists plus
vertex->face incidence sets), re-derive their worklist from the current state after
every sweep, and write the result back into the mesh with fresh dense ids.
"""
from __future__ import annotations

from typing import Optional

import logging
import numpy as np

from .errors import TopologyInvariantError
from .mesh import SurfaceMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class EditableMesh:
    """Mutable connectivity used while a simplification pass runs."""

    def __init__(self, mesh: SurfaceMesh):
        self.positions: list[np.ndarray] = [p.copy() for p in mesh.vertices]
        self.fixed: list[bool] = [bool(f) for f in mesh.fixed]
        self.poles: Optional[list[np.ndarray]] = (
            None if mesh.poles is None else [p.copy() for p in mesh.poles]
        )
        self.faces: list[Optional[list[int]]] = [list(map(int, f)) for f in mesh.faces]
        self.vertex_faces: list[set[int]] = [set() for _ in self.positions]
        for fi, f in enumerate(self.faces):
            for v in f:
                self.vertex_faces[v].add(fi)
        self.alive: list[bool] = [True] * len(self.positions)
        self.n_alive = len(self.positions)

    # -----------------------------------------------------------------
    # queries
    # -----------------------------------------------------------------

    def neighbors(self, v: int) -> set[int]:
        out: set[int] = set()
        for fi in self.vertex_faces[v]:
            out.update(self.faces[fi])
        out.discard(v)
        return out

    def edge_faces(self, u: int, v: int) -> set[int]:
        return self.vertex_faces[u] & self.vertex_faces[v]

    def opposite(self, u: int, v: int) -> list[int]:
        return [next(w for w in self.faces[fi] if w != u and w != v) for fi in self.edge_faces(u, v)]

    def length(self, u: int, v: int) -> float:
        return float(np.linalg.norm(self.positions[u] - self.positions[v]))

    def edges(self) -> list[tuple[int, int]]:
        seen: set[tuple[int, int]] = set()
        for f in self.faces:
            if f is None:
                continue
            for k in range(3):
                a, b = f[k], f[(k + 1) % 3]
                seen.add((a, b) if a < b else (b, a))
        return sorted(seen)

    def edges_by_length(self, threshold: float, *, shorter: bool) -> list[tuple[float, int, int]]:
        """Edges below (``shorter``) or above the threshold, shortest/longest first."""
        out = []
        for u, v in self.edges():
            length = self.length(u, v)
            if (length < threshold) if shorter else (length > threshold):
                out.append((length, u, v))
        out.sort(reverse=not shorter)
        return out

    # -----------------------------------------------------------------
    # mutations
    # -----------------------------------------------------------------

    def check_collapse(self, u: int, v: int) -> None:
        """Raise ``TopologyInvariantError`` unless collapsing (u, v) keeps a 2-manifold."""
        if not (self.alive[u] and self.alive[v]):
            raise TopologyInvariantError(f"edge ({u}, {v}) references a removed vertex")
        shared = self.edge_faces(u, v)
        if len(shared) != 2:
            raise TopologyInvariantError(f"({u}, {v}) is not an edge with two faces")
        if self.n_alive <= 4:
            raise TopologyInvariantError("collapse would leave fewer than four vertices")
        opp = set(self.opposite(u, v))
        if len(opp) != 2:
            raise TopologyInvariantError(f"edge ({u}, {v}) has coincident opposite vertices")
        # link condition
        if self.neighbors(u) & self.neighbors(v) != opp:
            raise TopologyInvariantError(f"collapsing ({u}, {v}) would violate the link condition")

    def collapse(self, u: int, v: int, t: float = 0.5) -> None:
        """Merge v into u at ``(1 - t) * u + t * v``; the two faces on (u, v) disappear.

        The pole of u, when poles are carried, moves by the same rule.
        """
        self.check_collapse(u, v)
        for fi in self.edge_faces(u, v):
            for w in self.faces[fi]:
                self.vertex_faces[w].discard(fi)
            self.faces[fi] = None
        for fi in self.vertex_faces[v]:
            self.faces[fi] = [u if w == v else w for w in self.faces[fi]]
            self.vertex_faces[u].add(fi)
        self.vertex_faces[v] = set()
        self.positions[u] = (1.0 - t) * self.positions[u] + t * self.positions[v]
        if self.poles is not None:
            self.poles[u] = (1.0 - t) * self.poles[u] + t * self.poles[v]
        self.fixed[u] = self.fixed[u] or self.fixed[v]
        self.alive[v] = False
        self.n_alive -= 1

    def split(self, u: int, v: int, t: float = 0.5) -> int:
        """Insert a vertex at ``(1 - t) * u + t * v`` and split both faces. Returns its id."""
        shared = self.edge_faces(u, v)
        if len(shared) != 2:
            raise TopologyInvariantError(f"({u}, {v}) is not an edge with two faces")
        w = len(self.positions)
        self.positions.append((1.0 - t) * self.positions[u] + t * self.positions[v])
        self.fixed.append(False)
        if self.poles is not None:
            self.poles.append((1.0 - t) * self.poles[u] + t * self.poles[v])
        self.vertex_faces.append(set())
        self.alive.append(True)
        self.n_alive += 1
        for fi in shared:
            f = self.faces[fi]
            # rotate so that (a, b) is the split edge in face order
            k = next(i for i in range(3) if {f[i], f[(i + 1) % 3]} == {u, v})
            a, b, c = f[k], f[(k + 1) % 3], f[(k + 2) % 3]
            self.faces[fi] = [a, w, c]
            gi = len(self.faces)
            self.faces.append([w, b, c])
            self.vertex_faces[b].discard(fi)
            self.vertex_faces[b].add(gi)
            self.vertex_faces[c].add(gi)
            self.vertex_faces[w].update((fi, gi))
        return w

    def write_back(self, mesh: SurfaceMesh) -> np.ndarray:
        """Compact ids and replace the mesh topology. Returns old->new vertex map (-1 if removed)."""
        alive = np.asarray(self.alive, dtype=bool)
        remap = np.full(alive.shape[0], -1, dtype=np.int64)
        remap[alive] = np.arange(int(alive.sum()), dtype=np.int64)
        faces = np.asarray([f for f in self.faces if f is not None], dtype=np.int64).reshape(-1, 3)
        vertices = np.asarray(self.positions, dtype=float)[alive]
        fixed = np.asarray(self.fixed, dtype=bool)[alive]
        poles = None if self.poles is None else np.asarray(self.poles, dtype=float)[alive]
        mesh.replace_topology(vertices, remap[faces], fixed, poles)
        return remap


def _collapse_weight(edit: EditableMesh, u: int, placement: str) -> float:
    if edit.fixed[u] or placement == "endpoint":
        return 0.0
    return 0.5


def _split_weight(edit: EditableMesh, u: int, v: int, placement: str, threshold: float) -> float:
    pu, pv = edit.positions[u], edit.positions[v]
    if placement == "projection":
        # foot of the vertex with the widest angle over the edge
        d = pv - pu
        dd = float(d @ d)
        best_t, best_cos = 0.5, np.inf
        for c in edit.opposite(u, v):
            a, b = pu - edit.positions[c], pv - edit.positions[c]
            denom = float(np.linalg.norm(a) * np.linalg.norm(b))
            if denom <= 0 or dd <= 0:
                continue
            cos = float(a @ b) / denom
            if cos < best_cos:
                best_cos = cos
                best_t = float((edit.positions[c] - pu) @ d) / dd
        # midpoint unless the foot lies in the middle third and both pieces are short
        if 1.0 / 3.0 <= best_t <= 2.0 / 3.0 and max(best_t, 1.0 - best_t) * np.sqrt(dd) <= threshold:
            return best_t
    return 0.5


def collapse_short_edges(
    mesh: SurfaceMesh,
    threshold: float,
    *,
    placement: str = "midpoint",
    max_sweeps: int = 100,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> int:
    """Collapse every edge shorter than ``threshold`` that can be collapsed safely.

    Edges are visited shortest first. A collapse is skipped when both endpoints are
    fixed or when it would break the 2-manifold invariants (link condition, fewer than
    four vertices). If exactly one endpoint is fixed the merged vertex keeps its
    position and fixed flag; otherwise it is placed by ``placement``
    ("midpoint" or "endpoint").

    Returns the number of collapses. Each collapse removes one vertex, three edges and
    two faces; ids are renumbered densely on exit.
    """
    _log = log or logger
    if threshold < 0:
        raise ValueError("threshold must be >= 0")
    if placement not in ("midpoint", "endpoint"):
        raise ValueError(f"Unknown collapse placement: {placement}")

    edit = EditableMesh(mesh)
    total = 0
    skipped = 0
    for sweep in range(max(1, int(max_sweeps))):
        count = 0
        for _, u, v in edit.edges_by_length(threshold, shorter=True):
            if not (edit.alive[u] and edit.alive[v]):
                continue
            if not edit.edge_faces(u, v) or edit.length(u, v) >= threshold:
                continue
            if edit.fixed[u] and edit.fixed[v]:
                continue
            if edit.fixed[v]:
                u, v = v, u
            try:
                edit.collapse(u, v, _collapse_weight(edit, u, placement))
            except TopologyInvariantError as exc:
                skipped += 1
                _log.debug("Skip collapse: %s", exc)
                continue
            count += 1
        total += count
        if count == 0:
            break

    if total:
        edit.write_back(mesh)
    if verbose:
        _log.info("Collapse: %d edges collapsed (%d skipped), %d vertices remain", total, skipped, mesh.n_vertices)
    return total


def split_long_edges(
    mesh: SurfaceMesh,
    threshold: float,
    *,
    placement: str = "midpoint",
    max_sweeps: int = 10,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> int:
    """Split every triangle edge longer than ``threshold``.

    The new vertex goes at the edge midpoint, or with ``placement="projection"`` at the
    foot of the opposite vertex with the widest angle. The foot is used only when it
    lies in the middle third of the edge and leaves both pieces within ``threshold``;
    otherwise the midpoint is used. Both incident faces are re-triangulated, so every
    split adds one vertex, three edges and two faces. Carried poles are interpolated
    like positions. Returns the number of splits.
    """
    _log = log or logger
    if threshold <= 0:
        raise ValueError("threshold must be > 0")
    if placement not in ("midpoint", "projection"):
        raise ValueError(f"Unknown split placement: {placement}")

    edit = EditableMesh(mesh)
    total = 0
    for sweep in range(max(1, int(max_sweeps))):
        count = 0
        for _, u, v in edit.edges_by_length(threshold, shorter=False):
            if len(edit.edge_faces(u, v)) != 2 or edit.length(u, v) <= threshold:
                continue
            edit.split(u, v, _split_weight(edit, u, v, placement, threshold))
            count += 1
        total += count
        if count == 0:
            break

    if total:
        edit.write_back(mesh)
    if verbose:
        _log.info("Split: %d edges split, %d vertices now", total, mesh.n_vertices)
    return total


iteratively_split_triangles = split_long_edges


def simplify(
    mesh: SurfaceMesh,
    collapse_threshold: float,
    split_threshold: float,
    *,
    collapse_placement: str = "midpoint",
    split_placement: str = "midpoint",
    max_sweeps: int = 10,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> tuple[int, int]:
    """Alternate collapse and split passes until neither changes the mesh.

    Returns ``(collapses, splits)`` summed over all sweeps.
    """
    collapses = splits = 0
    for _ in range(max(1, int(max_sweeps))):
        c = collapse_short_edges(mesh, collapse_threshold, placement=collapse_placement, verbose=verbose, log=log)
        s = split_long_edges(mesh, split_threshold, placement=split_placement, verbose=verbose, log=log)
        collapses += c
        splits += s
        if c == 0 and s == 0:
            break
    return collapses, splits
