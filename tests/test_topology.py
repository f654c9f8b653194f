import numpy as np
import pytest
import trimesh as tm

from pymcs.errors import TopologyInvariantError
from pymcs.mesh import SurfaceMesh, example_mesh
from pymcs.topology import EditableMesh, collapse_short_edges, simplify, split_long_edges


def _sphere(subdivisions=2):
    return SurfaceMesh.from_trimesh(tm.primitives.Sphere(radius=1.0, subdivisions=subdivisions))


def _tetrahedron():
    V = np.array([[1, 1, 1], [1, -1, -1], [-1, 1, -1], [-1, -1, 1]], dtype=float)
    F = np.array([[0, 1, 2], [0, 3, 1], [0, 2, 3], [1, 3, 2]], dtype=np.int64)
    return SurfaceMesh(V, F)


def test_collapse_keeps_counts_and_manifold():
    mesh = _sphere()
    N, E, F = mesh.n_vertices, mesh.n_edges, mesh.n_faces
    th = mesh.mean_edge_length()

    c = collapse_short_edges(mesh, th)

    assert c > 0
    assert mesh.n_vertices == N - c
    assert mesh.n_edges == E - 3 * c
    assert mesh.n_faces == F - 2 * c
    # dense ids and still a closed 2-manifold
    assert mesh.faces.max() == mesh.n_vertices - 1
    SurfaceMesh(mesh.vertices, mesh.faces)


def test_split_keeps_counts_and_manifold():
    mesh = example_mesh("octahedron", radius=1.0)
    N, E, F = mesh.n_vertices, mesh.n_edges, mesh.n_faces

    s = split_long_edges(mesh, 1.0)

    assert s >= 12
    assert mesh.n_vertices == N + s
    assert mesh.n_edges == E + 3 * s
    assert mesh.n_faces == F + 2 * s
    assert mesh.edge_lengths().max() <= 1.0
    SurfaceMesh(mesh.vertices, mesh.faces)
    assert mesh.to_trimesh().volume > 0


def test_simplify_is_idempotent():
    mesh = _sphere()
    th = mesh.mean_edge_length()
    first = simplify(mesh, th, 10.0)
    assert first[0] > 0
    assert simplify(mesh, th, 10.0) == (0, 0)


def test_fixed_vertex_keeps_position():
    mesh = _sphere()
    mesh.fixed[0] = True
    p0 = mesh.vertices[0].copy()
    th = 1.01 * float(np.linalg.norm(mesh.vertices[mesh.neighbors(0)] - p0, axis=1).min())

    collapse_short_edges(mesh, th)

    hit = np.flatnonzero(np.all(mesh.vertices == p0, axis=1))
    assert hit.size == 1
    assert mesh.fixed[hit[0]]
    assert mesh.fixed.sum() == 1


def test_edges_between_fixed_vertices_are_kept():
    mesh = example_mesh("octahedron", radius=1.0)
    mesh.fixed[:] = True
    assert collapse_short_edges(mesh, 10.0) == 0
    assert mesh.n_vertices == 6


def test_tetrahedron_does_not_collapse():
    mesh = _tetrahedron()
    assert collapse_short_edges(mesh, 100.0) == 0
    assert mesh.n_vertices == 4

    edit = EditableMesh(mesh)
    with pytest.raises(TopologyInvariantError):
        edit.check_collapse(0, 1)


def test_link_condition_blocks_collapse():
    # on a 3-ring around the tube axis, adjacent ring vertices share the third one
    mesh = example_mesh("cylinder", sections=3, stacks=2)
    edit = EditableMesh(mesh)
    with pytest.raises(TopologyInvariantError):
        edit.check_collapse(3, 4)


def test_invalid_arguments():
    mesh = example_mesh("octahedron", radius=1.0)
    with pytest.raises(ValueError):
        collapse_short_edges(mesh, 0.1, placement="random")
    with pytest.raises(ValueError):
        split_long_edges(mesh, 0.0)
    with pytest.raises(ValueError):
        split_long_edges(mesh, 1.0, placement="random")


def test_endpoint_collapse_reuses_input_positions():
    mesh = _sphere()
    V0 = mesh.vertices.copy()
    th = mesh.mean_edge_length()

    mid = mesh.copy()
    collapse_short_edges(mid, th, placement="midpoint")
    c = collapse_short_edges(mesh, th, placement="endpoint")

    assert c > 0

    def dist_to_input(V):
        return np.linalg.norm(V[:, None, :] - V0[None, :, :], axis=2).min(axis=1)

    assert np.all(dist_to_input(mesh.vertices) == 0.0)
    assert dist_to_input(mid.vertices).max() > 0.0


def test_projection_split_uses_foot_of_obtuse_vertex():
    mesh = example_mesh("octahedron", radius=1.0)
    # tilt the top apex toward +x so it sees the two +x equator edges at an obtuse angle
    mesh.vertices[4] = [0.2, 0.0, 0.3]
    mesh.vertices[5] = [0.0, 0.0, -0.3]

    s = split_long_edges(mesh, 1.3, placement="projection")

    assert s == 4
    assert mesh.edge_lengths().max() <= 1.3
    for p in ([0.6, 0.4, 0.0], [0.6, -0.4, 0.0], [-0.5, 0.5, 0.0], [-0.5, -0.5, 0.0]):
        assert np.linalg.norm(mesh.vertices - p, axis=1).min() < 1e-12


def test_projection_split_reaches_threshold():
    mesh = example_mesh("cylinder", sections=8, stacks=2)
    split_long_edges(mesh, 0.5, placement="projection")
    assert mesh.edge_lengths().max() <= 0.5
    SurfaceMesh(mesh.vertices, mesh.faces)
    assert mesh.to_trimesh().volume > 0


def test_poles_follow_collapse_and_split():
    mesh = _sphere()
    mesh.poles = 0.5 * mesh.vertices

    c = collapse_short_edges(mesh, mesh.mean_edge_length())
    assert c > 0
    assert mesh.poles.shape == (mesh.n_vertices, 3)
    assert np.allclose(mesh.poles, 0.5 * mesh.vertices)

    s = split_long_edges(mesh, 0.75 * float(mesh.edge_lengths().max()))
    assert s > 0
    assert mesh.poles.shape == (mesh.n_vertices, 3)
    assert np.allclose(mesh.poles, 0.5 * mesh.vertices)
