import numpy as np
import pytest
import trimesh as tm

from pymcs.config import SkeletonConfig
from pymcs.engine import EngineState, MeanCurvatureSkeleton, skeletonize
from pymcs.errors import InputInvariantError, SolverFaultError, TopologyInvariantError
from pymcs.mesh import SurfaceMesh, example_mesh
from pymcs.skeleton import Skeleton
from pymcs.solver import LeastSquaresSolver
from pymcs.weights import CotangentWeight


class CountingWeight(CotangentWeight):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def edge_weights(self, mesh, *, verbose=False):
        self.calls += 1
        return super().edge_weights(mesh, verbose=verbose)


class FailingSolver(LeastSquaresSolver):
    def __init__(self, fail_on=1):
        self.fail_on = fail_on
        self.calls = 0

    def factorize(self, A):
        self.calls += 1
        if self.calls >= self.fail_on:
            raise SolverFaultError("factorization failed")
        return super().factorize(A)


class StoppingSolver(LeastSquaresSolver):
    """Asks its engine to stop as soon as the first solve of a cycle starts."""

    def __init__(self):
        self.engine = None

    def factorize(self, A):
        self.engine.request_stop()
        return super().factorize(A)


def test_engine_contract_step_octahedron():
    mesh = example_mesh("octahedron", radius=1.0)
    V0 = mesh.vertices.copy()
    engine = MeanCurvatureSkeleton(mesh, omega_L=1.0, omega_H=0.1)
    assert engine.state is EngineState.INITIALIZED

    engine.contract_geometry()

    d0 = np.linalg.norm(V0 - V0.mean(axis=0), axis=1)
    d1 = np.linalg.norm(engine.mesh.vertices - V0.mean(axis=0), axis=1)
    assert np.all(d1 < d0)
    assert engine.state is EngineState.CONTRACTING
    # caller's mesh is never modified
    assert np.array_equal(mesh.vertices, V0)


def test_isolated_vertex_rejected_before_any_step():
    base = example_mesh("octahedron", radius=1.0)
    V = np.vstack([base.vertices, [[3.0, 0.0, 0.0]]])
    mesh = SurfaceMesh(V, base.faces, validate=False)
    calc = CountingWeight()
    with pytest.raises(InputInvariantError):
        MeanCurvatureSkeleton(mesh, weight_calculator=calc)
    assert calc.calls == 0


def test_config_defaults_resolved_from_mesh():
    mesh = example_mesh("cylinder", radius=0.5, height=4.0)
    engine = MeanCurvatureSkeleton(mesh)
    cfg = engine.config
    assert cfg.edge_length_threshold == pytest.approx(0.002 * mesh.bounding_box_diagonal())
    assert cfg.split_threshold > 2.0 * cfg.edge_length_threshold
    assert cfg.displacement_tolerance == cfg.edge_length_threshold

    engine.set_omega_H(0.2)
    engine.set_zero_threshold(1e-9)
    assert engine.config.omega_H == 0.2
    assert engine.config.zero_threshold == 1e-9
    with pytest.raises(ValueError):
        engine.set_omega_L(-1.0)
    with pytest.raises(ValueError):
        MeanCurvatureSkeleton(mesh, SkeletonConfig(collapse_placement="random"))


def test_thin_cylinder_converges_to_axis(tmp_path):
    radius, height = 0.5, 4.0
    mesh = example_mesh("cylinder", radius=radius, height=height, sections=12, stacks=16)
    engine = MeanCurvatureSkeleton(mesh, edge_length_threshold=0.02, max_iterations=30)

    result = engine.run()

    assert engine.state is EngineState.CONVERGED
    assert result.reason in ("fixed_fraction", "fixpoint", "max_iterations")
    assert 0 < result.iterations <= 30

    P = result.fixed_points
    assert P.shape[0] > 0
    assert np.hypot(P[:, 0], P[:, 1]).max() < 0.25 * radius
    assert np.ptp(P[:, 2]) > 0.25 * height

    n_fixed = [s.n_fixed for s in result.history]
    assert all(a <= b for a, b in zip(n_fixed, n_fixed[1:]))
    assert np.array_equal(engine.get_fixed_points(), P)

    skel = Skeleton.from_result(result)
    assert skel.n_nodes > 0 and skel.n_edges > 0
    out = tmp_path / "cylinder.swc"
    skel.write_swc(str(out))
    assert out.exists()


def test_request_stop_before_run():
    mesh = example_mesh("octahedron", radius=1.0)
    engine = MeanCurvatureSkeleton(mesh)
    engine.request_stop()
    result = engine.run()
    assert result.iterations == 0
    assert result.reason == "stopped"
    assert np.array_equal(result.mesh.vertices, mesh.vertices)
    assert engine.get_fixed_points().shape == (0, 3)


def test_solver_fault_restores_mesh():
    mesh = example_mesh("octahedron", radius=1.0)
    engine = MeanCurvatureSkeleton(mesh, solver=FailingSolver())
    with pytest.raises(SolverFaultError):
        engine.run()
    assert engine.state is EngineState.FAILED
    assert engine.iterations == 0
    assert np.array_equal(engine.mesh.vertices, mesh.vertices)


def test_solver_fault_rolls_back_to_last_cycle():
    mesh = SurfaceMesh.from_trimesh(tm.primitives.Sphere(radius=1.0, subdivisions=1))
    engine = MeanCurvatureSkeleton(
        mesh, solver=FailingSolver(fail_on=2), edge_length_threshold=1e-4
    )
    engine.run(max_iterations=1)
    after_first = engine.mesh.vertices.copy()
    n_points = len(engine.get_fixed_points())

    with pytest.raises(SolverFaultError):
        engine.run()

    assert engine.state is EngineState.FAILED
    assert engine.iterations == 1
    assert np.array_equal(engine.mesh.vertices, after_first)
    assert len(engine.get_fixed_points()) == n_points


def test_skeletonize_accepts_trimesh():
    sphere = tm.primitives.Sphere(radius=1.0, subdivisions=1)
    result = skeletonize(sphere, max_iterations=3)
    assert result.iterations <= 3
    assert result.mesh.n_vertices > 0
    assert result.fixed_points.ndim == 2 and result.fixed_points.shape[1] == 3


def _small_sphere():
    return SurfaceMesh.from_trimesh(tm.primitives.Sphere(radius=1.0, subdivisions=1))


def test_quiet_cycle_within_tolerance_is_a_fixpoint():
    engine = MeanCurvatureSkeleton(
        _small_sphere(), edge_length_threshold=1e-4, displacement_tolerance=10.0
    )
    result = engine.run()

    assert result.reason == "fixpoint"
    assert result.iterations == 1
    stats = result.history[0]
    assert (stats.collapses, stats.splits, stats.new_fixed) == (0, 0, 0)
    assert stats.max_displacement <= 10.0


def test_request_stop_during_run():
    solver = StoppingSolver()
    engine = MeanCurvatureSkeleton(_small_sphere(), solver=solver, edge_length_threshold=1e-4)
    solver.engine = engine

    result = engine.run()

    assert result.reason == "stopped"
    assert result.iterations == 1
    assert engine.state is EngineState.CONVERGED
    # the flag is consumed by the run that saw it
    assert engine.run(max_iterations=0).reason == "max_iterations"


def test_single_step_solver_fault_sets_failed():
    mesh = example_mesh("octahedron", radius=1.0)
    engine = MeanCurvatureSkeleton(mesh, solver=FailingSolver())
    with pytest.raises(SolverFaultError):
        engine.contract_geometry()
    assert engine.state is EngineState.FAILED
    assert np.array_equal(engine.mesh.vertices, mesh.vertices)


def test_topology_fault_mid_cycle_restores_mesh(monkeypatch):
    mesh = example_mesh("octahedron", radius=1.0)
    engine = MeanCurvatureSkeleton(mesh)

    def broken_simplify(target, *args, **kwargs):
        target.vertices[:] = 0.0
        raise TopologyInvariantError("edit left a non-manifold vertex")

    monkeypatch.setattr("pymcs.engine.simplify", broken_simplify)
    with pytest.raises(TopologyInvariantError):
        engine.run()

    assert engine.state is EngineState.FAILED
    assert engine.iterations == 0
    assert np.array_equal(engine.mesh.vertices, mesh.vertices)
    assert engine.get_fixed_points().shape == (0, 3)


def test_edge_threshold_setter_rederives_defaults():
    mesh = example_mesh("cylinder", radius=0.5, height=4.0)
    engine = MeanCurvatureSkeleton(mesh)
    engine.set_edge_length_threshold(0.8)
    assert engine.config.edge_length_threshold == 0.8
    assert engine.config.displacement_tolerance == 0.8
    assert engine.config.split_threshold > 1.6

    pinned = MeanCurvatureSkeleton(mesh, split_threshold=1.5, displacement_tolerance=0.01)
    with pytest.raises(ValueError):
        pinned.set_edge_length_threshold(0.8)
    pinned.set_edge_length_threshold(0.1)
    assert pinned.config.split_threshold == 1.5
    assert pinned.config.displacement_tolerance == 0.01


def test_small_units_mesh_starts_with_nothing_fixed():
    mesh = example_mesh("cylinder")
    mesh.vertices *= 1e-3
    engine = MeanCurvatureSkeleton(mesh)
    assert engine.detect_degeneracies() == 0
    assert not engine.mesh.fixed.any()
    assert engine.get_fixed_points().shape == (0, 3)
