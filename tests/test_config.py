import pytest

from pymcs.config import SkeletonConfig
from pymcs.mesh import example_mesh


def test_for_mesh_fills_relative_defaults():
    mesh = example_mesh("octahedron", radius=1.0)
    cfg = SkeletonConfig.for_mesh(mesh, omega_H=0.2)
    assert cfg.omega_H == 0.2
    assert cfg.edge_length_threshold == pytest.approx(0.002 * mesh.bounding_box_diagonal())
    # twice the longest input edge
    assert cfg.split_threshold == pytest.approx(2.0 * mesh.edge_lengths().max())
    assert cfg.displacement_tolerance == cfg.edge_length_threshold


def test_explicit_thresholds_are_kept():
    mesh = example_mesh("octahedron", radius=1.0)
    cfg = SkeletonConfig.for_mesh(mesh, edge_length_threshold=0.05, split_threshold=0.5)
    assert cfg.edge_length_threshold == 0.05
    assert cfg.split_threshold == 0.5


@pytest.mark.parametrize(
    "overrides",
    [
        dict(omega_L=0.0),
        dict(omega_H=-0.1),
        dict(omega_P=-1.0),
        dict(edge_length_threshold=0.1, split_threshold=0.15),
        dict(max_fixed_fraction=0.0),
        dict(max_simplify_sweeps=0),
        dict(split_placement="random"),
        dict(degeneracy_policy="volume"),
        dict(weight="uniform"),
    ],
)
def test_invalid_config(overrides):
    with pytest.raises(ValueError):
        SkeletonConfig(**overrides).validate()


def test_resolved_for_follows_edge_threshold_when_others_unset():
    cfg = SkeletonConfig(edge_length_threshold=0.8).resolved_for(10.0, 0.5)
    assert cfg.split_threshold > 1.6
    assert cfg.displacement_tolerance == 0.8
    assert SkeletonConfig().resolved_for(10.0, 0.5).edge_length_threshold == pytest.approx(0.02)
