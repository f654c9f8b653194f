"""pymcs: Mean Curvature Skeletons for closed triangle meshes.

Public API:
- SurfaceMesh, example_mesh
- CotangentWeight, MeanValueWeight, make_weight_calculator
- assemble_system(mesh, weights, *, omega_L=1.0, omega_H=0.1, omega_P=0.0)
- contract_geometry(mesh, *, omega_L=1.0, omega_H=0.1)
- collapse_short_edges, split_long_edges, simplify
- detect_degeneracies(mesh, *, edge_length_threshold, zero_threshold=1e-7)
- MeanCurvatureSkeleton(mesh, config=None, **overrides).run()
- skeletonize(mesh, **config)
- Skeleton.from_result(result).write_swc(path)

"""
from .config import SkeletonConfig
from .contraction import ContractionResult, contract_geometry
from .degeneracy import detect_degeneracies
from .engine import CycleStats, EngineState, MeanCurvatureSkeleton, SkeletonResult, skeletonize
from .errors import (
    InputInvariantError,
    NumericDegenerateError,
    SkeletonizationError,
    SolverFaultError,
    TopologyInvariantError,
)
from .medial import compute_voronoi_poles, mesh_poles
from .mesh import SurfaceMesh, example_mesh
from .skeleton import Skeleton
from .solver import Factorization, LeastSquaresSolver
from .system import LinearSystem, assemble_system
from .topology import collapse_short_edges, iteratively_split_triangles, simplify, split_long_edges
from .weights import CotangentWeight, MeanValueWeight, WeightCalculator, make_weight_calculator

__all__ = [
    "SkeletonConfig",
    "ContractionResult",
    "contract_geometry",
    "detect_degeneracies",
    "CycleStats",
    "EngineState",
    "MeanCurvatureSkeleton",
    "SkeletonResult",
    "skeletonize",
    "InputInvariantError",
    "NumericDegenerateError",
    "SkeletonizationError",
    "SolverFaultError",
    "TopologyInvariantError",
    "compute_voronoi_poles",
    "mesh_poles",
    "SurfaceMesh",
    "example_mesh",
    "Skeleton",
    "Factorization",
    "LeastSquaresSolver",
    "LinearSystem",
    "assemble_system",
    "collapse_short_edges",
    "iteratively_split_triangles",
    "simplify",
    "split_long_edges",
    "CotangentWeight",
    "MeanValueWeight",
    "WeightCalculator",
    "make_weight_calculator",
]
