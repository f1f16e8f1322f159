from lidar_tree_carbon.errors import (
    DegenerateGeometryError,
    InputError,
    InsufficientDataError,
    OutOfBoundsError,
    PerTreeError,
    TerrainBuildError,
    TreeCarbonError,
)
from lidar_tree_carbon.pipeline_runner import (
    PipelineParameters,
    PipelineResult,
    load_pipeline_parameters,
    run_pipeline,
    run_tree_carbon_pipeline,
)
from lidar_tree_carbon.point_cloud import NormalizedPointSet, PointClassification, PointCloud

__version__ = "0.1.0"

__all__ = [
    "DegenerateGeometryError",
    "InputError",
    "InsufficientDataError",
    "OutOfBoundsError",
    "PerTreeError",
    "TerrainBuildError",
    "TreeCarbonError",
    "PipelineParameters",
    "PipelineResult",
    "load_pipeline_parameters",
    "run_pipeline",
    "run_tree_carbon_pipeline",
    "NormalizedPointSet",
    "PointClassification",
    "PointCloud",
]
