"""Shared synthetic point clouds for the pipeline tests."""
import numpy as np
import pytest

from lidar_tree_carbon.pipeline_runner import PipelineParameters, RuntimeProgressLoggingParameters
from lidar_tree_carbon.point_cloud import PointClassification, PointCloud

STEM_AXIS_X = 10.25
STEM_AXIS_Y = 10.25
STEM_RADIUS = 0.2
TREE_HEIGHT = 8.0


def build_ground_grid(spacing: float = 0.5, extent: float = 20.0) -> np.ndarray:
    ground_axis = np.arange(0.0, extent + 0.5 * spacing, spacing)
    ground_x, ground_y = np.meshgrid(ground_axis, ground_axis)
    return np.column_stack([ground_x.ravel(), ground_y.ravel(), np.zeros(ground_x.size)])


def build_canopy_dome() -> np.ndarray:
    offsets = np.arange(-20, 21) * 0.05
    offset_x, offset_y = np.meshgrid(offsets, offsets)
    offset_x = offset_x.ravel()
    offset_y = offset_y.ravel()
    squared_distance = offset_x**2 + offset_y**2
    inside_mask = squared_distance <= 1.0 + 1e-9
    canopy_height = TREE_HEIGHT - 0.1 * squared_distance[inside_mask]
    return np.column_stack(
        [STEM_AXIS_X + offset_x[inside_mask], STEM_AXIS_Y + offset_y[inside_mask], canopy_height]
    )


def build_flat_crown(point_count: int = 400, seed: int = 3) -> np.ndarray:
    random_number_generator = np.random.default_rng(seed)
    radius = np.sqrt(random_number_generator.uniform(0.0, 1.0, point_count))
    angle = random_number_generator.uniform(0.0, 2.0 * np.pi, point_count)
    return np.column_stack(
        [
            STEM_AXIS_X + radius * np.cos(angle),
            STEM_AXIS_Y + radius * np.sin(angle),
            np.full(point_count, TREE_HEIGHT),
        ]
    )


def build_stem_cylinder() -> np.ndarray:
    angles = np.arange(24) * (2.0 * np.pi / 24)
    levels = np.arange(101) * 0.05
    angle_grid, level_grid = np.meshgrid(angles, levels)
    return np.column_stack(
        [
            STEM_AXIS_X + STEM_RADIUS * np.cos(angle_grid.ravel()),
            STEM_AXIS_Y + STEM_RADIUS * np.sin(angle_grid.ravel()),
            level_grid.ravel(),
        ]
    )


def assemble_point_cloud(ground_points: np.ndarray, vegetation_points: np.ndarray) -> PointCloud:
    points = np.vstack([ground_points, vegetation_points])
    classification = np.concatenate(
        [
            np.full(ground_points.shape[0], int(PointClassification.GROUND), dtype=np.uint8),
            np.full(vegetation_points.shape[0], int(PointClassification.UNCLASSIFIED), dtype=np.uint8),
        ]
    )
    return PointCloud(x=points[:, 0], y=points[:, 1], z=points[:, 2], classification=classification)


@pytest.fixture
def single_tree_point_cloud() -> PointCloud:
    """Flat ground, one 8 m tree with a 0.2 m radius stem centered under its apex."""
    return assemble_point_cloud(
        build_ground_grid(),
        np.vstack([build_stem_cylinder(), build_canopy_dome()]),
    )


@pytest.fixture
def flat_crown_point_cloud() -> PointCloud:
    """Trunk under a flat 8 m crown, so every crown cell ties for the apex."""
    return assemble_point_cloud(
        build_ground_grid(),
        np.vstack([build_stem_cylinder(), build_flat_crown()]),
    )


@pytest.fixture
def sparse_stem_point_cloud() -> PointCloud:
    """Same canopy, but only five stem returns near breast height."""
    angles = np.arange(5) * (2.0 * np.pi / 5)
    stem_points = np.column_stack(
        [
            STEM_AXIS_X + STEM_RADIUS * np.cos(angles),
            STEM_AXIS_Y + STEM_RADIUS * np.sin(angles),
            np.full(5, 1.37),
        ]
    )
    return assemble_point_cloud(build_ground_grid(), np.vstack([stem_points, build_canopy_dome()]))


@pytest.fixture
def quiet_parameters() -> PipelineParameters:
    return PipelineParameters(
        runtime_progress_logging=RuntimeProgressLoggingParameters(enable_progress_prints=False)
    )
