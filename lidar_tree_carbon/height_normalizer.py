from dataclasses import dataclass

import numpy as np

from lidar_tree_carbon.ground_surface_estimator import TerrainSurface
from lidar_tree_carbon.point_cloud import NormalizedPointSet, PointCloud
from lidar_tree_carbon.progress_logging import log_progress


@dataclass(frozen=True)
class HeightNormalizationResult:
    points: NormalizedPointSet
    outside_terrain_point_count: int


def normalize_heights(
    z_coordinates: np.ndarray,
    ground_elevation_for_points: np.ndarray,
) -> np.ndarray:
    return z_coordinates - ground_elevation_for_points


def normalize_point_cloud_heights(
    point_cloud: PointCloud,
    terrain: TerrainSurface,
    enable_progress_prints: bool = False,
) -> HeightNormalizationResult:
    """Height above ground for every point the terrain covers.

    Points outside the terrain hull are dropped and counted, never given a
    made-up height.
    """
    ground_elevation_for_points = terrain.elevation_or_nan(point_cloud.x, point_cloud.y)
    covered_mask = np.isfinite(ground_elevation_for_points)
    outside_terrain_point_count = int(point_cloud.point_count - np.count_nonzero(covered_mask))
    point_index = np.flatnonzero(covered_mask)

    normalized_height = normalize_heights(
        point_cloud.z[point_index],
        ground_elevation_for_points[point_index],
    )
    normalized_points = NormalizedPointSet(
        x=point_cloud.x[point_index],
        y=point_cloud.y[point_index],
        height=normalized_height,
        point_index=point_index,
        classification=point_cloud.classification[point_index],
        color=None if point_cloud.color is None else point_cloud.color[point_index],
    )

    if normalized_points.point_count > 0:
        height_percentiles = np.percentile(normalized_height, [5, 50, 95])
        log_progress(
            enable_progress_prints,
            "Height normalization done: "
            f"count={normalized_points.point_count}, "
            f"outside_terrain={outside_terrain_point_count}, "
            f"p5={height_percentiles[0]:.3f}, "
            f"p50={height_percentiles[1]:.3f}, "
            f"p95={height_percentiles[2]:.3f}",
        )
    else:
        log_progress(
            enable_progress_prints,
            f"Height normalization left no points (outside_terrain={outside_terrain_point_count})",
        )

    return HeightNormalizationResult(
        points=normalized_points,
        outside_terrain_point_count=outside_terrain_point_count,
    )
