from dataclasses import dataclass

import numpy as np

from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.point_cloud import NormalizedPointSet, PointClassification
from lidar_tree_carbon.progress_logging import log_progress
from lidar_tree_carbon.spatial_index import SpatialIndex


@dataclass
class NoiseFilterParameters:
    exclude_preclassified_noise: bool = True
    enable_range_filter: bool = True
    range_upper_percentile: float = 98.0
    range_margin_meters: float = 10.0
    enable_statistical_filter: bool = True
    statistical_k_neighbors: int = 8
    statistical_std_ratio: float = 2.0
    # points whose mean neighbor distance is at most this are never outliers
    statistical_minimum_distance_meters: float = 1.0


@dataclass(frozen=True)
class NoiseFilterResult:
    points: NormalizedPointSet
    preclassified_noise_count: int
    out_of_range_count: int
    above_range_point_index: np.ndarray
    statistical_outlier_count: int
    statistical_outlier_point_index: np.ndarray
    filter_pass_count: int = 1

    @property
    def noise_point_index(self) -> np.ndarray:
        """Source-cloud indices of points this stage flags as noise."""
        return np.union1d(self.above_range_point_index, self.statistical_outlier_point_index)


def compute_height_range_mask(
    normalized_height: np.ndarray,
    classification: np.ndarray,
    upper_percentile: float,
    margin_meters: float,
) -> tuple[np.ndarray, float]:
    """Keep mask for ``0 < height < percentile(non-ground height) + margin``."""
    if normalized_height.size == 0:
        return np.zeros(0, dtype=bool), float("inf")

    non_ground_mask = classification != int(PointClassification.GROUND)
    reference_height = normalized_height[non_ground_mask] if np.any(non_ground_mask) else normalized_height
    upper_height_limit = float(np.percentile(reference_height, upper_percentile)) + float(margin_meters)
    keep_mask = (normalized_height > 0.0) & (normalized_height < upper_height_limit)
    return keep_mask, upper_height_limit


def compute_statistical_outlier_mask(
    x_coordinates: np.ndarray,
    y_coordinates: np.ndarray,
    normalized_height: np.ndarray,
    k_neighbors: int,
    std_ratio: float,
    minimum_distance_meters: float = 0.0,
) -> tuple[np.ndarray, float]:
    """Outlier mask: mean k-NN distance above ``global_mean + std_ratio * global_std``.

    The threshold never drops below ``minimum_distance_meters``.
    """
    point_count = normalized_height.size
    if k_neighbors < 1:
        raise InputError(f"statistical_k_neighbors must be at least 1: {k_neighbors}")
    if minimum_distance_meters < 0.0:
        raise InputError(
            f"statistical_minimum_distance_meters must be non-negative: {minimum_distance_meters}"
        )
    if point_count < 2:
        return np.zeros(point_count, dtype=bool), float("inf")

    spatial_index = SpatialIndex(x_coordinates, y_coordinates, normalized_height)
    distances, _ = spatial_index.query_nearest(min(int(k_neighbors), point_count - 1))
    mean_distances = distances.mean(axis=1)

    global_mean = float(np.mean(mean_distances))
    global_std = float(np.std(mean_distances))
    distance_threshold = max(global_mean + float(std_ratio) * global_std, float(minimum_distance_meters))
    return mean_distances > distance_threshold, distance_threshold


def _run_filter_pass(
    points: NormalizedPointSet,
    keep_mask: np.ndarray,
    parameters: NoiseFilterParameters,
    enable_progress_prints: bool,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """One range pass then one statistical pass over ``keep_mask``, which is updated in place.

    Returns row indices of the range-dropped points, of those among them above
    the upper limit, and of the statistical outliers.
    """
    range_dropped_index = np.zeros(0, dtype=np.int64)
    above_range_index = np.zeros(0, dtype=np.int64)
    if parameters.enable_range_filter:
        candidate_index = np.flatnonzero(keep_mask)
        range_keep_mask, upper_height_limit = compute_height_range_mask(
            points.height[candidate_index],
            points.classification[candidate_index],
            float(parameters.range_upper_percentile),
            float(parameters.range_margin_meters),
        )
        range_dropped_index = candidate_index[~range_keep_mask]
        keep_mask[range_dropped_index] = False
        above_range_index = range_dropped_index[points.height[range_dropped_index] >= upper_height_limit]
        log_progress(
            enable_progress_prints,
            f"Range filter: upper_limit={upper_height_limit:.3f}, removed={range_dropped_index.size}",
        )

    outlier_index = np.zeros(0, dtype=np.int64)
    if parameters.enable_statistical_filter:
        candidate_index = np.flatnonzero(keep_mask)
        outlier_mask, distance_threshold = compute_statistical_outlier_mask(
            points.x[candidate_index],
            points.y[candidate_index],
            points.height[candidate_index],
            int(parameters.statistical_k_neighbors),
            float(parameters.statistical_std_ratio),
            float(parameters.statistical_minimum_distance_meters),
        )
        outlier_index = candidate_index[outlier_mask]
        keep_mask[outlier_index] = False
        log_progress(
            enable_progress_prints,
            "Statistical outlier filter: "
            f"threshold={distance_threshold:.4f}, removed={outlier_index.size}",
        )
    return range_dropped_index, above_range_index, outlier_index


def filter_noise(
    points: NormalizedPointSet,
    parameters: NoiseFilterParameters,
    enable_progress_prints: bool = False,
) -> NoiseFilterResult:
    """Drop preclassified noise, then repeat the range and statistical passes until one removes nothing.

    The last pass ran on exactly the returned points and removed none of
    them, so filtering the output again is a no-op.
    """
    keep_mask = np.ones(points.point_count, dtype=bool)

    preclassified_noise_count = 0
    if parameters.exclude_preclassified_noise:
        preclassified_noise_mask = points.classification == int(PointClassification.NOISE)
        preclassified_noise_count = int(np.count_nonzero(preclassified_noise_mask))
        keep_mask &= ~preclassified_noise_mask

    range_dropped_parts = []
    above_range_parts = []
    outlier_parts = []
    filter_pass_count = 0
    while True:
        filter_pass_count += 1
        range_dropped_index, above_range_index, outlier_index = _run_filter_pass(
            points, keep_mask, parameters, enable_progress_prints
        )
        range_dropped_parts.append(range_dropped_index)
        above_range_parts.append(above_range_index)
        outlier_parts.append(outlier_index)
        if range_dropped_index.size == 0 and outlier_index.size == 0:
            break

    above_range_index = np.concatenate(above_range_parts)
    outlier_index = np.concatenate(outlier_parts)
    clean_points = points.subset(keep_mask)
    log_progress(
        enable_progress_prints,
        f"Noise filtering done after {filter_pass_count} passes: "
        f"kept={clean_points.point_count} of {points.point_count}",
    )
    return NoiseFilterResult(
        points=clean_points,
        preclassified_noise_count=preclassified_noise_count,
        out_of_range_count=int(sum(part.size for part in range_dropped_parts)),
        above_range_point_index=np.sort(points.point_index[above_range_index]),
        statistical_outlier_count=int(outlier_index.size),
        statistical_outlier_point_index=np.sort(points.point_index[outlier_index]),
        filter_pass_count=filter_pass_count,
    )
