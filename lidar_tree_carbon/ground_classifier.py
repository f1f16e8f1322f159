from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.point_cloud import PointClassification, PointCloud
from lidar_tree_carbon.progress_logging import log_progress


@dataclass
class GroundClassificationParameters:
    method_name: str = "auto"
    grid_cell_size_meters: float = 1.0
    ground_height_tolerance_meters: float = 0.15
    ground_valid_ratio_threshold: float = 0.02


def validated_cell_size(parameters: GroundClassificationParameters) -> float:
    cell_size = float(parameters.grid_cell_size_meters)
    if cell_size <= 0.0:
        raise InputError(f"grid_cell_size_meters must be positive: {cell_size}")
    return cell_size


def compute_cell_minimum_elevation(
    x_coordinates: np.ndarray,
    y_coordinates: np.ndarray,
    z_coordinates: np.ndarray,
    cell_size_meters: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Per-point cell index and per-cell minimum z on a grid anchored at the data minimum."""
    x_origin = float(np.min(x_coordinates))
    y_origin = float(np.min(y_coordinates))
    x_cell_index = np.floor((x_coordinates - x_origin) / cell_size_meters).astype(np.int64)
    y_cell_index = np.floor((y_coordinates - y_origin) / cell_size_meters).astype(np.int64)
    number_of_cells_x = int(np.max(x_cell_index)) + 1
    number_of_cells_y = int(np.max(y_cell_index)) + 1
    linear_cell_index = x_cell_index + number_of_cells_x * y_cell_index

    minimum_z_per_cell = np.full(number_of_cells_x * number_of_cells_y, np.inf, dtype=np.float64)
    np.minimum.at(minimum_z_per_cell, linear_cell_index, z_coordinates)
    return linear_cell_index, minimum_z_per_cell


def classify_with_existing_classification(
    point_cloud: PointCloud,
    parameters: GroundClassificationParameters,
    enable_progress_prints: bool = False,
) -> int:
    ground_point_count = int(np.count_nonzero(point_cloud.ground_mask))
    log_progress(
        enable_progress_prints,
        f"Ground source: existing classification, ground points={ground_point_count}",
    )
    return ground_point_count


def classify_with_grid_minimum(
    point_cloud: PointCloud,
    parameters: GroundClassificationParameters,
    enable_progress_prints: bool = False,
) -> int:
    cell_size = validated_cell_size(parameters)

    candidate_mask = point_cloud.classification != int(PointClassification.NOISE)
    if not np.any(candidate_mask):
        return 0
    candidate_index = np.flatnonzero(candidate_mask)

    linear_cell_index, minimum_z_per_cell = compute_cell_minimum_elevation(
        point_cloud.x[candidate_index],
        point_cloud.y[candidate_index],
        point_cloud.z[candidate_index],
        cell_size,
    )
    height_over_cell_minimum = point_cloud.z[candidate_index] - minimum_z_per_cell[linear_cell_index]
    ground_mask = np.zeros(point_cloud.point_count, dtype=bool)
    ground_mask[candidate_index] = height_over_cell_minimum <= float(
        parameters.ground_height_tolerance_meters
    )
    point_cloud.mark(ground_mask, PointClassification.GROUND)

    ground_point_count = int(np.count_nonzero(point_cloud.ground_mask))
    log_progress(
        enable_progress_prints,
        f"Ground source: grid minimum (cell={cell_size}m), ground points={ground_point_count}",
    )
    return ground_point_count


def classify_automatically(
    point_cloud: PointCloud,
    parameters: GroundClassificationParameters,
    enable_progress_prints: bool = False,
) -> int:
    cell_size = validated_cell_size(parameters)
    ground_mask = point_cloud.ground_mask
    if np.any(ground_mask):
        all_cells, _ = compute_cell_minimum_elevation(
            point_cloud.x,
            point_cloud.y,
            point_cloud.z,
            cell_size,
        )
        occupied_cell_count = np.unique(all_cells).size
        ground_cell_count = np.unique(all_cells[ground_mask]).size
        class_valid_ratio = float(ground_cell_count / occupied_cell_count)
        if class_valid_ratio >= float(parameters.ground_valid_ratio_threshold):
            log_progress(
                enable_progress_prints,
                f"Existing ground classification covers valid_ratio={class_valid_ratio:.4f}",
            )
            return classify_with_existing_classification(
                point_cloud, parameters, enable_progress_prints
            )
        log_progress(
            enable_progress_prints,
            "Existing ground classification too sparse "
            f"(valid_ratio={class_valid_ratio:.4f}); falling back to grid minimum",
        )
        point_cloud.mark(ground_mask, PointClassification.UNCLASSIFIED)
    return classify_with_grid_minimum(point_cloud, parameters, enable_progress_prints)


GroundClassifier = Callable[[PointCloud, GroundClassificationParameters, bool], int]

GROUND_CLASSIFIERS: dict[str, GroundClassifier] = {
    "existing_classification": classify_with_existing_classification,
    "grid_minimum": classify_with_grid_minimum,
    "auto": classify_automatically,
}


def get_ground_classifier(method_name: str) -> GroundClassifier:
    try:
        return GROUND_CLASSIFIERS[method_name]
    except KeyError:
        raise InputError(
            f"Unsupported ground classification method_name: {method_name} "
            f"(available: {', '.join(sorted(GROUND_CLASSIFIERS))})"
        ) from None


def classify_ground_points(
    point_cloud: PointCloud,
    parameters: GroundClassificationParameters,
    enable_progress_prints: bool = False,
) -> int:
    """Mark ground points on ``point_cloud`` in place and return the ground point count."""
    if point_cloud.point_count == 0:
        raise InputError("Cannot classify ground in an empty point cloud")
    ground_classifier = get_ground_classifier(parameters.method_name)
    return ground_classifier(point_cloud, parameters, enable_progress_prints)
