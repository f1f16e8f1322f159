from dataclasses import dataclass

import numpy as np

from lidar_tree_carbon.point_cloud import NormalizedPointSet
from lidar_tree_carbon.spatial_index import SpatialIndex
from lidar_tree_carbon.tree_detector import DetectedTree


@dataclass
class StemSliceParameters:
    search_radius_meters: float = 0.4
    breast_height_meters: float = 1.37
    slice_thickness_meters: float = 0.2
    # slices with this many points or fewer are not fitted
    slice_point_count_threshold: int = 10
    # 0 disables the stem search when the apex is not above the trunk
    maximum_top_to_stem_offset_meters: float = 1.5
    stem_density_cell_size_meters: float = 0.1
    stem_density_minimum_cell_points: int = 3
    stem_seed_refinement_iterations: int = 3


@dataclass(frozen=True)
class StemSlice:
    tree_id: int
    x_coordinates: np.ndarray
    y_coordinates: np.ndarray
    color: np.ndarray | None = None

    @property
    def point_count(self) -> int:
        return int(self.x_coordinates.size)


def slice_height_bounds(parameters: StemSliceParameters) -> tuple[float, float]:
    half_thickness = 0.5 * float(parameters.slice_thickness_meters)
    breast_height = float(parameters.breast_height_meters)
    return breast_height - half_thickness, breast_height + half_thickness


def _breast_height_band_index(
    center_x: float,
    center_y: float,
    radius_meters: float,
    spatial_index: SpatialIndex,
    points: NormalizedPointSet,
    parameters: StemSliceParameters,
) -> np.ndarray:
    neighborhood_index = spatial_index.query_radius(center_x, center_y, radius_meters)
    minimum_slice_height, maximum_slice_height = slice_height_bounds(parameters)
    neighborhood_height = points.height[neighborhood_index]
    band_mask = (neighborhood_height >= minimum_slice_height) & (
        neighborhood_height <= maximum_slice_height
    )
    return neighborhood_index[band_mask]


def find_stem_seed(
    x_coordinates: np.ndarray,
    y_coordinates: np.ndarray,
    parameters: StemSliceParameters,
) -> tuple[float, float] | None:
    """Mean position of the points in the densest grid cell, None when that cell is too sparse."""
    if x_coordinates.size == 0:
        return None

    cell_size = float(parameters.stem_density_cell_size_meters)
    x_origin = float(np.min(x_coordinates))
    y_origin = float(np.min(y_coordinates))
    number_of_cells_x = int(np.floor((np.max(x_coordinates) - x_origin) / cell_size)) + 1

    x_cell_index = np.floor((x_coordinates - x_origin) / cell_size).astype(np.int64)
    y_cell_index = np.floor((y_coordinates - y_origin) / cell_size).astype(np.int64)
    linear_cell_index = x_cell_index + number_of_cells_x * y_cell_index

    cell_point_count = np.bincount(linear_cell_index)
    densest_cell_index = int(np.argmax(cell_point_count))
    if int(cell_point_count[densest_cell_index]) < int(parameters.stem_density_minimum_cell_points):
        return None

    densest_cell_mask = linear_cell_index == densest_cell_index
    return (
        float(np.mean(x_coordinates[densest_cell_mask])),
        float(np.mean(y_coordinates[densest_cell_mask])),
    )


def locate_stem_near_apex(
    tree: DetectedTree,
    spatial_index: SpatialIndex,
    points: NormalizedPointSet,
    parameters: StemSliceParameters,
) -> tuple[float, float] | None:
    """Trunk position for an apex that is not directly above its stem.

    The densest breast-height cell within the offset radius seeds the search,
    and the seed then moves to the centroid of the band points within the
    search radius a few times so that it settles on the stem axis.
    """
    candidate_index = _breast_height_band_index(
        tree.x,
        tree.y,
        float(parameters.maximum_top_to_stem_offset_meters),
        spatial_index,
        points,
        parameters,
    )
    seed_center = find_stem_seed(points.x[candidate_index], points.y[candidate_index], parameters)
    if seed_center is None:
        return None

    seed_center_x, seed_center_y = seed_center
    for _ in range(int(parameters.stem_seed_refinement_iterations)):
        seed_index = _breast_height_band_index(
            seed_center_x,
            seed_center_y,
            float(parameters.search_radius_meters),
            spatial_index,
            points,
            parameters,
        )
        if seed_index.size == 0:
            break
        seed_center_x = float(np.mean(points.x[seed_index]))
        seed_center_y = float(np.mean(points.y[seed_index]))
    return seed_center_x, seed_center_y


def _build_stem_slice(tree_id: int, slice_index: np.ndarray, points: NormalizedPointSet) -> StemSlice:
    return StemSlice(
        tree_id=tree_id,
        x_coordinates=points.x[slice_index],
        y_coordinates=points.y[slice_index],
        color=None if points.color is None else points.color[slice_index],
    )


def extract_stem_slice(
    tree: DetectedTree,
    spatial_index: SpatialIndex,
    points: NormalizedPointSet,
    parameters: StemSliceParameters,
) -> StemSlice:
    """Points within the search radius of the apex and inside the breast-height band.

    When the apex neighborhood holds too few band points, the slice is taken
    around the stem found by ``locate_stem_near_apex`` instead.
    ``spatial_index`` must be built over ``points.x``/``points.y``.
    """
    search_radius = float(parameters.search_radius_meters)
    stem_slice = _build_stem_slice(
        tree.tree_id,
        _breast_height_band_index(tree.x, tree.y, search_radius, spatial_index, points, parameters),
        points,
    )
    if has_sufficient_points(stem_slice, parameters):
        return stem_slice
    if float(parameters.maximum_top_to_stem_offset_meters) <= search_radius:
        return stem_slice

    stem_center = locate_stem_near_apex(tree, spatial_index, points, parameters)
    if stem_center is None:
        return stem_slice
    recentered_slice = _build_stem_slice(
        tree.tree_id,
        _breast_height_band_index(
            stem_center[0], stem_center[1], search_radius, spatial_index, points, parameters
        ),
        points,
    )
    if recentered_slice.point_count <= stem_slice.point_count:
        return stem_slice
    return recentered_slice


def has_sufficient_points(stem_slice: StemSlice, parameters: StemSliceParameters) -> bool:
    return stem_slice.point_count > int(parameters.slice_point_count_threshold)
