from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from lidar_tree_carbon.errors import InputError, OutOfBoundsError
from lidar_tree_carbon.point_cloud import NormalizedPointSet
from lidar_tree_carbon.progress_logging import log_progress
from lidar_tree_carbon.raster_grid import GridLayout, build_grid_layout


@dataclass
class CanopyHeightModelParameters:
    resolution_meters: float = 0.5
    method_name: str = "points_to_raster"
    smoothing_sigma_cells: float = 1.0


@dataclass(frozen=True)
class CanopySurface:
    """Canopy height grid; NaN marks cells no point fell into (unknown, not zero)."""

    height_grid: np.ndarray
    grid_layout: GridLayout
    method_name: str

    @property
    def known_mask(self) -> np.ndarray:
        return np.isfinite(self.height_grid)

    def height_at(self, x_coordinate: float, y_coordinate: float) -> float | None:
        row_index, column_index = self.grid_layout.cell_index_for_points(x_coordinate, y_coordinate)
        if not bool(self.grid_layout.contains_cell(row_index, column_index)):
            raise OutOfBoundsError(
                f"({x_coordinate}, {y_coordinate}) lies outside the canopy height model extent"
            )
        cell_value = float(self.height_grid[int(row_index), int(column_index)])
        if not np.isfinite(cell_value):
            return None
        return cell_value


def rasterize_maximum_height(
    x_coordinates: np.ndarray,
    y_coordinates: np.ndarray,
    normalized_height: np.ndarray,
    grid_layout: GridLayout,
) -> np.ndarray:
    height_grid_flat = np.full(
        grid_layout.number_of_cells_x * grid_layout.number_of_cells_y,
        -np.inf,
        dtype=np.float64,
    )
    if normalized_height.size > 0:
        row_index, column_index = grid_layout.cell_index_for_points(x_coordinates, y_coordinates)
        linear_cell_index = column_index + grid_layout.number_of_cells_x * row_index

        sorting_index = np.argsort(linear_cell_index, kind="stable")
        sorted_linear_cell_index = linear_cell_index[sorting_index]
        sorted_height = normalized_height[sorting_index]
        unique_linear_index, first_occurrence_index = np.unique(
            sorted_linear_cell_index,
            return_index=True,
        )
        maximum_height_per_cell = np.maximum.reduceat(sorted_height, first_occurrence_index)
        height_grid_flat[unique_linear_index] = maximum_height_per_cell

    height_grid_flat[np.isneginf(height_grid_flat)] = np.nan
    return height_grid_flat.reshape(grid_layout.shape)


def smooth_known_cells(height_grid: np.ndarray, sigma_cells: float) -> np.ndarray:
    """Gaussian smoothing that ignores unknown cells and leaves them unknown."""
    if sigma_cells <= 0.0:
        return height_grid.copy()
    known_mask = np.isfinite(height_grid)
    weighted_sum = ndimage.gaussian_filter(
        np.where(known_mask, height_grid, 0.0),
        sigma=float(sigma_cells),
        mode="constant",
    )
    weight_sum = ndimage.gaussian_filter(
        known_mask.astype(np.float64),
        sigma=float(sigma_cells),
        mode="constant",
    )
    smoothed_grid = np.full_like(height_grid, np.nan)
    smoothed_grid[known_mask] = weighted_sum[known_mask] / weight_sum[known_mask]
    return smoothed_grid


def build_points_to_raster(
    points: NormalizedPointSet,
    grid_layout: GridLayout,
    parameters: CanopyHeightModelParameters,
) -> np.ndarray:
    return rasterize_maximum_height(points.x, points.y, points.height, grid_layout)


def build_smoothed_points_to_raster(
    points: NormalizedPointSet,
    grid_layout: GridLayout,
    parameters: CanopyHeightModelParameters,
) -> np.ndarray:
    height_grid = rasterize_maximum_height(points.x, points.y, points.height, grid_layout)
    return smooth_known_cells(height_grid, float(parameters.smoothing_sigma_cells))


CanopyRasterizer = Callable[[NormalizedPointSet, GridLayout, CanopyHeightModelParameters], np.ndarray]

CANOPY_RASTERIZERS: dict[str, CanopyRasterizer] = {
    "points_to_raster": build_points_to_raster,
    "smoothed_points_to_raster": build_smoothed_points_to_raster,
}


def get_canopy_rasterizer(method_name: str) -> CanopyRasterizer:
    try:
        return CANOPY_RASTERIZERS[method_name]
    except KeyError:
        raise InputError(
            f"Unsupported canopy method_name: {method_name} "
            f"(available: {', '.join(sorted(CANOPY_RASTERIZERS))})"
        ) from None


def build_canopy_surface(
    points: NormalizedPointSet,
    parameters: CanopyHeightModelParameters,
    enable_progress_prints: bool = False,
) -> CanopySurface:
    if points.point_count == 0:
        raise InputError("Cannot build a canopy height model from zero points")

    rasterizer = get_canopy_rasterizer(parameters.method_name)
    grid_layout = build_grid_layout(
        float(np.min(points.x)),
        float(np.min(points.y)),
        float(np.max(points.x)),
        float(np.max(points.y)),
        float(parameters.resolution_meters),
    )
    height_grid = rasterizer(points, grid_layout, parameters)

    known_cell_ratio = float(np.mean(np.isfinite(height_grid)))
    log_progress(
        enable_progress_prints,
        "Canopy height model built: "
        f"method={parameters.method_name}, "
        f"shape={height_grid.shape}, "
        f"known_cell_ratio={known_cell_ratio:.4f}, "
        f"max_height={float(np.nanmax(height_grid)):.3f}",
    )
    return CanopySurface(
        height_grid=height_grid,
        grid_layout=grid_layout,
        method_name=parameters.method_name,
    )
