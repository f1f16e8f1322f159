from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from lidar_tree_carbon.canopy_height_model import CanopySurface
from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.progress_logging import log_progress

WindowFunction = Callable[[np.ndarray], np.ndarray]


@dataclass
class TreeDetectionParameters:
    minimum_tree_height_meters: float = 1.37
    window_slope: float = 0.2
    window_intercept_meters: float = 0.0
    minimum_window_radius_meters: float = 1.0
    maximum_window_radius_meters: float | None = None
    neighbor_comparison_budget: int = 4_000_000


@dataclass(frozen=True)
class DetectedTree:
    tree_id: int
    x: float
    y: float
    height: float


def build_linear_window_function(parameters: TreeDetectionParameters) -> WindowFunction:
    """``w(h) = clip(slope * h + intercept, minimum, maximum)`` in meters."""
    slope = float(parameters.window_slope)
    intercept = float(parameters.window_intercept_meters)
    minimum_radius = float(parameters.minimum_window_radius_meters)
    maximum_radius = (
        np.inf
        if parameters.maximum_window_radius_meters is None
        else float(parameters.maximum_window_radius_meters)
    )

    def window_radius(height: np.ndarray) -> np.ndarray:
        return np.clip(slope * np.asarray(height, dtype=np.float64) + intercept, minimum_radius, maximum_radius)

    return window_radius


def _window_offsets(squared_radius_cells: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    reach = int(np.floor(np.sqrt(squared_radius_cells)))
    row_offset, column_offset = np.mgrid[-reach : reach + 1, -reach : reach + 1]
    row_offset = row_offset.ravel()
    column_offset = column_offset.ravel()
    inside_mask = (row_offset**2 + column_offset**2 <= squared_radius_cells) & ~(
        (row_offset == 0) & (column_offset == 0)
    )
    row_offset = row_offset[inside_mask]
    column_offset = column_offset[inside_mask]
    # offsets that precede the center cell in row-major scan order
    earlier_in_scan_mask = (row_offset < 0) | ((row_offset == 0) & (column_offset < 0))
    return row_offset, column_offset, earlier_in_scan_mask


def find_local_maxima(
    height_grid: np.ndarray,
    cell_size_meters: float,
    minimum_height: float,
    window_function: WindowFunction,
    neighbor_comparison_budget: int = 4_000_000,
) -> tuple[np.ndarray, np.ndarray]:
    """Row and column indices of variable-window local maxima, in row-major scan order.

    A known cell with height ``h >= minimum_height`` is a maximum when no known
    cell within ``window_function(h)`` meters (center to center) is higher.
    Among equal heights inside a window the cell met first in row-major scan
    order wins. Unknown (NaN) cells never compete.
    """
    number_of_rows, number_of_columns = height_grid.shape
    known_height_grid = np.where(np.isfinite(height_grid), height_grid, -np.inf)
    candidate_linear_index = np.flatnonzero(
        np.isfinite(height_grid) & (known_height_grid >= minimum_height)
    )
    if candidate_linear_index.size == 0:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)

    candidate_row = candidate_linear_index // number_of_columns
    candidate_column = candidate_linear_index % number_of_columns
    candidate_height = known_height_grid.ravel()[candidate_linear_index]

    window_radius_meters = np.asarray(window_function(candidate_height), dtype=np.float64)
    if window_radius_meters.shape != candidate_height.shape or not np.all(window_radius_meters > 0.0):
        raise InputError("Window function must return a positive radius for every height")
    squared_radius_cells = np.floor(
        (window_radius_meters / cell_size_meters) ** 2 + 1e-9
    ).astype(np.int64)

    padding = int(np.floor(np.sqrt(np.max(squared_radius_cells))))
    padded_height_grid = np.pad(known_height_grid, padding, mode="constant", constant_values=-np.inf)

    is_maximum = np.zeros(candidate_linear_index.size, dtype=bool)
    for squared_radius in np.unique(squared_radius_cells):
        group_index = np.flatnonzero(squared_radius_cells == squared_radius)
        row_offset, column_offset, earlier_in_scan_mask = _window_offsets(int(squared_radius))
        if row_offset.size == 0:
            is_maximum[group_index] = True
            continue

        chunk_size = max(1, int(neighbor_comparison_budget) // row_offset.size)
        for chunk_start in range(0, group_index.size, chunk_size):
            chunk_index = group_index[chunk_start : chunk_start + chunk_size]
            neighbor_height = padded_height_grid[
                candidate_row[chunk_index, None] + padding + row_offset[None, :],
                candidate_column[chunk_index, None] + padding + column_offset[None, :],
            ]
            center_height = candidate_height[chunk_index, None]
            higher_neighbor = neighbor_height > center_height
            earlier_tie = (neighbor_height == center_height) & earlier_in_scan_mask[None, :]
            is_maximum[chunk_index] = ~np.any(higher_neighbor | earlier_tie, axis=1)

    return candidate_row[is_maximum], candidate_column[is_maximum]


def detect_tree_tops(
    canopy: CanopySurface,
    parameters: TreeDetectionParameters,
    window_function: WindowFunction | None = None,
    enable_progress_prints: bool = False,
) -> list[DetectedTree]:
    """Tree apexes from the canopy surface.

    Tree ids are assigned 1, 2, ... in row-major scan order of the apex cells
    (ascending y, then ascending x).
    """
    if window_function is None:
        window_function = build_linear_window_function(parameters)

    peak_row_index, peak_column_index = find_local_maxima(
        canopy.height_grid,
        canopy.grid_layout.cell_size_meters,
        float(parameters.minimum_tree_height_meters),
        window_function,
        int(parameters.neighbor_comparison_budget),
    )
    peak_x = canopy.grid_layout.cell_center_x(peak_column_index)
    peak_y = canopy.grid_layout.cell_center_y(peak_row_index)
    peak_height = canopy.height_grid[peak_row_index, peak_column_index]

    detected_trees = [
        DetectedTree(
            tree_id=tree_number,
            x=float(x_coordinate),
            y=float(y_coordinate),
            height=float(height),
        )
        for tree_number, (x_coordinate, y_coordinate, height) in enumerate(
            zip(peak_x, peak_y, peak_height, strict=True),
            start=1,
        )
    ]
    log_progress(
        enable_progress_prints,
        f"Detected tree tops from canopy height model: {len(detected_trees)}",
    )
    return detected_trees
