import math
from dataclasses import dataclass

import numpy as np

from lidar_tree_carbon.errors import InputError


@dataclass(frozen=True)
class GridLayout:
    """Regular 2-D grid; row index follows y, column index follows x."""

    x_origin: float
    y_origin: float
    cell_size_meters: float
    number_of_cells_x: int
    number_of_cells_y: int

    @property
    def shape(self) -> tuple[int, int]:
        return self.number_of_cells_y, self.number_of_cells_x

    def cell_index_for_points(
        self,
        x_coordinates: np.ndarray,
        y_coordinates: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        column_index = np.floor((np.asarray(x_coordinates) - self.x_origin) / self.cell_size_meters)
        row_index = np.floor((np.asarray(y_coordinates) - self.y_origin) / self.cell_size_meters)
        return row_index.astype(np.int64), column_index.astype(np.int64)

    def contains_cell(self, row_index: np.ndarray, column_index: np.ndarray) -> np.ndarray:
        return (
            (row_index >= 0)
            & (row_index < self.number_of_cells_y)
            & (column_index >= 0)
            & (column_index < self.number_of_cells_x)
        )

    def cell_center_x(self, column_index) -> np.ndarray:
        return self.x_origin + (np.asarray(column_index, dtype=np.float64) + 0.5) * self.cell_size_meters

    def cell_center_y(self, row_index) -> np.ndarray:
        return self.y_origin + (np.asarray(row_index, dtype=np.float64) + 0.5) * self.cell_size_meters


def build_grid_layout(
    x_minimum: float,
    y_minimum: float,
    x_maximum: float,
    y_maximum: float,
    cell_size_meters: float,
) -> GridLayout:
    """Grid covering the bounds, with its origin snapped to a multiple of the cell size."""
    if cell_size_meters <= 0.0:
        raise InputError(f"Grid cell size must be positive: {cell_size_meters}")

    x_origin = math.floor(x_minimum / cell_size_meters) * cell_size_meters
    y_origin = math.floor(y_minimum / cell_size_meters) * cell_size_meters
    number_of_cells_x = int(np.floor((x_maximum - x_origin) / cell_size_meters)) + 1
    number_of_cells_y = int(np.floor((y_maximum - y_origin) / cell_size_meters)) + 1

    total_number_of_cells = number_of_cells_x * number_of_cells_y
    if total_number_of_cells > 400_000_000:
        raise InputError(
            "Raster grid is too large. Use a coarser resolution or a smaller area of interest."
        )

    return GridLayout(
        x_origin=float(x_origin),
        y_origin=float(y_origin),
        cell_size_meters=float(cell_size_meters),
        number_of_cells_x=number_of_cells_x,
        number_of_cells_y=number_of_cells_y,
    )
