from dataclasses import dataclass

import numpy as np
from scipy.interpolate import LinearNDInterpolator
from scipy.spatial import Delaunay, QhullError

from lidar_tree_carbon.errors import OutOfBoundsError, TerrainBuildError
from lidar_tree_carbon.point_cloud import PointCloud
from lidar_tree_carbon.progress_logging import log_progress
from lidar_tree_carbon.raster_grid import GridLayout, build_grid_layout


@dataclass
class TerrainModelParameters:
    resolution_meters: float = 0.5
    ground_thinning_cell_size_meters: float = 0.0
    minimum_ground_point_count: int = 3


@dataclass(frozen=True)
class TerrainSurface:
    """Triangulated ground surface with barycentric (linear) interpolation.

    Defined only inside the convex hull of the ground points it was built from.
    ``elevation_grid`` is the same surface sampled at cell centers, NaN outside
    the hull.
    """

    interpolator: LinearNDInterpolator
    elevation_grid: np.ndarray
    grid_layout: GridLayout
    ground_point_count: int

    def elevation_or_nan(self, x_coordinates, y_coordinates) -> np.ndarray:
        x_coordinates = np.asarray(x_coordinates, dtype=np.float64)
        y_coordinates = np.asarray(y_coordinates, dtype=np.float64)
        return np.asarray(self.interpolator(x_coordinates, y_coordinates), dtype=np.float64)

    def covers(self, x_coordinates, y_coordinates) -> np.ndarray:
        return np.isfinite(self.elevation_or_nan(x_coordinates, y_coordinates))

    def elevation_at(self, x_coordinates, y_coordinates):
        elevation = self.elevation_or_nan(x_coordinates, y_coordinates)
        outside_mask = ~np.isfinite(elevation)
        if np.any(outside_mask):
            raise OutOfBoundsError(
                f"{int(np.count_nonzero(outside_mask))} query location(s) lie outside "
                "the convex hull of the ground points"
            )
        if elevation.ndim == 0:
            return float(elevation)
        return elevation


def thin_ground_points_to_cell_minimum(
    x_coordinates: np.ndarray,
    y_coordinates: np.ndarray,
    z_coordinates: np.ndarray,
    cell_size_meters: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    if cell_size_meters <= 0.0 or x_coordinates.size == 0:
        return x_coordinates, y_coordinates, z_coordinates

    x_origin = float(np.min(x_coordinates))
    y_origin = float(np.min(y_coordinates))
    number_of_cells_x = int(np.floor((np.max(x_coordinates) - x_origin) / cell_size_meters)) + 1

    x_cell_index = np.floor((x_coordinates - x_origin) / cell_size_meters).astype(np.int64)
    y_cell_index = np.floor((y_coordinates - y_origin) / cell_size_meters).astype(np.int64)
    linear_cell_index = x_cell_index + number_of_cells_x * y_cell_index

    sorting_index = np.lexsort((z_coordinates, linear_cell_index))
    _, first_index = np.unique(linear_cell_index[sorting_index], return_index=True)
    selected_index = np.sort(sorting_index[first_index])

    return (
        x_coordinates[selected_index],
        y_coordinates[selected_index],
        z_coordinates[selected_index],
    )


def rasterize_terrain_surface(
    interpolator: LinearNDInterpolator,
    grid_layout: GridLayout,
) -> np.ndarray:
    grid_x, grid_y = np.meshgrid(
        grid_layout.cell_center_x(np.arange(grid_layout.number_of_cells_x)),
        grid_layout.cell_center_y(np.arange(grid_layout.number_of_cells_y)),
    )
    elevation_grid = np.asarray(interpolator(grid_x, grid_y), dtype=np.float64)
    return elevation_grid.reshape(grid_layout.shape)


def build_terrain_surface(
    x_coordinates: np.ndarray,
    y_coordinates: np.ndarray,
    z_coordinates: np.ndarray,
    parameters: TerrainModelParameters,
    enable_progress_prints: bool = False,
) -> TerrainSurface:
    cell_size = float(parameters.resolution_meters)
    if cell_size <= 0.0:
        raise TerrainBuildError(f"Terrain resolution must be positive: {cell_size}")

    x_ground, y_ground, z_ground = thin_ground_points_to_cell_minimum(
        np.asarray(x_coordinates, dtype=np.float64),
        np.asarray(y_coordinates, dtype=np.float64),
        np.asarray(z_coordinates, dtype=np.float64),
        float(parameters.ground_thinning_cell_size_meters),
    )

    minimum_ground_points = max(3, int(parameters.minimum_ground_point_count))
    unique_location_count = np.unique(np.column_stack([x_ground, y_ground]), axis=0).shape[0]
    if unique_location_count < minimum_ground_points:
        raise TerrainBuildError(
            f"Terrain needs at least {minimum_ground_points} distinct ground locations, "
            f"got {unique_location_count}"
        )

    try:
        triangulation = Delaunay(np.column_stack([x_ground, y_ground]))
    except QhullError as error:
        raise TerrainBuildError(f"Ground points cannot be triangulated: {error}") from error

    interpolator = LinearNDInterpolator(triangulation, z_ground, fill_value=np.nan)
    grid_layout = build_grid_layout(
        float(np.min(x_ground)),
        float(np.min(y_ground)),
        float(np.max(x_ground)),
        float(np.max(y_ground)),
        cell_size,
    )
    elevation_grid = rasterize_terrain_surface(interpolator, grid_layout)

    valid_values = elevation_grid[np.isfinite(elevation_grid)]
    if valid_values.size > 0:
        log_progress(
            enable_progress_prints,
            "Terrain surface built: "
            f"ground_points={x_ground.size}, "
            f"triangles={triangulation.simplices.shape[0]}, "
            f"grid_shape={elevation_grid.shape}, "
            f"elevation_min={float(np.min(valid_values)):.3f}, "
            f"elevation_max={float(np.max(valid_values)):.3f}",
        )

    return TerrainSurface(
        interpolator=interpolator,
        elevation_grid=elevation_grid,
        grid_layout=grid_layout,
        ground_point_count=int(x_ground.size),
    )


def build_terrain_surface_from_point_cloud(
    point_cloud: PointCloud,
    parameters: TerrainModelParameters,
    enable_progress_prints: bool = False,
) -> TerrainSurface:
    ground_mask = point_cloud.ground_mask
    if not np.any(ground_mask):
        raise TerrainBuildError("No ground-classified points; terrain cannot be built")
    return build_terrain_surface(
        point_cloud.x[ground_mask],
        point_cloud.y[ground_mask],
        point_cloud.z[ground_mask],
        parameters,
        enable_progress_prints,
    )
