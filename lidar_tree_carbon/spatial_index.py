import numpy as np
from scipy.spatial import cKDTree

from lidar_tree_carbon.errors import InputError


class SpatialIndex:
    """Static k-d tree over 2-D or 3-D coordinates.

    Queries return ascending indices into the coordinate arrays the index was
    built from, so the same query always yields the same index set.
    """

    def __init__(self, *coordinate_arrays: np.ndarray):
        if len(coordinate_arrays) not in (2, 3):
            raise InputError("SpatialIndex supports 2-D or 3-D coordinates only")
        self.coordinates = np.column_stack(
            [np.asarray(values, dtype=np.float64) for values in coordinate_arrays]
        )
        self.dimension = self.coordinates.shape[1]
        self.point_count = self.coordinates.shape[0]
        self._tree = cKDTree(self.coordinates) if self.point_count > 0 else None
        if self.dimension == 2 or self._tree is None:
            self._horizontal_tree = self._tree
        else:
            self._horizontal_tree = cKDTree(self.coordinates[:, :2])

    def query_radius(self, center_x: float, center_y: float, radius_meters: float) -> np.ndarray:
        """Indices of points whose horizontal distance to (center_x, center_y) is <= radius."""
        if radius_meters < 0.0:
            raise InputError(f"Query radius must be non-negative: {radius_meters}")
        if self._horizontal_tree is None:
            return np.zeros(0, dtype=np.int64)

        neighborhood_index = self._horizontal_tree.query_ball_point(
            [center_x, center_y],
            r=float(radius_meters),
        )
        return np.sort(np.asarray(neighborhood_index, dtype=np.int64))

    def query_rect(
        self,
        x_minimum: float,
        y_minimum: float,
        x_maximum: float,
        y_maximum: float,
    ) -> np.ndarray:
        """Indices of points with x in [x_minimum, x_maximum] and y in [y_minimum, y_maximum]."""
        if x_maximum < x_minimum or y_maximum < y_minimum:
            raise InputError("Rectangle maximum must not be below its minimum")
        if self._horizontal_tree is None:
            return np.zeros(0, dtype=np.int64)

        center_x = 0.5 * (x_minimum + x_maximum)
        center_y = 0.5 * (y_minimum + y_maximum)
        half_extent = 0.5 * max(x_maximum - x_minimum, y_maximum - y_minimum)
        # widened so rounding of the center never drops a point lying on the edge
        search_extent = half_extent * (1.0 + 1e-9) + 1e-9

        candidate_index = np.asarray(
            self._horizontal_tree.query_ball_point([center_x, center_y], r=search_extent, p=np.inf),
            dtype=np.int64,
        )

        candidate_x = self.coordinates[candidate_index, 0]
        candidate_y = self.coordinates[candidate_index, 1]
        inside_mask = (
            (candidate_x >= x_minimum)
            & (candidate_x <= x_maximum)
            & (candidate_y >= y_minimum)
            & (candidate_y <= y_maximum)
        )
        return np.sort(candidate_index[inside_mask])

    def query_nearest(self, k_neighbors: int, exclude_self: bool = True) -> tuple[np.ndarray, np.ndarray]:
        """Distances and indices of the k nearest neighbors of every indexed point."""
        if self._tree is None:
            raise InputError("Nearest-neighbor query on an empty index")
        query_count = int(k_neighbors) + (1 if exclude_self else 0)
        query_count = min(query_count, self.point_count)
        distances, neighbor_index = self._tree.query(self.coordinates, k=query_count)
        distances = np.asarray(distances, dtype=np.float64).reshape(self.point_count, query_count)
        neighbor_index = np.asarray(neighbor_index, dtype=np.int64).reshape(self.point_count, query_count)
        if exclude_self:
            return distances[:, 1:], neighbor_index[:, 1:]
        return distances, neighbor_index
