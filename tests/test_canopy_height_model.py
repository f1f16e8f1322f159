import numpy as np
import pytest

from lidar_tree_carbon.canopy_height_model import CanopyHeightModelParameters, build_canopy_surface
from lidar_tree_carbon.errors import InputError, OutOfBoundsError
from lidar_tree_carbon.point_cloud import NormalizedPointSet, PointClassification


def build_point_set(x_coordinates, y_coordinates, height) -> NormalizedPointSet:
    point_count = len(height)
    return NormalizedPointSet(
        x=np.asarray(x_coordinates, dtype=np.float64),
        y=np.asarray(y_coordinates, dtype=np.float64),
        height=np.asarray(height, dtype=np.float64),
        point_index=np.arange(point_count),
        classification=np.full(point_count, int(PointClassification.UNCLASSIFIED), dtype=np.uint8),
    )


@pytest.fixture
def sparse_canopy():
    return build_point_set(
        [0.1, 0.3, 0.4, 2.6, 2.9],
        [0.1, 0.2, 0.45, 2.6, 2.2],
        [3.0, 7.5, 4.0, 12.0, 1.0],
    )


def test_each_cell_holds_the_maximum_height(sparse_canopy):
    canopy = build_canopy_surface(sparse_canopy, CanopyHeightModelParameters(resolution_meters=0.5))

    assert canopy.height_grid.shape == (6, 6)
    assert canopy.height_at(0.2, 0.2) == pytest.approx(7.5)
    assert canopy.height_at(2.7, 2.7) == pytest.approx(12.0)
    assert canopy.height_at(2.9, 2.2) == pytest.approx(1.0)


def test_empty_cells_are_unknown_not_zero(sparse_canopy):
    canopy = build_canopy_surface(sparse_canopy, CanopyHeightModelParameters(resolution_meters=0.5))

    assert canopy.height_at(1.2, 1.2) is None
    assert np.isnan(canopy.height_grid[2, 2])
    assert int(np.count_nonzero(canopy.known_mask)) == 3


def test_cell_value_never_below_its_points(sparse_canopy):
    canopy = build_canopy_surface(sparse_canopy, CanopyHeightModelParameters(resolution_meters=1.0))

    row_index, column_index = canopy.grid_layout.cell_index_for_points(sparse_canopy.x, sparse_canopy.y)
    assert np.all(canopy.height_grid[row_index, column_index] >= sparse_canopy.height)


def test_query_outside_grid_raises(sparse_canopy):
    canopy = build_canopy_surface(sparse_canopy, CanopyHeightModelParameters())

    with pytest.raises(OutOfBoundsError):
        canopy.height_at(-1.0, 0.0)


def test_smoothing_keeps_unknown_cells_unknown(sparse_canopy):
    canopy = build_canopy_surface(
        sparse_canopy,
        CanopyHeightModelParameters(resolution_meters=0.5, method_name="smoothed_points_to_raster"),
    )

    assert canopy.height_at(1.2, 1.2) is None
    assert canopy.height_at(0.2, 0.2) is not None


def test_zero_points_is_an_input_error():
    with pytest.raises(InputError):
        build_canopy_surface(build_point_set([], [], []), CanopyHeightModelParameters())
