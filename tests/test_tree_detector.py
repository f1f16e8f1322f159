import numpy as np
import pytest

from lidar_tree_carbon.canopy_height_model import CanopySurface
from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.raster_grid import GridLayout
from lidar_tree_carbon.tree_detector import (
    TreeDetectionParameters,
    build_linear_window_function,
    detect_tree_tops,
)


def build_canopy(height_grid: np.ndarray, cell_size_meters: float = 1.0) -> CanopySurface:
    number_of_rows, number_of_columns = height_grid.shape
    return CanopySurface(
        height_grid=np.asarray(height_grid, dtype=np.float64),
        grid_layout=GridLayout(
            x_origin=0.0,
            y_origin=0.0,
            cell_size_meters=cell_size_meters,
            number_of_cells_x=number_of_columns,
            number_of_cells_y=number_of_rows,
        ),
        method_name="points_to_raster",
    )


def test_window_function_is_clipped_linear():
    window_function = build_linear_window_function(
        TreeDetectionParameters(maximum_window_radius_meters=3.0)
    )

    np.testing.assert_allclose(window_function(np.array([2.0, 10.0, 40.0])), [1.0, 2.0, 3.0])


def test_single_peak_is_detected_at_cell_center():
    height_grid = np.full((9, 9), 2.0)
    height_grid[4, 6] = 9.0

    trees = detect_tree_tops(build_canopy(height_grid), TreeDetectionParameters(minimum_tree_height_meters=3.0))

    assert len(trees) == 1
    assert trees[0].tree_id == 1
    assert trees[0].x == pytest.approx(6.5)
    assert trees[0].y == pytest.approx(4.5)
    assert trees[0].height == pytest.approx(9.0)


def test_equal_heights_keep_the_first_cell_in_scan_order():
    height_grid = np.full((5, 5), 0.5)
    height_grid[2, 1] = 5.0
    height_grid[2, 2] = 5.0

    trees = detect_tree_tops(build_canopy(height_grid), TreeDetectionParameters())

    assert len(trees) == 1
    assert trees[0].x == pytest.approx(1.5)


def test_peaks_below_minimum_height_are_ignored():
    height_grid = np.full((7, 7), 0.2)
    height_grid[3, 3] = 1.2

    assert detect_tree_tops(build_canopy(height_grid), TreeDetectionParameters()) == []


def test_tree_ids_follow_row_major_order():
    height_grid = np.zeros((12, 12))
    height_grid[9, 1] = 6.0
    height_grid[2, 9] = 5.0
    height_grid[9, 8] = 7.0

    trees = detect_tree_tops(build_canopy(height_grid), TreeDetectionParameters())

    assert [tree.tree_id for tree in trees] == [1, 2, 3]
    assert [(tree.x, tree.y) for tree in trees] == [(9.5, 2.5), (1.5, 9.5), (8.5, 9.5)]


def test_unknown_cells_do_not_suppress_or_create_peaks():
    height_grid = np.full((5, 5), np.nan)
    height_grid[2, 2] = 4.0

    trees = detect_tree_tops(build_canopy(height_grid), TreeDetectionParameters())

    assert len(trees) == 1
    assert trees[0].height == pytest.approx(4.0)


def test_no_detected_apex_has_a_higher_cell_within_its_window():
    random_number_generator = np.random.default_rng(21)
    height_grid = random_number_generator.uniform(0.0, 25.0, size=(40, 40))
    height_grid[random_number_generator.random((40, 40)) < 0.1] = np.nan
    parameters = TreeDetectionParameters()
    window_function = build_linear_window_function(parameters)
    canopy = build_canopy(height_grid, cell_size_meters=0.5)

    trees = detect_tree_tops(canopy, parameters)

    assert trees
    cell_center_y, cell_center_x = np.meshgrid(
        canopy.grid_layout.cell_center_y(np.arange(40)),
        canopy.grid_layout.cell_center_x(np.arange(40)),
        indexing="ij",
    )
    for tree in trees:
        assert tree.height >= parameters.minimum_tree_height_meters
        window_radius = float(window_function(np.array([tree.height]))[0])
        within_window = np.hypot(cell_center_x - tree.x, cell_center_y - tree.y) <= window_radius
        neighbor_height = height_grid[within_window & np.isfinite(height_grid)]
        assert np.all(neighbor_height <= tree.height)


def test_custom_window_function_is_used():
    height_grid = np.zeros((1, 12))
    height_grid[0, 1] = 10.0
    height_grid[0, 8] = 9.0

    wide_trees = detect_tree_tops(
        build_canopy(height_grid),
        TreeDetectionParameters(),
        window_function=lambda height: np.full_like(height, 8.0),
    )
    narrow_trees = detect_tree_tops(
        build_canopy(height_grid),
        TreeDetectionParameters(),
        window_function=lambda height: np.full_like(height, 1.0),
    )

    assert len(wide_trees) == 1
    assert len(narrow_trees) == 2


def test_window_function_must_be_positive():
    height_grid = np.zeros((3, 3))
    height_grid[1, 1] = 5.0

    with pytest.raises(InputError):
        detect_tree_tops(
            build_canopy(height_grid),
            TreeDetectionParameters(),
            window_function=lambda height: np.zeros_like(height),
        )
