import numpy as np
import pytest

from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.point_cloud import PointClassification, PointCloud
from lidar_tree_carbon.point_cloud_reader import (
    InputDataParameters,
    filter_points_by_area_of_interest,
    load_point_cloud_from_file,
)


def test_csv_point_cloud_is_loaded(tmp_path):
    csv_path = tmp_path / "points.csv"
    csv_path.write_text("x,y,z,classification\n1.0,2.0,3.0,2\n4.0,5.0,6.5,1\n", encoding="utf-8")

    point_cloud = load_point_cloud_from_file(InputDataParameters(point_cloud_file_path=str(csv_path)))

    assert point_cloud.point_count == 2
    np.testing.assert_allclose(point_cloud.z, [3.0, 6.5])
    np.testing.assert_array_equal(point_cloud.ground_mask, [True, False])


def test_missing_csv_column_is_rejected(tmp_path):
    csv_path = tmp_path / "points.csv"
    csv_path.write_text("easting,northing,z\n1.0,2.0,3.0\n", encoding="utf-8")

    with pytest.raises(InputError):
        load_point_cloud_from_file(InputDataParameters(point_cloud_file_path=str(csv_path)))


def test_unsupported_format_is_rejected(tmp_path):
    ply_path = tmp_path / "points.ply"
    ply_path.write_text("ply\n", encoding="utf-8")

    with pytest.raises(InputError):
        load_point_cloud_from_file(InputDataParameters(point_cloud_file_path=str(ply_path)))


def test_area_of_interest_keeps_points_inside_bounds():
    point_cloud = PointCloud(
        x=[0.0, 5.0, 10.0],
        y=[0.0, 5.0, 10.0],
        z=[1.0, 2.0, 3.0],
        classification=[PointClassification.GROUND, 1, 1],
    )

    clipped = filter_points_by_area_of_interest(point_cloud, [4.0, 10.0, 4.0, 9.0])

    np.testing.assert_allclose(clipped.x, [5.0])


def test_point_cloud_rejects_mismatched_columns():
    with pytest.raises(InputError):
        PointCloud(x=[0.0, 1.0], y=[0.0], z=[0.0, 1.0])


def test_point_cloud_rejects_non_finite_coordinates():
    with pytest.raises(InputError):
        PointCloud(x=[0.0], y=[np.nan], z=[0.0])
