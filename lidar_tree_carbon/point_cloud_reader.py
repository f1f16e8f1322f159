from dataclasses import dataclass
from pathlib import Path

import laspy
import numpy as np

from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.point_cloud import PointCloud


@dataclass
class InputDataParameters:
    point_cloud_file_path: str = "data/forest_stand.laz"
    point_cloud_file_format: str | None = None
    csv_x_column_name: str = "x"
    csv_y_column_name: str = "y"
    csv_z_column_name: str = "z"
    csv_classification_column_name: str | None = "classification"
    area_of_interest_bounds_xy: list[float] | None = None
    crs: str | None = None


def _resolve_file_format(point_cloud_file_path: Path, point_cloud_file_format: str | None) -> str:
    if point_cloud_file_format:
        return point_cloud_file_format.lower()
    return point_cloud_file_path.suffix.lstrip(".").lower()


def _load_las_point_cloud(point_cloud_file_path: Path, crs: str | None) -> PointCloud:
    las = laspy.read(point_cloud_file_path)
    dimension_names = set(las.point_format.dimension_names)

    color = None
    if {"red", "green", "blue"} <= dimension_names:
        color = np.column_stack(
            [
                np.asarray(las.red, dtype=np.uint16),
                np.asarray(las.green, dtype=np.uint16),
                np.asarray(las.blue, dtype=np.uint16),
            ]
        )

    return PointCloud(
        x=np.asarray(las.x, dtype=np.float64),
        y=np.asarray(las.y, dtype=np.float64),
        z=np.asarray(las.z, dtype=np.float64),
        classification=np.asarray(las.classification, dtype=np.uint8),
        intensity=np.asarray(las.intensity, dtype=np.uint16) if "intensity" in dimension_names else None,
        color=color,
        crs=crs,
    )


def _load_csv_point_cloud(point_cloud_file_path: Path, parameters: InputDataParameters) -> PointCloud:
    csv_array = np.genfromtxt(
        point_cloud_file_path,
        delimiter=",",
        names=True,
        dtype=np.float64,
        encoding="utf-8",
    )
    csv_array = np.atleast_1d(csv_array)
    column_names = set(csv_array.dtype.names or ())
    for column_name in (
        parameters.csv_x_column_name,
        parameters.csv_y_column_name,
        parameters.csv_z_column_name,
    ):
        if column_name not in column_names:
            raise InputError(f"CSV column '{column_name}' not found in {point_cloud_file_path}")

    classification = None
    classification_column_name = parameters.csv_classification_column_name
    if classification_column_name and classification_column_name in column_names:
        classification = np.asarray(csv_array[classification_column_name], dtype=np.uint8)

    return PointCloud(
        x=np.asarray(csv_array[parameters.csv_x_column_name], dtype=np.float64),
        y=np.asarray(csv_array[parameters.csv_y_column_name], dtype=np.float64),
        z=np.asarray(csv_array[parameters.csv_z_column_name], dtype=np.float64),
        classification=classification,
        crs=parameters.crs,
    )


def load_point_cloud_from_file(parameters: InputDataParameters) -> PointCloud:
    point_cloud_file_path = Path(parameters.point_cloud_file_path)
    if not point_cloud_file_path.exists():
        raise FileNotFoundError(f"Point cloud file not found: {point_cloud_file_path}")

    point_cloud_file_format = _resolve_file_format(
        point_cloud_file_path,
        parameters.point_cloud_file_format,
    )
    if point_cloud_file_format in {"las", "laz"}:
        return _load_las_point_cloud(point_cloud_file_path, parameters.crs)
    if point_cloud_file_format == "csv":
        return _load_csv_point_cloud(point_cloud_file_path, parameters)

    raise InputError(f"Unsupported point_cloud_file_format: {point_cloud_file_format}")


def filter_points_by_area_of_interest(
    point_cloud: PointCloud,
    area_of_interest_bounds_xy,
) -> PointCloud:
    if area_of_interest_bounds_xy is None:
        return point_cloud

    x_min, x_max, y_min, y_max = area_of_interest_bounds_xy
    point_mask = (
        (point_cloud.x >= x_min)
        & (point_cloud.x <= x_max)
        & (point_cloud.y >= y_min)
        & (point_cloud.y <= y_max)
    )
    return PointCloud(
        x=point_cloud.x[point_mask],
        y=point_cloud.y[point_mask],
        z=point_cloud.z[point_mask],
        classification=point_cloud.classification[point_mask],
        intensity=None if point_cloud.intensity is None else point_cloud.intensity[point_mask],
        color=None if point_cloud.color is None else point_cloud.color[point_mask],
        crs=point_cloud.crs,
    )
