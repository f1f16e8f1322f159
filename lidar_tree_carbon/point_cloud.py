from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from lidar_tree_carbon.errors import InputError


class PointClassification(IntEnum):
    """LAS classification codes used by the pipeline."""

    OTHER = 0
    UNCLASSIFIED = 1
    GROUND = 2
    NOISE = 7


@dataclass
class PointCloud:
    """Column-wise point storage; row ``i`` across the arrays is one point.

    Only ``classification`` is mutated after ingestion (by the ground
    classifier and the noise filter).
    """

    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    classification: np.ndarray | None = None
    intensity: np.ndarray | None = None
    color: np.ndarray | None = None
    crs: str | None = None

    def __post_init__(self) -> None:
        self.x = np.asarray(self.x, dtype=np.float64)
        self.y = np.asarray(self.y, dtype=np.float64)
        self.z = np.asarray(self.z, dtype=np.float64)
        point_count = self.x.shape[0]
        if self.x.ndim != 1 or self.y.shape != (point_count,) or self.z.shape != (point_count,):
            raise InputError("x, y and z must be one-dimensional arrays of equal length")

        if self.classification is None:
            self.classification = np.full(
                point_count, int(PointClassification.UNCLASSIFIED), dtype=np.uint8
            )
        else:
            self.classification = np.array(self.classification, dtype=np.uint8)
            if self.classification.shape != (point_count,):
                raise InputError("classification length does not match point count")

        if self.intensity is not None:
            self.intensity = np.asarray(self.intensity, dtype=np.uint16)
            if self.intensity.shape != (point_count,):
                raise InputError("intensity length does not match point count")

        if self.color is not None:
            self.color = np.asarray(self.color, dtype=np.uint16)
            if self.color.shape != (point_count, 3):
                raise InputError("color must have shape (point_count, 3)")

        if not (
            np.all(np.isfinite(self.x)) and np.all(np.isfinite(self.y)) and np.all(np.isfinite(self.z))
        ):
            raise InputError("Point coordinates must be finite")

    @property
    def point_count(self) -> int:
        return int(self.x.shape[0])

    @property
    def ground_mask(self) -> np.ndarray:
        return self.classification == int(PointClassification.GROUND)

    def mark(self, point_mask: np.ndarray, classification: PointClassification) -> None:
        self.classification[point_mask] = int(classification)


def _read_only(values: np.ndarray | None) -> np.ndarray | None:
    if values is None:
        return None
    values = np.asarray(values).view()
    values.setflags(write=False)
    return values


@dataclass(frozen=True)
class NormalizedPointSet:
    """Height-above-ground view of a subset of a PointCloud.

    ``point_index`` maps every row back to its source point.
    """

    x: np.ndarray
    y: np.ndarray
    height: np.ndarray
    point_index: np.ndarray
    classification: np.ndarray
    color: np.ndarray | None = None

    def __post_init__(self) -> None:
        for field_name in ("x", "y", "height", "point_index", "classification", "color"):
            object.__setattr__(self, field_name, _read_only(getattr(self, field_name)))

    @property
    def point_count(self) -> int:
        return int(self.x.shape[0])

    def subset(self, point_mask: np.ndarray) -> NormalizedPointSet:
        return NormalizedPointSet(
            x=self.x[point_mask],
            y=self.y[point_mask],
            height=self.height[point_mask],
            point_index=self.point_index[point_mask],
            classification=self.classification[point_mask],
            color=None if self.color is None else self.color[point_mask],
        )
