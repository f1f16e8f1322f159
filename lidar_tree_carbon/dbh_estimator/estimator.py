from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from joblib import Parallel, delayed

from lidar_tree_carbon.biomass_estimator import (
    AllometricModel,
    BiomassEstimate,
    dbh_centimeters_from_radius,
    estimate_biomass,
    is_above_dbh_ceiling,
)
from lidar_tree_carbon.dbh_estimator.circle_fitter import CircleFit, CircleFitParameters, fit_circle_ransac
from lidar_tree_carbon.dbh_estimator.stem_slice_extractor import (
    StemSlice,
    StemSliceParameters,
    extract_stem_slice,
    has_sufficient_points,
)
from lidar_tree_carbon.errors import PerTreeError
from lidar_tree_carbon.point_cloud import NormalizedPointSet
from lidar_tree_carbon.progress_logging import log_progress
from lidar_tree_carbon.spatial_index import SpatialIndex
from lidar_tree_carbon.tree_detector import DetectedTree

STATUS_OK = "ok"
STATUS_INSUFFICIENT_SLICE_POINTS = "insufficient_slice_points"
STATUS_DBH_ABOVE_CEILING = "dbh_above_ceiling"


@dataclass
class ParallelProcessingParameters:
    n_jobs: int = 1
    random_seed: int = 42


@dataclass(frozen=True)
class TreeRecord:
    tree_id: int
    x: float
    y: float
    height: float
    dbh_cm: float | None
    agb_kg: float | None
    carbon_kg: float | None
    carbon_min: float | None
    carbon_max: float | None
    status: str
    slice_point_count: int
    inlier_count: int | None
    stem_center_x: float | None
    stem_center_y: float | None
    fit_rmse_meters: float | None


@dataclass(frozen=True)
class TreeMeasurement:
    record: TreeRecord
    stem_slice: StemSlice
    circle_fit: CircleFit | None
    biomass: BiomassEstimate | None


def _build_tree_record(
    tree: DetectedTree,
    stem_slice: StemSlice,
    status: str,
    circle_fit: CircleFit | None = None,
    biomass: BiomassEstimate | None = None,
) -> TreeRecord:
    return TreeRecord(
        tree_id=tree.tree_id,
        x=tree.x,
        y=tree.y,
        height=tree.height,
        dbh_cm=None if circle_fit is None else dbh_centimeters_from_radius(circle_fit.radius),
        agb_kg=None if biomass is None else biomass.agb_kg,
        carbon_kg=None if biomass is None else biomass.carbon_kg,
        carbon_min=None if biomass is None else biomass.carbon_min,
        carbon_max=None if biomass is None else biomass.carbon_max,
        status=status,
        slice_point_count=stem_slice.point_count,
        inlier_count=None if circle_fit is None else circle_fit.inlier_count,
        stem_center_x=None if circle_fit is None else circle_fit.center_x,
        stem_center_y=None if circle_fit is None else circle_fit.center_y,
        fit_rmse_meters=None if circle_fit is None else circle_fit.fit_rmse_meters,
    )


def create_tree_random_generator(random_seed: int, tree_id: int) -> np.random.Generator:
    return np.random.default_rng([int(random_seed), int(tree_id)])


def measure_tree(
    tree: DetectedTree,
    spatial_index: SpatialIndex,
    points: NormalizedPointSet,
    slice_parameters: StemSliceParameters,
    circle_fit_parameters: CircleFitParameters,
    allometric_model: AllometricModel,
    random_number_generator: np.random.Generator,
) -> TreeMeasurement:
    """Slice, fit and convert one tree; per-tree failures become the record status."""
    stem_slice = extract_stem_slice(tree, spatial_index, points, slice_parameters)
    if not has_sufficient_points(stem_slice, slice_parameters):
        return TreeMeasurement(
            record=_build_tree_record(tree, stem_slice, STATUS_INSUFFICIENT_SLICE_POINTS),
            stem_slice=stem_slice,
            circle_fit=None,
            biomass=None,
        )

    try:
        circle_fit = fit_circle_ransac(
            stem_slice.x_coordinates,
            stem_slice.y_coordinates,
            circle_fit_parameters,
            random_number_generator,
            tree_id=tree.tree_id,
        )
    except PerTreeError as error:
        return TreeMeasurement(
            record=_build_tree_record(tree, stem_slice, error.reason),
            stem_slice=stem_slice,
            circle_fit=None,
            biomass=None,
        )

    if is_above_dbh_ceiling(dbh_centimeters_from_radius(circle_fit.radius), allometric_model):
        return TreeMeasurement(
            record=_build_tree_record(tree, stem_slice, STATUS_DBH_ABOVE_CEILING, circle_fit),
            stem_slice=stem_slice,
            circle_fit=circle_fit,
            biomass=None,
        )

    biomass = estimate_biomass(circle_fit.radius, allometric_model)
    return TreeMeasurement(
        record=_build_tree_record(tree, stem_slice, STATUS_OK, circle_fit, biomass),
        stem_slice=stem_slice,
        circle_fit=circle_fit,
        biomass=biomass,
    )


def measure_trees(
    trees: list[DetectedTree],
    spatial_index: SpatialIndex,
    points: NormalizedPointSet,
    slice_parameters: StemSliceParameters,
    circle_fit_parameters: CircleFitParameters,
    allometric_model: AllometricModel,
    parallel_parameters: ParallelProcessingParameters,
    enable_progress_prints: bool = False,
) -> list[TreeMeasurement]:
    """Measure every tree; output order follows ``trees``.

    Each tree draws from its own generator seeded by ``(random_seed, tree_id)``,
    so results do not depend on worker scheduling.
    """
    if not trees:
        return []

    log_progress(
        enable_progress_prints,
        f"Measuring {len(trees)} trees with n_jobs={parallel_parameters.n_jobs}",
    )
    measurements = Parallel(n_jobs=int(parallel_parameters.n_jobs), prefer="threads")(
        delayed(measure_tree)(
            tree,
            spatial_index,
            points,
            slice_parameters,
            circle_fit_parameters,
            allometric_model,
            create_tree_random_generator(parallel_parameters.random_seed, tree.tree_id),
        )
        for tree in trees
    )

    fitted_count = sum(1 for measurement in measurements if measurement.circle_fit is not None)
    log_progress(
        enable_progress_prints,
        f"Stem fits accepted: {fitted_count} of {len(measurements)}",
    )
    return list(measurements)
