from lidar_tree_carbon.dbh_estimator.circle_fitter import CircleFit, CircleFitParameters, fit_circle_ransac
from lidar_tree_carbon.dbh_estimator.estimator import (
    ParallelProcessingParameters,
    TreeMeasurement,
    TreeRecord,
    measure_tree,
    measure_trees,
)
from lidar_tree_carbon.dbh_estimator.stem_slice_extractor import (
    StemSlice,
    StemSliceParameters,
    extract_stem_slice,
)

__all__ = [
    "CircleFit",
    "CircleFitParameters",
    "fit_circle_ransac",
    "ParallelProcessingParameters",
    "TreeMeasurement",
    "TreeRecord",
    "measure_tree",
    "measure_trees",
    "StemSlice",
    "StemSliceParameters",
    "extract_stem_slice",
]
