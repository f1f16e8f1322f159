from collections import Counter
from dataclasses import dataclass, field

from lidar_tree_carbon.dbh_estimator.estimator import (
    STATUS_DBH_ABOVE_CEILING,
    STATUS_INSUFFICIENT_SLICE_POINTS,
    STATUS_OK,
    TreeMeasurement,
)


@dataclass(frozen=True)
class ProcessingSummary:
    """Every point and tree the pipeline dropped, by reason."""

    input_point_count: int
    ground_point_count: int
    outside_terrain_point_count: int
    preclassified_noise_point_count: int
    out_of_range_point_count: int
    statistical_outlier_point_count: int
    clean_point_count: int
    detected_tree_count: int
    fitted_tree_count: int
    insufficient_slice_tree_count: int
    dbh_ceiling_excluded_tree_count: int
    failed_fit_counts: dict[str, int] = field(default_factory=dict)


def count_tree_statuses(measurements: list[TreeMeasurement]) -> Counter:
    return Counter(measurement.record.status for measurement in measurements)


def count_failed_fits(status_counts: Counter) -> dict[str, int]:
    not_fit_failures = {STATUS_OK, STATUS_INSUFFICIENT_SLICE_POINTS, STATUS_DBH_ABOVE_CEILING}
    return {
        status: int(count)
        for status, count in sorted(status_counts.items())
        if status not in not_fit_failures
    }
