from dataclasses import dataclass, field, fields
from pathlib import Path

import numpy as np

from lidar_tree_carbon.biomass_estimator import (
    BiomassModelParameters,
    StandCarbonSummary,
    build_allometric_model,
    summarize_stand_carbon,
)
from lidar_tree_carbon.canopy_height_model import (
    CanopyHeightModelParameters,
    CanopySurface,
    build_canopy_surface,
)
from lidar_tree_carbon.configuration_loader import load_configuration, load_section_parameters
from lidar_tree_carbon.dbh_estimator.circle_fitter import CircleFitParameters
from lidar_tree_carbon.dbh_estimator.estimator import (
    STATUS_DBH_ABOVE_CEILING,
    STATUS_INSUFFICIENT_SLICE_POINTS,
    ParallelProcessingParameters,
    TreeMeasurement,
    TreeRecord,
    measure_trees,
)
from lidar_tree_carbon.dbh_estimator.stem_slice_extractor import StemSliceParameters
from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.ground_classifier import GroundClassificationParameters, classify_ground_points
from lidar_tree_carbon.ground_surface_estimator import (
    TerrainModelParameters,
    TerrainSurface,
    build_terrain_surface_from_point_cloud,
)
from lidar_tree_carbon.height_normalizer import normalize_point_cloud_heights
from lidar_tree_carbon.noise_filter import NoiseFilterParameters, filter_noise
from lidar_tree_carbon.point_cloud import PointClassification, PointCloud
from lidar_tree_carbon.point_cloud_reader import (
    InputDataParameters,
    filter_points_by_area_of_interest,
    load_point_cloud_from_file,
)
from lidar_tree_carbon.processing_summary import (
    ProcessingSummary,
    count_failed_fits,
    count_tree_statuses,
)
from lidar_tree_carbon.progress_logging import log_progress
from lidar_tree_carbon.result_writer import create_run_directory, save_pipeline_outputs
from lidar_tree_carbon.spatial_index import SpatialIndex
from lidar_tree_carbon.tree_detector import (
    DetectedTree,
    TreeDetectionParameters,
    WindowFunction,
    detect_tree_tops,
)


@dataclass
class OutputFilesParameters:
    output_root_directory_path: str = "output"
    tree_table_filename: str = "tree_records.csv"
    report_json_filename: str = "tree_carbon_report.json"
    save_surface_grids: bool = True


@dataclass
class RuntimeProgressLoggingParameters:
    enable_progress_prints: bool = True


@dataclass
class VisualizationOutputsParameters:
    enable_diagnostic_plots: bool = False
    figure_dpi_value: int = 150
    figure_colormap_name: str = "viridis"
    fit_examples_count: int = 12


@dataclass
class PipelineParameters:
    ground_classification: GroundClassificationParameters = field(
        default_factory=GroundClassificationParameters
    )
    terrain_model: TerrainModelParameters = field(default_factory=TerrainModelParameters)
    noise_filter: NoiseFilterParameters = field(default_factory=NoiseFilterParameters)
    canopy_height_model: CanopyHeightModelParameters = field(
        default_factory=CanopyHeightModelParameters
    )
    tree_detection: TreeDetectionParameters = field(default_factory=TreeDetectionParameters)
    stem_slice: StemSliceParameters = field(default_factory=StemSliceParameters)
    circle_fit: CircleFitParameters = field(default_factory=CircleFitParameters)
    biomass_model: BiomassModelParameters = field(default_factory=BiomassModelParameters)
    parallel_processing: ParallelProcessingParameters = field(
        default_factory=ParallelProcessingParameters
    )
    runtime_progress_logging: RuntimeProgressLoggingParameters = field(
        default_factory=RuntimeProgressLoggingParameters
    )


@dataclass(frozen=True)
class PipelineResult:
    tree_records: list[TreeRecord]
    measurements: list[TreeMeasurement]
    detected_trees: list[DetectedTree]
    stand_summary: StandCarbonSummary
    processing_summary: ProcessingSummary
    terrain: TerrainSurface
    canopy: CanopySurface


def load_pipeline_parameters(configuration: dict) -> PipelineParameters:
    return PipelineParameters(
        **{
            section.name: load_section_parameters(configuration, section.name, section.default_factory)
            for section in fields(PipelineParameters)
        }
    )


def run_tree_carbon_pipeline(
    point_cloud: PointCloud,
    parameters: PipelineParameters | None = None,
    window_function: WindowFunction | None = None,
) -> PipelineResult:
    """Raw points to per-tree records and a stand carbon total.

    Fails with ``InputError`` (or ``TerrainBuildError``) before producing any
    output when the cloud is empty or no terrain can be built. Per-tree
    failures are kept as records with a status flag.
    """
    if parameters is None:
        parameters = PipelineParameters()
    enable_progress_prints = parameters.runtime_progress_logging.enable_progress_prints

    if point_cloud.point_count == 0:
        raise InputError("Point cloud is empty")
    log_progress(enable_progress_prints, f"Input points: {point_cloud.point_count}")

    ground_point_count = classify_ground_points(
        point_cloud,
        parameters.ground_classification,
        enable_progress_prints,
    )
    terrain = build_terrain_surface_from_point_cloud(
        point_cloud,
        parameters.terrain_model,
        enable_progress_prints,
    )

    normalization = normalize_point_cloud_heights(point_cloud, terrain, enable_progress_prints)
    noise_filter_result = filter_noise(
        normalization.points,
        parameters.noise_filter,
        enable_progress_prints,
    )
    point_cloud.mark(noise_filter_result.noise_point_index, PointClassification.NOISE)

    clean_points = noise_filter_result.points
    if clean_points.point_count == 0:
        raise InputError("No points remain after height normalization and noise filtering")

    canopy = build_canopy_surface(
        clean_points,
        parameters.canopy_height_model,
        enable_progress_prints,
    )
    detected_trees = detect_tree_tops(
        canopy,
        parameters.tree_detection,
        window_function=window_function,
        enable_progress_prints=enable_progress_prints,
    )

    allometric_model = build_allometric_model(parameters.biomass_model)
    spatial_index = SpatialIndex(clean_points.x, clean_points.y)
    measurements = measure_trees(
        detected_trees,
        spatial_index,
        clean_points,
        parameters.stem_slice,
        parameters.circle_fit,
        allometric_model,
        parameters.parallel_processing,
        enable_progress_prints,
    )

    status_counts = count_tree_statuses(measurements)
    fitted_tree_count = sum(1 for measurement in measurements if measurement.circle_fit is not None)
    stand_summary = summarize_stand_carbon(
        tree_count=len(measurements),
        fitted_tree_count=fitted_tree_count,
        biomass_estimates=[
            measurement.biomass for measurement in measurements if measurement.biomass is not None
        ],
        dbh_ceiling_excluded_count=status_counts[STATUS_DBH_ABOVE_CEILING],
    )
    processing_summary = ProcessingSummary(
        input_point_count=point_cloud.point_count,
        ground_point_count=ground_point_count,
        outside_terrain_point_count=normalization.outside_terrain_point_count,
        preclassified_noise_point_count=noise_filter_result.preclassified_noise_count,
        out_of_range_point_count=noise_filter_result.out_of_range_count,
        statistical_outlier_point_count=noise_filter_result.statistical_outlier_count,
        clean_point_count=clean_points.point_count,
        detected_tree_count=len(detected_trees),
        fitted_tree_count=fitted_tree_count,
        insufficient_slice_tree_count=status_counts[STATUS_INSUFFICIENT_SLICE_POINTS],
        dbh_ceiling_excluded_tree_count=status_counts[STATUS_DBH_ABOVE_CEILING],
        failed_fit_counts=count_failed_fits(status_counts),
    )

    log_progress(
        enable_progress_prints,
        "Stand carbon: "
        f"trees={stand_summary.tree_count}, "
        f"aggregated={stand_summary.aggregated_tree_count}, "
        f"dbh_ceiling_excluded={stand_summary.dbh_ceiling_excluded_count}, "
        f"carbon_kg={stand_summary.total_carbon_kg:.2f} "
        f"[{stand_summary.total_carbon_min_kg:.2f}, {stand_summary.total_carbon_max_kg:.2f}]",
    )
    if stand_summary.dbh_ceiling_excluded_count > 0:
        log_progress(
            enable_progress_prints,
            f"{stand_summary.dbh_ceiling_excluded_count} tree(s) above the DBH ceiling of "
            f"{allometric_model.maximum_dbh_centimeters} cm were left out of the stand total",
        )

    return PipelineResult(
        tree_records=[measurement.record for measurement in measurements],
        measurements=measurements,
        detected_trees=detected_trees,
        stand_summary=stand_summary,
        processing_summary=processing_summary,
        terrain=terrain,
        canopy=canopy,
    )


def format_axis_range(values: np.ndarray) -> str:
    return f"{float(np.min(values)):.3f} to {float(np.max(values)):.3f}"


def run_pipeline(config_path: Path) -> Path:
    configuration = load_configuration(config_path)
    parameters = load_pipeline_parameters(configuration)
    input_parameters = load_section_parameters(configuration, "input_data", InputDataParameters)
    output_parameters = load_section_parameters(configuration, "output_files", OutputFilesParameters)
    visualization_parameters = load_section_parameters(
        configuration,
        "visualization_outputs",
        VisualizationOutputsParameters,
    )
    enable_progress_prints = parameters.runtime_progress_logging.enable_progress_prints

    log_progress(enable_progress_prints, f"Loading point cloud: {input_parameters.point_cloud_file_path}")
    point_cloud = load_point_cloud_from_file(input_parameters)
    point_cloud = filter_points_by_area_of_interest(
        point_cloud,
        input_parameters.area_of_interest_bounds_xy,
    )
    if point_cloud.point_count > 0:
        log_progress(
            enable_progress_prints,
            "Loaded points: "
            f"count={point_cloud.point_count}, "
            f"x_range=({format_axis_range(point_cloud.x)}), "
            f"y_range=({format_axis_range(point_cloud.y)}), "
            f"z_range=({format_axis_range(point_cloud.z)})",
        )

    result = run_tree_carbon_pipeline(point_cloud, parameters)

    run_directory = create_run_directory(Path(output_parameters.output_root_directory_path))
    save_pipeline_outputs(
        run_directory,
        result,
        parameters,
        input_parameters,
        output_parameters,
    )
    if visualization_parameters.enable_diagnostic_plots:
        from lidar_tree_carbon.visualization_outputs import save_diagnostic_plots

        save_diagnostic_plots(run_directory / "diagnostics", result, visualization_parameters)

    log_progress(enable_progress_prints, f"Output run directory: {run_directory}")
    return run_directory
