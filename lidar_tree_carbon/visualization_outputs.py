from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.patches import Circle

from lidar_tree_carbon.dbh_estimator.estimator import TreeMeasurement
from lidar_tree_carbon.raster_grid import GridLayout
from lidar_tree_carbon.tree_detector import DetectedTree

if TYPE_CHECKING:
    from lidar_tree_carbon.pipeline_runner import PipelineResult, VisualizationOutputsParameters


def grid_extent(grid_layout: GridLayout) -> tuple[float, float, float, float]:
    return (
        grid_layout.x_origin,
        grid_layout.x_origin + grid_layout.number_of_cells_x * grid_layout.cell_size_meters,
        grid_layout.y_origin,
        grid_layout.y_origin + grid_layout.number_of_cells_y * grid_layout.cell_size_meters,
    )


def save_terrain_elevation_grid_png(
    output_file_path: Path,
    elevation_grid: np.ndarray,
    grid_layout: GridLayout,
    figure_dpi_value: int,
    figure_colormap_name: str,
) -> None:
    figure, axis = plt.subplots(figsize=(7.0, 5.5))
    image = axis.imshow(
        elevation_grid,
        origin="lower",
        cmap=figure_colormap_name,
        extent=grid_extent(grid_layout),
    )
    axis.set_title("Terrain Elevation Grid")
    axis.set_xlabel("X (meters)")
    axis.set_ylabel("Y (meters)")
    figure.colorbar(image, ax=axis, label="Elevation (m)")
    figure.tight_layout()
    figure.savefig(output_file_path, dpi=figure_dpi_value)
    plt.close(figure)


def save_canopy_height_with_tree_tops_png(
    output_file_path: Path,
    height_grid: np.ndarray,
    grid_layout: GridLayout,
    detected_trees: list[DetectedTree],
    figure_dpi_value: int,
    figure_colormap_name: str,
) -> None:
    figure, axis = plt.subplots(figsize=(8.0, 6.5))
    image = axis.imshow(
        height_grid,
        origin="lower",
        cmap=figure_colormap_name,
        extent=grid_extent(grid_layout),
    )
    if detected_trees:
        axis.scatter(
            [tree.x for tree in detected_trees],
            [tree.y for tree in detected_trees],
            s=18.0,
            marker="^",
            color="#e63946",
            edgecolors="#660708",
            linewidths=0.4,
            label=f"Tree tops ({len(detected_trees)})",
        )
        axis.legend(loc="upper right", fontsize=8)
    axis.set_title("Canopy Height Model")
    axis.set_xlabel("X (meters)")
    axis.set_ylabel("Y (meters)")
    figure.colorbar(image, ax=axis, label="Height (m)")
    figure.tight_layout()
    figure.savefig(output_file_path, dpi=figure_dpi_value)
    plt.close(figure)


def save_dbh_histogram_png(
    output_file_path: Path,
    dbh_centimeters: np.ndarray,
    figure_dpi_value: int,
) -> None:
    figure, axis = plt.subplots(figsize=(7.0, 4.8))
    axis.hist(dbh_centimeters, bins=40, color="#2a9d8f", alpha=0.9)
    axis.set_title("DBH Distribution")
    axis.set_xlabel("DBH (cm)")
    axis.set_ylabel("Tree Count")
    axis.grid(alpha=0.25)
    figure.tight_layout()
    figure.savefig(output_file_path, dpi=figure_dpi_value)
    plt.close(figure)


def save_circle_fit_examples_png(
    output_file_path: Path,
    measurements: list[TreeMeasurement],
    figure_dpi_value: int,
) -> None:
    number_of_panels = len(measurements)
    number_of_columns = min(4, number_of_panels)
    number_of_rows = int(np.ceil(number_of_panels / number_of_columns))
    figure, axes = plt.subplots(
        number_of_rows,
        number_of_columns,
        figsize=(3.2 * number_of_columns, 3.2 * number_of_rows),
        squeeze=False,
    )

    for axis, measurement in zip(axes.ravel(), measurements):
        stem_slice = measurement.stem_slice
        circle_fit = measurement.circle_fit
        axis.scatter(
            stem_slice.x_coordinates,
            stem_slice.y_coordinates,
            s=4.0,
            color="#457b9d",
            alpha=0.8,
            linewidths=0.0,
        )
        axis.add_patch(
            Circle(
                (circle_fit.center_x, circle_fit.center_y),
                circle_fit.radius,
                fill=False,
                color="#e63946",
                linewidth=1.2,
            )
        )
        axis.set_title(
            f"tree {measurement.record.tree_id}: "
            f"{measurement.record.dbh_cm:.1f} cm, {circle_fit.inlier_count} inliers",
            fontsize=8,
        )
        axis.set_aspect("equal", adjustable="datalim")
        axis.tick_params(labelsize=6)

    for axis in axes.ravel()[number_of_panels:]:
        axis.axis("off")

    figure.tight_layout()
    figure.savefig(output_file_path, dpi=figure_dpi_value)
    plt.close(figure)


def save_diagnostic_plots(
    diagnostics_directory_path: Path,
    result: PipelineResult,
    visualization_parameters: VisualizationOutputsParameters,
) -> None:
    diagnostics_directory_path.mkdir(parents=True, exist_ok=True)
    figure_dpi_value = int(visualization_parameters.figure_dpi_value)
    figure_colormap_name = visualization_parameters.figure_colormap_name

    save_terrain_elevation_grid_png(
        diagnostics_directory_path / "terrain_elevation_grid.png",
        result.terrain.elevation_grid,
        result.terrain.grid_layout,
        figure_dpi_value,
        figure_colormap_name,
    )
    save_canopy_height_with_tree_tops_png(
        diagnostics_directory_path / "canopy_height_tree_tops.png",
        result.canopy.height_grid,
        result.canopy.grid_layout,
        result.detected_trees,
        figure_dpi_value,
        figure_colormap_name,
    )

    fitted_measurements = [
        measurement for measurement in result.measurements if measurement.circle_fit is not None
    ]
    if not fitted_measurements:
        return

    save_dbh_histogram_png(
        diagnostics_directory_path / "dbh_histogram.png",
        np.asarray([measurement.record.dbh_cm for measurement in fitted_measurements], dtype=np.float64),
        figure_dpi_value,
    )
    fit_examples_count = int(visualization_parameters.fit_examples_count)
    if fit_examples_count > 0:
        save_circle_fit_examples_png(
            diagnostics_directory_path / "circle_fit_examples.png",
            fitted_measurements[:fit_examples_count],
            figure_dpi_value,
        )
