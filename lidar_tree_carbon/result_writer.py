from __future__ import annotations

import csv
import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from lidar_tree_carbon.dbh_estimator.estimator import TreeRecord
from lidar_tree_carbon.raster_grid import GridLayout

if TYPE_CHECKING:
    from lidar_tree_carbon.pipeline_runner import (
        OutputFilesParameters,
        PipelineParameters,
        PipelineResult,
    )
    from lidar_tree_carbon.point_cloud_reader import InputDataParameters

TREE_RECORD_COLUMNS = [field.name for field in fields(TreeRecord)]


def create_run_directory(root_directory: Path) -> Path:
    root_directory.mkdir(parents=True, exist_ok=True)
    run_indices = []
    for path in root_directory.iterdir():
        if not path.is_dir() or not path.name.startswith("run_"):
            continue
        suffix = path.name.removeprefix("run_")
        if suffix.isdigit():
            run_indices.append(int(suffix))
    next_index = (max(run_indices) + 1) if run_indices else 1
    run_directory = root_directory / f"run_{next_index:03d}"
    run_directory.mkdir(parents=True, exist_ok=False)
    return run_directory


def tree_record_to_row(record: TreeRecord) -> dict:
    row = asdict(record)
    for key, value in row.items():
        if isinstance(value, float):
            row[key] = round(value, 4)
    return row


def save_tree_records_csv(output_file_path: Path, tree_records: list[TreeRecord]) -> None:
    with output_file_path.open("w", encoding="utf-8", newline="") as file:
        writer = csv.DictWriter(file, fieldnames=TREE_RECORD_COLUMNS)
        writer.writeheader()
        for record in tree_records:
            row = tree_record_to_row(record)
            writer.writerow({key: "" if value is None else value for key, value in row.items()})


def save_surface_grid_npz(output_file_path: Path, grid: np.ndarray, grid_layout: GridLayout) -> None:
    np.savez_compressed(
        output_file_path,
        grid=grid,
        x_origin=grid_layout.x_origin,
        y_origin=grid_layout.y_origin,
        cell_size_meters=grid_layout.cell_size_meters,
    )


def build_report_payload(
    result: PipelineResult,
    parameters: PipelineParameters,
    input_parameters: InputDataParameters,
) -> dict:
    return {
        "input_point_cloud_file_path": str(input_parameters.point_cloud_file_path),
        "crs": input_parameters.crs,
        "tree_count": len(result.tree_records),
        "parameters": asdict(parameters),
        "processing_summary": asdict(result.processing_summary),
        "stand_carbon_summary": asdict(result.stand_summary),
        "trees": [tree_record_to_row(record) for record in result.tree_records],
    }


def save_pipeline_outputs(
    run_directory: Path,
    result: PipelineResult,
    parameters: PipelineParameters,
    input_parameters: InputDataParameters,
    output_parameters: OutputFilesParameters,
) -> None:
    save_tree_records_csv(run_directory / output_parameters.tree_table_filename, result.tree_records)

    with (run_directory / output_parameters.report_json_filename).open("w", encoding="utf-8") as file:
        json.dump(build_report_payload(result, parameters, input_parameters), file, indent=2)

    if output_parameters.save_surface_grids:
        save_surface_grid_npz(
            run_directory / "terrain_elevation_grid.npz",
            result.terrain.elevation_grid,
            result.terrain.grid_layout,
        )
        save_surface_grid_npz(
            run_directory / "canopy_height_grid.npz",
            result.canopy.height_grid,
            result.canopy.grid_layout,
        )
