import csv
import json

import numpy as np
import pytest

from conftest import STEM_AXIS_X, STEM_AXIS_Y, TREE_HEIGHT
from lidar_tree_carbon.command_line import main
from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.pipeline_runner import run_pipeline, run_tree_carbon_pipeline
from lidar_tree_carbon.point_cloud import PointClassification, PointCloud


def test_single_tree_scene(single_tree_point_cloud, quiet_parameters):
    result = run_tree_carbon_pipeline(single_tree_point_cloud, quiet_parameters)

    assert len(result.tree_records) == 1
    record = result.tree_records[0]
    assert record.tree_id == 1
    assert record.status == "ok"
    assert record.x == pytest.approx(STEM_AXIS_X)
    assert record.y == pytest.approx(STEM_AXIS_Y)
    assert record.height == pytest.approx(TREE_HEIGHT)
    assert record.dbh_cm == pytest.approx(40.0, rel=0.02)
    assert record.carbon_kg > 0.0
    assert record.carbon_min <= record.carbon_kg <= record.carbon_max
    assert result.stand_summary.total_carbon_kg == pytest.approx(record.carbon_kg)


def test_flat_crown_apex_off_the_trunk_still_gets_a_dbh(flat_crown_point_cloud, quiet_parameters):
    result = run_tree_carbon_pipeline(flat_crown_point_cloud, quiet_parameters)

    assert len(result.tree_records) == 1
    record = result.tree_records[0]
    assert record.height == pytest.approx(TREE_HEIGHT)
    assert record.status == "ok"
    assert record.dbh_cm == pytest.approx(40.0, rel=0.05)
    assert record.stem_center_x == pytest.approx(STEM_AXIS_X, abs=0.02)
    assert record.stem_center_y == pytest.approx(STEM_AXIS_Y, abs=0.02)


def test_processing_summary_accounts_for_every_point(single_tree_point_cloud, quiet_parameters):
    result = run_tree_carbon_pipeline(single_tree_point_cloud, quiet_parameters)
    summary = result.processing_summary

    assert summary.input_point_count == single_tree_point_cloud.point_count
    assert summary.ground_point_count == 41 * 41
    assert summary.outside_terrain_point_count == 0
    assert (
        summary.clean_point_count
        + summary.preclassified_noise_point_count
        + summary.out_of_range_point_count
        + summary.statistical_outlier_point_count
        == summary.input_point_count
    )
    assert summary.detected_tree_count == 1
    assert summary.fitted_tree_count == 1


def test_statistical_outliers_are_marked_as_noise(single_tree_point_cloud, quiet_parameters):
    result = run_tree_carbon_pipeline(single_tree_point_cloud, quiet_parameters)

    noise_count = int(
        np.count_nonzero(single_tree_point_cloud.classification == int(PointClassification.NOISE))
    )
    assert noise_count == result.processing_summary.statistical_outlier_point_count


def test_sparse_stem_gets_null_dbh(sparse_stem_point_cloud, quiet_parameters):
    result = run_tree_carbon_pipeline(sparse_stem_point_cloud, quiet_parameters)

    assert len(result.tree_records) == 1
    record = result.tree_records[0]
    assert record.status == "insufficient_slice_points"
    assert record.dbh_cm is None
    assert record.carbon_kg is None
    assert result.stand_summary.aggregated_tree_count == 0
    assert result.stand_summary.total_carbon_kg == 0.0
    assert result.processing_summary.insufficient_slice_tree_count == 1


def test_empty_point_cloud_is_rejected(quiet_parameters):
    with pytest.raises(InputError):
        run_tree_carbon_pipeline(PointCloud(x=[], y=[], z=[]), quiet_parameters)


def test_same_seed_reproduces_the_run(single_tree_point_cloud, quiet_parameters):
    first = run_tree_carbon_pipeline(single_tree_point_cloud, quiet_parameters)
    second_cloud = PointCloud(
        x=single_tree_point_cloud.x,
        y=single_tree_point_cloud.y,
        z=single_tree_point_cloud.z,
        classification=np.where(
            single_tree_point_cloud.ground_mask,
            int(PointClassification.GROUND),
            int(PointClassification.UNCLASSIFIED),
        ),
    )
    second = run_tree_carbon_pipeline(second_cloud, quiet_parameters)

    assert first.tree_records == second.tree_records


def write_scene_csv(csv_path, point_cloud: PointCloud) -> None:
    with csv_path.open("w", encoding="utf-8", newline="") as file:
        writer = csv.writer(file)
        writer.writerow(["x", "y", "z", "classification"])
        for row in zip(point_cloud.x, point_cloud.y, point_cloud.z, point_cloud.classification):
            writer.writerow([repr(float(row[0])), repr(float(row[1])), repr(float(row[2])), int(row[3])])


@pytest.fixture
def scene_config_path(tmp_path, single_tree_point_cloud):
    csv_path = tmp_path / "scene.csv"
    write_scene_csv(csv_path, single_tree_point_cloud)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "input_data:\n"
        f"  point_cloud_file_path: {csv_path.as_posix()}\n"
        "output_files:\n"
        f"  output_root_directory_path: {(tmp_path / 'output').as_posix()}\n"
        "runtime_progress_logging:\n"
        "  enable_progress_prints: false\n"
        "visualization_outputs:\n"
        "  enable_diagnostic_plots: true\n"
        "  figure_dpi_value: 50\n",
        encoding="utf-8",
    )
    return config_path


def test_run_pipeline_writes_outputs(scene_config_path, tmp_path):
    run_directory = run_pipeline(scene_config_path)

    assert run_directory == tmp_path / "output" / "run_001"
    with (run_directory / "tree_records.csv").open("r", encoding="utf-8") as file:
        rows = list(csv.DictReader(file))
    assert len(rows) == 1
    assert rows[0]["status"] == "ok"
    assert float(rows[0]["dbh_cm"]) == pytest.approx(40.0, rel=0.02)

    report = json.loads((run_directory / "tree_carbon_report.json").read_text(encoding="utf-8"))
    assert report["tree_count"] == 1
    assert report["stand_carbon_summary"]["aggregated_tree_count"] == 1
    assert report["parameters"]["biomass_model"]["preset_name"] == "southern_pine"

    assert (run_directory / "canopy_height_grid.npz").exists()
    assert (run_directory / "terrain_elevation_grid.npz").exists()
    assert (run_directory / "diagnostics" / "canopy_height_tree_tops.png").exists()
    assert (run_directory / "diagnostics" / "circle_fit_examples.png").exists()


def test_command_line_creates_numbered_runs(scene_config_path, tmp_path):
    main(["--config", str(scene_config_path)])
    main(["--config", str(scene_config_path)])

    assert (tmp_path / "output" / "run_001").is_dir()
    assert (tmp_path / "output" / "run_002").is_dir()


def test_missing_input_file_raises(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"input_data:\n  point_cloud_file_path: {(tmp_path / 'absent.laz').as_posix()}\n",
        encoding="utf-8",
    )

    with pytest.raises(FileNotFoundError):
        run_pipeline(config_path)
