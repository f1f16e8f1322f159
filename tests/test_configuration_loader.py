import pytest

from lidar_tree_carbon.configuration_loader import load_configuration, load_section_parameters
from lidar_tree_carbon.errors import InputError
from lidar_tree_carbon.noise_filter import NoiseFilterParameters
from lidar_tree_carbon.pipeline_runner import PipelineParameters, load_pipeline_parameters


def test_missing_sections_fall_back_to_defaults():
    assert load_pipeline_parameters({}) == PipelineParameters()


def test_section_values_override_defaults(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "noise_filter:\n"
        "  statistical_k_neighbors: 12\n"
        "tree_detection:\n"
        "  window_slope: 0.15\n"
        "parallel_processing:\n"
        "  n_jobs: 4\n",
        encoding="utf-8",
    )

    parameters = load_pipeline_parameters(load_configuration(config_path))

    assert parameters.noise_filter.statistical_k_neighbors == 12
    assert parameters.noise_filter.statistical_std_ratio == 2.0
    assert parameters.tree_detection.window_slope == 0.15
    assert parameters.parallel_processing.n_jobs == 4


def test_unknown_keys_are_rejected():
    with pytest.raises(InputError, match="statistical_k"):
        load_section_parameters({"noise_filter": {"statistical_k": 3}}, "noise_filter", NoiseFilterParameters)


def test_empty_configuration_file_is_an_empty_mapping(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("", encoding="utf-8")

    assert load_configuration(config_path) == {}


def test_non_mapping_configuration_is_rejected(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(InputError):
        load_configuration(config_path)
