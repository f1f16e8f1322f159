from dataclasses import fields
from pathlib import Path
from typing import TypeVar

import yaml

from lidar_tree_carbon.errors import InputError

ParametersT = TypeVar("ParametersT")


def load_configuration(config_path: Path) -> dict:
    with config_path.open("r", encoding="utf-8") as file:
        configuration = yaml.safe_load(file)
    if configuration is None:
        return {}
    if not isinstance(configuration, dict):
        raise InputError(f"Configuration root must be a mapping: {config_path}")
    return configuration


def load_section_parameters(
    configuration: dict,
    section_name: str,
    parameters_class: type[ParametersT],
) -> ParametersT:
    section = configuration.get(section_name) or {}
    if not isinstance(section, dict):
        raise InputError(f"Configuration section '{section_name}' must be a mapping")

    defaults = parameters_class()
    parameter_values = {field.name: getattr(defaults, field.name) for field in fields(defaults)}
    unknown_keys = sorted(set(section) - set(parameter_values))
    if unknown_keys:
        raise InputError(
            f"Unknown keys in configuration section '{section_name}': {', '.join(unknown_keys)}"
        )
    parameter_values.update(section)
    return parameters_class(**parameter_values)
