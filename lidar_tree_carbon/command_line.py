import argparse
from pathlib import Path

from lidar_tree_carbon.pipeline_runner import run_pipeline
from lidar_tree_carbon.progress_logging import configure_console_logging


def parse_arguments(argument_list: list[str] | None = None) -> argparse.Namespace:
    argument_parser = argparse.ArgumentParser(
        description="Per-tree DBH, biomass and carbon from an airborne LiDAR point cloud"
    )
    argument_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config YAML file",
    )
    return argument_parser.parse_args(argument_list)


def main(argument_list: list[str] | None = None) -> None:
    arguments = parse_arguments(argument_list)
    configure_console_logging()
    run_pipeline(arguments.config)
