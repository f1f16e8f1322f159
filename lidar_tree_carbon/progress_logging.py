import logging

logger = logging.getLogger("lidar_tree_carbon")


def log_progress(enable_progress_prints: bool, message: str) -> None:
    if enable_progress_prints:
        logger.info(message)


def configure_console_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
