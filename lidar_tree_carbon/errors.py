class TreeCarbonError(Exception):
    """Base class for every error raised by the tree carbon pipeline."""


class InputError(TreeCarbonError, ValueError):
    """Empty or malformed input (point cloud, configuration)."""


class TerrainBuildError(InputError):
    """The ground points cannot support a terrain surface."""


class OutOfBoundsError(TreeCarbonError, ValueError):
    """A terrain or canopy query fell outside the modeled extent."""


class PerTreeError(TreeCarbonError):
    """Failure local to a single tree; ``reason`` becomes the tree's status flag."""

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class InsufficientDataError(PerTreeError):
    def __init__(self, message: str, reason: str = "insufficient_points"):
        super().__init__(message, reason)


class DegenerateGeometryError(PerTreeError):
    def __init__(self, message: str, reason: str = "degenerate_geometry"):
        super().__init__(message, reason)
