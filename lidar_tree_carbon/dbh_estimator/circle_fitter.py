from dataclasses import dataclass

import numpy as np
from scipy.optimize import least_squares

from lidar_tree_carbon.errors import DegenerateGeometryError, InputError, InsufficientDataError


@dataclass
class CircleFitParameters:
    ransac_iterations: int = 500
    inlier_tolerance_meters: float = 0.03
    minimum_inlier_ratio: float = 0.30
    minimum_radius_meters: float = 0.02
    maximum_radius_meters: float = 2.0
    collinearity_tolerance: float = 1e-10
    refinement_max_evaluations: int = 250


@dataclass(frozen=True)
class CircleFit:
    tree_id: int | None
    center_x: float
    center_y: float
    radius: float
    inlier_count: int
    inlier_ratio: float
    fit_rmse_meters: float


def circle_from_three_points(
    x1: float,
    y1: float,
    x2: float,
    y2: float,
    x3: float,
    y3: float,
    collinearity_tolerance: float = 1e-10,
) -> tuple[float, float, float] | None:
    """Circumscribed circle of a triangle, None when the points are collinear."""
    determinant = (x1 - x2) * (y2 - y3) - (x2 - x3) * (y1 - y2)
    if abs(determinant) < collinearity_tolerance:
        return None

    a_term = x1**2 + y1**2
    b_term = x2**2 + y2**2
    c_term = x3**2 + y3**2
    center_x = (a_term * (y2 - y3) + b_term * (y3 - y1) + c_term * (y1 - y2)) / (
        2.0 * determinant
    )
    center_y = (a_term * (x3 - x2) + b_term * (x1 - x3) + c_term * (x2 - x1)) / (
        2.0 * determinant
    )
    radius = float(np.hypot(x1 - center_x, y1 - center_y))
    if not np.isfinite(radius):
        return None
    return float(center_x), float(center_y), radius


def _refine_circle_on_inliers(
    inlier_x: np.ndarray,
    inlier_y: np.ndarray,
    initial_circle: tuple[float, float, float],
    parameters: CircleFitParameters,
) -> tuple[float, float, float]:
    minimum_radius = float(parameters.minimum_radius_meters)
    maximum_radius = float(parameters.maximum_radius_meters)

    def objective(circle_parameters: np.ndarray) -> np.ndarray:
        center_x, center_y, radius = circle_parameters
        return np.hypot(inlier_x - center_x, inlier_y - center_y) - radius

    optimized = least_squares(
        objective,
        x0=np.asarray(initial_circle, dtype=np.float64),
        bounds=(
            np.array([-np.inf, -np.inf, minimum_radius], dtype=np.float64),
            np.array([np.inf, np.inf, maximum_radius], dtype=np.float64),
        ),
        loss="soft_l1",
        f_scale=float(parameters.inlier_tolerance_meters),
        max_nfev=int(parameters.refinement_max_evaluations),
    )
    if not optimized.success:
        raise InsufficientDataError(
            f"Least-squares refinement did not converge: {optimized.message}",
            reason="fit_not_converged",
        )
    return float(optimized.x[0]), float(optimized.x[1]), float(optimized.x[2])


def fit_circle_ransac(
    x_coordinates: np.ndarray,
    y_coordinates: np.ndarray,
    parameters: CircleFitParameters,
    random_number_generator: np.random.Generator,
    tree_id: int | None = None,
) -> CircleFit:
    """Robust circle fit: best 3-point RANSAC model, then least squares on its inliers.

    The sampling draws only from ``random_number_generator``, so a seeded
    generator reproduces the fit exactly. The fit runs on coordinates relative
    to the slice mean, which keeps projected (UTM-scale) inputs well conditioned.
    """
    x_coordinates = np.asarray(x_coordinates, dtype=np.float64)
    y_coordinates = np.asarray(y_coordinates, dtype=np.float64)
    point_count = x_coordinates.size
    if point_count < 3:
        raise InsufficientDataError(
            f"Circle fit needs at least 3 points, got {point_count}",
            reason="insufficient_points",
        )
    if int(parameters.ransac_iterations) < 1:
        raise InputError(f"ransac_iterations must be at least 1: {parameters.ransac_iterations}")

    minimum_radius = float(parameters.minimum_radius_meters)
    maximum_radius = float(parameters.maximum_radius_meters)
    inlier_tolerance = float(parameters.inlier_tolerance_meters)

    x_offset = float(np.mean(x_coordinates))
    y_offset = float(np.mean(y_coordinates))
    x_coordinates = x_coordinates - x_offset
    y_coordinates = y_coordinates - y_offset

    best_inlier_mask = None
    best_circle = None
    best_inlier_count = -1
    non_degenerate_sample_count = 0

    for _ in range(int(parameters.ransac_iterations)):
        sampled_index = random_number_generator.choice(point_count, size=3, replace=False)
        model = circle_from_three_points(
            float(x_coordinates[sampled_index[0]]),
            float(y_coordinates[sampled_index[0]]),
            float(x_coordinates[sampled_index[1]]),
            float(y_coordinates[sampled_index[1]]),
            float(x_coordinates[sampled_index[2]]),
            float(y_coordinates[sampled_index[2]]),
            float(parameters.collinearity_tolerance),
        )
        if model is None:
            continue
        non_degenerate_sample_count += 1
        center_x, center_y, radius = model
        if radius < minimum_radius or radius > maximum_radius:
            continue

        residual = np.abs(np.hypot(x_coordinates - center_x, y_coordinates - center_y) - radius)
        inlier_mask = residual <= inlier_tolerance
        inlier_count = int(np.count_nonzero(inlier_mask))
        if inlier_count > best_inlier_count:
            best_inlier_count = inlier_count
            best_inlier_mask = inlier_mask
            best_circle = model

    if non_degenerate_sample_count == 0:
        raise DegenerateGeometryError(
            f"All {int(parameters.ransac_iterations)} sampled triples were collinear"
        )
    if best_inlier_mask is None:
        raise InsufficientDataError(
            f"No sampled circle has a radius within [{minimum_radius}, {maximum_radius}] m",
            reason="implausible_radius",
        )

    if best_inlier_count / point_count < float(parameters.minimum_inlier_ratio):
        raise InsufficientDataError(
            f"Best inlier ratio {best_inlier_count / point_count:.3f} is below "
            f"{float(parameters.minimum_inlier_ratio):.3f}",
            reason="insufficient_inliers",
        )

    center_x, center_y, radius = _refine_circle_on_inliers(
        x_coordinates[best_inlier_mask],
        y_coordinates[best_inlier_mask],
        best_circle,
        parameters,
    )
    if radius <= 0.0:
        raise DegenerateGeometryError(f"Refined radius is not positive: {radius}")
    if radius < minimum_radius or radius > maximum_radius:
        raise InsufficientDataError(
            f"Refined radius {radius:.4f} m is outside [{minimum_radius}, {maximum_radius}] m",
            reason="implausible_radius",
        )

    residual = np.hypot(x_coordinates - center_x, y_coordinates - center_y) - radius
    inlier_mask = np.abs(residual) <= inlier_tolerance
    inlier_count = int(np.count_nonzero(inlier_mask))
    inlier_ratio = float(inlier_count / point_count)
    if inlier_ratio < float(parameters.minimum_inlier_ratio):
        raise InsufficientDataError(
            f"Refined inlier ratio {inlier_ratio:.3f} is below "
            f"{float(parameters.minimum_inlier_ratio):.3f}",
            reason="insufficient_inliers",
        )

    return CircleFit(
        tree_id=tree_id,
        center_x=center_x + x_offset,
        center_y=center_y + y_offset,
        radius=radius,
        inlier_count=inlier_count,
        inlier_ratio=inlier_ratio,
        fit_rmse_meters=float(np.sqrt(np.mean(np.square(residual[inlier_mask])))),
    )
