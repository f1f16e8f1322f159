from collections.abc import Iterable
from dataclasses import dataclass

from lidar_tree_carbon.errors import InputError

SOUTHERN_PINE = dict(a=0.0509, b=2.5433)

ALLOMETRIC_PRESETS = {
    "southern_pine": SOUTHERN_PINE,
}


@dataclass
class BiomassModelParameters:
    """``agb_kg = a * dbh_cm ** b``; ``a``/``b`` override the preset when given."""

    preset_name: str = "southern_pine"
    a: float | None = None
    b: float | None = None
    carbon_fraction: float = 0.5
    lower_bound_multiplier: float = 0.8
    upper_bound_multiplier: float = 1.2
    maximum_dbh_centimeters: float = 90.0
    exclude_above_maximum_dbh: bool = True


@dataclass(frozen=True)
class AllometricModel:
    a: float
    b: float
    carbon_fraction: float
    lower_bound_multiplier: float
    upper_bound_multiplier: float
    maximum_dbh_centimeters: float
    exclude_above_maximum_dbh: bool


@dataclass(frozen=True)
class BiomassEstimate:
    dbh_cm: float
    agb_kg: float
    carbon_kg: float
    carbon_min: float
    carbon_max: float


@dataclass(frozen=True)
class StandCarbonSummary:
    tree_count: int
    fitted_tree_count: int
    aggregated_tree_count: int
    dbh_ceiling_excluded_count: int
    total_agb_kg: float
    total_carbon_kg: float
    total_carbon_min_kg: float
    total_carbon_max_kg: float


def build_allometric_model(parameters: BiomassModelParameters) -> AllometricModel:
    try:
        preset = ALLOMETRIC_PRESETS[parameters.preset_name]
    except KeyError:
        raise InputError(
            f"Unknown allometric preset_name: {parameters.preset_name} "
            f"(available: {', '.join(sorted(ALLOMETRIC_PRESETS))})"
        ) from None

    coefficient_a = preset["a"] if parameters.a is None else float(parameters.a)
    coefficient_b = preset["b"] if parameters.b is None else float(parameters.b)
    if coefficient_a <= 0.0:
        raise InputError(f"Allometric coefficient a must be positive: {coefficient_a}")
    if float(parameters.lower_bound_multiplier) > float(parameters.upper_bound_multiplier):
        raise InputError("lower_bound_multiplier must not exceed upper_bound_multiplier")

    return AllometricModel(
        a=coefficient_a,
        b=coefficient_b,
        carbon_fraction=float(parameters.carbon_fraction),
        lower_bound_multiplier=float(parameters.lower_bound_multiplier),
        upper_bound_multiplier=float(parameters.upper_bound_multiplier),
        maximum_dbh_centimeters=float(parameters.maximum_dbh_centimeters),
        exclude_above_maximum_dbh=bool(parameters.exclude_above_maximum_dbh),
    )


def dbh_centimeters_from_radius(radius_meters: float) -> float:
    return 2.0 * radius_meters * 100.0


def is_above_dbh_ceiling(dbh_cm: float, model: AllometricModel) -> bool:
    return model.exclude_above_maximum_dbh and dbh_cm > model.maximum_dbh_centimeters


def estimate_biomass(radius_meters: float, model: AllometricModel) -> BiomassEstimate:
    if radius_meters <= 0.0:
        raise InputError(f"Stem radius must be positive: {radius_meters}")
    dbh_cm = dbh_centimeters_from_radius(radius_meters)
    agb_kg = model.a * dbh_cm**model.b
    carbon_kg = model.carbon_fraction * agb_kg
    return BiomassEstimate(
        dbh_cm=dbh_cm,
        agb_kg=agb_kg,
        carbon_kg=carbon_kg,
        carbon_min=model.lower_bound_multiplier * carbon_kg,
        carbon_max=model.upper_bound_multiplier * carbon_kg,
    )


def summarize_stand_carbon(
    tree_count: int,
    fitted_tree_count: int,
    biomass_estimates: Iterable[BiomassEstimate],
    dbh_ceiling_excluded_count: int,
) -> StandCarbonSummary:
    estimates = list(biomass_estimates)
    return StandCarbonSummary(
        tree_count=int(tree_count),
        fitted_tree_count=int(fitted_tree_count),
        aggregated_tree_count=len(estimates),
        dbh_ceiling_excluded_count=int(dbh_ceiling_excluded_count),
        total_agb_kg=float(sum(estimate.agb_kg for estimate in estimates)),
        total_carbon_kg=float(sum(estimate.carbon_kg for estimate in estimates)),
        total_carbon_min_kg=float(sum(estimate.carbon_min for estimate in estimates)),
        total_carbon_max_kg=float(sum(estimate.carbon_max for estimate in estimates)),
    )
