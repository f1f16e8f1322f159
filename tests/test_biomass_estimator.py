import pytest

from lidar_tree_carbon.biomass_estimator import (
    BiomassModelParameters,
    build_allometric_model,
    estimate_biomass,
    is_above_dbh_ceiling,
    summarize_stand_carbon,
)
from lidar_tree_carbon.errors import InputError


@pytest.fixture
def southern_pine():
    return build_allometric_model(BiomassModelParameters())


def test_biomass_follows_the_power_law(southern_pine):
    estimate = estimate_biomass(0.2, southern_pine)

    assert estimate.dbh_cm == pytest.approx(40.0)
    assert estimate.agb_kg == pytest.approx(0.0509 * 40.0**2.5433)
    assert estimate.carbon_kg == 0.5 * estimate.agb_kg


def test_carbon_bounds_bracket_the_estimate(southern_pine):
    estimate = estimate_biomass(0.15, southern_pine)

    assert estimate.carbon_min == 0.8 * estimate.carbon_kg
    assert estimate.carbon_max == 1.2 * estimate.carbon_kg
    assert estimate.carbon_min <= estimate.carbon_kg <= estimate.carbon_max


def test_coefficient_overrides_replace_the_preset():
    model = build_allometric_model(BiomassModelParameters(a=0.1, b=2.0, carbon_fraction=0.47))

    estimate = estimate_biomass(0.05, model)

    assert estimate.agb_kg == pytest.approx(0.1 * 10.0**2.0)
    assert estimate.carbon_kg == pytest.approx(0.47 * 10.0)


def test_dbh_ceiling(southern_pine):
    assert is_above_dbh_ceiling(95.0, southern_pine)
    assert not is_above_dbh_ceiling(90.0, southern_pine)

    unbounded = build_allometric_model(BiomassModelParameters(exclude_above_maximum_dbh=False))
    assert not is_above_dbh_ceiling(150.0, unbounded)


def test_stand_totals_are_sums_of_tree_values(southern_pine):
    estimates = [estimate_biomass(radius, southern_pine) for radius in (0.1, 0.2, 0.3)]

    summary = summarize_stand_carbon(
        tree_count=5,
        fitted_tree_count=4,
        biomass_estimates=estimates,
        dbh_ceiling_excluded_count=1,
    )

    assert summary.aggregated_tree_count == 3
    assert summary.dbh_ceiling_excluded_count == 1
    assert summary.total_carbon_kg == pytest.approx(sum(estimate.carbon_kg for estimate in estimates))
    assert summary.total_carbon_min_kg == pytest.approx(0.8 * summary.total_carbon_kg)
    assert summary.total_carbon_max_kg == pytest.approx(1.2 * summary.total_carbon_kg)


def test_unknown_preset_is_rejected():
    with pytest.raises(InputError):
        build_allometric_model(BiomassModelParameters(preset_name="baobab"))


def test_non_positive_radius_is_rejected(southern_pine):
    with pytest.raises(InputError):
        estimate_biomass(0.0, southern_pine)
