"""Tests for the roasting, grinding and packaging stages."""

from datetime import date

import pytest

from coffee_production.domain import OperationStatus, ProductionContext
from coffee_production.errors import InvalidStatusTransition, OperationNotPending, ValidationFailed
from coffee_production.stages import Grinding, Packaging, Roasting, add_months, select_package


def context(**values) -> ProductionContext:
    return ProductionContext.from_mapping(values)


@pytest.mark.parametrize(
    ("grain", "grams_out", "level", "temperature"),
    [
        ("Arabico", 820, "medium", 205),
        ("Bourbon", 850, "medium_light", 200),
        ("Catuai", 790, "medium_dark", 210),
    ],
)
def test_roasting_weight_loss_by_grain(grain, grams_out, level, temperature):
    outcome = Roasting().perform(context(grams=1000, grain_type=grain))

    assert outcome.grams_out == grams_out
    assert outcome.weight_loss == 1000 - grams_out
    assert outcome.roast_level == level
    assert outcome.max_temperature == temperature
    assert outcome.quality == "excellent"


def test_roasting_unknown_grain_falls_back_to_first_profile():
    outcome = Roasting().perform(context(grams=500, grain_type="Robusta"))

    assert outcome.roast_level == "medium"
    assert outcome.grams_out == 410


def test_roasting_validation_messages():
    roasting = Roasting()

    assert roasting.validate(context(grams=50, grain_type="Arabico")).errors == (
        "Minimum quantity for roasting: 100g",
    )
    assert roasting.validate(context(grams=6000, grain_type="Arabico")).errors == (
        "Maximum quantity for roasting: 5000g",
    )
    invalid = roasting.validate(context(grams=500, grain_type="Robusta"))
    assert invalid.errors == ("Invalid grain type. Valid types: Arabico, Bourbon, Catuai",)
    wrong_stage = roasting.validate(
        {"cantidadGramos": 500, "tipoGrano": "Arabico", "estadoAnterior": "tostado"}
    )
    assert wrong_stage.errors == ("Roasting requires beans in the harvest stage",)


def test_required_fields_are_reported_before_bounds():
    result = Roasting().validate({})

    assert not result.ok
    assert result.errors == ("Quantity in grams must be greater than 0", "Grain type is required")


@pytest.mark.parametrize("grams", ["NaN", "inf", "-Infinity", float("nan"), float("inf")])
def test_non_finite_quantities_are_rejected(grams):
    result = Roasting().validate({"cantidadGramos": grams, "tipoGrano": "Arabico"})

    assert not result.ok
    assert result.errors == ("Quantity in grams must be greater than 0",)


def test_unreadable_expiry_date_is_a_validation_error():
    with pytest.raises(ValidationFailed) as excinfo:
        context(grams=600, grain_type="Arabico", fechaVencimiento="next-year")

    assert excinfo.value.errors == ["Invalid expiry date: next-year"]


def test_grinding_uses_half_up_rounding():
    outcome = Grinding().perform(context(grams=50, grain_type="Arabico"))

    assert outcome.weight_loss == 3
    assert outcome.grams_out == 47
    assert outcome.loss_percent == 6.0
    assert outcome.quality == "good"


@pytest.mark.parametrize(
    ("style", "grams_out", "coarseness", "uniformity"),
    [
        ("espresso", 920, "fine", "excellent"),
        ("filtro", 950, "medium", "good"),
        ("francesa", 970, "coarse", "regular"),
        ("chemex", 960, "medium_coarse", "good"),
        ("v60", 940, "medium_fine", "good"),
    ],
)
def test_grinding_profiles(style, grams_out, coarseness, uniformity):
    outcome = Grinding().perform(
        context(grams=1000, grain_type="Arabico", tipoPreparacion=style)
    )

    assert outcome.grams_out == grams_out
    assert outcome.coarseness == coarseness
    assert outcome.uniformity == uniformity


def test_grinding_rejects_unknown_style_and_wrong_stage():
    grinding = Grinding()

    result = grinding.validate(
        context(grams=500, grain_type="Arabico", prep_style="turkish", previous_stage="harvest")
    )

    assert result.errors == (
        "Invalid preparation style. Valid styles: espresso, filter, french_press, chemex, v60",
        "Coffee must be roasted before grinding",
    )


@pytest.mark.parametrize(
    ("grams", "package_type", "count"),
    [
        (250, "bolsa_pequena", 1),
        (501, "bolsa_mediana", 2),
        (600, "bolsa_mediana", 2),
        (999, "bolsa_mediana", 2),
        (1000, "bolsa_grande", 1),
        (2400, "caja_multiple", 5),
    ],
)
def test_packaging_selects_package_by_weight(grams, package_type, count):
    outcome = Packaging().perform(context(grams=grams, grain_type="Arabico"))

    assert outcome.package_type == package_type
    assert outcome.package_count == count
    assert outcome.grams_out == grams


def test_packaging_quality_depends_on_material_and_count():
    assert Packaging().perform(context(grams=600, grain_type="Arabico")).quality == "excellent"
    assert Packaging().perform(context(grams=8000, grain_type="Arabico")).quality == "regular"


def test_packaging_requires_ground_coffee():
    packaging = Packaging()

    assert packaging.validate(context(grams=600, grain_type="Arabico")).errors == (
        "Coffee must be ground before packaging",
    )
    assert packaging.validate(
        {"cantidadGramos": 600, "tipoGrano": "Arabico", "estadoAnterior": "molido"}
    ).ok


def test_packaging_expiry_defaults_to_shelf_life(clock):
    outcome = Packaging(clock=clock).perform(context(grams=600, grain_type="Arabico"))
    supplied = Packaging(clock=clock).perform(
        context(grams=600, grain_type="Arabico", fechaVencimiento="2025-03-31")
    )

    assert outcome.expiry_date == date(2024, 7, 1)
    assert supplied.expiry_date == date(2025, 3, 31)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 8, 31), 6) == date(2025, 2, 28)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


def test_select_package_breakpoints():
    assert select_package(100).package_type == "bolsa_pequena"
    assert select_package(1001).package_type == "caja_multiple"


@pytest.mark.asyncio
async def test_leaf_execution_sets_timestamps_and_cost(clock):
    roasting = Roasting(clock=clock)
    start = clock.now()

    result = await roasting.execute(context(grams=500, grain_type="Arabico"))

    assert result.success
    assert result.real_cost == 7.5
    assert result.outcome.grams_out == 410
    assert roasting.status is OperationStatus.COMPLETED
    assert roasting.started_at == start
    assert roasting.finished_at > start
    assert clock.sleeps == [5.0]


@pytest.mark.asyncio
async def test_latency_is_capped_per_stage(clock):
    grinding = Grinding(clock=clock)
    packaging = Packaging(clock=clock)

    await grinding.execute(context(grams=500, grain_type="Arabico", prep_style="french_press"))
    await packaging.execute(context(grams=500, grain_type="Arabico"))

    assert clock.sleeps == [3.0, 4.0]


@pytest.mark.asyncio
async def test_leaf_cannot_run_twice(clock):
    roasting = Roasting(clock=clock)
    await roasting.execute(context(grams=500, grain_type="Arabico"))

    with pytest.raises(OperationNotPending):
        await roasting.execute(context(grams=500, grain_type="Arabico"))
    assert roasting.validate(context(grams=500, grain_type="Arabico")).errors == (
        "Operation has already been completed",
    )


@pytest.mark.asyncio
async def test_leaf_failure_marks_operation_failed(clock, monkeypatch):
    roasting = Roasting(clock=clock)

    def broken(ctx):
        raise RuntimeError("Drum temperature sensor offline")

    monkeypatch.setattr(roasting, "perform", broken)

    with pytest.raises(RuntimeError, match="sensor offline"):
        await roasting.execute(context(grams=500, grain_type="Arabico"))
    assert roasting.status is OperationStatus.FAILED
    assert roasting.finished_at is not None


def test_terminal_status_cannot_be_left():
    roasting = Roasting()
    roasting.set_status(OperationStatus.IN_PROGRESS)
    roasting.set_status(OperationStatus.COMPLETED)
    finished = roasting.finished_at

    with pytest.raises(InvalidStatusTransition):
        roasting.set_status(OperationStatus.PENDING)
    assert roasting.finished_at == finished
