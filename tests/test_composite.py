"""Tests for the generic composite operation."""

import pytest

from coffee_production.domain import OperationStatus
from coffee_production.errors import OperationOwnershipError
from coffee_production.operations import CompositeOperation
from coffee_production.stages import Grinding, Packaging, Roasting


def pipeline(clock=None) -> CompositeOperation:
    composite = CompositeOperation("Pipeline", clock=clock)
    for stage in (Roasting, Grinding, Packaging):
        composite.add_child(stage(clock=clock))
    return composite


def test_estimates_follow_children():
    composite = CompositeOperation("Pipeline")
    roasting, grinding = Roasting(), Grinding()

    composite.add_child(roasting)
    composite.add_child(grinding)
    assert composite.estimated_minutes() == 45
    assert composite.estimated_cost() == 23.0

    assert composite.remove_child(grinding) is True
    assert grinding.parent is None
    assert composite.estimated_minutes() == 30
    assert composite.estimated_cost() == 15.0
    assert composite.remove_child(grinding) is False


def test_empty_composite_does_not_validate():
    result = CompositeOperation("Empty").validate({"cantidadGramos": 500, "tipoGrano": "Arabico"})

    assert result.errors == ("Composite operation has no child operations",)


def test_children_have_a_single_owner():
    first, second = CompositeOperation("First"), CompositeOperation("Second")
    roasting = Roasting()
    first.add_child(roasting)

    with pytest.raises(OperationOwnershipError):
        second.add_child(roasting)
    with pytest.raises(OperationOwnershipError):
        first.add_child(first)

    second.add_child(first)
    with pytest.raises(OperationOwnershipError):
        first.add_child(second)
    with pytest.raises(TypeError):
        first.add_child("roasting")


def test_validation_threads_context_and_prefixes_errors():
    composite = pipeline()

    assert composite.validate({"cantidadGramos": 1000, "tipoGrano": "Arabico"}).ok

    result = composite.validate({"cantidadGramos": 100, "tipoGrano": "Arabico"})
    assert result.errors == (
        "Operation 3 (Packaging): Minimum quantity for packaging: 100g",
    )


@pytest.mark.asyncio
async def test_execute_threads_context_between_children(clock):
    composite = pipeline(clock)

    result = await composite.execute({"cantidadGramos": 1000, "tipoGrano": "Arabico"})

    assert result.status is OperationStatus.COMPLETED
    assert (result.total, result.succeeded, result.failed) == (3, 3, 0)
    assert [step.outcome.grams_out for step in result.results] == [820, 779, 779]
    final = result.final_context
    assert final.grams == 779
    assert final.previous_stage == "packaged"
    assert final.package_type == "bolsa_mediana"
    assert final.package_count == 2
    assert final.roast_quality == "excellent"
    assert final.grind_quality == "excellent"
    assert result.real_cost == 35.0
    assert composite.progress().percent_complete == 100


@pytest.mark.asyncio
async def test_generic_composite_stops_on_any_error(clock):
    composite = pipeline(clock)

    result = await composite.execute({"cantidadGramos": 50, "tipoGrano": "Arabico"})

    assert result.status is OperationStatus.FAILED
    assert result.results == ()
    assert len(result.errors) == 1
    assert result.errors[0].index == 0
    assert result.errors[0].child_name == "Roasting"
    assert "Minimum quantity for roasting" in result.errors[0].error
    progress = composite.progress()
    assert (progress.completed, progress.failed, progress.pending) == (0, 0, 3)


@pytest.mark.asyncio
async def test_failed_nested_composite_counts_as_child_error(clock, monkeypatch):
    inner = pipeline(clock)
    outer = CompositeOperation("Plant", clock=clock)
    outer.add_child(inner)

    async def offline(ctx):
        raise RuntimeError("Drum temperature sensor offline")

    monkeypatch.setattr(inner.children()[0], "execute", offline)

    result = await outer.execute({"cantidadGramos": 600, "tipoGrano": "Arabico"})

    assert inner.status is OperationStatus.FAILED
    assert result.status is OperationStatus.FAILED
    assert result.results == ()
    assert result.errors[0].child_name == "Pipeline"
    assert "Drum temperature sensor offline" in result.errors[0].error


def test_in_progress_composite_does_not_validate():
    composite = pipeline()
    composite.set_status(OperationStatus.IN_PROGRESS)

    result = composite.validate({"cantidadGramos": 1000, "tipoGrano": "Arabico"})

    assert result.errors == ("Operation is already in progress",)


def test_info_reports_children_and_progress():
    info = pipeline().info()

    assert info["kind"] == "composite"
    assert info["child_count"] == 3
    assert [child["name"] for child in info["children"]] == ["Roasting", "Grinding", "Packaging"]
    assert info["progress"].pending == 3
