"""Shared fixtures for the operation engine tests."""

import pytest

from coffee_production.services import OperationRegistry
from coffee_production.timing import ManualClock


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def registry(clock: ManualClock) -> OperationRegistry:
    return OperationRegistry(clock=clock)


@pytest.fixture
def harvest_context() -> dict:
    return {"cantidadGramos": 1000, "tipoGrano": "Arabico", "region": "Huila"}
