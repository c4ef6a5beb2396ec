"""Composite production-operation engine for a coffee roastery.

This package provides the operation model (atomic stages and composite
workflows), the roasting, grinding and packaging stages, and a registry
that schedules operations, runs them and keeps their history.
"""

from .domain import (
    EngineOptions,
    OperationKind,
    OperationStatus,
    OperationType,
    ProductionContext,
    SpecialVariant,
)
from .errors import ProductionError, ValidationFailed
from .operations import CompositeOperation, Operation, SimpleOperation
from .services import OperationRegistry
from .stages import Grinding, Packaging, Roasting
from .timing import Clock, ManualClock
from .workflows import FullBatch, SpecialProcess

__all__ = [
    "EngineOptions",
    "OperationKind",
    "OperationStatus",
    "OperationType",
    "ProductionContext",
    "SpecialVariant",
    "ProductionError",
    "ValidationFailed",
    "Operation",
    "SimpleOperation",
    "CompositeOperation",
    "Roasting",
    "Grinding",
    "Packaging",
    "FullBatch",
    "SpecialProcess",
    "OperationRegistry",
    "Clock",
    "ManualClock",
]
