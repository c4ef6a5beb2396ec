"""Exceptions raised by the production-operation engine."""

from __future__ import annotations

from typing import Iterable, List

from .repository import RecordNotFoundError


class ProductionError(RuntimeError):
    """Base exception for the operation engine."""


class ValidationFailed(ProductionError):
    """Raised when an operation rejects its context before execution."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class ExecutionError(ProductionError):
    """Raised for failures during execution or registry bookkeeping."""


class UnknownOperationType(ExecutionError, ValueError):
    """Raised when the registry has no constructor for a type tag."""

    def __init__(self, operation_type: object, valid: Iterable[str]) -> None:
        self.operation_type = operation_type
        super().__init__(
            f"Unknown operation type {operation_type!r}. "
            f"Valid types: {', '.join(valid)}"
        )


class UnknownVariant(ExecutionError, ValueError):
    """Raised when a special process is requested for an unsupported variant."""

    def __init__(self, variant: object, valid: Iterable[str]) -> None:
        self.variant = variant
        super().__init__(
            f"Unknown special process variant {variant!r}. "
            f"Valid variants: {', '.join(valid)}"
        )


class OperationNotFound(ExecutionError, RecordNotFoundError):
    """Raised when no scheduled operation exists for an id."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Operation not found: {operation_id}")


class CannotCancelRunning(ExecutionError):
    """Raised when cancelling an operation that is in progress."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Cannot cancel operation {operation_id} while it is in progress")


class AlreadyScheduled(ExecutionError):
    """Raised when the same operation instance is scheduled twice."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} is already scheduled")


class OperationNotPending(ExecutionError):
    """Raised when execute is called on an operation that already ran."""


class InvalidStatusTransition(ExecutionError):
    """Raised when a status change would leave a terminal status."""


class OperationOwnershipError(ExecutionError):
    """Raised when an operation would end up owned by two parents."""


__all__ = [
    "ProductionError",
    "ValidationFailed",
    "ExecutionError",
    "UnknownOperationType",
    "UnknownVariant",
    "OperationNotFound",
    "CannotCancelRunning",
    "AlreadyScheduled",
    "OperationNotPending",
    "InvalidStatusTransition",
    "OperationOwnershipError",
]
