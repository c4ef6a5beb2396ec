"""Composite task model: the operation contract, leaves and branches."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from .domain import (
    ChildError,
    CompositeResult,
    EngineOptions,
    OperationKind,
    OperationResult,
    OperationStatus,
    OperationType,
    ProductionContext,
    Progress,
    ValidationResult,
)
from .errors import (
    ExecutionError,
    InvalidStatusTransition,
    OperationNotPending,
    OperationOwnershipError,
    ValidationFailed,
)
from .timing import Clock

logger = logging.getLogger(__name__)

ContextLike = Union[ProductionContext, Mapping[str, Any]]
Result = Union[OperationResult, CompositeResult]

_ALLOWED_TRANSITIONS: Dict[OperationStatus, FrozenSet[OperationStatus]] = {
    OperationStatus.PENDING: frozenset(
        {OperationStatus.IN_PROGRESS, OperationStatus.CANCELLED}
    ),
    OperationStatus.IN_PROGRESS: frozenset(
        {
            OperationStatus.COMPLETED,
            OperationStatus.COMPLETED_PARTIAL,
            OperationStatus.FAILED,
        }
    ),
}

_FINISHING_STATUSES = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.COMPLETED_PARTIAL, OperationStatus.FAILED}
)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values, like a cash register."""

    return int(math.floor(value + 0.5))


class Operation(ABC):
    """A unit of production work, atomic or composed of sub-operations."""

    kind: OperationKind

    def __init__(
        self,
        name: str,
        description: str = "",
        *,
        clock: Optional[Clock] = None,
        options: Optional[EngineOptions] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.id: Optional[str] = None
        self.created_at: Optional[datetime] = None
        self.operation_type: Optional[OperationType] = None
        self.status = OperationStatus.PENDING
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.notes = ""
        self.parent: Optional[CompositeOperation] = None
        self.clock = clock or Clock()
        self.options = options or EngineOptions()
        self._estimated_minutes: int = 0
        self._estimated_cost: float = 0.0

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} status={self.status.value}>"

    # ------------------------------------------------------------------
    # Estimates
    # ------------------------------------------------------------------
    def estimated_minutes(self) -> int:
        return self._estimated_minutes

    def estimated_cost(self) -> float:
        return self._estimated_cost

    def real_cost(self, context: ContextLike) -> float:
        return self.estimated_cost()

    def elapsed_minutes(self) -> int:
        if self.started_at is None:
            return 0
        end = self.finished_at or self.clock.now()
        return round_half_up((end - self.started_at).total_seconds() / 60.0)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    @abstractmethod
    def validate(self, context: ContextLike) -> ValidationResult:
        """Check whether the operation can run against ``context``."""

    @abstractmethod
    async def execute(self, context: ContextLike) -> Result:
        """Run the operation. Callers validate immediately beforehand."""

    def project(self, context: ContextLike) -> ProductionContext:
        """Return the context this operation would hand to its successor."""

        return ProductionContext.coerce(context)

    def set_status(self, new_status: OperationStatus, note: str = "") -> None:
        new_status = OperationStatus(new_status)
        if new_status != self.status:
            allowed = _ALLOWED_TRANSITIONS.get(self.status, frozenset())
            if new_status not in allowed:
                raise InvalidStatusTransition(
                    f"{self.name}: cannot move from {self.status.value} to {new_status.value}"
                )
        self.status = new_status
        self.notes = note
        if new_status is OperationStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = self.clock.now()
        if new_status in _FINISHING_STATUSES and self.finished_at is None:
            self.finished_at = self.clock.now()

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "kind": self.kind.value,
            "operation_type": self.operation_type.value if self.operation_type else None,
            "status": self.status.value,
            "estimated_minutes": self.estimated_minutes(),
            "estimated_cost": round(self.estimated_cost(), 2),
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "elapsed_minutes": self.elapsed_minutes(),
            "notes": self.notes,
        }

    def _status_errors(self) -> List[str]:
        if self.status is OperationStatus.IN_PROGRESS:
            return ["Operation is already in progress"]
        if self.status is OperationStatus.COMPLETED:
            return ["Operation has already been completed"]
        return []

    def _ensure_pending(self) -> None:
        if self.status is not OperationStatus.PENDING:
            raise OperationNotPending(
                f"{self.name} cannot run from status {self.status.value}; "
                "schedule a new operation instead"
            )


class SimpleOperation(Operation):
    """Leaf operation performing one deterministic transformation."""

    kind = OperationKind.SIMPLE
    stage_label = "operation"
    min_grams: float = 0
    max_grams: Optional[float] = None

    def __init__(
        self,
        name: str,
        description: str,
        estimated_minutes: int,
        estimated_cost: float,
        *,
        clock: Optional[Clock] = None,
        options: Optional[EngineOptions] = None,
    ) -> None:
        super().__init__(name, description, clock=clock, options=options)
        self._estimated_minutes = estimated_minutes
        self._estimated_cost = estimated_cost

    def adjust_estimates(self, minutes: int, cost: float) -> None:
        """Replace the estimates; only valid before the leaf joins a composite."""

        self._estimated_minutes = minutes
        self._estimated_cost = cost

    def real_cost(self, context: ContextLike) -> float:
        grams = ProductionContext.coerce(context).grams or 0
        return self.estimated_cost() * (grams / 1000.0)

    def validate(self, context: ContextLike) -> ValidationResult:
        context = ProductionContext.coerce(context)
        errors: List[str] = []
        if context.grams is None or context.grams <= 0:
            errors.append("Quantity in grams must be greater than 0")
        if not context.grain_type:
            errors.append("Grain type is required")
        errors.extend(self._status_errors())
        if errors:
            return ValidationResult.from_errors(errors)
        return ValidationResult.from_errors(self.check_context(context))

    def check_context(self, context: ProductionContext) -> List[str]:
        errors: List[str] = []
        grams = context.grams or 0
        if grams < self.min_grams:
            errors.append(f"Minimum quantity for {self.stage_label}: {self.min_grams:g}g")
        if self.max_grams is not None and grams > self.max_grams:
            errors.append(f"Maximum quantity for {self.stage_label}: {self.max_grams:g}g")
        return errors

    def latency_cap(self) -> float:
        return self.options.default_latency_cap

    def processing_minutes(self, context: ProductionContext) -> float:
        return self.estimated_minutes()

    def latency_seconds(self, context: ProductionContext) -> float:
        seconds = self.processing_minutes(context) * self.options.seconds_per_minute
        return max(min(seconds, self.latency_cap()), 0.0)

    @abstractmethod
    def perform(self, context: ProductionContext) -> Any:
        """Compute the stage outcome for ``context``."""

    def project(self, context: ContextLike) -> ProductionContext:
        context = ProductionContext.coerce(context)
        return self.perform(context).advance(context)

    async def execute(self, context: ContextLike) -> OperationResult:
        context = ProductionContext.coerce(context)
        self._ensure_pending()
        self.set_status(OperationStatus.IN_PROGRESS, f"Starting {self.name}")
        try:
            await self.clock.sleep(self.latency_seconds(context))
            outcome = self.perform(context)
        except Exception as exc:
            self.set_status(OperationStatus.FAILED, f"{self.name} failed: {exc}")
            logger.warning("Operation %s failed: %s", self.name, exc)
            raise
        self.set_status(OperationStatus.COMPLETED, f"{self.name} completed")
        return OperationResult(
            success=True,
            operation=self.name,
            outcome=outcome,
            elapsed_minutes=self.elapsed_minutes(),
            real_cost=round(self.real_cost(context), 2),
        )

    def info(self) -> Dict[str, Any]:
        data = super().info()
        data["min_grams"] = self.min_grams
        data["max_grams"] = self.max_grams
        return data


class CompositeOperation(Operation):
    """Ordered group of child operations executed as one logical unit."""

    kind = OperationKind.COMPOSITE
    surcharge_minutes: int = 0
    surcharge_cost: float = 0.0

    def __init__(
        self,
        name: str,
        description: str = "",
        *,
        clock: Optional[Clock] = None,
        options: Optional[EngineOptions] = None,
    ) -> None:
        super().__init__(name, description, clock=clock, options=options)
        self._children: List[Operation] = []

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------
    def add_child(self, child: Operation) -> None:
        if not isinstance(child, Operation):
            raise TypeError("Children must be Operation instances")
        if child is self or self._has_ancestor(child):
            raise OperationOwnershipError(f"{child.name} cannot contain itself")
        if child.parent is not None:
            raise OperationOwnershipError(
                f"{child.name} already belongs to {child.parent.name}"
            )
        child.parent = self
        self._children.append(child)
        self._recalculate()

    def remove_child(self, child: Operation) -> bool:
        for index, existing in enumerate(self._children):
            if existing is child:
                del self._children[index]
                child.parent = None
                self._recalculate()
                return True
        return False

    def children(self) -> List[Operation]:
        return list(self._children)

    def _has_ancestor(self, candidate: Operation) -> bool:
        node = self.parent
        while node is not None:
            if node is candidate:
                return True
            node = node.parent
        return False

    def _recalculate(self) -> None:
        self._estimated_minutes = sum(child.estimated_minutes() for child in self._children)
        self._estimated_cost = sum(child.estimated_cost() for child in self._children)

    def estimated_minutes(self) -> int:
        return self._estimated_minutes + self.surcharge_minutes

    def estimated_cost(self) -> float:
        return self._estimated_cost + self.surcharge_cost

    def real_cost(self, context: ContextLike) -> float:
        return sum(child.real_cost(context) for child in self._children)

    # ------------------------------------------------------------------
    # Context threading and failure policy
    # ------------------------------------------------------------------
    def annotate_context(self, context: ProductionContext) -> ProductionContext:
        """Hook for composite-level markers stamped after each child."""

        return context

    def thread_context(
        self, context: ProductionContext, result: Result
    ) -> ProductionContext:
        return self.annotate_context(result.advance(context))

    def should_stop_on_error(self, child: Operation, error: BaseException) -> bool:
        return True

    def project(self, context: ContextLike) -> ProductionContext:
        current = ProductionContext.coerce(context)
        for child in self._children:
            if child.validate(current).ok:
                current = self.annotate_context(child.project(current))
        return current

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    def validate(self, context: ContextLike) -> ValidationResult:
        current = ProductionContext.coerce(context)
        errors: List[str] = []
        if not self._children:
            errors.append("Composite operation has no child operations")
        for position, child in enumerate(self._children, start=1):
            check = child.validate(current)
            if not check.ok:
                errors.append(f"Operation {position} ({child.name}): {', '.join(check.errors)}")
                continue
            current = self.annotate_context(child.project(current))
        errors.extend(self._status_errors())
        return ValidationResult.from_errors(errors)

    async def execute(self, context: ContextLike) -> CompositeResult:
        context = ProductionContext.coerce(context)
        self._ensure_pending()
        self.set_status(OperationStatus.IN_PROGRESS, f"Starting {self.name}")

        results: List[Result] = []
        errors: List[ChildError] = []
        current = context
        for index, child in enumerate(self._children):
            try:
                check = child.validate(current)
                if not check.ok:
                    raise ValidationFailed(check.errors)
                result = await child.execute(current)
                if isinstance(result, CompositeResult) and result.status is OperationStatus.FAILED:
                    raise ExecutionError(
                        f"{child.name} failed: " + "; ".join(error.error for error in result.errors)
                    )
            except Exception as exc:
                errors.append(ChildError(child_name=child.name, error=str(exc), index=index))
                logger.warning("%s: child %s failed: %s", self.name, child.name, exc)
                if self.should_stop_on_error(child, exc):
                    logger.info("%s: stopping after failure of %s", self.name, child.name)
                    break
                continue
            results.append(result)
            current = self.thread_context(current, result)

        total = len(self._children)
        if not errors:
            status = OperationStatus.COMPLETED
            note = f"All {total} operations completed"
        elif results:
            status = OperationStatus.COMPLETED_PARTIAL
            note = f"{len(results)}/{total} operations completed"
        else:
            status = OperationStatus.FAILED
            note = "All operations failed"
        self.set_status(status, note)

        return CompositeResult(
            success=not errors,
            operation=self.name,
            status=status,
            total=total,
            succeeded=len(results),
            failed=len(errors),
            results=tuple(results),
            errors=tuple(errors),
            elapsed_minutes=self.elapsed_minutes(),
            real_cost=round(self.real_cost(context), 2),
            final_context=current,
        )

    def progress(self) -> Progress:
        total = len(self._children)
        completed = sum(1 for child in self._children if child.status.is_success)
        in_progress = sum(
            1 for child in self._children if child.status is OperationStatus.IN_PROGRESS
        )
        failed = sum(
            1
            for child in self._children
            if child.status in {OperationStatus.FAILED, OperationStatus.CANCELLED}
        )
        return Progress(
            total=total,
            completed=completed,
            in_progress=in_progress,
            failed=failed,
            pending=total - completed - in_progress - failed,
            percent_complete=round_half_up(completed / total * 100) if total else 0,
        )

    def info(self) -> Dict[str, Any]:
        data = super().info()
        data["child_count"] = len(self._children)
        data["children"] = [child.info() for child in self._children]
        data["progress"] = self.progress()
        return data


__all__ = [
    "Operation",
    "SimpleOperation",
    "CompositeOperation",
    "ContextLike",
    "round_half_up",
]
