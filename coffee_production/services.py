"""Registry that creates, schedules, runs and records production operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from .domain import (
    EngineOptions,
    HistoryRecord,
    OperationKind,
    OperationStatus,
    OperationType,
    ProductionContext,
    Progress,
    RegistryStatistics,
    ScheduledOperation,
    ScheduleState,
    SpecialVariant,
    TypeStatistics,
)
from .errors import (
    AlreadyScheduled,
    CannotCancelRunning,
    OperationNotFound,
    OperationNotPending,
    OperationOwnershipError,
    UnknownOperationType,
    ValidationFailed,
)
from .operations import CompositeOperation, ContextLike, Operation, Result
from .repository import InMemoryRepository
from .stages import Grinding, Packaging, Roasting
from .timing import Clock
from .workflows import FullBatch, SpecialProcess

logger = logging.getLogger(__name__)

OperationFactory = Callable[[Mapping[str, Any], Clock, EngineOptions], Operation]


def _full_batch(config: Mapping[str, Any], clock: Clock, options: EngineOptions) -> Operation:
    return FullBatch(clock=clock, options=options)


def _special_process(
    config: Mapping[str, Any], clock: Clock, options: EngineOptions
) -> Operation:
    return SpecialProcess(config.get("variant"), clock=clock, options=options)


def _roast(config: Mapping[str, Any], clock: Clock, options: EngineOptions) -> Operation:
    return Roasting(clock=clock, options=options)


def _grind(config: Mapping[str, Any], clock: Clock, options: EngineOptions) -> Operation:
    return Grinding(clock=clock, options=options)


def _package(config: Mapping[str, Any], clock: Clock, options: EngineOptions) -> Operation:
    return Packaging(clock=clock, options=options)


OPERATION_FACTORIES: Dict[OperationType, OperationFactory] = {
    OperationType.FULL_BATCH: _full_batch,
    OperationType.SPECIAL_PROCESS: _special_process,
    OperationType.ROAST: _roast,
    OperationType.GRIND: _grind,
    OperationType.PACKAGE: _package,
}


def parse_operation_type(value: Union[str, OperationType]) -> OperationType:
    if isinstance(value, OperationType):
        return value
    try:
        return OperationType(str(value).strip())
    except ValueError:
        raise UnknownOperationType(value, [item.value for item in OperationType]) from None


def _as_aware(moment: datetime) -> datetime:
    # naive filter values are read as UTC
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def new_operation_id() -> str:
    return f"op_{uuid4().hex}"


@dataclass(slots=True)
class OperationTypeInfo:
    """Static metadata read from a throwaway instance of a type."""

    operation_type: OperationType
    name: str
    description: str
    kind: OperationKind
    estimated_minutes: int
    estimated_cost: float
    children: Optional[List[str]] = None
    variants: Optional[List[str]] = None


@dataclass(slots=True)
class ScheduledStatus:
    """Snapshot of a registry entry and the operation it holds."""

    id: str
    name: str
    state: ScheduleState
    status: OperationStatus
    scheduled_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    estimated_minutes: int
    estimated_cost: float
    context: ProductionContext
    progress: Optional[Progress] = None
    info: Dict[str, Any] = field(default_factory=dict)


class OperationRegistry:
    """Factory, execution registry and history for production operations."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        options: Optional[EngineOptions] = None,
    ) -> None:
        self.clock = clock or Clock()
        self.options = options or EngineOptions()
        self._scheduled: InMemoryRepository[ScheduledOperation] = InMemoryRepository()
        self._history: List[HistoryRecord] = []

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------
    def create(
        self,
        operation_type: Union[str, OperationType],
        config: Optional[Mapping[str, Any]] = None,
    ) -> Operation:
        """Instantiate an operation and stamp its identity."""

        kind = parse_operation_type(operation_type)
        operation = OPERATION_FACTORIES[kind](config or {}, self.clock, self.options)
        operation.id = new_operation_id()
        operation.created_at = self.clock.now()
        operation.operation_type = kind
        logger.info("Created %s operation %s", kind.value, operation.id)
        return operation

    def available_types(self) -> List[str]:
        return [item.value for item in OPERATION_FACTORIES]

    def type_info(
        self,
        operation_type: Union[str, OperationType],
        config: Optional[Mapping[str, Any]] = None,
    ) -> OperationTypeInfo:
        kind = parse_operation_type(operation_type)
        sample = OPERATION_FACTORIES[kind](config or {}, Clock(), self.options)
        children = None
        if isinstance(sample, CompositeOperation):
            children = [child.name for child in sample.children()]
        variants = None
        if kind is OperationType.SPECIAL_PROCESS:
            variants = [variant.value for variant in SpecialVariant]
        return OperationTypeInfo(
            operation_type=kind,
            name=sample.name,
            description=sample.description,
            kind=sample.kind,
            estimated_minutes=sample.estimated_minutes(),
            estimated_cost=round(sample.estimated_cost(), 2),
            children=children,
            variants=variants,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def schedule(self, operation: Operation, context: ContextLike) -> str:
        """Validate ``operation`` against ``context`` and register it."""

        if operation.parent is not None:
            raise OperationOwnershipError(
                f"{operation.name} belongs to {operation.parent.name} "
                "and cannot be scheduled on its own"
            )
        if operation.id is None:
            operation.id = new_operation_id()
            operation.created_at = self.clock.now()
        if operation.id in self._scheduled:
            raise AlreadyScheduled(operation.id)
        if operation.status is not OperationStatus.PENDING:
            raise OperationNotPending(
                f"{operation.name} has status {operation.status.value}; "
                "create a new operation instead"
            )
        context = ProductionContext.coerce(context)
        check = operation.validate(context)
        if not check.ok:
            logger.warning("Rejected %s: %s", operation.id, "; ".join(check.errors))
            raise ValidationFailed(check.errors)
        self._scheduled.add(
            operation.id,
            ScheduledOperation(
                id=operation.id,
                operation=operation,
                context=context,
                scheduled_at=self.clock.now(),
            ),
        )
        logger.info("Scheduled %s (%s)", operation.id, operation.name)
        return operation.id

    def list_scheduled(self) -> List[ScheduledStatus]:
        return [self._status_of(entry) for entry in self._scheduled]

    def get_status(self, operation_id: str) -> ScheduledStatus:
        return self._status_of(self._entry(operation_id))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(
        self, operation_id: str, context: Optional[ContextLike] = None
    ) -> Result:
        """Run a scheduled operation and append its history record.

        ``context`` defaults to the one given at scheduling time. A
        validation failure leaves the entry registered so it can be
        retried with a corrected context.
        """

        entry = self._entry(operation_id)
        operation = entry.operation
        if entry.state in {ScheduleState.FINISHED, ScheduleState.FAILED}:
            raise OperationNotPending(
                f"Operation {operation_id} has already run; schedule a new operation instead"
            )
        run_context = entry.context if context is None else ProductionContext.coerce(context)

        check = operation.validate(run_context)
        if not check.ok:
            error = ValidationFailed(check.errors)
            logger.warning("Validation of %s failed: %s", operation_id, error)
            self._record(operation, OperationStatus.FAILED, run_context, error=str(error))
            raise error

        entry.state = ScheduleState.RUNNING
        try:
            result = await operation.execute(run_context)
        except Exception as exc:
            entry.state = ScheduleState.FAILED
            logger.exception("Execution of %s failed", operation_id)
            self._record(
                operation,
                OperationStatus.FAILED,
                run_context,
                error=str(exc),
                elapsed_minutes=operation.elapsed_minutes(),
            )
            raise

        entry.state = ScheduleState.FINISHED
        self._record(
            operation,
            operation.status,
            run_context,
            result=result,
            elapsed_minutes=result.elapsed_minutes,
            real_cost=result.real_cost,
        )
        logger.info("Executed %s with status %s", operation_id, operation.status.value)
        return result

    def cancel(self, operation_id: str) -> bool:
        entry = self._scheduled.find(operation_id)
        if entry is None:
            return False
        operation = entry.operation
        if operation.status is OperationStatus.IN_PROGRESS:
            raise CannotCancelRunning(operation_id)
        self._scheduled.pop(operation_id)
        if operation.status is OperationStatus.PENDING:
            operation.set_status(OperationStatus.CANCELLED, "Cancelled before execution")
        self._record(
            operation,
            OperationStatus.CANCELLED,
            entry.context,
            elapsed_minutes=operation.elapsed_minutes(),
        )
        logger.info("Cancelled %s", operation_id)
        return True

    # ------------------------------------------------------------------
    # History and reporting
    # ------------------------------------------------------------------
    def history(
        self,
        *,
        kind: Union[str, OperationKind, None] = None,
        operation_type: Union[str, OperationType, None] = None,
        status: Union[str, OperationStatus, None] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[HistoryRecord]:
        """Return history records newest-first, optionally filtered."""

        records = list(reversed(self._history))
        if kind is not None:
            wanted_kind = OperationKind(kind)
            records = [record for record in records if record.kind is wanted_kind]
        if operation_type is not None:
            wanted_type = parse_operation_type(operation_type)
            records = [record for record in records if record.operation_type is wanted_type]
        if status is not None:
            wanted_status = OperationStatus(status)
            records = [record for record in records if record.final_status is wanted_status]
        if since is not None:
            records = [record for record in records if record.timestamp >= _as_aware(since)]
        if until is not None:
            records = [record for record in records if record.timestamp <= _as_aware(until)]
        records.sort(key=lambda record: record.timestamp, reverse=True)
        return records

    def statistics(self) -> RegistryStatistics:
        totals = TypeStatistics()
        by_type: Dict[str, TypeStatistics] = {}
        by_kind: Dict[str, TypeStatistics] = {}
        for record in self._history:
            type_key = record.operation_type.value if record.operation_type else "custom"
            for bucket in (
                totals,
                by_type.setdefault(type_key, TypeStatistics()),
                by_kind.setdefault(record.kind.value, TypeStatistics()),
            ):
                bucket.total += 1
                if record.final_status.is_success:
                    bucket.succeeded += 1
                elif record.final_status is OperationStatus.CANCELLED:
                    bucket.cancelled += 1
                else:
                    bucket.failed += 1
        success_rate = (
            round(totals.succeeded / totals.total * 100, 2) if totals.total else 0.0
        )
        return RegistryStatistics(
            total=totals.total,
            succeeded=totals.succeeded,
            failed=totals.failed,
            cancelled=totals.cancelled,
            success_rate=success_rate,
            by_type=by_type,
            by_kind=by_kind,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def update_engine_options(
        self,
        *,
        seconds_per_minute: Optional[float] = None,
        default_latency_cap: Optional[float] = None,
        roasting_latency_cap: Optional[float] = None,
        grinding_latency_cap: Optional[float] = None,
        packaging_latency_cap: Optional[float] = None,
        shelf_life_months: Optional[int] = None,
    ) -> EngineOptions:
        """Replace the options used for operations created from now on."""

        current = self.options

        def pick(value, fallback):
            return fallback if value is None else max(value, 0)

        self.options = EngineOptions(
            seconds_per_minute=pick(seconds_per_minute, current.seconds_per_minute),
            default_latency_cap=pick(default_latency_cap, current.default_latency_cap),
            roasting_latency_cap=pick(roasting_latency_cap, current.roasting_latency_cap),
            grinding_latency_cap=pick(grinding_latency_cap, current.grinding_latency_cap),
            packaging_latency_cap=pick(packaging_latency_cap, current.packaging_latency_cap),
            shelf_life_months=pick(shelf_life_months, current.shelf_life_months),
        )
        return self.options

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _entry(self, operation_id: str) -> ScheduledOperation:
        entry = self._scheduled.find(operation_id)
        if entry is None:
            raise OperationNotFound(operation_id)
        return entry

    def _status_of(self, entry: ScheduledOperation) -> ScheduledStatus:
        operation = entry.operation
        progress = operation.progress() if isinstance(operation, CompositeOperation) else None
        return ScheduledStatus(
            id=entry.id,
            name=operation.name,
            state=entry.state,
            status=operation.status,
            scheduled_at=entry.scheduled_at,
            started_at=operation.started_at,
            finished_at=operation.finished_at,
            estimated_minutes=operation.estimated_minutes(),
            estimated_cost=round(operation.estimated_cost(), 2),
            context=entry.context,
            progress=progress,
            info=operation.info(),
        )

    def _record(
        self,
        operation: Operation,
        final_status: OperationStatus,
        context: Optional[ProductionContext],
        *,
        result: Optional[Result] = None,
        error: Optional[str] = None,
        elapsed_minutes: int = 0,
        real_cost: Optional[float] = None,
    ) -> HistoryRecord:
        record = HistoryRecord(
            id=operation.id or "",
            name=operation.name,
            kind=operation.kind,
            operation_type=operation.operation_type,
            final_status=final_status,
            timestamp=self.clock.now(),
            context=context,
            result=result,
            error=error,
            elapsed_minutes=elapsed_minutes,
            real_cost=real_cost,
        )
        self._history.append(record)
        return record


__all__ = [
    "OperationRegistry",
    "OperationTypeInfo",
    "ScheduledStatus",
    "OPERATION_FACTORIES",
    "parse_operation_type",
]
