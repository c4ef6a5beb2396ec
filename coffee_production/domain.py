"""Core data structures for the coffee production operation engine."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from .errors import ValidationFailed

if TYPE_CHECKING:  # pragma: no cover
    from .operations import Operation


class OperationStatus(str, Enum):
    """Lifecycle of a single operation run."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_PARTIAL = "completed_partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_success(self) -> bool:
        return self in {OperationStatus.COMPLETED, OperationStatus.COMPLETED_PARTIAL}


class OperationKind(str, Enum):
    SIMPLE = "simple"
    COMPOSITE = "composite"


class OperationType(str, Enum):
    """Type tags understood by the registry factory."""

    FULL_BATCH = "fullBatch"
    SPECIAL_PROCESS = "specialProcess"
    ROAST = "roast"
    GRIND = "grind"
    PACKAGE = "package"


class Stage(str, Enum):
    """Physical state of the coffee between production steps."""

    HARVEST = "harvest"
    ROASTED = "roasted"
    GROUND = "ground"
    PACKAGED = "packaged"


class PrepStyle(str, Enum):
    """Brewing method a grind is prepared for."""

    ESPRESSO = "espresso"
    FILTER = "filter"
    FRENCH_PRESS = "french_press"
    CHEMEX = "chemex"
    V60 = "v60"


class SpecialVariant(str, Enum):
    PREMIUM = "premium"
    EXPRESS = "express"
    ARTESANAL = "artesanal"
    EXPERIMENTAL = "experimental"


class ScheduleState(str, Enum):
    """Registry-side state of a scheduled entry."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"


GRAIN_TYPES: Tuple[str, ...] = ("Arabico", "Bourbon", "Catuai")

_STAGE_ALIASES = {
    "cosecha": Stage.HARVEST.value,
    "tostado": Stage.ROASTED.value,
    "molido": Stage.GROUND.value,
    "envasado": Stage.PACKAGED.value,
    "empaquetado": Stage.PACKAGED.value,
}

_PREP_ALIASES = {
    "filtro": PrepStyle.FILTER.value,
    "francesa": PrepStyle.FRENCH_PRESS.value,
    "french": PrepStyle.FRENCH_PRESS.value,
}

# external camelCase key -> field name
_CONTEXT_ALIASES = {
    "cantidadGramos": "grams",
    "tipoGrano": "grain_type",
    "tipoPreparacion": "prep_style",
    "fechaVencimiento": "expiry_date",
    "estadoAnterior": "previous_stage",
    "calidadTostado": "roast_quality",
    "nivelTostado": "roast_level",
    "calidadMolido": "grind_quality",
    "grosorMolido": "grind_coarseness",
    "cantidadPaquetes": "package_count",
    "tipoEmpaque": "package_type",
    "controlCalidad": "quality_control",
    "tiempoCuarentena": "quarantine_hours",
    "tecnicasTradicionales": "traditional_techniques",
    "tecnicasInnovadoras": "innovative_techniques",
}


def _coerce_grams(value: Any) -> Optional[Union[int, float]]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationFailed([f"Invalid expiry date: {value}"]) from None


def _normalise(value: Any, aliases: Mapping[str, str]) -> Optional[str]:
    if value is None or value == "":
        return None
    text = value.value if isinstance(value, Enum) else str(value).strip().lower()
    return aliases.get(text, text)


@dataclass(frozen=True, slots=True)
class ProductionContext:
    """Immutable parameter bag threaded through a chain of operations.

    Stages never modify a context; they return a new one built with
    :func:`dataclasses.replace`.
    """

    grams: Optional[Union[int, float]] = None
    grain_type: Optional[str] = None
    region: Optional[str] = None
    prep_style: Optional[str] = None
    expiry_date: Optional[date] = None
    previous_stage: Optional[str] = None
    roast_quality: Optional[str] = None
    roast_level: Optional[str] = None
    grind_quality: Optional[str] = None
    grind_coarseness: Optional[str] = None
    package_count: Optional[int] = None
    package_type: Optional[str] = None
    quality_control: Optional[str] = None
    quarantine_hours: Optional[int] = None
    traditional_techniques: bool = False
    innovative_techniques: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProductionContext":
        """Build a context from external keys or field names."""

        known = set(cls.__dataclass_fields__)
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _CONTEXT_ALIASES.get(key, key)
            if name in known:
                values[name] = value
        values["grams"] = _coerce_grams(values.get("grams"))
        values["expiry_date"] = _coerce_date(values.get("expiry_date"))
        values["previous_stage"] = _normalise(values.get("previous_stage"), _STAGE_ALIASES)
        values["prep_style"] = _normalise(values.get("prep_style"), _PREP_ALIASES)
        return cls(**values)

    @classmethod
    def coerce(
        cls, value: Union["ProductionContext", Mapping[str, Any], None]
    ) -> "ProductionContext":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls.from_mapping(value)

    def evolve(self, **changes: Any) -> "ProductionContext":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.expiry_date is not None:
            data["expiry_date"] = self.expiry_date.isoformat()
        return data


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating an operation against a context."""

    ok: bool
    errors: Tuple[str, ...] = ()

    @classmethod
    def from_errors(cls, errors: Sequence[str]) -> "ValidationResult":
        return cls(ok=not errors, errors=tuple(errors))


@dataclass(frozen=True, slots=True)
class ChildError:
    """A failed child inside a composite run."""

    child_name: str
    error: str
    index: int


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Result of a leaf operation."""

    success: bool
    operation: str
    outcome: Any
    elapsed_minutes: int
    real_cost: float

    def advance(self, context: ProductionContext) -> ProductionContext:
        return self.outcome.advance(context)


@dataclass(frozen=True, slots=True)
class CompositeResult:
    """Aggregate result of a composite operation."""

    success: bool
    operation: str
    status: OperationStatus
    total: int
    succeeded: int
    failed: int
    results: Tuple[Union[OperationResult, "CompositeResult"], ...]
    errors: Tuple[ChildError, ...]
    elapsed_minutes: int
    real_cost: float
    final_context: ProductionContext

    def advance(self, context: ProductionContext) -> ProductionContext:
        return self.final_context


@dataclass(frozen=True, slots=True)
class Progress:
    total: int
    completed: int
    in_progress: int
    failed: int
    pending: int
    percent_complete: int


@dataclass(slots=True)
class ScheduledOperation:
    """An operation bound to its context inside the registry."""

    id: str
    operation: "Operation"
    context: ProductionContext
    scheduled_at: datetime
    state: ScheduleState = ScheduleState.SCHEDULED


@dataclass(frozen=True, slots=True)
class HistoryRecord:
    """Immutable log entry for one execution or cancellation."""

    id: str
    name: str
    kind: OperationKind
    operation_type: Optional[OperationType]
    final_status: OperationStatus
    timestamp: datetime
    context: Optional[ProductionContext]
    result: Optional[Union[OperationResult, CompositeResult]] = None
    error: Optional[str] = None
    elapsed_minutes: int = 0
    real_cost: Optional[float] = None


@dataclass(slots=True)
class TypeStatistics:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0


@dataclass(slots=True)
class RegistryStatistics:
    """Aggregate counters derived from the registry history."""

    total: int
    succeeded: int
    failed: int
    cancelled: int
    success_rate: float
    by_type: Dict[str, TypeStatistics] = field(default_factory=dict)
    by_kind: Dict[str, TypeStatistics] = field(default_factory=dict)


@dataclass(slots=True)
class EngineOptions:
    """Tuning values for simulated processing."""

    seconds_per_minute: float = 1.0
    default_latency_cap: float = 5.0
    roasting_latency_cap: float = 5.0
    grinding_latency_cap: float = 3.0
    packaging_latency_cap: float = 4.0
    shelf_life_months: int = 6


__all__ = [
    "OperationStatus",
    "OperationKind",
    "OperationType",
    "Stage",
    "PrepStyle",
    "SpecialVariant",
    "ScheduleState",
    "GRAIN_TYPES",
    "ProductionContext",
    "ValidationResult",
    "ChildError",
    "OperationResult",
    "CompositeResult",
    "Progress",
    "ScheduledOperation",
    "HistoryRecord",
    "TypeStatistics",
    "RegistryStatistics",
    "EngineOptions",
]
