"""Concrete production workflows built from the three leaf stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

from .domain import EngineOptions, ProductionContext, SpecialVariant, Stage, ValidationResult
from .errors import UnknownVariant
from .operations import CompositeOperation, ContextLike, Operation
from .stages import Grinding, Packaging, Roasting
from .timing import Clock

PIPELINE: Tuple[Type[Roasting], Type[Grinding], Type[Packaging]] = (Roasting, Grinding, Packaging)
PIPELINE_STAGES: Tuple[str, ...] = ("roasting", "grinding", "packaging")

FULL_BATCH_CRITICAL_ERRORS: Tuple[str, ...] = (
    "Minimum quantity",
    "Invalid grain type",
    "Validation failed",
)
EXPRESS_CRITICAL_ERRORS: Tuple[str, ...] = ("Invalid grain type",)


def matches_any(error: BaseException, fragments: Sequence[str]) -> bool:
    message = str(error)
    return any(fragment in message for fragment in fragments)


def _bounds_errors(
    grams: Optional[float], minimum: int, maximum: int, label: str
) -> List[str]:
    errors: List[str] = []
    grams = grams or 0
    if grams < minimum:
        errors.append(f"Minimum quantity for {label}: {minimum}g")
    if grams > maximum:
        errors.append(f"Maximum quantity for {label}: {maximum}g")
    return errors


class FullBatch(CompositeOperation):
    """Roasting, grinding and packaging of one batch, in that order."""

    surcharge_minutes = 10
    surcharge_cost = 5.00
    min_grams = 200
    max_grams = 3000

    def __init__(
        self, *, clock: Optional[Clock] = None, options: Optional[EngineOptions] = None
    ) -> None:
        super().__init__(
            "Full Batch",
            "Complete coffee production: roasting, grinding and packaging",
            clock=clock,
            options=options,
        )
        for stage in PIPELINE:
            self.add_child(stage(clock=self.clock, options=self.options))

    def should_stop_on_error(self, child: Operation, error: BaseException) -> bool:
        return matches_any(error, FULL_BATCH_CRITICAL_ERRORS)

    def validate(self, context: ContextLike) -> ValidationResult:
        context = ProductionContext.coerce(context)
        base = super().validate(context)
        if not base.ok:
            return base
        errors = _bounds_errors(context.grams, self.min_grams, self.max_grams, "a full batch")
        if context.previous_stage and context.previous_stage != Stage.HARVEST:
            errors.append("A full batch must start from beans in the harvest stage")
        return ValidationResult.from_errors(errors)

    def info(self) -> Dict[str, Any]:
        data = super().info()
        data["batch_type"] = "full"
        data["stages"] = list(PIPELINE_STAGES)
        return data


@dataclass(frozen=True, slots=True)
class VariantProfile:
    """Per-variant modifiers for a special process."""

    description: str
    suffix: str
    minutes_delta: int
    cost_delta: float
    surcharge_minutes: int
    surcharge_cost: float
    min_grams: int
    max_grams: int
    quality_control: str
    quarantine_hours: int
    tolerant: bool = False
    traditional: bool = False
    innovative: bool = False
    min_minutes: int = 0
    min_cost: float = 0.0

    def adjust(self, minutes: int, cost: float) -> Tuple[int, float]:
        return (
            max(minutes + self.minutes_delta, self.min_minutes),
            max(cost + self.cost_delta, self.min_cost),
        )


VARIANT_PROFILES: Dict[SpecialVariant, VariantProfile] = {
    SpecialVariant.PREMIUM: VariantProfile(
        description="Premium process with strict quality control",
        suffix="Premium",
        minutes_delta=5,
        cost_delta=3.00,
        surcharge_minutes=15,
        surcharge_cost=20.00,
        min_grams=300,
        max_grams=2000,
        quality_control="strict",
        quarantine_hours=24,
    ),
    SpecialVariant.EXPRESS: VariantProfile(
        description="Express process for fast production",
        suffix="Express",
        minutes_delta=-3,
        cost_delta=-2.00,
        surcharge_minutes=-10,
        surcharge_cost=-5.00,
        min_grams=100,
        max_grams=5000,
        quality_control="basic",
        quarantine_hours=0,
        tolerant=True,
        min_minutes=5,
        min_cost=1.00,
    ),
    SpecialVariant.ARTESANAL: VariantProfile(
        description="Artisanal process using traditional techniques",
        suffix="Artesanal",
        minutes_delta=10,
        cost_delta=5.00,
        surcharge_minutes=30,
        surcharge_cost=25.00,
        min_grams=300,
        max_grams=2000,
        quality_control="traditional",
        quarantine_hours=48,
        traditional=True,
    ),
    SpecialVariant.EXPERIMENTAL: VariantProfile(
        description="Experimental process using innovative techniques",
        suffix="Experimental",
        minutes_delta=8,
        cost_delta=4.00,
        surcharge_minutes=20,
        surcharge_cost=15.00,
        min_grams=100,
        max_grams=5000,
        quality_control="experimental",
        quarantine_hours=12,
        innovative=True,
    ),
}


def parse_variant(value: Union[str, SpecialVariant, None]) -> SpecialVariant:
    if value is None:
        return SpecialVariant.PREMIUM
    if isinstance(value, SpecialVariant):
        return value
    try:
        return SpecialVariant(str(value).strip().lower())
    except ValueError:
        raise UnknownVariant(value, [variant.value for variant in SpecialVariant]) from None


class SpecialProcess(CompositeOperation):
    """Three-stage pipeline tuned by a variant (premium, express, ...)."""

    def __init__(
        self,
        variant: Union[str, SpecialVariant, None] = SpecialVariant.PREMIUM,
        *,
        clock: Optional[Clock] = None,
        options: Optional[EngineOptions] = None,
    ) -> None:
        variant = parse_variant(variant)
        super().__init__(
            f"Special Process - {variant.value}",
            f"Specialised coffee production, {variant.value} variant",
            clock=clock,
            options=options,
        )
        self.variant = variant
        self.profile = VARIANT_PROFILES[variant]
        self.surcharge_minutes = self.profile.surcharge_minutes
        self.surcharge_cost = self.profile.surcharge_cost
        for stage_class in PIPELINE:
            stage = stage_class(clock=self.clock, options=self.options)
            stage.adjust_estimates(
                *self.profile.adjust(stage.estimated_minutes(), stage.estimated_cost())
            )
            stage.name = f"{stage.name} {self.profile.suffix}"
            self.add_child(stage)

    def should_stop_on_error(self, child: Operation, error: BaseException) -> bool:
        if self.profile.tolerant:
            return matches_any(error, EXPRESS_CRITICAL_ERRORS)
        return True

    def annotate_context(self, context: ProductionContext) -> ProductionContext:
        return context.evolve(
            quality_control=self.profile.quality_control,
            quarantine_hours=self.profile.quarantine_hours,
            traditional_techniques=context.traditional_techniques or self.profile.traditional,
            innovative_techniques=context.innovative_techniques or self.profile.innovative,
        )

    def validate(self, context: ContextLike) -> ValidationResult:
        context = ProductionContext.coerce(context)
        base = super().validate(context)
        if not base.ok:
            return base
        errors = _bounds_errors(
            context.grams,
            self.profile.min_grams,
            self.profile.max_grams,
            f"{self.variant.value} process",
        )
        if context.previous_stage and context.previous_stage != Stage.HARVEST:
            errors.append("A special process must start from beans in the harvest stage")
        return ValidationResult.from_errors(errors)

    def info(self) -> Dict[str, Any]:
        data = super().info()
        data["variant"] = self.variant.value
        data["variant_description"] = self.profile.description
        data["quality_control"] = self.profile.quality_control
        data["quarantine_hours"] = self.profile.quarantine_hours
        data["stages"] = list(PIPELINE_STAGES)
        return data


__all__ = [
    "FullBatch",
    "SpecialProcess",
    "VariantProfile",
    "VARIANT_PROFILES",
    "FULL_BATCH_CRITICAL_ERRORS",
    "EXPRESS_CRITICAL_ERRORS",
    "parse_variant",
]
