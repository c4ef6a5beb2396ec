"""Leaf production stages: roasting, grinding and packaging."""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Union

from .domain import GRAIN_TYPES, EngineOptions, PrepStyle, ProductionContext, Stage
from .operations import SimpleOperation, round_half_up
from .timing import Clock

Number = Union[int, float]


def loss_percent(weight_loss: Number, grams_in: Number) -> float:
    if not grams_in:
        return 0.0
    return round(weight_loss / grams_in * 100, 2)


def add_months(day: date, months: int) -> date:
    """Shift ``day`` by whole months, clamping to the last day of the month."""

    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


# ----------------------------------------------------------------------
# Roasting
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RoastProfile:
    max_temperature: int
    minutes: int
    level: str


ROAST_PROFILES: Dict[str, RoastProfile] = {
    "Arabico": RoastProfile(max_temperature=205, minutes=12, level="medium"),
    "Bourbon": RoastProfile(max_temperature=200, minutes=10, level="medium_light"),
    "Catuai": RoastProfile(max_temperature=210, minutes=14, level="medium_dark"),
}

ROAST_LOSS_FACTORS: Dict[str, float] = {
    "light": 0.12,
    "medium_light": 0.15,
    "medium": 0.18,
    "medium_dark": 0.21,
    "dark": 0.24,
}
DEFAULT_ROAST_LOSS = 0.18


def roast_profile(grain_type: Optional[str]) -> RoastProfile:
    return ROAST_PROFILES.get(grain_type or "", ROAST_PROFILES[GRAIN_TYPES[0]])


def roast_quality(percent: float) -> str:
    if 15 <= percent <= 25:
        return "excellent"
    if 10 <= percent <= 30:
        return "good"
    return "regular"


@dataclass(frozen=True, slots=True)
class RoastingOutcome:
    grams_in: Number
    grams_out: Number
    weight_loss: int
    loss_percent: float
    max_temperature: int
    roast_minutes: int
    roast_level: str
    quality: str
    stage: str = "roasting"

    def advance(self, context: ProductionContext) -> ProductionContext:
        return context.evolve(
            grams=self.grams_out,
            previous_stage=Stage.ROASTED.value,
            roast_quality=self.quality,
            roast_level=self.roast_level,
        )


class Roasting(SimpleOperation):
    """Roasts green beans; weight loss depends on the grain's roast level."""

    stage_label = "roasting"
    min_grams = 100
    max_grams = 5000

    def __init__(
        self, *, clock: Optional[Clock] = None, options: Optional[EngineOptions] = None
    ) -> None:
        super().__init__(
            "Roasting",
            "Roasts green coffee beans to develop flavour and aroma",
            30,
            15.00,
            clock=clock,
            options=options,
        )

    def check_context(self, context: ProductionContext) -> List[str]:
        errors = super().check_context(context)
        if context.grain_type not in GRAIN_TYPES:
            errors.append(f"Invalid grain type. Valid types: {', '.join(GRAIN_TYPES)}")
        if context.previous_stage and context.previous_stage != Stage.HARVEST:
            errors.append("Roasting requires beans in the harvest stage")
        return errors

    def latency_cap(self) -> float:
        return self.options.roasting_latency_cap

    def processing_minutes(self, context: ProductionContext) -> float:
        return roast_profile(context.grain_type).minutes

    def perform(self, context: ProductionContext) -> RoastingOutcome:
        grams_in = context.grams or 0
        profile = roast_profile(context.grain_type)
        factor = ROAST_LOSS_FACTORS.get(profile.level, DEFAULT_ROAST_LOSS)
        weight_loss = round_half_up(grams_in * factor)
        percent = loss_percent(weight_loss, grams_in)
        return RoastingOutcome(
            grams_in=grams_in,
            grams_out=grams_in - weight_loss,
            weight_loss=weight_loss,
            loss_percent=percent,
            max_temperature=profile.max_temperature,
            roast_minutes=profile.minutes,
            roast_level=profile.level,
            quality=roast_quality(percent),
        )


# ----------------------------------------------------------------------
# Grinding
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GrindProfile:
    coarseness: str
    minutes: int
    speed: str


GRIND_PROFILES: Dict[str, GrindProfile] = {
    PrepStyle.ESPRESSO.value: GrindProfile(coarseness="fine", minutes=8, speed="slow"),
    PrepStyle.FILTER.value: GrindProfile(coarseness="medium", minutes=12, speed="medium"),
    PrepStyle.FRENCH_PRESS.value: GrindProfile(coarseness="coarse", minutes=6, speed="fast"),
    PrepStyle.CHEMEX.value: GrindProfile(coarseness="medium_coarse", minutes=10, speed="medium"),
    PrepStyle.V60.value: GrindProfile(coarseness="medium_fine", minutes=9, speed="medium"),
}
DEFAULT_PREP_STYLE = PrepStyle.FILTER.value

GRIND_LOSS_FACTORS: Dict[str, float] = {
    "fine": 0.08,
    "medium_fine": 0.06,
    "medium": 0.05,
    "medium_coarse": 0.04,
    "coarse": 0.03,
}
DEFAULT_GRIND_LOSS = 0.05

GRIND_UNIFORMITY: Dict[str, str] = {
    "slow": "excellent",
    "medium": "good",
    "fast": "regular",
}


def grind_profile(prep_style: Optional[str]) -> GrindProfile:
    return GRIND_PROFILES.get(prep_style or DEFAULT_PREP_STYLE, GRIND_PROFILES[DEFAULT_PREP_STYLE])


def grind_quality(percent: float) -> str:
    if percent <= 5:
        return "excellent"
    if percent <= 8:
        return "good"
    return "regular"


@dataclass(frozen=True, slots=True)
class GrindingOutcome:
    grams_in: Number
    grams_out: Number
    weight_loss: int
    loss_percent: float
    coarseness: str
    grind_minutes: int
    prep_style: str
    quality: str
    uniformity: str
    stage: str = "grinding"

    def advance(self, context: ProductionContext) -> ProductionContext:
        return context.evolve(
            grams=self.grams_out,
            previous_stage=Stage.GROUND.value,
            grind_quality=self.quality,
            grind_coarseness=self.coarseness,
        )


class Grinding(SimpleOperation):
    """Grinds roasted beans to the coarseness of a preparation style."""

    stage_label = "grinding"
    min_grams = 50
    max_grams = 2000

    def __init__(
        self, *, clock: Optional[Clock] = None, options: Optional[EngineOptions] = None
    ) -> None:
        super().__init__(
            "Grinding",
            "Grinds roasted beans into ground coffee",
            15,
            8.00,
            clock=clock,
            options=options,
        )

    def check_context(self, context: ProductionContext) -> List[str]:
        errors = super().check_context(context)
        if context.prep_style and context.prep_style not in GRIND_PROFILES:
            errors.append(
                f"Invalid preparation style. Valid styles: {', '.join(GRIND_PROFILES)}"
            )
        if context.previous_stage and context.previous_stage != Stage.ROASTED:
            errors.append("Coffee must be roasted before grinding")
        return errors

    def latency_cap(self) -> float:
        return self.options.grinding_latency_cap

    def processing_minutes(self, context: ProductionContext) -> float:
        return grind_profile(context.prep_style).minutes

    def perform(self, context: ProductionContext) -> GrindingOutcome:
        grams_in = context.grams or 0
        style = context.prep_style if context.prep_style in GRIND_PROFILES else DEFAULT_PREP_STYLE
        profile = grind_profile(style)
        factor = GRIND_LOSS_FACTORS.get(profile.coarseness, DEFAULT_GRIND_LOSS)
        weight_loss = round_half_up(grams_in * factor)
        percent = loss_percent(weight_loss, grams_in)
        return GrindingOutcome(
            grams_in=grams_in,
            grams_out=grams_in - weight_loss,
            weight_loss=weight_loss,
            loss_percent=percent,
            coarseness=profile.coarseness,
            grind_minutes=profile.minutes,
            prep_style=style,
            quality=grind_quality(percent),
            uniformity=GRIND_UNIFORMITY.get(profile.speed, "good"),
        )


# ----------------------------------------------------------------------
# Packaging
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PackageSpec:
    package_type: str
    unit_grams: int
    minutes: int
    material: str


SMALL_BAG = PackageSpec("bolsa_pequena", 250, 15, "foil")
MEDIUM_BAG = PackageSpec("bolsa_mediana", 500, 20, "foil")
LARGE_BAG = PackageSpec("bolsa_grande", 1000, 25, "foil")
MULTI_PACK_BOX = PackageSpec("caja_multiple", 500, 30, "cardboard")


def select_package(grams: Number) -> PackageSpec:
    # 600 g ships as two medium bags, so the large bag is kept for exactly 1000 g
    if grams <= SMALL_BAG.unit_grams:
        return SMALL_BAG
    if grams < LARGE_BAG.unit_grams:
        return MEDIUM_BAG
    if grams == LARGE_BAG.unit_grams:
        return LARGE_BAG
    return MULTI_PACK_BOX


def packaging_quality(spec: PackageSpec, package_count: int) -> str:
    if spec.material == "foil" and package_count <= 10:
        return "excellent"
    if spec.material == "foil" and package_count <= 20:
        return "good"
    return "regular"


@dataclass(frozen=True, slots=True)
class PackagingOutcome:
    grams_in: Number
    grams_out: Number
    package_type: str
    package_count: int
    unit_grams: int
    packaging_minutes: int
    material: str
    quality: str
    expiry_date: date
    weight_loss: int = 0
    loss_percent: float = 0.0
    stage: str = "packaging"

    def advance(self, context: ProductionContext) -> ProductionContext:
        return context.evolve(
            previous_stage=Stage.PACKAGED.value,
            package_count=self.package_count,
            package_type=self.package_type,
            expiry_date=self.expiry_date,
        )


class Packaging(SimpleOperation):
    """Packs ground coffee into retail packages; no weight is lost."""

    stage_label = "packaging"
    min_grams = 100
    max_grams = 10000

    def __init__(
        self, *, clock: Optional[Clock] = None, options: Optional[EngineOptions] = None
    ) -> None:
        super().__init__(
            "Packaging",
            "Packs ground coffee into packages ready for sale",
            20,
            12.00,
            clock=clock,
            options=options,
        )

    def check_context(self, context: ProductionContext) -> List[str]:
        errors = super().check_context(context)
        if context.previous_stage != Stage.GROUND:
            errors.append("Coffee must be ground before packaging")
        return errors

    def latency_cap(self) -> float:
        return self.options.packaging_latency_cap

    def processing_minutes(self, context: ProductionContext) -> float:
        return select_package(context.grams or 0).minutes

    def expiry_for(self, context: ProductionContext) -> date:
        if context.expiry_date is not None:
            return context.expiry_date
        return add_months(self.clock.now().date(), self.options.shelf_life_months)

    def perform(self, context: ProductionContext) -> PackagingOutcome:
        grams = context.grams or 0
        spec = select_package(grams)
        package_count = math.ceil(grams / spec.unit_grams)
        return PackagingOutcome(
            grams_in=grams,
            grams_out=grams,
            package_type=spec.package_type,
            package_count=package_count,
            unit_grams=spec.unit_grams,
            packaging_minutes=spec.minutes,
            material=spec.material,
            quality=packaging_quality(spec, package_count),
            expiry_date=self.expiry_for(context),
        )


__all__ = [
    "Roasting",
    "Grinding",
    "Packaging",
    "RoastingOutcome",
    "GrindingOutcome",
    "PackagingOutcome",
    "RoastProfile",
    "GrindProfile",
    "PackageSpec",
    "ROAST_PROFILES",
    "ROAST_LOSS_FACTORS",
    "GRIND_PROFILES",
    "GRIND_LOSS_FACTORS",
    "roast_profile",
    "grind_profile",
    "select_package",
    "add_months",
]
