"""Demonstration script for the coffee production operation engine."""

from __future__ import annotations

import asyncio
import logging
from pprint import pprint
from typing import Optional

from . import OperationRegistry, ValidationFailed
from .timing import Clock


async def main(clock: Optional[Clock] = None) -> OperationRegistry:
    registry = OperationRegistry(clock=clock)

    # Komplette Charge: Rösten, Mahlen, Verpacken
    batch = registry.create("fullBatch")
    batch_id = registry.schedule(
        batch,
        {"cantidadGramos": 1000, "tipoGrano": "Arabico", "region": "Huila"},
    )
    result = await registry.execute(batch_id)
    print(f"\n{batch.name}: {result.status.value}")
    print(f"Geschätzt: {batch.estimated_minutes()} min, {batch.estimated_cost():.2f}")
    for step in result.results:
        outcome = step.outcome
        print(f"  {step.operation}: {outcome.grams_in}g -> {outcome.grams_out}g ({outcome.quality})")
    pprint(result.final_context.to_dict())

    # Express-Sonderprozess, verarbeitet auch kleine Mengen
    express = registry.create("specialProcess", {"variant": "express"})
    express_id = registry.schedule(
        express,
        {"cantidadGramos": 400, "tipoGrano": "Bourbon", "tipoPreparacion": "espresso"},
    )
    express_result = await registry.execute(express_id)
    print(f"\n{express.name}: {express_result.status.value}")

    # Einzelschritt Verpacken
    package = registry.create("package")
    package_id = registry.schedule(
        package,
        {"cantidadGramos": 600, "tipoGrano": "Arabico", "estadoAnterior": "molido"},
    )
    package_result = await registry.execute(package_id)
    print(
        f"\nVerpackung: {package_result.outcome.package_count} x "
        f"{package_result.outcome.package_type}"
    )

    # Abgelehnte Planung
    premium = registry.create("specialProcess", {"variant": "premium"})
    try:
        registry.schedule(premium, {"cantidadGramos": 150, "tipoGrano": "Catuai"})
    except ValidationFailed as exc:
        print("\nPremium abgelehnt:")
        for error in exc.errors:
            print(f"  - {error}")

    # Stornierung vor der Ausführung
    pending = registry.create("roast")
    pending_id = registry.schedule(pending, {"cantidadGramos": 500, "tipoGrano": "Catuai"})
    registry.cancel(pending_id)

    print("\nStatistik")
    pprint(registry.statistics())
    return registry


if __name__ == "__main__":  # pragma: no cover - manual execution
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
