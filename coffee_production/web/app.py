"""FastAPI-based JSON interface for the operation registry."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..domain import OperationKind, OperationStatus
from ..errors import (
    AlreadyScheduled,
    CannotCancelRunning,
    InvalidStatusTransition,
    OperationNotFound,
    OperationNotPending,
    OperationOwnershipError,
    UnknownOperationType,
    UnknownVariant,
    ValidationFailed,
)
from ..services import OperationRegistry

logger = logging.getLogger(__name__)

CONFLICT_ERRORS = (
    AlreadyScheduled,
    CannotCancelRunning,
    InvalidStatusTransition,
    OperationNotPending,
    OperationOwnershipError,
)


class CreateOperationRequest(BaseModel):
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)


class ExecuteOperationRequest(BaseModel):
    context: Optional[Dict[str, Any]] = None


def envelope(
    message: str, data: Any = None, *, success: bool = True, status_code: int = 200
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": success, "message": message, "data": data}),
    )


def create_app(registry: Optional[OperationRegistry] = None) -> FastAPI:
    app = FastAPI(title="Coffee Production Operations")
    app.state.registry = registry or OperationRegistry()

    @app.exception_handler(ValidationFailed)
    async def validation_failed(request: Request, exc: ValidationFailed):
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return envelope(str(exc), {"errors": exc.errors}, success=False, status_code=422)

    @app.exception_handler(UnknownOperationType)
    @app.exception_handler(UnknownVariant)
    async def unknown_tag(request: Request, exc: Exception):
        return envelope(str(exc), success=False, status_code=400)

    @app.exception_handler(OperationNotFound)
    async def not_found(request: Request, exc: OperationNotFound):
        return envelope(str(exc), success=False, status_code=404)

    async def conflict(request: Request, exc: Exception):
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return envelope(str(exc), success=False, status_code=409)

    for error_class in CONFLICT_ERRORS:
        app.add_exception_handler(error_class, conflict)

    @app.post("/operations", status_code=201)
    async def create_operation(request: Request, payload: CreateOperationRequest):
        registry: OperationRegistry = request.app.state.registry
        operation = registry.create(payload.type, payload.config)
        operation_id = registry.schedule(operation, payload.context)
        return envelope(
            f"Operation {operation.name} scheduled",
            {"id": operation_id, "operation": operation.info()},
            status_code=201,
        )

    @app.get("/operations")
    async def list_operations(request: Request):
        registry: OperationRegistry = request.app.state.registry
        scheduled = registry.list_scheduled()
        return envelope(f"{len(scheduled)} scheduled operations", scheduled)

    @app.get("/operations/history")
    async def operation_history(
        request: Request,
        kind: Optional[OperationKind] = None,
        operation_type: Optional[str] = Query(None, alias="type"),
        status: Optional[OperationStatus] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ):
        registry: OperationRegistry = request.app.state.registry
        records = registry.history(
            kind=kind,
            operation_type=operation_type,
            status=status,
            since=since,
            until=until,
        )
        return envelope(f"{len(records)} history records", records)

    @app.get("/operations/statistics")
    async def operation_statistics(request: Request):
        registry: OperationRegistry = request.app.state.registry
        return envelope("Operation statistics", registry.statistics())

    @app.get("/operations/types")
    async def operation_types(request: Request):
        registry: OperationRegistry = request.app.state.registry
        return envelope("Available operation types", registry.available_types())

    @app.get("/operations/types/{operation_type}")
    async def operation_type_info(
        request: Request, operation_type: str, variant: Optional[str] = None
    ):
        registry: OperationRegistry = request.app.state.registry
        config = {"variant": variant} if variant else None
        return envelope(
            f"Operation type {operation_type}", registry.type_info(operation_type, config)
        )

    @app.get("/operations/{operation_id}")
    async def operation_status(request: Request, operation_id: str):
        registry: OperationRegistry = request.app.state.registry
        return envelope(f"Operation {operation_id}", registry.get_status(operation_id))

    @app.post("/operations/{operation_id}/execute")
    async def execute_operation(
        request: Request,
        operation_id: str,
        payload: Optional[ExecuteOperationRequest] = None,
    ):
        registry: OperationRegistry = request.app.state.registry
        context = payload.context if payload is not None else None
        result = await registry.execute(operation_id, context)
        status = registry.get_status(operation_id).status
        return envelope(f"Operation finished with status {status.value}", result)

    @app.delete("/operations/{operation_id}")
    async def cancel_operation(request: Request, operation_id: str):
        registry: OperationRegistry = request.app.state.registry
        if not registry.cancel(operation_id):
            return envelope(
                f"Operation not found: {operation_id}", success=False, status_code=404
            )
        return envelope(f"Operation {operation_id} cancelled", {"id": operation_id})

    return app


__all__ = ["create_app", "envelope"]
