import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from roster_monitor.db import SessionLocal, engine
from roster_monitor.errors import ApiError, error_response
from roster_monitor.logging_utils import setup_json_logging
from roster_monitor.routers import roster
from roster_monitor.services.periodic import PeriodicTask, RecomputeRunner, ReminderRunner
from roster_monitor.services.reminders import build_notification_gateway
from roster_monitor.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from roster_monitor.services.workers import build_worker_cache
from roster_monitor.settings import get_cors_origins, get_settings, is_notification_gateway_configured

setup_json_logging(service="roster-monitor")
logger = logging.getLogger("roster_monitor.request")
worker_logger = logging.getLogger("roster_monitor.worker")
settings = get_settings()


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code = {404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}.get(exc.status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(roster.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def _build_periodic_tasks() -> list[PeriodicTask]:
    tasks: list[PeriodicTask] = []
    if settings.recompute_worker_enabled:
        tasks.append(
            PeriodicTask(
                "monitoring_recompute",
                settings.recompute_interval_seconds,
                RecomputeRunner(SessionLocal),
            )
        )
    if settings.reminder_worker_enabled:
        tasks.append(
            PeriodicTask(
                "leave_reminders",
                settings.reminder_interval_seconds,
                ReminderRunner(SessionLocal, build_notification_gateway(), build_worker_cache()),
            )
        )
    return tasks


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        worker_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    worker_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_periodic_tasks() -> None:
    if getattr(app.state, "periodic_tasks", None):
        return
    if settings.reminder_worker_enabled and not is_notification_gateway_configured():
        worker_logger.warning("notification_gateway_not_configured")

    tasks = _build_periodic_tasks()
    for task in tasks:
        task.start()
    app.state.periodic_tasks = tasks


@app.on_event("shutdown")
async def stop_periodic_tasks() -> None:
    tasks: list[PeriodicTask] = getattr(app.state, "periodic_tasks", None) or []
    for task in tasks:
        await task.stop()
    app.state.periodic_tasks = []


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    tasks: list[PeriodicTask] = getattr(app.state, "periodic_tasks", None) or []
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "notification_gateway_configured": is_notification_gateway_configured(),
        "periodic_tasks": {task.name: task.running for task in tasks},
    }
