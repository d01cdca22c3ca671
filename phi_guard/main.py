# phi_guard/main.py

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from phi_guard.api.dependencies import build_container
from phi_guard.api.middleware import (
    CorrelationIdMiddleware,
    PrincipalContextMiddleware,
    RequestLogMiddleware,
)
from phi_guard.api.routers import admin, audit, health
from phi_guard.application.exceptions import ApplicationError, AuditWriteFailureError, ServiceUnavailableError
from phi_guard.config.logging import configure_logging
from phi_guard.config.settings import get_settings
from phi_guard.domain.exceptions import DomainError
from phi_guard.governance.exceptions import GovernanceError
from phi_guard.observability.failure_classifier import ErrorClassifier, ErrorCode
from phi_guard.security.exceptions import AccessDeniedError, SecurityError

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


async def _close(resource) -> None:
    close = getattr(resource, "dispose", None) or getattr(resource, "close")
    await close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = getattr(app.state, "container", None)
    if container is None:
        container = build_container(settings)
        app.state.container = container
    if container.settings.log_store_backend == "sql":
        from phi_guard.infrastructure.database.session import create_schema

        for resource in container.closeables:
            if hasattr(resource, "dispose"):
                await create_schema(resource)

    container.monitor.start()
    scheduler_task = None
    if container.settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(
            container.scheduler.run_forever(container.settings.scheduler_interval_seconds),
            name="retention-scheduler",
        )
    try:
        yield
    finally:
        if scheduler_task is not None:
            scheduler_task.cancel()
            try:
                await scheduler_task
            except asyncio.CancelledError:
                pass
        await container.monitor.stop()
        for resource in container.closeables:
            await _close(resource)


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Middleware order: last added runs first (outermost). Request flow: CorrelationId -> PrincipalContext -> RequestLog.
app.add_middleware(RequestLogMiddleware)
app.add_middleware(PrincipalContextMiddleware)
app.add_middleware(CorrelationIdMiddleware)


def _error_response(exc: BaseException) -> JSONResponse:
    code = ErrorClassifier.classify(exc)
    return JSONResponse(
        status_code=ErrorClassifier.status_code(code),
        content={"code": code.value, "detail": ErrorClassifier.public_message(code)},
    )


@app.exception_handler(AccessDeniedError)
async def access_denied_handler(request, exc: AccessDeniedError):
    return _error_response(exc)


@app.exception_handler(AuditWriteFailureError)
async def audit_write_failure_handler(request, exc: AuditWriteFailureError):
    return _error_response(exc)


@app.exception_handler(ServiceUnavailableError)
async def service_unavailable_handler(request, exc: ServiceUnavailableError):
    return _error_response(exc)


@app.exception_handler(SecurityError)
async def security_error_handler(request, exc: SecurityError):
    return _error_response(exc)


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return _error_response(exc)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request, exc: GovernanceError):
    return _error_response(exc)


@app.exception_handler(DomainError)
async def domain_error_handler(request, exc: DomainError):
    return _error_response(exc)


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.error("unhandled_error", extra={"error": type(exc).__name__})
    return JSONResponse(
        status_code=500,
        content={"code": ErrorCode.UNEXPECTED_ERROR.value, "detail": "Internal error"},
    )


# Routers: /health, /metrics, /audit, /admin
app.include_router(health.router)
app.include_router(audit.router, prefix="/audit")
app.include_router(admin.router, prefix="/admin")
