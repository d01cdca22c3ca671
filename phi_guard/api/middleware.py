"""API middleware: correlation ID, principal context, request log line."""

import json
import logging
import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from phi_guard.core.context import correlation_id_ctx, principal_id_ctx
from phi_guard.domain.models.resource import REFERENCE_PATTERN

logger = logging.getLogger(__name__)

PRINCIPAL_HEADER = "X-Principal-ID"
CORRELATION_HEADER = "X-Correlation-ID"

# Room for the ".pN" suffix audit iteration appends per page.
_CORRELATION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@+\-]{0,99}$")
_PRINCIPAL_RE = re.compile(REFERENCE_PATTERN)

# Routes that operate on protected data or the audit trail.
PROTECTED_PREFIXES = ("/audit", "/admin")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Generate or preserve correlation ID; attach to request.state, response header, and logging context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        supplied = request.headers.get(CORRELATION_HEADER)
        if supplied and _CORRELATION_RE.match(supplied):
            correlation_id = supplied
        else:
            correlation_id = str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_id_ctx.set(correlation_id)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class PrincipalContextMiddleware(BaseHTTPMiddleware):
    """
    Extract X-Principal-ID; 401 on protected routes if missing or malformed.
    Authentication happens upstream; this only carries the asserted identity inward.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        principal_id = (request.headers.get(PRINCIPAL_HEADER) or "").strip()
        if principal_id and _PRINCIPAL_RE.match(principal_id):
            request.state.principal_id = principal_id
            principal_id_ctx.set(principal_id)
        elif request.url.path.startswith(PROTECTED_PREFIXES):
            return JSONResponse(
                status_code=401,
                content={"detail": "X-Principal-ID header is required"},
            )
        return await call_next(request)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """After response: one structured line (correlation_id, principal_id, path, method, status_code)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        request_event = {
            "event": "request_completed",
            "correlation_id": getattr(request.state, "correlation_id", None),
            "principal_id": getattr(request.state, "principal_id", None),
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
        }
        logger.info(json.dumps(request_event))
        return response
