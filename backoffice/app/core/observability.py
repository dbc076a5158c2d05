"""
Access log middleware.

Tags every request with a correlation ID and writes one access line naming
the authenticated caller and session, when there is one.
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("backoffice.access")

CORRELATION_HEADER = "X-Correlation-ID"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(duration_ms)

        # Set by get_current_user; anonymous routes leave them unset
        user_id = getattr(request.state, "user_id", None)
        session_id = getattr(request.state, "session_id", None)

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "ip": request.client.host if request.client else None,
            "user_id": user_id,
            "session_id": session_id,
        }

        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s -> %s in %sms (user=%s session=%s cid=%s)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            user_id if user_id is not None else "-",
            session_id if session_id is not None else "-",
            correlation_id,
            extra=log_data,
        )

        return response
