"""
Request middleware: correlation IDs, timing and one log line per request.

The request id and, for region routes, the region name are put into the log
context so every log line emitted while serving the request carries them.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from crisiswatch.app.core.logging_config import log_context

logger = logging.getLogger(__name__)

# Probes and docs are not worth a log line each
QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")

_REGION_PATH_RE = re.compile(r"^/api/v1/crisis/([^/]+)/(?:assessment|analysis|plan)$")


def region_from_path(path: str) -> Optional[str]:
    match = _REGION_PATH_RE.match(path)
    return match.group(1) if match else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Adds ``X-Request-ID`` (echoing the caller's if given) and
    ``X-Process-Time`` headers, and logs method, path, status and duration.
    4xx/5xx responses are logged at WARNING.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        start = time.perf_counter()

        with log_context(
            request_id=request_id,
            client_ip=request.client.host if request.client else None,
            region=region_from_path(path),
        ):
            try:
                response = await call_next(request)
            except Exception:
                self._log(request, 500, start, logging.ERROR)
                raise

            duration_ms = self._log(request, response.status_code, start)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        return response

    @staticmethod
    def _log(request: Request, status: int, start: float, level: Optional[int] = None) -> float:
        duration_ms = (time.perf_counter() - start) * 1000
        path = request.url.path
        if level is None:
            if path.startswith(QUIET_PREFIXES):
                return duration_ms
            level = logging.WARNING if status >= 400 else logging.INFO
        logger.log(
            level,
            "%s %s → %d (%.1fms)", request.method, path, status, duration_ms,
            extra={"duration_ms": duration_ms, "status_code": status, "endpoint": path},
        )
        return duration_ms
