"""
Request timing middleware.

Tags every request with an ``X-Request-ID`` (client supplied or generated)
and answers with ``X-Request-Duration-Ms``. Requests slower than
SLOW_THRESHOLD_MS log a warning, 5xx responses log an error, everything else
logs at DEBUG. Health probes are not logged.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000

_UNLOGGED_PATHS = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})


def _log_level(status_code: int, duration_ms: float) -> int:
    if duration_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING
    if status_code >= 500:
        return logging.ERROR
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_response(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = g.request_id

        if request.path not in _UNLOGGED_PATHS:
            logger.log(
                _log_level(response.status_code, duration_ms),
                "%s %s -> %d (%.0fms)",
                request.method, request.path, response.status_code, duration_ms,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 1),
                    "remote_addr": request.remote_addr,
                },
            )
        return response
