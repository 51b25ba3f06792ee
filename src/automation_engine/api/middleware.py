"""
API 中间件
"""
import time
import uuid
import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)

# 探活请求只在 DEBUG 级别记录
QUIET_PATHS = {"/api/v1/monitoring/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """请求日志中间件，沿用调用方传入的 X-Request-ID"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration:.6f}"

        logger.log(
            level,
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"[request_id={request_id}] [duration={duration:.3f}s]"
        )
        return response
