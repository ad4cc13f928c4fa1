from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

REQUEST_ID_HEADERS = ("X-Request-Id", "X-Correlation-Id")


def get_request_id() -> str:
    return request_id_var.get()


class RequestIdLogFilter(logging.Filter):
    """모든 로그 레코드에 request_id 속성 주입 (요청 밖에서는 '-')"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        # starlette 헤더 조회는 대소문자 무시
        request_id = next(
            (request.headers[name] for name in REQUEST_ID_HEADERS if request.headers.get(name)),
            None,
        ) or uuid4().hex

        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            logger.info(
                "%s %s -> %s (%.1f ms)",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        finally:
            request_id_var.reset(token)

        response.headers.setdefault("X-Request-Id", request_id)
        return response
