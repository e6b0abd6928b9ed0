import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from plansync.core.logging import latency_bucket_ms, request_id_ctx_var

access_logger = logging.getLogger("plansync.access")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Give every request an id (the caller's x-request-id, or a fresh uuid4).

    The id is bound to request_id_ctx_var for the duration of the request so
    plan events logged deeper down carry it, and it is echoed on the response.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        request_id = request.headers.get(self.header_name) or uuid4().hex
        request.state.request_id = request_id
        bound = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(bound)

        response.headers[self.header_name] = request_id
        access_logger.info(
            "request.complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
            },
        )
        return response
