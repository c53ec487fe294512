import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from tenantpay.core.logging import LOGGER_NAME, latency_bucket_ms, request_id_ctx_var

REQUEST_ID_HEADER = "x-request-id"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the lifetime of a request and echo it back."""

    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name
        self.logger = logging.getLogger(LOGGER_NAME)

    async def dispatch(self, request, call_next):
        request_id = request.headers.get(self.header_name) or uuid4().hex
        request.state.request_id = request_id

        started = time.perf_counter()
        token = request_id_ctx_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        response.headers[self.header_name] = request_id
        self.logger.info(
            "request.complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
            },
        )
        return response
