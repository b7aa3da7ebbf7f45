"""Request logging middleware with request IDs."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.services.rate_limit_service import get_client_ip
from app.utils.logging_utils import redact_ip

logger = logging.getLogger(__name__)

# Probes would drown out real traffic
SKIP_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every API request with a request ID, status and timing.

    Only the path is logged, never the query string, cookies or body, so
    verification codes and session tokens stay out of the logs.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        method = request.method
        path = request.url.path
        client_ip = redact_ip(get_client_ip(request))

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"Request failed | "
                f"id={request_id} | "
                f"method={method} | "
                f"path={path} | "
                f"duration={duration_ms}ms | "
                f"ip={client_ip} | "
                f"error={type(e).__name__}"
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        message = (
            f"Request completed | "
            f"id={request_id} | "
            f"method={method} | "
            f"path={path} | "
            f"status={response.status_code} | "
            f"duration={duration_ms}ms | "
            f"ip={client_ip}"
        )
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)

        response.headers["X-Request-ID"] = request_id
        return response
