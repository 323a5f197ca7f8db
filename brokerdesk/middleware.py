"""
Middleware for request tracing and timing.
"""

import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("brokerdesk")

# Sweeps and slip/endorsement transitions should stay well under this
SLOW_REQUEST_THRESHOLD_MS = 500


class PerformanceMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an id and log its duration.

    - Reuses an incoming X-Request-ID or generates a UUID
    - Adds X-Request-ID and X-Response-Time-Ms response headers
    - Warns when a request exceeds the slow threshold
    """

    def __init__(self, app: ASGIApp, slow_threshold_ms: float = SLOW_REQUEST_THRESHOLD_MS):
        super().__init__(app)
        self.slow_threshold_ms = slow_threshold_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        route = f"{request.method} {request.url.path}"
        actor = f"{request.headers.get('X-User-Id', 'anonymous')}/{request.headers.get('X-Role', '-')}"

        started = time.time()
        logger.info(f"Request started | request_id={request_id} | route={route} | actor={actor}")

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = (time.time() - started) * 1000
            logger.error(
                f"Request failed | request_id={request_id} | route={route} | "
                f"elapsed_ms={elapsed_ms:.2f} | error={e}"
            )
            raise

        elapsed_ms = (time.time() - started) * 1000
        logger.info(
            f"Request completed | request_id={request_id} | route={route} | "
            f"status={response.status_code} | elapsed_ms={elapsed_ms:.2f}"
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"

        if elapsed_ms > self.slow_threshold_ms:
            logger.warning(
                f"Slow request | request_id={request_id} | route={route} | "
                f"elapsed_ms={elapsed_ms:.2f} | threshold_ms={self.slow_threshold_ms}"
            )

        return response
