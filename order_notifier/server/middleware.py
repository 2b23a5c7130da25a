"""
MODULE OVERVIEW:
FastAPI middleware to track request timings.
Where it fits: Middleware runs on *every* HTTP request, wrapping our endpoints.

WHAT IS HAPPENING HERE:
We add an `X-Process-Time-Ms` header so the admin tab can see the server-side cost
of each poll. The stream is skipped: its "duration" is the whole session lifetime.
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

UNTIMED_PATHS = ("/stream",)


class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(UNTIMED_PATHS):
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        process_time_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"

        # Polls arrive from every open tab; keep them out of the debug log
        if not request.url.path.startswith("/poll/"):
            logger.debug(f"method={request.method} path={request.url.path} status={response.status_code} ms={process_time_ms:.2f}")

        return response
