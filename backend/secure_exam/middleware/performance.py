import time
import logging
from collections import deque
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable
import psutil

perf_logger = logging.getLogger("performance")


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Times every request, tags it with an id and keeps the recent slow ones."""

    def __init__(self, app, slow_request_threshold: float = 1.0, keep_slow_requests: int = 100):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        self.request_count = 0
        self.total_response_time = 0.0
        self.slow_requests = deque(maxlen=keep_slow_requests)
        self._process = psutil.Process()

    @property
    def average_response_time(self) -> float:
        if not self.request_count:
            return 0.0
        return self.total_response_time / self.request_count

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        memory_before = self._process.memory_info().rss

        self.request_count += 1
        request_id = f"req_{self.request_count}_{int(start_time)}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            perf_logger.error(
                f"Request error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Time: {process_time:.3f}s"
            )
            raise

        process_time = time.time() - start_time
        self.total_response_time += process_time
        memory_delta = self._process.memory_info().rss - memory_before

        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-ID"] = request_id

        if process_time > self.slow_request_threshold:
            perf_logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time:.3f}s (threshold: {self.slow_request_threshold}s)"
            )
            self.slow_requests.append({
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time": round(process_time, 3),
                "timestamp": start_time,
            })

        perf_logger.info(
            f"{request.method} {request.url.path} - "
            f"{response.status_code} - {process_time:.3f}s - "
            f"Memory: {memory_delta/1024/1024:.1f}MB"
        )
        return response
