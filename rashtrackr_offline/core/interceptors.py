"""Ordered response interceptors applied to network responses.

Interceptors run in registration order. Each one receives the request and
the response produced so far and returns the response to pass on, which
lets later interceptors see what earlier ones did.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from rashtrackr_offline.database.models import Request, Response
from rashtrackr_offline.utils.logger import get_logger


class ResponseInterceptor:
    """Base class for response interceptors."""

    name = "interceptor"

    def process(self, request: Request, response: Response) -> Response:
        return response


class ResponseInterceptorChain:
    """Runs interceptors in the order they were added."""

    def __init__(self, interceptors: Optional[List[ResponseInterceptor]] = None) -> None:
        self._interceptors: List[ResponseInterceptor] = list(interceptors or [])
        self.logger = get_logger("core.interceptors")

    def add(self, interceptor: ResponseInterceptor) -> None:
        self._interceptors.append(interceptor)

    def remove(self, interceptor: ResponseInterceptor) -> None:
        self._interceptors.remove(interceptor)

    @property
    def interceptors(self) -> List[ResponseInterceptor]:
        return list(self._interceptors)

    def process(self, request: Request, response: Response) -> Response:
        for interceptor in self._interceptors:
            try:
                result = interceptor.process(request, response)
            except Exception as e:
                # A broken interceptor must not take the response down with it
                self.logger.error(f"Interceptor {interceptor.name} failed for {request.url}: {e}")
                continue
            if result is not None:
                response = result
        return response


class RateLimitInterceptor(ResponseInterceptor):
    """Detects HTTP 429 responses and notifies listeners.

    The response itself is passed through untouched.
    """

    name = "rate_limit"

    def __init__(self, on_rate_limited: Optional[Callable[[Dict[str, Any]], None]] = None) -> None:
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []
        if on_rate_limited is not None:
            self._listeners.append(on_rate_limited)
        self._lock = threading.Lock()
        self.count = 0
        self.last_retry_after: Optional[str] = None
        self.last_seen: Optional[float] = None
        self.logger = get_logger("core.interceptors.rate_limit")

    def add_listener(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        self._listeners.append(listener)

    def process(self, request: Request, response: Response) -> Response:
        if response.status != 429:
            return response
        with self._lock:
            self.count += 1
            self.last_retry_after = response.header("Retry-After")
            self.last_seen = time.time()
            event = {
                "url": request.url,
                "method": request.method,
                "retry_after": self.last_retry_after,
                "count": self.count,
            }
        self.logger.warning(f"Rate limited on {request.method} {request.url} (retry after: {event['retry_after']})")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.error(f"Rate limit listener failed: {e}")
        return response

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"count": self.count, "last_retry_after": self.last_retry_after, "last_seen": self.last_seen}
