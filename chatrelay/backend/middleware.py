from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
	"""Tags each request with an id and reports how long the handler took."""

	async def dispatch(self, request: Request, call_next) -> Response:
		request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
		request.state.request_id = request_id
		start = time.perf_counter()
		response = await call_next(request)
		elapsed = time.perf_counter() - start
		response.headers["X-Request-ID"] = request_id
		response.headers["X-Process-Time"] = f"{elapsed:.6f}"
		logger.debug("%s %s -> %s in %.1fms", request.method, request.url.path, response.status_code, elapsed * 1000)
		return response
