"""Tracing context middleware for per-request log correlation.

For every request this middleware:
- Extracts the caller's trace context and baggage with the configured
  propagator (W3C, B3, AWS X-Ray or custom, plus remote baggage fields)
- Starts a server span as its child and makes it current
- Lets the correlation bridge mirror trace ids and baggage into the logging
  context for the whole request
- Returns the trace id in the ``X-Trace-Id`` response header

The scope is closed in all cases, including when the endpoint raises.
"""

from collections.abc import Sequence

from opentelemetry.trace import SpanKind
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from src.tracing.tracer import Tracing

TRACE_ID_HEADER = "X-Trace-Id"


class TracingContextMiddleware(BaseHTTPMiddleware):
    """Middleware opening a server span scope around each request.

    Args:
        app: The wrapped ASGI application.
        tracing: Tracing handle created at startup.
        excluded_paths: Paths served without a span.
    """

    def __init__(
        self,
        app: ASGIApp,
        tracing: Tracing,
        excluded_paths: Sequence[str] = (),
    ) -> None:
        super().__init__(app)
        self.tracing = tracing
        self.excluded_paths = frozenset(excluded_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process the request inside a server span scope.

        Args:
            request: The incoming request.
            call_next: The next middleware/endpoint.

        Returns:
            Response: Response with the trace id header when a trace is active.
        """
        if request.url.path in self.excluded_paths:
            return await call_next(request)

        with (
            self.tracing.extracted(dict(request.headers)),
            self.tracing.span(
                f"{request.method} {request.url.path}",
                kind=SpanKind.SERVER,
                **{
                    "http.request.method": request.method,
                    "url.path": request.url.path,
                },
            ) as span,
        ):
            response = await call_next(request)
            span.set_attribute("http.response.status_code", response.status_code)

            if context := self.tracing.current_context():
                response.headers[TRACE_ID_HEADER] = context.trace_id

            return response
