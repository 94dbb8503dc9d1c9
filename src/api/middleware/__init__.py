"""FastAPI middleware package.

- **TracingContextMiddleware**: Extracts the remote trace context, opens a
  server span scope per request and exposes the trace id in the response
"""
