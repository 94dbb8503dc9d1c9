"""HTTP API layer with FastAPI.

Key components:
- **main**: Application factory and lifecycle management
- **middleware**: Per-request tracing scope so request logs carry trace ids
"""
