"""Core infrastructure package for shared functionality.

- **config**: Centralized configuration management with environment support
- **context**: Context-local correlation store read by logging
- **exceptions**: Structured exception hierarchy with error codes
- **logging**: Structured logging with trace correlation
- **observability**: Tracing backend, exporter and propagation setup
- **types**: Type aliases for better code clarity
"""
