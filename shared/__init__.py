"""
Shared utilities for the Query Cache Exporter.

This package aggregates common building blocks consumed by the service:

- config: Process configuration via pydantic-settings
- logging: Structured logging with request/cache-key correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI application shell (health, metrics, error handlers)

Do not import from service packages into shared/.
"""
