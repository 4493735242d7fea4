"""
Shared utilities for the RBAC service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for store connectivity
- base_service: FastAPI application skeleton (health, metrics, errors)

Do not import from service packages into shared/.
"""
