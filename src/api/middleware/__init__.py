"""Middleware package for the dashboard API.

Provides custom middleware components for the FastAPI application.
"""

from src.api.middleware.metrics import RequestMetricsMiddleware

__all__ = ["RequestMetricsMiddleware"]
