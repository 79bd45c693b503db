"""
Dashboard FastAPI Application.

This module contains the REST API for the dashboard backend:

- main: FastAPI application factory and configuration
- routes/: API endpoint definitions organized by domain
- models: Pydantic request/response models
- dependencies: FastAPI dependency injection providers

API Structure:
- /health - Health check and readiness probes
- /metrics - Prometheus metrics
- /api/v1/templates - Provisioning templates
- /api/v1/jobs - Deployment jobs (create, plan, apply, cancel, output)
- /api/v1/audit - Audit log queries, statistics and purge
- /api/v1/notifications - Live notification sessions

Example:
    from src.api.main import app

    # Run with: uvicorn src.api.main:app --reload
"""

from src.api.main import app, create_app

__all__ = ["app", "create_app"]
