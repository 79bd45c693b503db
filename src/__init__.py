"""
Terraform Dashboard - deployment orchestration backend.

This package contains the core modules for the dashboard backend:
- jobs: Workspace job tracker wrapping terraform/terragrunt processes
- audit: Append-only audit trail of privileged actions
- notifications: Live fan-out of job lifecycle events to UI sessions
- templates: Registry of versioned provisioning templates
- api: FastAPI application and endpoints
- config: Pydantic settings and configuration
- models: Data models and schemas
- monitoring: Prometheus metrics
"""

__version__ = "0.1.0"
