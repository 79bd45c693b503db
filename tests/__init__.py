"""
Terraform Dashboard Test Suite.

- unit/: Job tracker, variables, workspaces, audit store, notifications,
  templates and repositories
- integration/: HTTP API and AppContext lifecycle
- conftest.py: Shared fixtures (fake terraform executables, stores, settings)

Run tests with: pytest
"""
