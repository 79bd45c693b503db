"""
Pytest Configuration and Shared Fixtures.

This module provides common fixtures for all tests:

- make_tool: writes a fake terraform executable (shell script) to tmp_path
- template / registry: a small template with a string and a numeric variable
- audit / dispatcher: in-memory audit store and notification dispatcher
- make_tracker: JobTracker factory over a tmp workspace root
- settings: Settings isolated from the environment, pointing at tmp_path
"""

import stat
from pathlib import Path
from typing import Optional

import pytest

from src.audit.store import AuditLogStore
from src.config.settings import Settings
from src.jobs.repository import InMemoryJobRepository
from src.jobs.tracker import JobTracker
from src.jobs.workspace import WorkspaceManager
from src.models.schemas import NotificationSettings, Template, VariableSpec, VariableType
from src.notifications.dispatcher import NotificationDispatcher
from src.templates.registry import TemplateRegistry

PLAN_OUTPUT = "Plan: 1 to add, 0 to change, 0 to destroy."
APPLY_OUTPUT = "Apply complete! Resources: 1 added, 0 changed, 0 destroyed."

# runs forever and ignores SIGTERM; only SIGKILL stops it
IGNORE_TERM = "trap '' TERM\n    while true; do sleep 0.1; done"


def write_tool(
    directory: Path,
    init: str = "echo 'Terraform has been successfully initialized!'",
    plan: str = f"echo '{PLAN_OUTPUT}'",
    apply: str = f"echo '{APPLY_OUTPUT}'",
    name: str = "terraform",
) -> Path:
    """Write an executable shell script that stands in for terraform."""
    path = directory / name
    path.write_text(
        "#!/bin/sh\n"
        'case "$1" in\n'
        f"  init)\n    {init}\n    ;;\n"
        f"  plan)\n    {plan}\n    ;;\n"
        f"  apply)\n    {apply}\n    ;;\n"
        "esac\n"
    )
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_tool(tmp_path):
    """Factory for fake terraform executables."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def factory(**commands) -> Path:
        return write_tool(bin_dir, **commands)

    return factory


@pytest.fixture
def template() -> Template:
    """A template declaring a required string and a required number."""
    return Template(
        id="test-server",
        name="Test Server",
        version="2.0.0",
        category="compute",
        terraform_code='resource "null_resource" "this" {}\n',
        variables=[
            VariableSpec(name="name", type=VariableType.STRING),
            VariableSpec(name="size", type=VariableType.NUMBER),
            VariableSpec(name="region", type=VariableType.STRING, required=False, default="us-east-1"),
            VariableSpec(name="password", type=VariableType.STRING, required=False, sensitive=True),
        ],
    )


@pytest.fixture
def instance_template() -> Template:
    """A template that targets an existing instance."""
    return Template(
        id="volume-expansion",
        name="Volume Expansion",
        terraform_code='resource "null_resource" "this" {}\n',
        requires_running_instance=True,
        variables=[
            VariableSpec(name="instance_id", type=VariableType.STRING),
            VariableSpec(name="size", type=VariableType.NUMBER),
        ],
    )


@pytest.fixture
def registry(template, instance_template) -> TemplateRegistry:
    return TemplateRegistry([template, instance_template])


@pytest.fixture
def audit() -> AuditLogStore:
    return AuditLogStore()


@pytest.fixture
def dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(NotificationSettings(auto_hide=False))


@pytest.fixture
def workspace_root(tmp_path) -> Path:
    return tmp_path / "workspaces"


@pytest.fixture
async def make_tracker(workspace_root, registry, audit, dispatcher):
    """Factory for JobTrackers; every tracker is shut down after the test."""
    trackers: list[JobTracker] = []

    def factory(
        tool: Path,
        audit_store: Optional[AuditLogStore] = None,
        repository: Optional[InMemoryJobRepository] = None,
        **kwargs,
    ) -> JobTracker:
        kwargs.setdefault("cancel_grace_seconds", 0.5)
        tracker = JobTracker(
            registry,
            WorkspaceManager(workspace_root),
            repository or InMemoryJobRepository(),
            audit_store or audit,
            dispatcher,
            binary=str(tool),
            **kwargs,
        )
        trackers.append(tracker)
        return tracker

    yield factory

    for tracker in trackers:
        await tracker.shutdown()


@pytest.fixture
def settings(tmp_path, make_tool, template) -> Settings:
    """Settings isolated from the environment and .env files."""
    templates_dir = tmp_path / "templates"
    templates_dir.mkdir()
    (templates_dir / "test-server.json").write_text(template.model_dump_json())

    return Settings(
        _env_file=None,
        supabase_url=None,
        supabase_key=None,
        terraform_binary=str(make_tool()),
        workspace_root=tmp_path / "workspaces",
        templates_dir=templates_dir,
        cancel_grace_seconds=0.5,
        maintenance_interval_minutes=0,
        api_key_enabled=False,
        app_env="development",
    )
