"""
Deployment jobs.

- tracker: JobTracker driving jobs through plan and apply
- state_machine: allowed lifecycle transitions
- variables: template variable validation and coercion
- workspace: per-job working directories
- process: provisioning tool subprocess handle
- repository: job persistence (in-memory or Supabase)

Usage:
    from src.jobs import JobTracker, ActorContext

    job = await tracker.create_job("ec2-instance", {"name": "web"}, "dev", ActorContext("alice"))
    await tracker.start_plan(job.id)
"""

from src.jobs.process import ProcessHandle
from src.jobs.repository import (
    DEPLOYMENT_JOBS_TABLE_SQL,
    InMemoryJobRepository,
    JobRepository,
    SupabaseJobRepository,
    create_job_repository,
)
from src.jobs.state_machine import TRANSITIONS, can_transition, is_valid_path
from src.jobs.tracker import ORPHANED_MESSAGE, SYSTEM_ACTOR, ActorContext, JobTracker
from src.jobs.variables import coerce_value, resolve_variables, validate_environment
from src.jobs.workspace import WorkspaceManager

__all__ = [
    "ActorContext",
    "JobTracker",
    "SYSTEM_ACTOR",
    "ORPHANED_MESSAGE",
    "ProcessHandle",
    "WorkspaceManager",
    "JobRepository",
    "InMemoryJobRepository",
    "SupabaseJobRepository",
    "create_job_repository",
    "DEPLOYMENT_JOBS_TABLE_SQL",
    "TRANSITIONS",
    "can_transition",
    "is_valid_path",
    "coerce_value",
    "resolve_variables",
    "validate_environment",
]
