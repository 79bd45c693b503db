"""Deployment job persistence.

Supabase Table Schema (deployment_jobs): see DEPLOYMENT_JOBS_TABLE_SQL.

Captured output is not stored in the table; it lives in each job's
``output.log`` and in memory while the service runs.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol
from uuid import UUID

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config.settings import Settings
from src.core.exceptions import StorageError
from src.models.schemas import DeploymentJob, JobState

logger = structlog.get_logger(__name__)

DEPLOYMENT_JOBS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS deployment_jobs (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    template_id TEXT NOT NULL,
    template_version TEXT NOT NULL,
    variables JSONB NOT NULL DEFAULT '{}',
    environment TEXT NOT NULL,
    working_dir TEXT NOT NULL UNIQUE,
    destroy BOOLEAN NOT NULL DEFAULT false,
    state TEXT NOT NULL,
    exit_code INTEGER,
    error_output TEXT,
    history JSONB NOT NULL DEFAULT '[]',
    warnings JSONB NOT NULL DEFAULT '[]',
    cancellation_requested BOOLEAN NOT NULL DEFAULT false,
    cancel_reason TEXT,
    cancel_forced BOOLEAN NOT NULL DEFAULT false,
    timeout_seconds DOUBLE PRECISION,
    user_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_deployment_jobs_environment ON deployment_jobs(environment);
CREATE INDEX IF NOT EXISTS idx_deployment_jobs_state ON deployment_jobs(state);
CREATE INDEX IF NOT EXISTS idx_deployment_jobs_created_at ON deployment_jobs(created_at DESC);
"""


class JobRepository(Protocol):
    """Protocol for job storage backends."""

    async def save(self, job: DeploymentJob) -> None: ...

    async def get(self, job_id: UUID) -> Optional[DeploymentJob]: ...

    async def list(
        self,
        environment: Optional[str] = None,
        state: Optional[JobState] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[DeploymentJob]: ...

    async def count(self, environment: Optional[str] = None, state: Optional[JobState] = None) -> int: ...

    async def all(self) -> list[DeploymentJob]: ...


def _select(
    jobs: list[DeploymentJob],
    environment: Optional[str],
    state: Optional[JobState],
    limit: Optional[int],
    offset: int,
) -> list[DeploymentJob]:
    matched = [
        job
        for job in jobs
        if (environment is None or job.environment == environment)
        and (state is None or job.state == state)
    ]
    matched.sort(key=lambda j: j.created_at, reverse=True)
    end = offset + limit if limit else None
    return matched[offset:end]


class InMemoryJobRepository:
    """
    In-memory job repository for development or when Supabase is not configured.

    WARNING: Does not persist across restarts.
    """

    def __init__(self) -> None:
        self._jobs: dict[UUID, DeploymentJob] = {}

    async def save(self, job: DeploymentJob) -> None:
        self._jobs[job.id] = job

    async def get(self, job_id: UUID) -> Optional[DeploymentJob]:
        return self._jobs.get(job_id)

    async def list(self, environment=None, state=None, limit=None, offset=0) -> list[DeploymentJob]:
        return _select(list(self._jobs.values()), environment, state, limit, offset)

    async def count(self, environment=None, state=None) -> int:
        return len(_select(list(self._jobs.values()), environment, state, None, 0))

    async def all(self) -> list[DeploymentJob]:
        return list(self._jobs.values())


class SupabaseJobRepository:
    """Job repository backed by the Supabase ``deployment_jobs`` table.

    Reads are served from a write-through cache filled by :meth:`load`, so the
    tracker always sees the live job objects it mutates.
    """

    TABLE = "deployment_jobs"

    def __init__(self, client: Any) -> None:
        self._client = client
        self._cache: dict[UUID, DeploymentJob] = {}

    async def load(self) -> int:
        """Fill the cache from the table. Returns the number of jobs loaded."""
        try:
            result = self._client.table(self.TABLE).select("*").execute()
        except Exception as e:
            raise StorageError("supabase", f"failed to load jobs: {e}") from e
        for row in result.data or []:
            job = DeploymentJob.model_validate(row)
            self._cache[job.id] = job
        logger.info("jobs_loaded", count=len(self._cache))
        return len(self._cache)

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.2, max=2), reraise=True)
    async def _upsert(self, row: dict[str, Any]) -> None:
        self._client.table(self.TABLE).upsert(row).execute()

    async def save(self, job: DeploymentJob) -> None:
        self._cache[job.id] = job
        row = job.model_dump(mode="json", exclude={"output"})
        try:
            await self._upsert(row)
        except Exception as e:
            raise StorageError("supabase", f"failed to save job {job.id}: {e}") from e

    async def get(self, job_id: UUID) -> Optional[DeploymentJob]:
        return self._cache.get(job_id)

    async def list(self, environment=None, state=None, limit=None, offset=0) -> list[DeploymentJob]:
        return _select(list(self._cache.values()), environment, state, limit, offset)

    async def count(self, environment=None, state=None) -> int:
        return len(_select(list(self._cache.values()), environment, state, None, 0))

    async def all(self) -> list[DeploymentJob]:
        return list(self._cache.values())


def create_job_repository(settings: Settings, client: Any = None) -> JobRepository:
    """Pick the Supabase repository when configured, in-memory otherwise."""
    if client is None and settings.supabase_enabled:
        from supabase import create_client

        client = create_client(
            settings.supabase_url,
            settings.supabase_key.get_secret_value(),
        )
    if client is not None:
        logger.info("job_repository_backend", backend="supabase")
        return SupabaseJobRepository(client)
    logger.info("job_repository_backend", backend="memory")
    return InMemoryJobRepository()
