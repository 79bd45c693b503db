"""
Application context for the dashboard backend.

Builds every long-lived component from settings and manages their lifecycle.
One context is created per application; API handlers reach it through
``request.app.state.context``.

Usage:
    # At application startup
    context = AppContext(settings)
    await context.initialize()

    job = await context.tracker.create_job(...)

    # At shutdown
    await context.shutdown()
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.audit.actions import AuditAction
from src.audit.store import AuditLogStore
from src.config.settings import Settings, get_settings
from src.core.exceptions import ConfigurationError
from src.jobs.repository import create_job_repository
from src.jobs.tracker import SYSTEM_ACTOR, InstanceStateLookup, JobTracker
from src.notifications.dispatcher import NotificationDispatcher
from src.templates.registry import TemplateRegistry

logger = structlog.get_logger(__name__)

MAINTENANCE_JOB_ID = "dashboard_maintenance"


class AppContext:
    """
    Owns the audit store, notification dispatcher, template registry and job
    tracker, plus the maintenance scheduler.

    Args:
        settings: Application settings. Defaults to get_settings().
        supabase_client: Pre-built Supabase client. Created from settings
            when Supabase is configured and none is given.
        instance_state_lookup: Async callable returning the operational
            state of an instance id, used for apply preconditions.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        supabase_client: Any = None,
        instance_state_lookup: Optional[InstanceStateLookup] = None,
    ):
        self._settings = settings or get_settings()
        self._supabase = supabase_client
        if self._supabase is None and self._settings.supabase_enabled:
            from supabase import create_client

            self._supabase = create_client(
                self._settings.supabase_url,
                self._settings.supabase_key.get_secret_value(),
            )

        self.audit = AuditLogStore.from_settings(self._settings, client=self._supabase)
        self.notifications = NotificationDispatcher.from_settings(self._settings)
        self.templates = TemplateRegistry()
        try:
            self.tracker = JobTracker.from_settings(
                self._settings,
                self.templates,
                self.audit,
                self.notifications,
                repository=create_job_repository(self._settings, client=self._supabase),
                instance_state_lookup=instance_state_lookup,
            )
        except OSError as e:
            raise ConfigurationError(
                f"workspace root is not usable: {e}", config_key="workspace_root"
            ) from e

        self._scheduler: AsyncIOScheduler | None = None
        self._initialized = False

        logger.info("app_context_created", environment=self._settings.app_env)

    @property
    def settings(self) -> Settings:
        """Get application settings."""
        return self._settings

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Load templates, restore persisted jobs, fail orphaned ones and start
        the maintenance schedule.

        Call this at application startup.
        """
        if self._initialized:
            logger.warning("app_context_already_initialized")
            return

        logger.info("app_context_initializing")

        if self._settings.templates_dir is not None:
            self.templates.load_directory(self._settings.templates_dir)

        repository = self.tracker.repository
        if hasattr(repository, "load"):
            await repository.load()
        await self.tracker.recover_orphaned_jobs()

        if self._settings.maintenance_interval_minutes > 0:
            self._scheduler = AsyncIOScheduler()
            self._scheduler.add_job(
                self.run_maintenance,
                trigger=IntervalTrigger(minutes=self._settings.maintenance_interval_minutes),
                id=MAINTENANCE_JOB_ID,
                name="Dashboard maintenance",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self._scheduler.start()
            logger.info(
                "maintenance_scheduled",
                interval_minutes=self._settings.maintenance_interval_minutes,
            )

        await self.audit.log(
            AuditAction.SYSTEM_STARTUP,
            resource_type="system",
            details={"templates": len(self.templates), "environment": self._settings.app_env},
            **SYSTEM_ACTOR.audit_fields(),
        )

        self._initialized = True
        logger.info("app_context_initialized", templates=len(self.templates))

    async def run_maintenance(self) -> dict[str, int]:
        """
        Purge audit entries past retention, delete expired workspaces and
        close idle notification sessions.

        Each step is isolated: a failing step is logged and the other still runs.
        """
        result = {"audit_purged": 0, "workspaces_removed": 0, "sessions_closed": 0}

        try:
            result["audit_purged"] = await self.audit.purge(self._settings.audit_retention_days)
        except Exception as e:
            logger.error("maintenance_audit_purge_failed", error=str(e), error_type=type(e).__name__)

        try:
            result["workspaces_removed"] = await self.tracker.cleanup_workspaces()
        except Exception as e:
            logger.error("maintenance_workspace_cleanup_failed", error=str(e), error_type=type(e).__name__)

        if self._settings.notification_session_idle_minutes > 0:
            result["sessions_closed"] = self.notifications.reap_idle(
                timedelta(minutes=self._settings.notification_session_idle_minutes)
            )

        await self.audit.log(
            AuditAction.SYSTEM_MAINTENANCE,
            resource_type="system",
            details=result,
            **SYSTEM_ACTOR.audit_fields(),
        )
        logger.info("maintenance_completed", **result)
        return result

    async def shutdown(self) -> None:
        """
        Stop the scheduler, cancel running processes and close sessions.

        Call this at application shutdown.
        """
        logger.info("app_context_shutting_down")

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        await self.tracker.shutdown()
        self.notifications.close()

        await self.audit.log(
            AuditAction.SYSTEM_SHUTDOWN,
            resource_type="system",
            **SYSTEM_ACTOR.audit_fields(),
        )

        self._initialized = False
        logger.info("app_context_shutdown_complete")
