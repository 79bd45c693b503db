"""Workspace job tracker.

Maps deployment requests to isolated working directories, drives the
provisioning tool through the job lifecycle and records every transition in
the audit log and the notification stream.

Each running phase (plan: ``init`` + ``plan``; apply: ``apply``) is one
asyncio task wrapping the external processes. Transitions of one job are
serialised by a per-job lock and always re-check the current state, so two
concurrent requests can never both advance a job.

Usage:
    tracker = JobTracker.from_settings(settings, templates, audit, notifications)

    job = await tracker.create_job("ec2-instance", {"name": "web"}, "dev", actor)
    await tracker.start_plan(job.id, actor)
    async for line in tracker.stream_output(job.id):
        print(line.text)
    await tracker.wait(job.id)
    job.raise_for_state()
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence
from uuid import UUID, uuid4

import structlog

from src.audit.actions import AuditAction
from src.audit.store import AuditLogStore
from src.config.settings import Settings
from src.core.exceptions import (
    ConflictError,
    InfrastructureError,
    JobNotFoundError,
    PreconditionError,
    StorageError,
    ValidationError,
)
from src.jobs.process import ProcessHandle
from src.jobs.repository import JobRepository, create_job_repository
from src.jobs.state_machine import (
    FAILURE_STATES,
    can_transition,
    failure_state_for,
    success_state_for,
)
from src.jobs.variables import resolve_variables, validate_environment
from src.jobs.workspace import PLAN_FILE, TFVARS_FILE, WorkspaceManager
from src.models.schemas import (
    CancelReason,
    DeploymentJob,
    JobState,
    NotificationAction,
    OutputLine,
    StateChange,
    Template,
    utcnow,
)
from src.monitoring.metrics import (
    record_job_transition,
    record_precondition_warning,
    track_process_execution,
)
from src.notifications.dispatcher import NotificationDispatcher
from src.templates.registry import TemplateRegistry

logger = structlog.get_logger(__name__)

ORPHANED_MESSAGE = "process lost on service restart"

InstanceStateLookup = Callable[[str], Awaitable[Optional[str]]]

_TRANSITION_ACTIONS = {
    JobState.CREATED: AuditAction.DEPLOYMENT_CREATE,
    JobState.PLANNING: AuditAction.DEPLOYMENT_PLAN,
    JobState.PLANNED: AuditAction.DEPLOYMENT_PLAN_COMPLETE,
    JobState.APPLYING: AuditAction.DEPLOYMENT_EXECUTE,
    JobState.SUCCEEDED: AuditAction.DEPLOYMENT_APPLY_COMPLETE,
    JobState.PLAN_FAILED: AuditAction.DEPLOYMENT_PLAN_FAILED,
    JobState.APPLY_FAILED: AuditAction.DEPLOYMENT_APPLY_FAILED,
    JobState.CANCELLED: AuditAction.DEPLOYMENT_CANCEL,
}


@dataclass(frozen=True)
class ActorContext:
    """Who asked for an operation, as recorded in the audit log."""

    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def audit_fields(self) -> dict[str, Optional[str]]:
        return {
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


SYSTEM_ACTOR = ActorContext(user_agent="system")


@dataclass
class _JobRuntime:
    """In-process state of one job that is never persisted."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    output_changed: asyncio.Condition = field(default_factory=asyncio.Condition)
    done: asyncio.Event = field(default_factory=asyncio.Event)
    phase_active: bool = False
    actor: ActorContext = SYSTEM_ACTOR
    handle: Optional[ProcessHandle] = None
    task: Optional[asyncio.Task] = None
    escalation: Optional[asyncio.Task] = None
    deadline: Optional[asyncio.TimerHandle] = None
    killed: bool = False

    def __post_init__(self) -> None:
        self.done.set()


def _masked_variables(template: Template, variables: dict[str, Any]) -> dict[str, Any]:
    sensitive = {spec.name for spec in template.variables if spec.sensitive}
    return {k: ("***" if k in sensitive else v) for k, v in variables.items()}


class JobTracker:
    """Creates deployment jobs and runs them through plan and apply."""

    def __init__(
        self,
        templates: TemplateRegistry,
        workspaces: WorkspaceManager,
        repository: JobRepository,
        audit: AuditLogStore,
        notifications: NotificationDispatcher,
        *,
        binary: str = "terraform",
        job_timeout_seconds: float = 3600.0,
        cancel_grace_seconds: float = 10.0,
        precondition_policy: str = "warn",
        instance_state_lookup: Optional[InstanceStateLookup] = None,
    ) -> None:
        self._templates = templates
        self._workspaces = workspaces
        self._repository = repository
        self._audit = audit
        self._notifications = notifications
        self._binary = binary
        self._job_timeout = job_timeout_seconds
        self._grace = cancel_grace_seconds
        self._precondition_policy = precondition_policy
        self._instance_state_lookup = instance_state_lookup
        self._runtimes: dict[UUID, _JobRuntime] = {}
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        templates: TemplateRegistry,
        audit: AuditLogStore,
        notifications: NotificationDispatcher,
        repository: Optional[JobRepository] = None,
        instance_state_lookup: Optional[InstanceStateLookup] = None,
    ) -> "JobTracker":
        workspaces = WorkspaceManager(
            settings.workspace_root,
            retention=timedelta(hours=settings.workspace_retention_hours),
        )
        workspaces.ensure_root()
        return cls(
            templates,
            workspaces,
            repository or create_job_repository(settings),
            audit,
            notifications,
            binary=settings.provisioning_binary,
            job_timeout_seconds=settings.job_timeout_seconds,
            cancel_grace_seconds=settings.cancel_grace_seconds,
            precondition_policy=settings.precondition_policy,
            instance_state_lookup=instance_state_lookup,
        )

    @property
    def workspaces(self) -> WorkspaceManager:
        return self._workspaces

    @property
    def repository(self) -> JobRepository:
        return self._repository

    # =========================================================================
    # Queries
    # =========================================================================

    async def _get_job(self, job_id: UUID | str) -> DeploymentJob:
        if not isinstance(job_id, UUID):
            try:
                job_id = UUID(str(job_id))
            except ValueError:
                raise JobNotFoundError(job_id) from None
        job = await self._repository.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def _lookup(self, job_id: UUID | str) -> tuple[DeploymentJob, _JobRuntime]:
        job = await self._get_job(job_id)
        runtime = self._runtimes.setdefault(job.id, _JobRuntime())
        return job, runtime

    async def get_status(self, job_id: UUID | str) -> DeploymentJob:
        """Return the job (raises JobNotFoundError for unknown ids)."""
        return await self._get_job(job_id)

    async def list_jobs(
        self,
        environment: Optional[str] = None,
        state: Optional[JobState] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeploymentJob]:
        return await self._repository.list(
            environment=environment, state=state, limit=limit, offset=offset
        )

    async def count_jobs(self, environment: Optional[str] = None, state: Optional[JobState] = None) -> int:
        """Number of jobs matching the filters, ignoring pagination."""
        return await self._repository.count(environment=environment, state=state)

    def is_active(self, job_id: UUID) -> bool:
        runtime = self._runtimes.get(job_id)
        return runtime is not None and runtime.phase_active

    async def wait(self, job_id: UUID | str, timeout: Optional[float] = None) -> DeploymentJob:
        """Wait until the job has no running process phase."""
        job = await self._get_job(job_id)
        runtime = self._runtimes.get(job.id)
        if runtime is None:
            return job
        if timeout is None:
            await runtime.done.wait()
        else:
            await asyncio.wait_for(runtime.done.wait(), timeout)
        return job

    async def stream_output(self, job_id: UUID | str, offset: int = 0) -> AsyncIterator[OutputLine]:
        """Yield captured output lines from ``offset`` onwards.

        Follows a running process until it exits; for an idle job it yields
        what has been captured so far and stops.
        """
        job = await self._get_job(job_id)
        position = max(offset, 0)
        runtime = self._runtimes.get(job.id)
        if runtime is None:
            for line in job.output[position:]:
                yield line
            return
        while True:
            async with runtime.output_changed:
                await runtime.output_changed.wait_for(
                    lambda: position < len(job.output) or not runtime.phase_active
                )
                batch = job.output[position:]
            if not batch:
                return
            for line in batch:
                yield line
            position += len(batch)

    # =========================================================================
    # Lifecycle Operations
    # =========================================================================

    async def create_job(
        self,
        template_id: str,
        variables: Optional[dict[str, Any]],
        environment: str,
        actor: ActorContext = SYSTEM_ACTOR,
        *,
        name: Optional[str] = None,
        destroy: bool = False,
        timeout_seconds: Optional[float] = None,
    ) -> DeploymentJob:
        """Validate a deployment request and prepare its working directory.

        Raises:
            ValidationError: Unknown template, malformed environment, unknown,
                missing or mistyped variables. Nothing is written to disk.
        """
        try:
            template = self._templates.get(template_id)
            if template is None:
                raise ValidationError(f"unknown template: {template_id}")
            validate_environment(environment)
            resolved = resolve_variables(template, variables)
            if timeout_seconds is not None and timeout_seconds <= 0:
                raise ValidationError("timeout_seconds must be positive")
        except ValidationError as e:
            await self._audit.log(
                AuditAction.DEPLOYMENT_CREATE,
                resource_type="deployment",
                details={"template_id": template_id, "environment": environment},
                success=False,
                error_message=e.message,
                **actor.audit_fields(),
            )
            raise

        job_id = uuid4()
        path = self._workspaces.allocate(job_id, environment)
        try:
            self._workspaces.write_configuration(path, template, resolved)
        except OSError:
            self._workspaces.remove(path)
            raise

        now = utcnow()
        job = DeploymentJob(
            id=job_id,
            name=name or f"{template.name} ({environment})",
            template_id=template.id,
            template_version=template.version,
            variables=resolved,
            environment=environment,
            working_dir=str(path),
            destroy=destroy,
            timeout_seconds=timeout_seconds,
            user_id=actor.user_id,
            history=[StateChange(state=JobState.CREATED, at=now)],
            created_at=now,
            updated_at=now,
        )
        self._runtimes[job.id] = _JobRuntime()
        record_job_transition(JobState.CREATED.value)
        logger.info(
            "job_created",
            job_id=str(job.id),
            template_id=template.id,
            environment=environment,
            destroy=destroy,
        )
        await self._persist(job)
        await self._audit_transition(job, actor, template=template)
        self._notify_transition(job)
        return job

    async def start_plan(self, job_id: UUID | str, actor: ActorContext = SYSTEM_ACTOR) -> DeploymentJob:
        """Run ``init`` and ``plan`` for a job in Created.

        Raises:
            ConflictError: The job is not in Created.
            InfrastructureError: The provisioning tool could not be started.
        """
        job, runtime = await self._lookup(job_id)
        async with runtime.lock:
            if job.state != JobState.CREATED:
                await self._reject(AuditAction.DEPLOYMENT_PLAN, job, actor, JobState.CREATED)
            self._begin_phase(job, runtime, actor)
            await self._transition(job, JobState.PLANNING, actor)
            await self._launch(job, runtime, "plan", [self._command("init"), self._command("plan", job)])
        return job

    async def start_apply(
        self,
        job_id: UUID | str,
        actor: ActorContext = SYSTEM_ACTOR,
        force: bool = False,
    ) -> DeploymentJob:
        """Apply the saved plan of a job in Planned.

        Raises:
            ConflictError: The job is not in Planned.
            PreconditionError: The target instance is not running, the policy
                is ``enforce`` and ``force`` was not given.
            InfrastructureError: The provisioning tool could not be started.
        """
        job, runtime = await self._lookup(job_id)
        async with runtime.lock:
            if job.state != JobState.PLANNED:
                await self._reject(AuditAction.DEPLOYMENT_EXECUTE, job, actor, JobState.PLANNED)
            await self._check_precondition(job, actor, force)
            self._begin_phase(job, runtime, actor)
            await self._transition(job, JobState.APPLYING, actor)
            await self._launch(job, runtime, "apply", [self._command("apply")])
        return job

    async def cancel_job(
        self,
        job_id: UUID | str,
        actor: ActorContext = SYSTEM_ACTOR,
        reason: CancelReason = "user",
    ) -> DeploymentJob:
        """Cancel a job.

        A job without a running process moves to Cancelled at once. A running
        job is asked to stop (SIGTERM) and, if still alive after the grace
        period, killed; it reaches Cancelled when its process ends.

        Raises:
            ConflictError: The job is already terminal.
        """
        job, runtime = await self._lookup(job_id)
        async with runtime.lock:
            if job.is_terminal:
                message = f"job already in terminal state {job.state_label}"
                await self._audit.log(
                    AuditAction.DEPLOYMENT_CANCEL,
                    resource_type="deployment",
                    resource_id=str(job.id),
                    details={"state": job.state.value},
                    success=False,
                    error_message=message,
                    **actor.audit_fields(),
                )
                raise ConflictError(message, current_state=job.state.label)

            if not runtime.phase_active:
                job.cancel_reason = reason
                await self._transition(job, JobState.CANCELLED, actor)
                return job

            if job.cancellation_requested:
                return job

            self._request_stop(job, runtime, reason)
            await self._persist(job)
            await self._audit.log(
                AuditAction.DEPLOYMENT_CANCEL_REQUESTED,
                resource_type="deployment",
                resource_id=str(job.id),
                details={"state": job.state.value, "reason": reason},
                **actor.audit_fields(),
            )
        return job

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def recover_orphaned_jobs(self) -> list[DeploymentJob]:
        """Fail jobs left in Planning/Applying by a previous service process."""
        recovered = []
        for job in await self._repository.all():
            if not job.state.is_running or self.is_active(job.id):
                continue
            _, runtime = await self._lookup(job.id)
            async with runtime.lock:
                phase = "plan" if job.state == JobState.PLANNING else "apply"
                job.error_output = ORPHANED_MESSAGE
                await self._transition(job, failure_state_for(phase), SYSTEM_ACTOR)
            recovered.append(job)
        if recovered:
            logger.warning("orphaned_jobs_recovered", count=len(recovered))
        return recovered

    async def cleanup_workspaces(self, now: Optional[datetime] = None) -> int:
        """Delete working directories of terminal jobs past retention.

        Returns:
            Number of directories removed.
        """
        removed = 0
        for job in await self._repository.all():
            if not self._workspaces.is_expired(job, now):
                continue
            try:
                if not self._workspaces.remove(Path(job.working_dir)):
                    continue
            except (ConflictError, OSError) as e:
                logger.warning("workspace_cleanup_failed", job_id=str(job.id), error=str(e))
                continue
            removed += 1
            # output.log is gone with the directory
            self._runtimes.pop(job.id, None)
            job.output.clear()
            await self._audit.log(
                AuditAction.DEPLOYMENT_WORKSPACE_CLEANUP,
                resource_type="deployment",
                resource_id=str(job.id),
                details={"working_dir": job.working_dir},
                **SYSTEM_ACTOR.audit_fields(),
            )
        if removed:
            logger.info("workspaces_cleaned", removed=removed)
        return removed

    async def shutdown(self) -> None:
        """Stop every running process (reason ``shutdown``) and wait for them."""
        tasks = []
        for job_id, runtime in list(self._runtimes.items()):
            if not runtime.phase_active:
                continue
            job = await self._repository.get(job_id)
            if job is not None and not job.cancellation_requested:
                self._request_stop(job, runtime, "shutdown")
            if runtime.task is not None:
                tasks.append(runtime.task)
        if tasks:
            logger.info("job_tracker_shutdown", running=len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # =========================================================================
    # Phase Execution
    # =========================================================================

    def _command(self, name: str, job: Optional[DeploymentJob] = None) -> list[str]:
        if name == "init":
            return [self._binary, "init", "-input=false", "-no-color"]
        if name == "plan":
            argv = [
                self._binary,
                "plan",
                "-input=false",
                "-no-color",
                f"-var-file={TFVARS_FILE}",
                f"-out={PLAN_FILE}",
            ]
            if job is not None and job.destroy:
                argv.append("-destroy")
            return argv
        return [self._binary, "apply", "-input=false", "-no-color", "-auto-approve", PLAN_FILE]

    def _begin_phase(self, job: DeploymentJob, runtime: _JobRuntime, actor: ActorContext) -> None:
        self._workspaces.acquire(Path(job.working_dir), job.id)
        job.cancellation_requested = False
        job.cancel_reason = None
        runtime.killed = False
        runtime.actor = actor
        runtime.phase_active = True
        runtime.done.clear()

    async def _end_phase(self, job: DeploymentJob, runtime: _JobRuntime) -> None:
        if runtime.deadline is not None:
            runtime.deadline.cancel()
            runtime.deadline = None
        if runtime.escalation is not None:
            runtime.escalation.cancel()
            runtime.escalation = None
        runtime.handle = None
        self._workspaces.release(Path(job.working_dir), job.id)
        async with runtime.output_changed:
            runtime.phase_active = False
            runtime.output_changed.notify_all()
        runtime.done.set()

    async def _spawn(self, job: DeploymentJob, argv: Sequence[str]) -> ProcessHandle:
        env = {**os.environ, "TF_IN_AUTOMATION": "1", "TF_INPUT": "0"}
        handle = await ProcessHandle.spawn(argv, Path(job.working_dir), env)
        logger.info("job_process_started", job_id=str(job.id), command=argv[1], pid=handle.pid)
        return handle

    async def _launch(
        self,
        job: DeploymentJob,
        runtime: _JobRuntime,
        phase: str,
        commands: list[list[str]],
    ) -> None:
        try:
            handle = await self._spawn(job, commands[0])
        except InfrastructureError as e:
            logger.error("job_spawn_failed", job_id=str(job.id), phase=phase, error=e.message)
            job.error_output = e.message
            await self._transition(job, failure_state_for(phase), runtime.actor)
            await self._end_phase(job, runtime)
            raise

        runtime.handle = handle
        timeout = job.timeout_seconds or self._job_timeout
        runtime.deadline = asyncio.get_running_loop().call_later(
            timeout, self._on_timeout, job, runtime
        )
        runtime.task = asyncio.create_task(
            self._run_phase(job, runtime, phase, handle, commands[1:]),
            name=f"job-{job.id}-{phase}",
        )

    async def _run_phase(
        self,
        job: DeploymentJob,
        runtime: _JobRuntime,
        phase: str,
        handle: ProcessHandle,
        pending: list[list[str]],
    ) -> None:
        stopped_early = False
        try:
            while True:
                exit_code, stderr = await self._drain(job, runtime, handle, phase)
                if exit_code != 0 or not pending:
                    break
                if job.cancellation_requested:
                    stopped_early = True
                    break
                try:
                    handle = await self._spawn(job, pending.pop(0))
                except InfrastructureError as e:
                    logger.error("job_spawn_failed", job_id=str(job.id), phase=phase, error=e.message)
                    exit_code, stderr = None, [e.message]
                    break
                runtime.handle = handle
                if job.cancellation_requested:
                    handle.terminate()

            async with runtime.lock:
                await self._complete_phase(job, runtime, phase, exit_code, stderr, stopped_early)
        except Exception as e:
            logger.exception("job_phase_crashed", job_id=str(job.id), phase=phase)
            async with runtime.lock:
                if not job.is_terminal:
                    job.error_output = str(e)
                    await self._transition(job, failure_state_for(phase), runtime.actor)
        finally:
            await self._end_phase(job, runtime)

    async def _drain(
        self,
        job: DeploymentJob,
        runtime: _JobRuntime,
        handle: ProcessHandle,
        phase: str,
    ) -> tuple[int, list[str]]:
        """Capture one process's output until it exits."""
        stderr: list[str] = []
        workdir = Path(job.working_dir)
        with track_process_execution(phase) as ctx, self._workspaces.open_log(workdir) as log_file:
            async for stream, text in handle.lines():
                if stream == "stderr":
                    stderr.append(text)
                log_file.write(text + "\n")
                async with runtime.output_changed:
                    job.output.append(OutputLine(stream=stream, text=text))
                    runtime.output_changed.notify_all()
            exit_code = await handle.wait()
            ctx["status"] = "success" if exit_code == 0 else "failed"
        logger.info(
            "job_process_exited",
            job_id=str(job.id),
            command=handle.argv[1],
            exit_code=exit_code,
        )
        return exit_code, stderr

    async def _complete_phase(
        self,
        job: DeploymentJob,
        runtime: _JobRuntime,
        phase: str,
        exit_code: Optional[int],
        stderr: list[str],
        stopped_early: bool,
    ) -> None:
        if job.is_terminal:
            return
        actor = runtime.actor

        # a process that finished cleanly despite a stop request keeps its result
        if job.cancellation_requested and (runtime.killed or stopped_early or exit_code != 0):
            job.exit_code = exit_code
            job.cancel_forced = runtime.killed
            await self._transition(job, JobState.CANCELLED, actor)
            return

        if exit_code == 0:
            if phase == "apply":
                job.exit_code = 0
            await self._transition(job, success_state_for(phase), actor)
            return

        job.exit_code = exit_code
        job.error_output = "\n".join(stderr)
        await self._transition(job, failure_state_for(phase), actor)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def _request_stop(self, job: DeploymentJob, runtime: _JobRuntime, reason: CancelReason) -> None:
        job.cancellation_requested = True
        job.cancel_reason = reason
        job.updated_at = utcnow()
        logger.info("job_cancel_requested", job_id=str(job.id), state=job.state.value, reason=reason)
        if runtime.handle is not None:
            runtime.handle.terminate()
        if runtime.escalation is None or runtime.escalation.done():
            runtime.escalation = asyncio.create_task(self._escalate(job, runtime))

    async def _escalate(self, job: DeploymentJob, runtime: _JobRuntime) -> None:
        await asyncio.sleep(self._grace)
        handle = runtime.handle
        if runtime.phase_active and handle is not None and handle.is_running:
            logger.warning("job_cancel_escalated", job_id=str(job.id), grace_seconds=self._grace)
            runtime.killed = True
            handle.kill()

    def _on_timeout(self, job: DeploymentJob, runtime: _JobRuntime) -> None:
        runtime.deadline = None
        if not runtime.phase_active or job.cancellation_requested:
            return
        timeout = job.timeout_seconds or self._job_timeout
        logger.warning("job_timeout", job_id=str(job.id), state=job.state.value, timeout_seconds=timeout)
        self._request_stop(job, runtime, "timeout")
        self._in_background(
            self._audit.log(
                AuditAction.DEPLOYMENT_CANCEL_REQUESTED,
                resource_type="deployment",
                resource_id=str(job.id),
                details={"state": job.state.value, "reason": "timeout", "timeout_seconds": timeout},
                **SYSTEM_ACTOR.audit_fields(),
            )
        )

    def _in_background(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # Preconditions
    # =========================================================================

    async def _check_precondition(self, job: DeploymentJob, actor: ActorContext, force: bool) -> None:
        template = self._templates.get(job.template_id)
        if template is None or not template.requires_running_instance:
            return
        if self._instance_state_lookup is None:
            return
        instance_id = job.variables.get(template.instance_variable)
        if not instance_id:
            return

        try:
            state = await self._instance_state_lookup(str(instance_id))
        except Exception as e:
            logger.warning("instance_state_lookup_failed", job_id=str(job.id), instance_id=instance_id, error=str(e))
            return
        if state is None or state == "running":
            return

        message = f"instance {instance_id} is {state}, expected running"
        if self._precondition_policy == "enforce" and not force:
            await self._audit.log(
                AuditAction.DEPLOYMENT_EXECUTE,
                resource_type="deployment",
                resource_id=str(job.id),
                details={"instance_id": instance_id, "instance_state": state},
                success=False,
                error_message=message,
                **actor.audit_fields(),
            )
            raise PreconditionError(message, resource_id=str(instance_id), state=state)

        job.warnings.append(message)
        record_precondition_warning(state)
        logger.warning(
            "precondition_warning",
            job_id=str(job.id),
            instance_id=instance_id,
            instance_state=state,
            forced=force,
        )
        await self._audit.log(
            AuditAction.DEPLOYMENT_PRECONDITION_WARNING,
            resource_type="deployment",
            resource_id=str(job.id),
            details={"instance_id": instance_id, "instance_state": state, "forced": force},
            **actor.audit_fields(),
        )
        self._notifications.warning(
            "Instance not running",
            message,
            metadata={"job_id": str(job.id), "instance_id": instance_id, "instance_state": state},
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _reject(
        self,
        action: str,
        job: DeploymentJob,
        actor: ActorContext,
        required: JobState,
    ) -> None:
        """Audit a rejected state change and raise ConflictError."""
        message = f"job not in {required.label} state"
        await self._audit.log(
            action,
            resource_type="deployment",
            resource_id=str(job.id),
            details={"state": job.state.value},
            success=False,
            error_message=message,
            **actor.audit_fields(),
        )
        raise ConflictError(message, current_state=job.state.label)

    async def _transition(self, job: DeploymentJob, target: JobState, actor: ActorContext) -> None:
        if not can_transition(job.state, target):
            raise ConflictError(
                f"cannot move job from {job.state.label} to {target.label}",
                current_state=job.state.label,
            )
        now = utcnow()
        job.state = target
        job.updated_at = now
        job.history.append(StateChange(state=target, at=now))
        record_job_transition(target.value)
        logger.info(
            "job_state_changed",
            job_id=str(job.id),
            state=target.value,
            environment=job.environment,
            exit_code=job.exit_code,
        )
        await self._persist(job)
        await self._audit_transition(job, actor)
        self._notify_transition(job)

    async def _persist(self, job: DeploymentJob) -> None:
        try:
            await self._repository.save(job)
        except StorageError as e:
            logger.error("job_persist_failed", job_id=str(job.id), error=str(e))
        try:
            self._workspaces.save_snapshot(job)
        except OSError as e:
            logger.error("job_snapshot_failed", job_id=str(job.id), error=str(e))

    async def _audit_transition(
        self,
        job: DeploymentJob,
        actor: ActorContext,
        template: Optional[Template] = None,
    ) -> None:
        details: dict[str, Any] = {
            "name": job.name,
            "template_id": job.template_id,
            "template_version": job.template_version,
            "environment": job.environment,
            "state": job.state.value,
        }
        if template is not None:
            details["variables"] = _masked_variables(template, job.variables)
        if job.destroy:
            details["destroy"] = True
        if job.is_terminal:
            details["exit_code"] = job.exit_code
        if job.state == JobState.CANCELLED:
            details["reason"] = job.cancel_reason
            details["forced"] = job.cancel_forced

        failed = job.state in FAILURE_STATES
        await self._audit.log(
            _TRANSITION_ACTIONS[job.state],
            resource_type="deployment",
            resource_id=str(job.id),
            details=details,
            success=not failed,
            error_message=job.error_output if failed else None,
            **actor.audit_fields(),
        )

    def _notify_transition(self, job: DeploymentJob) -> None:
        metadata = {"job_id": str(job.id), "state": job.state.value, "environment": job.environment}
        view_output = NotificationAction(label="View output", action=f"view_output:{job.id}")
        state = job.state

        if state == JobState.CREATED:
            self._notifications.info("Deployment created", f"{job.name} is ready to plan", metadata=metadata)
        elif state == JobState.PLANNING:
            self._notifications.info("Planning started", f"Running plan for {job.name}", metadata=metadata)
        elif state == JobState.PLANNED:
            self._notifications.success(
                "Plan ready",
                f"Plan for {job.name} is ready to apply",
                actions=[
                    NotificationAction(label="Apply", action=f"apply:{job.id}", variant="contained"),
                    NotificationAction(label="View plan", action=f"view_output:{job.id}"),
                ],
                metadata=metadata,
            )
        elif state == JobState.APPLYING:
            self._notifications.info("Apply started", f"Applying {job.name}", metadata=metadata)
        elif state == JobState.SUCCEEDED:
            self._notifications.success(
                "Deployment succeeded", f"{job.name} was applied successfully", metadata=metadata
            )
        elif state in FAILURE_STATES:
            title = "Plan failed" if state == JobState.PLAN_FAILED else "Apply failed"
            message = job.error_output or f"{job.name} exited with code {job.exit_code}"
            self._notifications.error(title, message, actions=[view_output], metadata=metadata)
        elif state == JobState.CANCELLED:
            title = "Deployment timed out" if job.cancel_reason == "timeout" else "Deployment cancelled"
            message = f"{job.name} was cancelled"
            if job.cancel_forced:
                message += " (forced)"
            self._notifications.warning(title, message, metadata=metadata)
