"""Unit tests for the workspace job tracker.

Jobs run real subprocesses: small shell scripts standing in for terraform.
"""

import asyncio
import json
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.store import AuditLogStore
from src.core.exceptions import (
    ConflictError,
    ExecutionFailure,
    InfrastructureError,
    JobCancelledError,
    JobNotFoundError,
    JobTimeoutError,
    PreconditionError,
    ValidationError,
)
from src.jobs.repository import InMemoryJobRepository
from src.jobs.state_machine import is_valid_path
from src.jobs.tracker import ORPHANED_MESSAGE, ActorContext
from src.models.schemas import AuditQuery, DeploymentJob, JobState, StateChange, utcnow

from tests.conftest import APPLY_OUTPUT, IGNORE_TERM, PLAN_OUTPUT

ALICE = ActorContext(user_id="alice", ip_address="10.0.0.1", user_agent="pytest")
VARS = {"name": "t1", "size": 10}


def job_dirs(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return [p for env in root.iterdir() for p in env.iterdir()]


def states(job: DeploymentJob) -> list[JobState]:
    return [h.state for h in job.history]


async def actions(audit: AuditLogStore, **filters) -> list[str]:
    entries = await audit.query(AuditQuery(**filters))
    return [e.action for e in reversed(entries)]


class TestCreateJob:
    """Validation and workspace preparation."""

    @pytest.mark.asyncio
    async def test_create_job_prepares_workspace(self, make_tool, make_tracker, workspace_root):
        tracker = make_tracker(make_tool())

        job = await tracker.create_job("test-server", VARS, "dev", ALICE)

        assert job.state == JobState.CREATED
        assert job.exit_code is None
        assert job.user_id == "alice"
        assert job.template_version == "2.0.0"
        assert job.variables == {"name": "t1", "size": 10, "region": "us-east-1"}

        path = Path(job.working_dir)
        assert path.parent == (workspace_root / "dev").resolve()
        assert (path / "main.tf").read_text() == 'resource "null_resource" "this" {}\n'
        assert json.loads((path / "terraform.tfvars.json").read_text())["size"] == 10
        assert 'variable "size"' in (path / "variables.tf").read_text()
        snapshot = json.loads((path / "job.json").read_text())
        assert snapshot["state"] == "created"

    @pytest.mark.asyncio
    async def test_coerces_string_values(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())

        job = await tracker.create_job("test-server", {"name": "t1", "size": "42"}, "dev")

        assert job.variables["size"] == 42

    @pytest.mark.asyncio
    async def test_mistyped_variable_rejected(self, make_tool, make_tracker, workspace_root, audit):
        tracker = make_tracker(make_tool())

        with pytest.raises(ValidationError) as exc_info:
            await tracker.create_job("test-server", {"name": "t1", "size": "bad"}, "dev", ALICE)

        assert str(exc_info.value) == "size must be a number"
        assert job_dirs(workspace_root) == []
        assert await tracker.list_jobs() == []

        entries = await audit.query(AuditQuery(action="deployment:create"))
        assert len(entries) == 1
        assert entries[0].success is False
        assert entries[0].error_message == "size must be a number"
        assert entries[0].user_id == "alice"

    @pytest.mark.asyncio
    async def test_missing_required_variable_creates_no_directory(
        self, make_tool, make_tracker, workspace_root
    ):
        tracker = make_tracker(make_tool())

        with pytest.raises(ValidationError, match="name is required"):
            await tracker.create_job("test-server", {"size": 1}, "dev")

        assert job_dirs(workspace_root) == []

    @pytest.mark.asyncio
    async def test_unknown_variable_rejected(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())

        with pytest.raises(ValidationError, match="unknown variable: colour"):
            await tracker.create_job("test-server", {**VARS, "colour": "red"}, "dev")

    @pytest.mark.asyncio
    async def test_unknown_template_rejected(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())

        with pytest.raises(ValidationError, match="unknown template: nope"):
            await tracker.create_job("nope", VARS, "dev")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("environment", ["", "Prod", "../etc", "a b"])
    async def test_malformed_environment_rejected(self, make_tool, make_tracker, environment):
        tracker = make_tracker(make_tool())

        with pytest.raises(ValidationError):
            await tracker.create_job("test-server", VARS, environment)

    @pytest.mark.asyncio
    async def test_sensitive_variables_masked_in_audit(self, make_tool, make_tracker, audit):
        tracker = make_tracker(make_tool())

        await tracker.create_job("test-server", {**VARS, "password": "hunter2"}, "dev")

        entry = (await audit.query(AuditQuery(action="deployment:create")))[0]
        assert entry.details["variables"]["password"] == "***"

    @pytest.mark.asyncio
    async def test_each_job_gets_its_own_directory(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())

        first = await tracker.create_job("test-server", VARS, "dev")
        second = await tracker.create_job("test-server", VARS, "dev")

        assert first.working_dir != second.working_dir


class TestPlanAndApply:
    """The happy path and execution failures."""

    @pytest.mark.asyncio
    async def test_plan_then_apply_succeeds(self, make_tool, make_tracker, audit):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev", ALICE)

        await tracker.start_plan(job.id, ALICE)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.PLANNED
        assert job.exit_code is None
        assert PLAN_OUTPUT in [line.text for line in job.output]

        await tracker.start_apply(job.id, ALICE)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.SUCCEEDED
        assert job.exit_code == 0
        assert APPLY_OUTPUT in [line.text for line in job.output]
        assert states(job) == [
            JobState.CREATED,
            JobState.PLANNING,
            JobState.PLANNED,
            JobState.APPLYING,
            JobState.SUCCEEDED,
        ]
        assert is_valid_path(states(job))
        job.raise_for_state()

        assert await actions(audit, resource_id=str(job.id)) == [
            "deployment:create",
            "deployment:plan",
            "deployment:plan_complete",
            "deployment:execute",
            "deployment:apply_complete",
        ]

    @pytest.mark.asyncio
    async def test_plan_runs_init_then_plan_with_var_file(self, make_tool, make_tracker):
        tool = make_tool(init='echo "args: $*"', plan='echo "args: $*"')
        tracker = make_tracker(tool)
        job = await tracker.create_job("test-server", VARS, "dev")

        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        texts = [line.text for line in job.output]
        assert texts == [
            "args: init -input=false -no-color",
            "args: plan -input=false -no-color -var-file=terraform.tfvars.json -out=tfplan",
        ]
        assert (Path(job.working_dir) / "output.log").read_text().splitlines() == texts

    @pytest.mark.asyncio
    async def test_destroy_job_plans_destroy(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(plan='echo "args: $*"'))
        job = await tracker.create_job("test-server", VARS, "dev", destroy=True)

        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.output[-1].text.endswith("-out=tfplan -destroy")
        assert job.state == JobState.PLANNED

    @pytest.mark.asyncio
    async def test_start_plan_twice_conflicts(self, make_tool, make_tracker, audit):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")

        await tracker.start_plan(job.id)
        with pytest.raises(ConflictError) as exc_info:
            await tracker.start_plan(job.id, ALICE)
        await tracker.wait(job.id, timeout=10)

        assert str(exc_info.value) == "job not in Created state"
        assert states(job).count(JobState.PLANNING) == 1

        rejected = await audit.query(AuditQuery(action="deployment:plan", success=False))
        assert len(rejected) == 1
        assert rejected[0].user_id == "alice"

    @pytest.mark.asyncio
    async def test_concurrent_operations_are_serialized(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(plan="exec sleep 30"))
        job = await tracker.create_job("test-server", VARS, "dev")

        results = await asyncio.gather(
            tracker.start_plan(job.id),
            tracker.start_plan(job.id),
            tracker.cancel_job(job.id),
            return_exceptions=True,
        )
        await tracker.wait(job.id, timeout=10)

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(conflicts) == 1
        assert [r for r in results if not isinstance(r, ConflictError)] == [job, job]
        assert job.state == JobState.CANCELLED
        assert states(job).count(JobState.PLANNING) == 1
        assert sum(1 for s in states(job) if s.is_terminal) == 1
        assert is_valid_path(states(job))

    @pytest.mark.asyncio
    async def test_apply_requires_planned(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")

        with pytest.raises(ConflictError, match="job not in Planned state"):
            await tracker.start_apply(job.id)

        assert job.state == JobState.CREATED

    @pytest.mark.asyncio
    async def test_apply_failure_captures_stderr_verbatim(self, make_tool, make_tracker, audit):
        tool = make_tool(apply='echo "aws_instance.this: Creating..."; echo "Error: InvalidVpcID" >&2; exit 1')
        tracker = make_tracker(tool)
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        await tracker.start_apply(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.APPLY_FAILED
        assert job.exit_code == 1
        assert job.error_output == "Error: InvalidVpcID"
        with pytest.raises(ExecutionFailure) as exc_info:
            job.raise_for_state()
        assert exc_info.value.error_output == "Error: InvalidVpcID"

        failed = await audit.query(AuditQuery(action="deployment:apply_failed"))
        assert failed[0].success is False
        assert failed[0].error_message == "Error: InvalidVpcID"

    @pytest.mark.asyncio
    async def test_init_failure_skips_plan(self, make_tool, make_tracker):
        tool = make_tool(init='echo "Error: Failed to query available provider packages" >&2; exit 1', plan="touch planned")
        tracker = make_tracker(tool)
        job = await tracker.create_job("test-server", VARS, "dev")

        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.PLAN_FAILED
        assert job.exit_code == 1
        assert "Failed to query available provider packages" in job.error_output
        assert not (Path(job.working_dir) / "planned").exists()

    @pytest.mark.asyncio
    async def test_missing_binary_raises_infrastructure_error(self, make_tracker, tmp_path):
        tracker = make_tracker(tmp_path / "no-such-terraform")
        job = await tracker.create_job("test-server", VARS, "dev")

        with pytest.raises(InfrastructureError, match="executable not found"):
            await tracker.start_plan(job.id)

        assert job.state == JobState.PLAN_FAILED
        assert "executable not found" in job.error_output
        assert not tracker.is_active(job.id)

    @pytest.mark.asyncio
    async def test_non_executable_binary_raises_infrastructure_error(self, make_tracker, tmp_path):
        binary = tmp_path / "terraform"
        binary.write_text("#!/bin/sh\n")
        binary.chmod(0o644)
        tracker = make_tracker(binary)
        job = await tracker.create_job("test-server", VARS, "dev")

        with pytest.raises(InfrastructureError, match="permission denied"):
            await tracker.start_plan(job.id)

        assert job.state == JobState.PLAN_FAILED

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_block_apply(self, make_tool, make_tracker):
        backend = MagicMock()
        backend.insert = AsyncMock(side_effect=RuntimeError("database unavailable"))
        tracker = make_tracker(make_tool(), audit_store=AuditLogStore(backend))
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        await tracker.start_apply(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.SUCCEEDED
        assert backend.insert.await_count >= 5

    @pytest.mark.asyncio
    async def test_workspace_held_only_while_running(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(plan="sleep 0.3"))
        job = await tracker.create_job("test-server", VARS, "dev")

        await tracker.start_plan(job.id)
        assert tracker.workspaces.holder(Path(job.working_dir)) == job.id

        await tracker.wait(job.id, timeout=10)
        assert tracker.workspaces.holder(Path(job.working_dir)) is None

    @pytest.mark.asyncio
    async def test_transitions_notify_sessions(self, make_tool, make_tracker, dispatcher):
        session = dispatcher.subscribe()
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")

        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        titles = [n.title for n in reversed(session.notifications)]
        assert titles == ["Deployment created", "Planning started", "Plan ready"]
        plan_ready = session.notifications[0]
        assert plan_ready.type == "success"
        assert plan_ready.metadata == {"job_id": str(job.id), "state": "planned", "environment": "dev"}
        assert [a.label for a in plan_ready.actions] == ["Apply", "View plan"]

    @pytest.mark.asyncio
    async def test_unknown_job(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())

        with pytest.raises(JobNotFoundError):
            await tracker.get_status("not-a-uuid")


class TestCancellation:
    """Cancelling idle, running, stubborn and terminal jobs."""

    @pytest.mark.asyncio
    async def test_cancel_created_job(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")

        await tracker.cancel_job(job.id, ALICE)

        assert job.state == JobState.CANCELLED
        assert job.cancel_reason == "user"
        assert job.state_label == "Cancelled"

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_conflicts(self, make_tool, make_tracker, audit):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.cancel_job(job.id)
        history = list(job.history)

        with pytest.raises(ConflictError, match="job already in terminal state Cancelled"):
            await tracker.cancel_job(job.id, ALICE)

        assert job.state == JobState.CANCELLED
        assert job.history == history
        rejected = await audit.query(AuditQuery(action="deployment:cancel", success=False))
        assert len(rejected) == 1

    @pytest.mark.asyncio
    async def test_cancel_running_plan(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(plan="exec sleep 30"))
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.start_plan(job.id)

        await tracker.cancel_job(job.id, ALICE)
        assert job.cancellation_requested is True
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.CANCELLED
        assert job.cancel_forced is False
        assert job.cancel_reason == "user"
        assert is_valid_path(states(job))
        with pytest.raises(JobCancelledError):
            job.raise_for_state()

    @pytest.mark.asyncio
    async def test_cancel_escalates_to_kill(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(init=IGNORE_TERM, plan=IGNORE_TERM), cancel_grace_seconds=0.3)
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.start_plan(job.id)

        await tracker.cancel_job(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.CANCELLED
        assert job.cancel_forced is True
        assert job.state_label == "Cancelled (forced)"

    @pytest.mark.asyncio
    async def test_timeout_cancels_phase(self, make_tool, make_tracker, audit):
        tracker = make_tracker(make_tool(plan="exec sleep 30"))
        job = await tracker.create_job("test-server", VARS, "dev", timeout_seconds=0.3)

        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.CANCELLED
        assert job.cancel_reason == "timeout"
        with pytest.raises(JobTimeoutError):
            job.raise_for_state()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(plan="exec sleep 30"))
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.start_plan(job.id)

        await tracker.shutdown()

        assert job.state == JobState.CANCELLED
        assert job.cancel_reason == "shutdown"


class TestPreconditions:
    """Instance state checks before apply."""

    VOLUME_VARS = {"instance_id": "i-0abc", "size": 100}

    async def _planned(self, tracker):
        job = await tracker.create_job("volume-expansion", self.VOLUME_VARS, "prod")
        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)
        return job

    @pytest.mark.asyncio
    async def test_stopped_instance_warns_by_default(self, make_tool, make_tracker, audit, dispatcher):
        session = dispatcher.subscribe()
        lookup = AsyncMock(return_value="stopped")
        tracker = make_tracker(make_tool(), instance_state_lookup=lookup)
        job = await self._planned(tracker)

        await tracker.start_apply(job.id, ALICE)
        await tracker.wait(job.id, timeout=10)

        lookup.assert_awaited_once_with("i-0abc")
        assert job.state == JobState.SUCCEEDED
        assert job.warnings == ["instance i-0abc is stopped, expected running"]
        warnings = await audit.query(AuditQuery(action="deployment:precondition_warning"))
        assert warnings[0].details["instance_state"] == "stopped"
        assert any(n.title == "Instance not running" for n in session.notifications)

    @pytest.mark.asyncio
    async def test_enforce_policy_blocks_apply(self, make_tool, make_tracker):
        tracker = make_tracker(
            make_tool(),
            instance_state_lookup=AsyncMock(return_value="stopped"),
            precondition_policy="enforce",
        )
        job = await self._planned(tracker)

        with pytest.raises(PreconditionError) as exc_info:
            await tracker.start_apply(job.id)

        assert exc_info.value.state == "stopped"
        assert job.state == JobState.PLANNED

        await tracker.start_apply(job.id, force=True)
        await tracker.wait(job.id, timeout=10)
        assert job.state == JobState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_running_instance_has_no_warning(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(), instance_state_lookup=AsyncMock(return_value="running"))
        job = await self._planned(tracker)

        await tracker.start_apply(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.warnings == []

    @pytest.mark.asyncio
    async def test_failed_lookup_is_ignored(self, make_tool, make_tracker):
        lookup = AsyncMock(side_effect=RuntimeError("ec2 unavailable"))
        tracker = make_tracker(make_tool(), instance_state_lookup=lookup, precondition_policy="enforce")
        job = await self._planned(tracker)

        await tracker.start_apply(job.id)
        await tracker.wait(job.id, timeout=10)

        assert job.state == JobState.SUCCEEDED


class TestOutputStreaming:
    """Following captured output."""

    @pytest.mark.asyncio
    async def test_stream_follows_running_process(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(init="true", plan="echo one; sleep 0.2; echo two >&2; sleep 0.2; echo three"))
        job = await tracker.create_job("test-server", VARS, "dev")

        await tracker.start_plan(job.id)
        lines = [line async for line in tracker.stream_output(job.id)]

        assert [line.text for line in lines] == ["one", "two", "three"]
        assert [line.stream for line in lines] == ["stdout", "stderr", "stdout"]

    @pytest.mark.asyncio
    async def test_stream_restarts_from_offset(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool(init="true", plan="echo one; echo two; echo three"))
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)

        lines = [line.text async for line in tracker.stream_output(job.id, offset=1)]

        assert lines == ["two", "three"]

    @pytest.mark.asyncio
    async def test_stream_of_idle_job_ends(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")

        assert [line async for line in tracker.stream_output(job.id)] == []


class TestMaintenance:
    """Orphan recovery and workspace retention."""

    @pytest.mark.asyncio
    async def test_recover_orphaned_jobs(self, make_tool, make_tracker, tmp_path):
        repository = InMemoryJobRepository()
        orphan = DeploymentJob(
            name="orphan",
            template_id="test-server",
            template_version="2.0.0",
            environment="dev",
            working_dir=str(tmp_path / "gone"),
            state=JobState.APPLYING,
            history=[
                StateChange(state=JobState.CREATED),
                StateChange(state=JobState.PLANNING),
                StateChange(state=JobState.PLANNED),
                StateChange(state=JobState.APPLYING),
            ],
        )
        await repository.save(orphan)
        tracker = make_tracker(make_tool(), repository=repository)

        recovered = await tracker.recover_orphaned_jobs()

        assert [j.id for j in recovered] == [orphan.id]
        assert orphan.state == JobState.APPLY_FAILED
        assert orphan.error_output == ORPHANED_MESSAGE
        assert is_valid_path(states(orphan))

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_terminal_workspaces(self, make_tool, make_tracker, audit):
        tracker = make_tracker(make_tool())
        done = await tracker.create_job("test-server", VARS, "dev")
        await tracker.cancel_job(done.id)
        pending = await tracker.create_job("test-server", VARS, "dev")

        removed = await tracker.cleanup_workspaces(now=utcnow() + timedelta(hours=25))

        assert removed == 1
        assert not Path(done.working_dir).exists()
        assert Path(pending.working_dir).exists()
        assert await actions(audit, action="workspace_cleanup") == ["deployment:workspace_cleanup"]

    @pytest.mark.asyncio
    async def test_cleanup_keeps_recent_workspaces(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.cancel_job(job.id)

        assert await tracker.cleanup_workspaces() == 0
        assert Path(job.working_dir).exists()

    @pytest.mark.asyncio
    async def test_cleanup_releases_in_memory_state(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())
        job = await tracker.create_job("test-server", VARS, "dev")
        await tracker.start_plan(job.id)
        await tracker.wait(job.id, timeout=10)
        await tracker.cancel_job(job.id)
        assert job.output

        assert await tracker.cleanup_workspaces(now=utcnow() + timedelta(days=30)) == 1

        assert job.id not in tracker._runtimes
        assert job.output == []
        assert [line async for line in tracker.stream_output(job.id)] == []
        assert (await tracker.wait(job.id)) is job
        assert (await tracker.get_status(job.id)).state == JobState.CANCELLED
        assert job.id not in tracker._runtimes


class TestListing:
    @pytest.mark.asyncio
    async def test_list_jobs_filters(self, make_tool, make_tracker):
        tracker = make_tracker(make_tool())
        dev = await tracker.create_job("test-server", VARS, "dev")
        prod = await tracker.create_job("test-server", VARS, "prod")
        await tracker.cancel_job(prod.id)

        assert [j.id for j in await tracker.list_jobs(environment="dev")] == [dev.id]
        assert [j.id for j in await tracker.list_jobs(state=JobState.CANCELLED)] == [prod.id]
        assert [j.id for j in await tracker.list_jobs()] == [prod.id, dev.id]
        assert len(await tracker.list_jobs(limit=1)) == 1
        assert await tracker.count_jobs() == 2
        assert await tracker.count_jobs(environment="prod", state=JobState.CANCELLED) == 1
        assert await tracker.count_jobs(state=JobState.PLANNED) == 0
