"""Per-job working directories.

Layout of one workspace::

    <workspace_root>/<environment>/<job id>/
        main.tf                  template code
        variables.tf             declarations generated from the template
        terraform.tfvars.json    resolved variables
        job.json                 latest job snapshot
        output.log               captured process output
        tfplan                   written by the plan phase

Directories are created exclusively and never reused. A directory may be held
by at most one job with a running process at a time.
"""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, Optional
from uuid import UUID

import structlog

from src.core.exceptions import ConflictError
from src.models.schemas import DeploymentJob, Template, VariableType, utcnow

logger = structlog.get_logger(__name__)

MAIN_FILE = "main.tf"
VARIABLES_FILE = "variables.tf"
TFVARS_FILE = "terraform.tfvars.json"
SNAPSHOT_FILE = "job.json"
LOG_FILE = "output.log"
PLAN_FILE = "tfplan"

_HCL_TYPES = {
    VariableType.STRING: "string",
    VariableType.NUMBER: "number",
    VariableType.BOOLEAN: "bool",
    VariableType.LIST: "list(any)",
    VariableType.MAP: "map(any)",
}


def render_variables_tf(template: Template) -> str:
    """Generate ``variable`` blocks for every declared template variable."""
    blocks = []
    for spec in template.variables:
        lines = [f'variable "{spec.name}" {{', f"  type        = {_HCL_TYPES[spec.type]}"]
        if spec.description:
            lines.append(f"  description = {json.dumps(spec.description)}")
        if spec.default is not None:
            lines.append(f"  default     = {json.dumps(spec.default)}")
        if spec.sensitive:
            lines.append("  sensitive   = true")
        lines.append("}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


class WorkspaceManager:
    """Allocates, guards and cleans up job working directories."""

    def __init__(self, root: Path, retention: timedelta = timedelta(hours=24)) -> None:
        self.root = Path(root)
        self.retention = retention
        self._holders: dict[Path, UUID] = {}

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def path_for(self, job_id: UUID, environment: str) -> Path:
        return (self.root / environment / str(job_id)).resolve()

    def allocate(self, job_id: UUID, environment: str) -> Path:
        """Create a fresh, empty working directory for a job."""
        path = self.path_for(job_id, environment)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            path.mkdir()
        except FileExistsError:
            raise ConflictError(f"working directory {path} already exists") from None
        logger.debug("workspace_allocated", job_id=str(job_id), path=str(path))
        return path

    def write_configuration(self, path: Path, template: Template, variables: dict) -> None:
        (path / MAIN_FILE).write_text(template.terraform_code, encoding="utf-8")
        (path / VARIABLES_FILE).write_text(render_variables_tf(template), encoding="utf-8")
        (path / TFVARS_FILE).write_text(json.dumps(variables, indent=2), encoding="utf-8")

    def save_snapshot(self, job: DeploymentJob) -> None:
        path = Path(job.working_dir)
        if not path.is_dir():
            return
        snapshot = job.model_dump_json(indent=2, exclude={"output"})
        (path / SNAPSHOT_FILE).write_text(snapshot, encoding="utf-8")

    def open_log(self, path: Path) -> IO[str]:
        return open(path / LOG_FILE, "a", encoding="utf-8")

    # -------------------------------------------------------------------------
    # Exclusive use
    # -------------------------------------------------------------------------

    def acquire(self, path: Path, job_id: UUID) -> None:
        """Mark ``path`` as held by ``job_id`` for the duration of a process."""
        path = Path(path)
        holder = self._holders.get(path)
        if holder is not None and holder != job_id:
            raise ConflictError(f"working directory {path} is in use by job {holder}")
        self._holders[path] = job_id

    def release(self, path: Path, job_id: UUID) -> None:
        path = Path(path)
        if self._holders.get(path) == job_id:
            del self._holders[path]

    def holder(self, path: Path) -> Optional[UUID]:
        return self._holders.get(Path(path))

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def is_expired(self, job: DeploymentJob, now: Optional[datetime] = None) -> bool:
        if not job.is_terminal:
            return False
        now = now or utcnow()
        return job.updated_at + self.retention <= now

    def remove(self, path: Path) -> bool:
        """Delete a working directory that no job holds.

        Returns:
            True if the directory existed and was removed.
        """
        path = Path(path)
        if self.holder(path) is not None:
            raise ConflictError(f"working directory {path} is in use by job {self.holder(path)}")
        if not path.exists():
            return False
        shutil.rmtree(path)
        logger.info("workspace_removed", path=str(path))
        return True
