"""Deployment task records, log entries, and stage results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from sitepress.config import COMPACTED_LOG_ENTRIES, MAX_LOG_ENTRIES, STATUS_PROGRESS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentStatus(str, Enum):
    """Pipeline states, in order."""

    PENDING = "pending"
    PULLING = "pulling"
    BUILDING = "building"
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentStatus.COMPLETED, DeploymentStatus.FAILED)


# Forward successor of each non-terminal state
_NEXT_STATUS: dict[DeploymentStatus, DeploymentStatus] = {
    DeploymentStatus.PENDING: DeploymentStatus.PULLING,
    DeploymentStatus.PULLING: DeploymentStatus.BUILDING,
    DeploymentStatus.BUILDING: DeploymentStatus.DEPLOYING,
    DeploymentStatus.DEPLOYING: DeploymentStatus.COMPLETED,
}


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogSource(str, Enum):
    GIT = "git"
    BUILD = "build"
    DEPLOY = "deploy"


class DeploymentLogEntry(BaseModel):
    """One line of a deployment log."""

    timestamp: datetime = Field(default_factory=_utcnow)
    level: LogLevel = LogLevel.INFO
    message: str = ""
    source: LogSource = LogSource.DEPLOY


class DeploymentTask(BaseModel):
    """One tracked run of pull -> build -> publish for a site.

    Lives only in process memory.  Status moves forward only; ``failed`` is
    reachable from every non-terminal state.
    """

    id: str
    site_id: str
    status: DeploymentStatus = DeploymentStatus.PENDING
    triggered_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    logs: list[DeploymentLogEntry] = Field(default_factory=list)
    error: str | None = None

    @computed_field  # type: ignore[misc]
    @property
    def progress(self) -> int:
        return STATUS_PROGRESS[self.status.value]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition(self, target: DeploymentStatus) -> bool:
        """Return True if *target* is a legal next state."""
        if self.status.is_terminal:
            return False
        if target is DeploymentStatus.FAILED:
            return True
        return _NEXT_STATUS.get(self.status) is target

    def transition(self, target: DeploymentStatus) -> bool:
        """Move to *target* if legal, stamping start/completion times.

        Returns False and leaves the task untouched otherwise.
        """
        if not self.can_transition(target):
            return False
        self.status = target
        now = _utcnow()
        if target is DeploymentStatus.PULLING and self.started_at is None:
            self.started_at = now
        if target.is_terminal:
            self.completed_at = now
        return True

    def append_log(
        self,
        level: LogLevel,
        message: str,
        source: LogSource,
    ) -> DeploymentLogEntry:
        """Append a log entry, compacting the log once it exceeds the cap."""
        entry = DeploymentLogEntry(level=level, message=message, source=source)
        self.logs.append(entry)
        if len(self.logs) > MAX_LOG_ENTRIES:
            self.logs = self.logs[-COMPACTED_LOG_ENTRIES:]
        return entry


class BuildResult(BaseModel):
    """Outcome of the build stage."""

    success: bool
    duration: float = 0.0
    exit_code: int | None = None
    logs: list[str] = Field(default_factory=list)
    error: str | None = None


class PublishResult(BaseModel):
    """Outcome of publishing the build output."""

    success: bool
    duration: float = 0.0
    commit_hash: str | None = None
    branch: str = ""
    error: str | None = None


class BuildEnvironmentReport(BaseModel):
    """Best-effort probe of a site's build prerequisites."""

    has_manifest: bool = False
    has_build_script: bool = False
    has_dependencies: bool = False
    build_command: str | list[str] = ""
    output_dir: str = ""
