from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from .util.time import iso

PROVISIONAL_FILES_TOTAL = 100


class JobStatus(str, Enum):
    """Backup job lifecycle states."""

    pending = "PENDING"
    running = "RUNNING"
    completed = "COMPLETED"
    failed = "FAILED"
    cancelled = "CANCELLED"

    def is_terminal(self) -> bool:
        """Check if status is terminal (no further transition)."""
        return self in (self.completed, self.failed, self.cancelled)

    def is_active(self) -> bool:
        """Check if job is still pending or running."""
        return self in (self.pending, self.running)

    @property
    def rank(self) -> int:
        """Position on the PENDING -> RUNNING -> terminal lattice."""
        if self.is_terminal():
            return 2
        return 1 if self is self.running else 0


class JobType(str, Enum):
    """How a backup was triggered."""

    manual = "MANUAL"
    scheduled = "SCHEDULED"


class NotificationState(str, Enum):
    """Visibility of the progress surface for one job occurrence."""

    hidden = "HIDDEN"
    visible = "VISIBLE"
    dismissed = "DISMISSED"


@dataclass
class BackupJob:
    """One execution of a backup for one client."""

    id: int | None
    client_id: str
    configuration_id: int | None = None
    status: JobStatus = JobStatus.pending
    job_type: JobType | None = None

    started_at: datetime | None = None
    finished_at: datetime | None = None

    files_processed: int | None = None
    files_total: int | None = None
    bytes_transferred: int | None = None
    progress_percentage: int | None = None

    error_message: str | None = None
    log_details: str | None = None
    duration_seconds: int | None = None
    status_description: str | None = None

    @property
    def is_optimistic(self) -> bool:
        """Placeholder created before the remote system assigned an id."""
        return self.id is None

    def copy(self) -> BackupJob:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict."""
        d = asdict(self)
        d["status"] = self.status.value
        d["job_type"] = self.job_type.value if self.job_type else None
        d["started_at"] = iso(self.started_at)
        d["finished_at"] = iso(self.finished_at)
        return d


@dataclass
class BackupConfiguration:
    """Persisted backup settings for one client machine."""

    client_id: str
    source_directory: str
    frequency_hours: int
    ssh_host: str
    ssh_username: str
    ssh_password: str
    ssh_remote_path: str
    ssh_port: int = 22

    id: int | None = None
    client_hostname: str | None = None
    client_ip_address: str | None = None
    alias: str | None = None  # person responsible for the machine
    use_manual_path: bool = False
    use_scheduled_time: bool = False
    scheduled_time: str | None = None  # HH:mm
    is_paused: bool = False
    is_active: bool = True

    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_backup_at: datetime | None = None

    included_files: list[str] = field(default_factory=list)
    excluded_files: list[str] = field(default_factory=list)


@dataclass
class ConnectionState:
    """Transport state of the push channel."""

    connected: bool = False
    reconnect_attempts: int = 0


@dataclass
class ProgressSubscription:
    """Notification state for a single job occurrence."""

    job_id: int
    client_id: str
    dismissed: bool = False
    last_seen_progress: int = 0
    state: NotificationState = NotificationState.hidden
    message: str | None = None

    @property
    def visible(self) -> bool:
        return self.state is NotificationState.visible


@dataclass
class ProgressUpdate:
    """Progress reported through the push channel."""

    job_id: int
    client_id: str
    progress: int
    message: str | None = None


@dataclass
class TerminalUpdate:
    """Completion or failure reported through the push channel."""

    job_id: int
    client_id: str | None = None
    error: str | None = None
    finished_at: datetime | None = None


@dataclass
class StartResult:
    """Outcome of a successful start request."""

    client_id: str
    job_id: int | None
    message: str | None = None


@dataclass
class SshTestResult:
    """Outcome of an SSH connectivity probe."""

    success: bool
    message: str | None = None
