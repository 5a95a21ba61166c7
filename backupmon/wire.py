"""JSON shapes exchanged with the backup service (camelCase on the wire)."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import (
    BackupConfiguration,
    BackupJob,
    JobStatus,
    JobType,
    ProgressUpdate,
    SshTestResult,
    StartResult,
    TerminalUpdate,
)
from .util.time import to_utc


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Envelope(WireModel):
    """Push channel message."""

    type: str = Field(min_length=1)
    data: Any = None
    timestamp: int | float | None = None


class BackupStartedPayload(WireModel):
    job_id: int
    client_id: str


class BackupProgressPayload(WireModel):
    job_id: int
    client_id: str
    progress: float = Field(ge=0)
    message: str | None = None

    def to_update(self) -> ProgressUpdate:
        return ProgressUpdate(
            job_id=self.job_id,
            client_id=self.client_id,
            progress=int(round(self.progress)),
            message=self.message,
        )


class BackupTerminalPayload(WireModel):
    job_id: int
    client_id: str | None = None
    error: str | None = None
    finished_at: datetime | None = None

    def to_update(self) -> TerminalUpdate:
        return TerminalUpdate(
            job_id=self.job_id,
            client_id=self.client_id,
            error=self.error,
            finished_at=to_utc(self.finished_at),
        )


class BackupJobPayload(WireModel):
    id: int | None = None
    client_id: str
    configuration_id: int | None = None
    status: JobStatus = JobStatus.pending
    job_type: JobType | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    files_processed: int | None = Field(None, ge=0)
    files_total: int | None = Field(None, ge=0)
    bytes_transferred: int | None = Field(None, ge=0)
    progress_percentage: float | None = Field(None, ge=0, le=100)
    error_message: str | None = None
    log_details: str | None = None
    duration_seconds: int | None = None
    status_description: str | None = None

    def to_model(self) -> BackupJob:
        return BackupJob(
            id=self.id,
            client_id=self.client_id,
            configuration_id=self.configuration_id,
            status=self.status,
            job_type=self.job_type,
            started_at=to_utc(self.started_at),
            finished_at=to_utc(self.finished_at),
            files_processed=self.files_processed,
            files_total=self.files_total,
            bytes_transferred=self.bytes_transferred,
            progress_percentage=(
                None if self.progress_percentage is None else int(self.progress_percentage)
            ),
            error_message=self.error_message,
            log_details=self.log_details,
            duration_seconds=self.duration_seconds,
            status_description=self.status_description,
        )


class StartResponsePayload(WireModel):
    job_id: int | None = None
    message: str | None = None

    def to_result(self, client_id: str) -> StartResult:
        return StartResult(client_id=client_id, job_id=self.job_id, message=self.message)


class SshTestPayload(WireModel):
    success: bool = False
    message: str | None = None

    def to_result(self) -> SshTestResult:
        return SshTestResult(success=self.success, message=self.message)


class BackupConfigurationPayload(WireModel):
    id: int | None = None
    client_id: str
    source_directory: str
    frequency_hours: int = Field(ge=1)
    ssh_host: str
    ssh_port: int = Field(22, ge=1, le=65535)
    ssh_username: str
    ssh_password: str = ""
    ssh_remote_path: str
    client_hostname: str | None = None
    client_ip_address: str | None = None
    alias: str | None = None
    use_manual_path: bool = False
    use_scheduled_time: bool = False
    scheduled_time: str | None = Field(None, pattern=r"^\d{2}:\d{2}(:\d{2})?$")
    is_paused: bool = False
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_backup_at: datetime | None = None
    included_files: list[str] = Field(default_factory=list)
    excluded_files: list[str] = Field(default_factory=list)

    @classmethod
    def from_model(cls, config: BackupConfiguration) -> BackupConfigurationPayload:
        return cls(**asdict(config))

    def to_model(self) -> BackupConfiguration:
        data = self.model_dump()
        for key in ("created_at", "updated_at", "last_backup_at"):
            data[key] = to_utc(data[key])
        return BackupConfiguration(**data)


def parse_jobs(raw: Any) -> list[BackupJob]:
    """Parse a job list, accepting either a bare list or {"jobs": [...]}."""
    if isinstance(raw, dict):
        raw = raw.get("jobs", [])
    if not isinstance(raw, list):
        raise ValueError(f"Expected a list of jobs, got {type(raw).__name__}")
    return [BackupJobPayload.model_validate(item).to_model() for item in raw]
