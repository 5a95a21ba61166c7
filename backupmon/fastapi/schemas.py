from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from ..models import BackupJob, JobStatus, JobType, NotificationState, ProgressSubscription


class BackupJobResponse(BaseModel):
    """Merged view of one backup job."""

    id: int | None
    client_id: str
    optimistic: bool = False
    configuration_id: int | None = None
    status: JobStatus
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

    @classmethod
    def from_job(cls, job: BackupJob) -> BackupJobResponse:
        return cls(
            id=job.id,
            client_id=job.client_id,
            optimistic=job.is_optimistic,
            configuration_id=job.configuration_id,
            status=job.status,
            job_type=job.job_type,
            started_at=job.started_at,
            finished_at=job.finished_at,
            files_processed=job.files_processed,
            files_total=job.files_total,
            bytes_transferred=job.bytes_transferred,
            progress_percentage=job.progress_percentage,
            error_message=job.error_message,
            log_details=job.log_details,
            duration_seconds=job.duration_seconds,
            status_description=job.status_description,
        )


class ListJobsResponse(BaseModel):
    """All jobs known to the registry, newest first."""

    items: list[BackupJobResponse]
    total: int


class StartBackupResponse(BaseModel):
    """Response after starting a backup."""

    client_id: str
    job_id: int | None = None
    message: str | None = None


class ProgressResponse(BaseModel):
    """Progress surface of one job occurrence."""

    job_id: int
    client_id: str
    state: NotificationState
    dismissed: bool
    last_seen_progress: int
    message: str | None = None

    @classmethod
    def from_subscription(cls, sub: ProgressSubscription) -> ProgressResponse:
        return cls(
            job_id=sub.job_id,
            client_id=sub.client_id,
            state=sub.state,
            dismissed=sub.dismissed,
            last_seen_progress=sub.last_seen_progress,
            message=sub.message,
        )


class HealthResponse(BaseModel):
    """Connection and guard state."""

    status: str
    connected: bool
    reconnect_attempts: int
    max_reconnect_attempts: int
    in_flight: list[str]
