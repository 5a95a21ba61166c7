from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..exceptions import AlreadyInProgressError, RequestError
from ..monitor import BackupMonitor
from .deps import get_monitor
from .schemas import (
    BackupJobResponse,
    HealthResponse,
    ListJobsResponse,
    ProgressResponse,
    StartBackupResponse,
)


def get_router() -> APIRouter:
    """Get FastAPI router for backup monitor endpoints."""
    router = APIRouter(prefix="/backups", tags=["Backups"])

    @router.get("/jobs", response_model=ListJobsResponse)
    async def list_jobs(monitor: BackupMonitor = Depends(get_monitor)) -> ListJobsResponse:
        """Merged job table, newest first."""
        jobs = monitor.list_jobs()
        return ListJobsResponse(
            items=[BackupJobResponse.from_job(j) for j in jobs],
            total=len(jobs),
        )

    @router.get("/jobs/{job_id}", response_model=BackupJobResponse)
    async def get_job(
        job_id: int,
        monitor: BackupMonitor = Depends(get_monitor),
    ) -> BackupJobResponse:
        """Get one job."""
        job = monitor.get_job(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return BackupJobResponse.from_job(job)

    @router.post(
        "/start/{client_id}",
        response_model=StartBackupResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def start_backup(
        client_id: str = Path(min_length=1, max_length=128),
        monitor: BackupMonitor = Depends(get_monitor),
    ) -> StartBackupResponse:
        """Start a manual backup for client."""
        try:
            result = await monitor.start_backup(client_id)
        except AlreadyInProgressError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except RequestError as e:
            raise HTTPException(status_code=502, detail=e.message)
        return StartBackupResponse(
            client_id=result.client_id,
            job_id=result.job_id,
            message=result.message,
        )

    @router.get("/progress", response_model=list[ProgressResponse])
    async def visible_progress(
        monitor: BackupMonitor = Depends(get_monitor),
    ) -> list[ProgressResponse]:
        """Progress surfaces that should currently be shown."""
        return [ProgressResponse.from_subscription(s) for s in monitor.visible_progress()]

    @router.post("/progress/{job_id}/dismiss")
    async def dismiss_progress(
        job_id: int,
        monitor: BackupMonitor = Depends(get_monitor),
    ):
        """Hide the progress surface of a job without touching the job."""
        if not monitor.dismiss(job_id):
            raise HTTPException(status_code=404, detail="No visible progress for job")
        return {"job_id": job_id, "dismissed": True}

    @router.get("/_health", response_model=HealthResponse)
    async def health_check(monitor: BackupMonitor = Depends(get_monitor)) -> HealthResponse:
        """Push channel state and in-flight clients."""
        state = monitor.stream.state
        return HealthResponse(
            status="connected" if state.connected else "degraded",
            connected=state.connected,
            reconnect_attempts=state.reconnect_attempts,
            max_reconnect_attempts=monitor.stream.max_reconnect_attempts,
            in_flight=sorted(monitor.initiator.in_flight),
        )

    return router
