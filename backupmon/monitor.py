from __future__ import annotations

import asyncio
import builtins
import contextlib
import logging
from typing import Any

from pydantic import ValidationError

from .api.base import BackupApi
from .api.http import HttpBackupApi
from .config import MonitorSettings
from .events import StreamEvent
from .exceptions import RequestError
from .initiator import BackupInitiator
from .models import BackupJob, JobStatus, ProgressSubscription, SshTestResult, StartResult
from .notifier import ProgressNotifier
from .registry import JobRegistry
from .stream import EventStreamClient
from .wire import (
    BackupProgressPayload,
    BackupStartedPayload,
    BackupTerminalPayload,
    parse_jobs,
)

logger = logging.getLogger("backupmon.monitor")


class BackupMonitor:
    """One dashboard session: push stream, job registry, initiator and notifier."""

    def __init__(
        self,
        settings: MonitorSettings | None = None,
        *,
        api: BackupApi | None = None,
        stream: EventStreamClient | None = None,
    ):
        self.settings = settings or MonitorSettings()
        self.api = api or HttpBackupApi(
            self.settings.api_base_url,
            timeout=self.settings.request_timeout,
            token=self.settings.auth_token,
        )
        self.stream = stream or EventStreamClient(
            self.settings.ws_url,
            self.settings.client_id,
            reconnect_interval=self.settings.reconnect_interval,
            max_reconnect_attempts=self.settings.max_reconnect_attempts,
            heartbeat=self.settings.heartbeat,
        )
        self.registry = JobRegistry(
            self.api.get_active_jobs,
            refresh_delay=self.settings.refresh_delay,
            on_change=self._on_job_change,
        )
        self.initiator = BackupInitiator(self.api, self.registry)
        self.notifier = ProgressNotifier()

        self._poll_task: asyncio.Task[None] | None = None
        self._started = False
        self._closed = False
        self._wire_stream()

    async def __aenter__(self) -> BackupMonitor:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _wire_stream(self) -> None:
        self.stream.on(StreamEvent.backup_started, self._on_started)
        self.stream.on(StreamEvent.backup_progress, self._on_progress)
        self.stream.on(StreamEvent.backup_completed, self._on_completed)
        self.stream.on(StreamEvent.backup_failed, self._on_failed)
        self.stream.on(StreamEvent.job_status_data, self._on_job_status)
        self.stream.on(StreamEvent.error, self._on_error)
        self.stream.on(StreamEvent.max_reconnect_attempts_reached, self._on_gave_up)

    async def start(self) -> bool:
        """Connect the stream, load an initial snapshot and start polling."""
        if self._started:
            return self.stream.is_connected()
        self._started = True

        connected = await self.stream.connect()
        if not connected:
            logger.warning("Push channel unavailable, relying on snapshots")
        await self.registry.refresh()

        if self.settings.poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop(), name="backupmon-poll")
        return connected

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.settings.poll_interval)
            try:
                await self.registry.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Poll error: {e}")

    # -- push handlers --------------------------------------------------

    def _on_started(self, data: Any) -> None:
        payload = _parse(BackupStartedPayload, data, "BACKUP_STARTED")
        if payload is None:
            return
        if self._finished(payload.job_id):
            logger.debug(f"Ignoring late BACKUP_STARTED for finished job {payload.job_id}")
            return
        self.notifier.on_started(payload.client_id, payload.job_id)
        self.registry.confirm_started(payload.client_id, payload.job_id)

    def _on_progress(self, data: Any) -> None:
        payload = _parse(BackupProgressPayload, data, "BACKUP_PROGRESS")
        if payload is None:
            return
        update = payload.to_update()
        if not self.registry.apply_progress(update) and self._finished(update.job_id):
            return
        self.notifier.on_progress(update.client_id, update.job_id, update.progress, update.message)

    def _on_completed(self, data: Any) -> None:
        self._on_terminal(JobStatus.completed, data, "BACKUP_COMPLETED")

    def _on_failed(self, data: Any) -> None:
        self._on_terminal(JobStatus.failed, data, "BACKUP_FAILED")

    def _on_terminal(self, status: JobStatus, data: Any, kind: str) -> None:
        payload = _parse(BackupTerminalPayload, data, kind)
        if payload is None:
            return
        job = self.registry.apply_terminal(status, payload.to_update())
        if status is JobStatus.failed and job is not None:
            logger.warning(f"Backup job {job.id} failed: {job.error_message or 'unknown error'}")

    def _on_job_status(self, data: Any) -> None:
        try:
            jobs = parse_jobs(data)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Dropping malformed JOB_STATUS_DATA: {e}")
            return
        self.registry.apply_snapshot(jobs)

    def _on_error(self, data: Any) -> None:
        message = data.get("error") if isinstance(data, dict) else data
        logger.warning(f"Push channel error: {message or 'unknown'}")

    def _on_gave_up(self, data: Any) -> None:
        logger.error("Push channel gave up reconnecting; snapshots only from now on")

    def _on_job_change(self, job: BackupJob) -> None:
        # terminal states reach the notifier whether they were pushed or polled
        if job.id is not None and job.status.is_terminal():
            self.notifier.on_terminal(job.id)
        self.initiator.handle_job_update(job)

    def _finished(self, job_id: int) -> bool:
        job = self.registry.get(job_id)
        return job is not None and job.status.is_terminal()

    # -- consumer API ---------------------------------------------------

    async def start_backup(self, client_id: str) -> StartResult:
        return await self.initiator.start(client_id)

    def list_jobs(self) -> builtins.list[BackupJob]:
        return self.registry.list()

    def get_job(self, job_id: int) -> BackupJob | None:
        return self.registry.get(job_id)

    def dismiss(self, job_id: int) -> bool:
        return self.notifier.dismiss(job_id)

    def visible_progress(self) -> builtins.list[ProgressSubscription]:
        return self.notifier.visible()

    async def jobs_for_client(self, client_id: str, limit: int | None = None) -> builtins.list[BackupJob]:
        """Recent history for one client, straight from the REST API."""
        return await self.api.get_jobs_by_client(client_id, limit or self.settings.jobs_history_limit)

    async def test_ssh_connection(self, client_id: str) -> SshTestResult:
        try:
            return await self.api.test_ssh_connection(client_id)
        except RequestError as e:
            return SshTestResult(success=False, message=e.message)

    async def close(self) -> None:
        """Tear down the session. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

        await self.stream.disconnect()
        await self.registry.close()
        try:
            await self.api.close()
        except Exception:
            logger.exception("Failed to close backup API client")
        logger.info("Backup monitor closed")


def _parse(model: type, data: Any, kind: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Dropping malformed {kind}: {e.error_count()} error(s)")
        return None
