from __future__ import annotations

import asyncio
import builtins
import contextlib
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import fields
from datetime import UTC, datetime

from .exceptions import RequestError
from .models import (
    PROVISIONAL_FILES_TOTAL,
    BackupJob,
    JobStatus,
    JobType,
    ProgressUpdate,
    TerminalUpdate,
)
from .util.time import now_utc, to_utc

logger = logging.getLogger("backupmon.registry")

SnapshotSource = Callable[[], Awaitable[builtins.list[BackupJob]]]

_EARLIEST = datetime.min.replace(tzinfo=UTC)

# Fields that apply_snapshot() merges with dedicated rules.
_RULED_FIELDS = {"id", "status", "progress_percentage", "files_processed", "files_total"}
_OVERLAY_FIELDS = [f.name for f in fields(BackupJob) if f.name not in _RULED_FIELDS]


class JobRegistry:
    """Authoritative in-memory table of backup jobs.

    Two sources feed it: push events (apply_progress, apply_terminal) and
    pull snapshots (apply_snapshot). Every merge is synchronous, so under
    the event loop each one is atomic per job id. The rules:

    * status only moves forward along PENDING -> RUNNING -> terminal and
      never leaves a terminal state;
    * a RUNNING job's progress never decreases, whichever source reports it;
    * a terminal push event overrides progress and forces a refresh;
    * snapshots are not exhaustive: jobs they omit are left alone.

    Optimistic placeholders (no id yet) live apart from the id table and are
    replaced, never merged, once the real job shows up.
    """

    def __init__(
        self,
        snapshot: SnapshotSource | None = None,
        *,
        refresh_delay: float = 2.0,
        on_change: Callable[[BackupJob], None] | None = None,
    ):
        self._snapshot = snapshot
        self._refresh_delay = refresh_delay
        self._on_change = on_change

        self._jobs: dict[int, BackupJob] = {}
        self._optimistic: dict[str, BackupJob] = {}
        # job ids whose files_total is still the push-derived placeholder
        self._provisional: set[int] = set()

        self._refresh_timer: asyncio.Task[None] | None = None
        self._refresh_tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    # -- merges ---------------------------------------------------------

    def apply_progress(self, update: ProgressUpdate) -> bool:
        """Apply a push progress event. Returns False when it was discarded."""
        if self._closed:
            return False

        progress = max(0, min(100, update.progress))
        job = self._jobs.get(update.job_id)

        if job is None:
            job = BackupJob(
                id=update.job_id,
                client_id=update.client_id,
                status=JobStatus.running,
                started_at=now_utc(),
                files_total=PROVISIONAL_FILES_TOTAL,
                files_processed=progress,
                progress_percentage=progress,
                log_details=update.message,
            )
            self._jobs[update.job_id] = job
            self._provisional.add(update.job_id)
            logger.info(f"Tracking job {update.job_id} for {update.client_id} from push progress")
        else:
            if job.status.is_terminal():
                logger.debug(f"Ignoring progress for terminal job {job.id}")
                return False
            current = job.progress_percentage or 0
            if progress < current:
                logger.debug(f"Discarding stale progress {progress} < {current} for job {job.id}")
                return False

            job.status = JobStatus.running
            job.progress_percentage = progress
            if job.id in self._provisional:
                job.files_processed = progress
            if update.message is not None:
                job.log_details = update.message
            if job.started_at is None:
                job.started_at = now_utc()

        self._optimistic.pop(job.client_id, None)
        self._changed(job)
        self._schedule_refresh()
        return True

    def apply_snapshot(self, jobs: builtins.list[BackupJob]) -> int:
        """Merge a pull snapshot. Returns the number of jobs inserted or changed."""
        if self._closed:
            return 0

        changed = 0
        for incoming in jobs:
            if incoming.id is None:
                logger.warning(f"Ignoring snapshot job without id for {incoming.client_id}")
                continue

            job = self._jobs.get(incoming.id)
            if job is None:
                job = incoming.copy()
                job.started_at = to_utc(job.started_at)
                job.finished_at = to_utc(job.finished_at)
                self._jobs[job.id] = job
            elif not self._merge(job, incoming):
                continue

            if not job.status.is_terminal():
                self._optimistic.pop(job.client_id, None)
            changed += 1
            self._changed(job)

        if changed:
            logger.debug(f"Snapshot merged: {changed} job(s) updated")
        return changed

    def _merge(self, job: BackupJob, incoming: BackupJob) -> bool:
        before = job.copy()

        if job.status.is_terminal():
            # first terminal status wins; a terminal snapshot is authoritative
            # for the remaining fields, a stale non-terminal one only fills gaps
            for name in _OVERLAY_FIELDS + ["files_processed", "files_total"]:
                value = getattr(incoming, name)
                if value is None:
                    continue
                if incoming.status.is_terminal() or getattr(job, name) is None:
                    setattr(job, name, value)
            if incoming.files_total is not None:
                self._provisional.discard(job.id)
            job.started_at = to_utc(job.started_at)
            job.finished_at = to_utc(job.finished_at)
            return job != before

        if incoming.status.rank >= job.status.rank:
            job.status = incoming.status

        for name in _OVERLAY_FIELDS:
            value = getattr(incoming, name)
            if value is not None:
                setattr(job, name, value)
        job.started_at = to_utc(job.started_at)
        job.finished_at = to_utc(job.finished_at)

        running = job.status is JobStatus.running
        if incoming.progress_percentage is not None:
            if running and job.progress_percentage is not None:
                job.progress_percentage = max(job.progress_percentage, incoming.progress_percentage)
            else:
                job.progress_percentage = incoming.progress_percentage

        if incoming.files_total is not None:
            if job.id in self._provisional:
                self._provisional.discard(job.id)
                job.files_processed = None
            job.files_total = incoming.files_total
        if incoming.files_processed is not None and job.id not in self._provisional:
            if running and job.files_processed is not None:
                job.files_processed = max(job.files_processed, incoming.files_processed)
            else:
                job.files_processed = incoming.files_processed

        return job != before

    def apply_terminal(self, status: JobStatus | str, update: TerminalUpdate) -> BackupJob | None:
        """Force a job into a terminal status and refresh immediately."""
        status = JobStatus(status)
        if not status.is_terminal():
            raise ValueError(f"Not a terminal status: {status.value}")
        if self._closed:
            return None

        job = self._jobs.get(update.job_id)
        before = job.copy() if job else None
        if job is None:
            job = BackupJob(id=update.job_id, client_id=update.client_id or "", status=status)
            self._jobs[update.job_id] = job
        elif job.status.is_terminal():
            if job.status is not status:
                logger.warning(
                    f"Job {job.id} already {job.status.value}, ignoring {status.value}"
                )
        else:
            job.status = status

        if update.client_id and not job.client_id:
            job.client_id = update.client_id
        if job.finished_at is None:
            job.finished_at = update.finished_at or now_utc()
        if job.status is JobStatus.failed and update.error and not job.error_message:
            job.error_message = update.error

        if before is not None and before.status.is_terminal() and job == before:
            logger.debug(f"Duplicate terminal event for job {job.id}")
            return job.copy()

        if update.client_id:
            self._optimistic.pop(update.client_id, None)
        logger.info(f"Job {job.id} reached {job.status.value}")
        self._changed(job)
        self._refresh_now()
        return job.copy()

    # -- optimistic placeholders ----------------------------------------

    def seed_optimistic(self, client_id: str, job_type: JobType = JobType.manual) -> BackupJob:
        """Insert a placeholder for a start whose job id is not known yet."""
        job = BackupJob(
            id=None,
            client_id=client_id,
            status=JobStatus.pending,
            job_type=job_type,
            started_at=now_utc(),
            progress_percentage=0,
        )
        self._optimistic[client_id] = job
        self._changed(job)
        return job.copy()

    def confirm_started(
        self,
        client_id: str,
        job_id: int,
        job_type: JobType | None = None,
    ) -> BackupJob | None:
        """Replace the client's placeholder with the real job, as RUNNING."""
        if self._closed:
            return None

        self._optimistic.pop(client_id, None)
        job = self._jobs.get(job_id)
        if job is None:
            job = BackupJob(
                id=job_id,
                client_id=client_id,
                status=JobStatus.running,
                job_type=job_type,
                started_at=now_utc(),
                progress_percentage=0,
            )
            self._jobs[job_id] = job
        else:
            if job.status.rank < JobStatus.running.rank:
                job.status = JobStatus.running
            if job.job_type is None:
                job.job_type = job_type
            if job.started_at is None:
                job.started_at = now_utc()

        self._changed(job)
        return job.copy()

    def discard_optimistic(self, client_id: str) -> bool:
        return self._optimistic.pop(client_id, None) is not None

    # -- reads ----------------------------------------------------------

    def list(self) -> builtins.list[BackupJob]:
        """All jobs, newest first, as copies."""
        jobs = [j.copy() for j in itertools.chain(self._jobs.values(), self._optimistic.values())]
        jobs.sort(key=lambda j: to_utc(j.started_at) or _EARLIEST, reverse=True)
        return jobs

    def get(self, job_id: int) -> BackupJob | None:
        job = self._jobs.get(job_id)
        return job.copy() if job else None

    def optimistic(self, client_id: str) -> BackupJob | None:
        job = self._optimistic.get(client_id)
        return job.copy() if job else None

    def job_ids(self, client_id: str) -> set[int]:
        """Ids of every job known for client."""
        return {job_id for job_id, job in self._jobs.items() if job.client_id == client_id}

    def active(self) -> builtins.list[BackupJob]:
        """Pending and running jobs, optimistic ones included."""
        return [j for j in self.list() if j.status.is_active()]

    def __len__(self) -> int:
        return len(self._jobs) + len(self._optimistic)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    # -- refresh --------------------------------------------------------

    @property
    def refresh_pending(self) -> bool:
        """True while a coalesced refresh timer is waiting to fire."""
        return self._refresh_timer is not None

    async def refresh(self) -> bool:
        """Pull a snapshot and merge it; keeps the last good state on failure."""
        if self._snapshot is None or self._closed:
            return False
        try:
            jobs = await self._snapshot()
        except RequestError as e:
            logger.warning(f"Snapshot refresh failed, keeping last known state: {e}")
            return False
        if self._closed:
            logger.debug("Discarding snapshot received after close")
            return False
        self.apply_snapshot(jobs)
        return True

    def _schedule_refresh(self) -> None:
        if self._snapshot is None or self._closed or self._refresh_timer is not None:
            return
        self._refresh_timer = self._spawn(self._coalesced_refresh(), "registry-coalesced-refresh")

    def _refresh_now(self) -> None:
        if self._snapshot is None or self._closed:
            return
        self._spawn(self._background_refresh(), "registry-refresh")

    async def _coalesced_refresh(self) -> None:
        await asyncio.sleep(self._refresh_delay)
        self._refresh_timer = None
        await self._background_refresh()

    async def _background_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception as e:
            logger.exception(f"Snapshot refresh error: {e}")

    def _spawn(self, coro, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        return task

    def _changed(self, job: BackupJob) -> None:
        if not self._on_change:
            return
        try:
            self._on_change(job.copy())
        except Exception:
            logger.exception(f"on_change hook failed for job {job.id}")

    async def close(self) -> None:
        """Cancel pending refreshes; later results and merges are discarded."""
        self._closed = True
        self._refresh_timer = None
        current = asyncio.current_task()
        tasks = [t for t in self._refresh_tasks if t is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._refresh_tasks.clear()
