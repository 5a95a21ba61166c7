from __future__ import annotations

import logging

from .api.base import BackupApi
from .exceptions import AlreadyInProgressError, RequestError
from .models import BackupJob, JobType, StartResult
from .registry import JobRegistry

logger = logging.getLogger("backupmon.initiator")


class BackupInitiator:
    """Start-backup workflow with a per-client in-flight guard.

    A client enters the in-flight set when its start request is issued and
    leaves it when the request fails or when a job for it reaches a terminal
    status. While it is in the set, further starts are rejected locally.
    Jobs the registry already knew when the start was issued never release
    the guard.
    """

    def __init__(self, api: BackupApi, registry: JobRegistry):
        self._api = api
        self._registry = registry
        self._in_flight: set[str] = set()
        # job id -> client id, for terminal updates that lack a client id
        self._jobs: dict[int, str] = {}
        # client id -> job ids that predate its in-flight start
        self._known: dict[str, frozenset[int]] = {}

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def is_in_flight(self, client_id: str) -> bool:
        return client_id in self._in_flight

    async def start(self, client_id: str) -> StartResult:
        """Start a manual backup for client."""
        if client_id in self._in_flight:
            logger.info(f"Start rejected, backup already in flight for {client_id}")
            raise AlreadyInProgressError(client_id)

        self._in_flight.add(client_id)
        self._known[client_id] = frozenset(self._registry.job_ids(client_id))
        try:
            result = await self._api.start_backup(client_id)
        except RequestError as e:
            self._in_flight.discard(client_id)
            self._known.pop(client_id, None)
            logger.warning(f"Start failed for {client_id}: {e}")
            raise

        if result.job_id is not None:
            self._jobs[result.job_id] = client_id
            job = self._registry.confirm_started(client_id, result.job_id, JobType.manual)
            if job is not None and job.status.is_terminal():
                # the terminal event won the race against the start response
                self.release(client_id)
        else:
            self._registry.seed_optimistic(client_id)

        logger.info(f"Backup started for {client_id}: job {result.job_id}")
        return result

    def handle_job_update(self, job: BackupJob) -> None:
        """Registry change hook: release the client once its job is terminal."""
        if job.id is None:
            return

        if not job.status.is_terminal():
            if self._unclaimed(job):
                self._jobs[job.id] = job.client_id
            return

        client_id = self._jobs.pop(job.id, None)
        if client_id is None and self._unclaimed(job):
            client_id = job.client_id
        if client_id:
            self.release(client_id)

    def _unclaimed(self, job: BackupJob) -> bool:
        # a job first seen after the client's start, while no job is tracked for it
        client_id = job.client_id
        return (
            client_id in self._in_flight
            and client_id not in self._jobs.values()
            and job.id not in self._known.get(client_id, ())
        )

    def release(self, client_id: str) -> bool:
        """Drop the in-flight guard for client."""
        for job_id in [j for j, c in self._jobs.items() if c == client_id]:
            del self._jobs[job_id]
        self._known.pop(client_id, None)
        if client_id not in self._in_flight:
            return False
        self._in_flight.discard(client_id)
        logger.debug(f"Released in-flight guard for {client_id}")
        return True
