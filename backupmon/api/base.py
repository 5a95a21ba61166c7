from __future__ import annotations

import abc
from typing import Any

from ..models import BackupConfiguration, BackupJob, SshTestResult, StartResult


class BackupApi(abc.ABC):
    """Abstract REST collaborator of the backup service.

    Every method raises RequestError on failure.
    """

    @abc.abstractmethod
    async def start_backup(self, client_id: str) -> StartResult:
        """Start a manual backup for client."""
        ...

    @abc.abstractmethod
    async def get_active_jobs(self) -> list[BackupJob]:
        """Snapshot of pending and running jobs."""
        ...

    @abc.abstractmethod
    async def get_jobs_by_client(self, client_id: str, limit: int = 10) -> list[BackupJob]:
        """Most recent jobs for one client."""
        ...

    @abc.abstractmethod
    async def test_ssh_connection(self, client_id: str) -> SshTestResult:
        """Probe SSH connectivity of the client's target."""
        ...

    @abc.abstractmethod
    async def save_configuration(self, config: BackupConfiguration) -> BackupConfiguration:
        """Create or update a client's configuration."""
        ...

    @abc.abstractmethod
    async def get_configuration(self, client_id: str) -> BackupConfiguration | None:
        """Get a client's configuration, None if it has none."""
        ...

    @abc.abstractmethod
    async def list_configurations(self, include_inactive: bool = False) -> list[BackupConfiguration]:
        """List configurations."""
        ...

    @abc.abstractmethod
    async def pause_backups(self, client_id: str) -> dict[str, Any]:
        """Pause scheduled backups for client."""
        ...

    @abc.abstractmethod
    async def resume_backups(self, client_id: str) -> dict[str, Any]:
        """Resume scheduled backups for client."""
        ...

    @abc.abstractmethod
    async def health(self) -> dict[str, Any]:
        """Service health check."""
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        """Close connections."""
        ...
