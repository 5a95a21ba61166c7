"""
backupmon - Backup job monitor for administrative dashboards.

Usage:
    from backupmon import BackupMonitor, MonitorSettings

    settings = MonitorSettings(
        api_base_url="http://backup-host:8080/api/v1/backup",
        ws_url="ws://backup-host:8080/ws",
        client_id="admin-dashboard",
    )

    async with BackupMonitor(settings) as monitor:
        await monitor.start_backup("client-01")
        for job in monitor.list_jobs():
            print(job.id, job.status.value, job.progress_percentage)
"""

from .api.base import BackupApi
from .api.http import HttpBackupApi
from .config import MonitorSettings
from .events import MESSAGE_EVENTS, EventBus, ListenerHandle, StreamEvent
from .exceptions import (
    AlreadyInProgressError,
    BackupMonitorError,
    ProtocolError,
    RequestError,
    TransportError,
)
from .initiator import BackupInitiator
from .models import (
    BackupConfiguration,
    BackupJob,
    ConnectionState,
    JobStatus,
    JobType,
    NotificationState,
    ProgressSubscription,
    ProgressUpdate,
    SshTestResult,
    StartResult,
    TerminalUpdate,
)
from .monitor import BackupMonitor
from .notifier import ProgressNotifier
from .registry import JobRegistry
from .stream import EventStreamClient
from .version import __version__

# Conditional FastAPI import
try:
    from .fastapi.lifecycle import setup_backupmon

    __all_fastapi = ["setup_backupmon"]
except ImportError:
    __all_fastapi = []

__all__ = [
    # Version
    "__version__",
    # Core
    "BackupJob",
    "BackupConfiguration",
    "JobStatus",
    "JobType",
    "ConnectionState",
    "ProgressSubscription",
    "NotificationState",
    "ProgressUpdate",
    "TerminalUpdate",
    "StartResult",
    "SshTestResult",
    # Components
    "EventStreamClient",
    "JobRegistry",
    "BackupInitiator",
    "ProgressNotifier",
    "BackupMonitor",
    "MonitorSettings",
    # Events
    "EventBus",
    "ListenerHandle",
    "StreamEvent",
    "MESSAGE_EVENTS",
    # REST
    "BackupApi",
    "HttpBackupApi",
    # Exceptions
    "BackupMonitorError",
    "TransportError",
    "ProtocolError",
    "RequestError",
    "AlreadyInProgressError",
] + __all_fastapi
