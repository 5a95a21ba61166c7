from fastapi import Request

from ..monitor import BackupMonitor
from .lifecycle import MONITOR_STATE_KEY


def get_monitor(request: Request) -> BackupMonitor:
    """Dependency to get BackupMonitor from app state."""
    monitor = getattr(request.app.state, MONITOR_STATE_KEY, None)
    if monitor is None:
        raise RuntimeError("BackupMonitor not initialized. Did you call setup_backupmon()?")
    return monitor
