from __future__ import annotations


class BackupMonitorError(Exception):
    """Base exception for backupmon library."""

    pass


class TransportError(BackupMonitorError):
    """Raised when the push connection fails to open or drops."""

    pass


class ProtocolError(BackupMonitorError):
    """Raised when an inbound message is malformed or of unknown type."""

    pass


class RequestError(BackupMonitorError):
    """Raised when a REST call fails."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


class AlreadyInProgressError(BackupMonitorError):
    """Raised when a start is requested for a client that already has one in flight."""

    def __init__(self, client_id: str):
        super().__init__(f"Backup already in progress for client: {client_id}")
        self.client_id = client_id
