# tests/conftest.py
import asyncio
import json
import typing as t
from types import SimpleNamespace

import aiohttp
import pytest

from backupmon.api.base import BackupApi
from backupmon.exceptions import RequestError
from backupmon.models import BackupJob, SshTestResult, StartResult


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


class FakeBackupApi(BackupApi):
    """In-memory stand-in for the backup service REST API."""

    def __init__(self):
        self.active_jobs: list[BackupJob] = []
        self.history: dict[str, list[BackupJob]] = {}
        self.next_job_id: int | None = 100
        self.start_error: RequestError | None = None
        self.snapshot_error: RequestError | None = None
        self.start_gate: asyncio.Event | None = None
        self.start_calls: list[str] = []
        self.snapshot_calls = 0
        self.closed = False

    async def start_backup(self, client_id: str) -> StartResult:
        self.start_calls.append(client_id)
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        job_id = self.next_job_id
        if job_id is not None:
            self.next_job_id = job_id + 1
        return StartResult(client_id=client_id, job_id=job_id, message="Backup started")

    async def get_active_jobs(self) -> list[BackupJob]:
        self.snapshot_calls += 1
        if self.snapshot_error is not None:
            raise self.snapshot_error
        return [j.copy() for j in self.active_jobs]

    async def get_jobs_by_client(self, client_id: str, limit: int = 10) -> list[BackupJob]:
        return self.history.get(client_id, [])[:limit]

    async def test_ssh_connection(self, client_id: str) -> SshTestResult:
        if client_id == "unreachable":
            raise RequestError("Error testing SSH connection", status=500)
        return SshTestResult(success=True, message=f"SSH ok for {client_id}")

    async def save_configuration(self, config):
        return config

    async def get_configuration(self, client_id: str):
        return None

    async def list_configurations(self, include_inactive: bool = False):
        return []

    async def pause_backups(self, client_id: str):
        return {"paused": client_id}

    async def resume_backups(self, client_id: str):
        return {"resumed": client_id}

    async def health(self):
        return {"status": "UP"}

    async def close(self) -> None:
        self.closed = True


class FakeWebSocket:
    """Scripted aiohttp client websocket."""

    def __init__(self):
        self._inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False

    def push(self, type_: str, data: t.Any = None) -> None:
        self.push_raw(json.dumps({"type": type_, "data": data, "timestamp": 1700000000000}))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=raw))

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSE, data=1006))

    async def receive(self):
        msg = await self._inbox.get()
        if msg.type == aiohttp.WSMsgType.CLOSE:
            self.closed = True
        return msg

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("closed")
        self.sent.append(json.loads(data))

    def exception(self):
        return None

    async def close(self) -> bool:
        self.closed = True
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None))
        return True


class FakeSession:
    """aiohttp.ClientSession stand-in whose ws_connect follows a script.

    Each script entry is a FakeWebSocket (connect succeeds) or an exception
    (connect fails). Once the script is exhausted every connect fails.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.connect_calls: list[dict] = []
        self.closed = False

    async def ws_connect(self, url, **kwargs):
        self.connect_calls.append({"url": url, **kwargs})
        if not self.script:
            raise aiohttp.ClientConnectionError("connection refused")
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step

    async def close(self):
        self.closed = True


@pytest.fixture()
def fake_api():
    return FakeBackupApi()


@pytest.fixture()
def make_ws():
    return FakeWebSocket


@pytest.fixture()
def make_session():
    return FakeSession


@pytest.fixture()
def wait_for():
    async def _wait_for(
        predicate: t.Callable[[], bool], timeout: float = 2.0, interval: float = 0.005
    ) -> bool:
        end = asyncio.get_event_loop().time() + timeout
        while asyncio.get_event_loop().time() < end:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return False

    return _wait_for
