from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from ..exceptions import RequestError
from ..models import BackupConfiguration, BackupJob, SshTestResult, StartResult
from ..wire import (
    BackupConfigurationPayload,
    SshTestPayload,
    StartResponsePayload,
    parse_jobs,
)
from .base import BackupApi

logger = logging.getLogger("backupmon.api.http")


class HttpBackupApi(BackupApi):
    """aiohttp-backed client of the backup service REST API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080/api/v1/backup",
        *,
        timeout: float = 30.0,
        token: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._token = token
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> HttpBackupApi:
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        default_error: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> Any:
        session = self._ensure_session()
        url = f"{self._base_url}{path}"
        try:
            async with session.request(
                method, url, json=json, params=params, headers=self._headers()
            ) as response:
                if allow_404 and response.status == 404:
                    return None
                if response.status >= 400:
                    message = await _error_message(response, default_error)
                    logger.warning(f"{method} {path} failed: {response.status} {message}")
                    raise RequestError(message, status=response.status)
                if response.content_length == 0:
                    return None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            raise RequestError(default_error) from e

    async def start_backup(self, client_id: str) -> StartResult:
        data = await self._request("POST", f"/start/{client_id}", default_error="Error starting backup")
        return _validate(StartResponsePayload, data or {}).to_result(client_id)

    async def get_active_jobs(self) -> list[BackupJob]:
        data = await self._request("GET", "/jobs/active", default_error="Error fetching active jobs")
        return _jobs(data)

    async def get_jobs_by_client(self, client_id: str, limit: int = 10) -> list[BackupJob]:
        data = await self._request(
            "GET",
            f"/jobs/{client_id}",
            params={"limit": limit},
            default_error="Error fetching jobs",
        )
        return _jobs(data)

    async def test_ssh_connection(self, client_id: str) -> SshTestResult:
        data = await self._request(
            "POST", f"/test-ssh/{client_id}", default_error="Error testing SSH connection"
        )
        return _validate(SshTestPayload, data or {}).to_result()

    async def save_configuration(self, config: BackupConfiguration) -> BackupConfiguration:
        body = BackupConfigurationPayload.from_model(config).model_dump(mode="json", by_alias=True)
        data = await self._request(
            "POST", "/configuration", json=body, default_error="Error saving configuration"
        )
        return _validate(BackupConfigurationPayload, data).to_model()

    async def get_configuration(self, client_id: str) -> BackupConfiguration | None:
        data = await self._request(
            "GET",
            f"/configuration/{client_id}",
            default_error="Error fetching configuration",
            allow_404=True,
        )
        if data is None:
            return None
        return _validate(BackupConfigurationPayload, data).to_model()

    async def list_configurations(self, include_inactive: bool = False) -> list[BackupConfiguration]:
        path = "/configurations/all" if include_inactive else "/configurations"
        data = await self._request("GET", path, default_error="Error fetching configurations")
        return [_validate(BackupConfigurationPayload, item).to_model() for item in data or []]

    async def pause_backups(self, client_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/pause/{client_id}", default_error="Error pausing backups") or {}

    async def resume_backups(self, client_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/resume/{client_id}", default_error="Error resuming backups") or {}

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health", default_error="Backup service unavailable") or {}

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


async def _error_message(response: aiohttp.ClientResponse, default: str) -> str:
    """Prefer the service's own error text, falling back to a fixed message."""
    try:
        body = await response.json(content_type=None)
    except (aiohttp.ClientError, ValueError):
        return default
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or default)
    return default


def _validate(model: type, data: Any) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RequestError(f"Unexpected response payload: {e.error_count()} error(s)") from e


def _jobs(data: Any) -> list[BackupJob]:
    try:
        return parse_jobs(data or [])
    except (ValidationError, ValueError) as e:
        raise RequestError(f"Unexpected job list payload: {e}") from e
