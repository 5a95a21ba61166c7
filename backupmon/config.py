from __future__ import annotations

from pydantic import Field, NonNegativeFloat, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitorSettings(BaseSettings):
    """Settings for one dashboard monitoring session."""

    model_config = SettingsConfigDict(
        env_prefix="BACKUPMON_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = "http://localhost:8080/api/v1/backup"
    ws_url: str = "ws://localhost:8080/ws"
    client_id: str = Field("admin-dashboard", min_length=1)
    auth_token: str | None = None

    request_timeout: PositiveFloat = 30.0
    reconnect_interval: NonNegativeFloat = 3.0
    max_reconnect_attempts: PositiveInt = 5
    heartbeat: PositiveFloat | None = None

    # coalesced refresh window after push progress
    refresh_delay: NonNegativeFloat = 2.0
    # 0 disables the periodic snapshot poll
    poll_interval: NonNegativeFloat = 30.0
    jobs_history_limit: PositiveInt = 10
