import ipaddress
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_FILE_NAME = ".claude-usage-data.json"


class Settings(BaseSettings):
    # Relay
    relay_host: str = "127.0.0.1"  # loopback only
    relay_port: int = 19876
    data_file: Path = Path.home() / DATA_FILE_NAME
    grace_seconds: float = 20.0
    freshness_seconds: float = 60.0

    # Poller
    poll_interval_seconds: float = 60.0
    poll_initial_delay_seconds: float = 6.0
    claude_base_url: str = "https://claude.ai/api"
    session_key: str | None = None  # value of the claude.ai "sessionKey" cookie
    request_timeout: float = 15.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="USAGE_RELAY_", env_file=".env", extra="ignore")

    @field_validator("relay_host")
    @classmethod
    def _loopback_only(cls, value: str) -> str:
        if value == "localhost":
            return value
        try:
            if ipaddress.ip_address(value).is_loopback:
                return value
        except ValueError:
            pass
        raise ValueError(f"relay_host must be a loopback address, got {value!r}")

    @property
    def relay_url(self) -> str:
        return f"http://{self.relay_host}:{self.relay_port}/usage"
