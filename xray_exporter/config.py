"""
Configuration for the Xray stats exporter.

We use pydantic-settings (Pydantic v2) to load settings from:
- environment variables
- a local `.env` file in the project root
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Environment variables (with defaults):

    - XRAY_API:                Xray gRPC API address (default: 127.0.0.1:8080)
    - PORT:                    HTTP port serving /metrics (default: 9100)
    - LISTEN_HOST:             HTTP bind address (default: 0.0.0.0)
    - SCRAPE_INTERVAL_SECONDS: Delay between polls while healthy (default: 5)
    - FAIL_INTERVAL_SECONDS:   Delay between polls in backoff (default: 15)
    - FAIL_THRESHOLD:          Consecutive failures before backoff (default: 3)
    - WARMUP_SECONDS:          Delay before the first poll (default: 2)
    - RPC_TIMEOUT_SECONDS:     Bound on every single RPC call (default: 3)
    - TRAFFIC_MODE:            "pull" (read counters at scrape time) or
                               "background" (counters from the poll loop)
    - MAX_IPS_PER_USER:        Cap on exported online IPs per user, 0 = no cap
    - IP_QUERY_WORKERS:        Parallel online-IP lookups per poll (default: 1)
    - USE_STATS_STUB:          "1" or "0" to toggle fake upstream data
    - LOG_LEVEL:               Root log level (default: INFO)
    """

    xray_api: str = "127.0.0.1:8080"
    port: int = 9100
    listen_host: str = "0.0.0.0"

    scrape_interval_seconds: float = Field(default=5.0, gt=0)
    fail_interval_seconds: float = Field(default=15.0, gt=0)
    fail_threshold: int = Field(default=3, ge=1)
    warmup_seconds: float = Field(default=2.0, ge=0)
    rpc_timeout_seconds: float = Field(default=3.0, gt=0)

    traffic_mode: Literal["pull", "background"] = "pull"

    max_ips_per_user: int = Field(default=256, ge=0)
    ip_query_workers: int = Field(default=1, ge=1)

    use_stats_stub: bool = False

    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("xray_api")
    @classmethod
    def check_xray_api(cls, v: str) -> str:
        """
        XRAY_API must look like "host:port".

        The gRPC channel is created lazily, so a bad address would otherwise
        only show up as a stream of failed polls.
        """
        host, sep, port = v.strip().rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"XRAY_API must be host:port, got {v!r}")
        return v.strip()

    @field_validator("port")
    @classmethod
    def check_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"PORT out of range: {v}")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept any case ("debug"); unknown names still fail validation."""
        return v.upper() if isinstance(v, str) else v


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    return Settings()
