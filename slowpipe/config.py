from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from slowpipe.errors import ConfigError
from slowpipe.payload import DEFAULT_CHUNK_SIZE, DEFAULT_PAYLOAD_SIZE

LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")

DISABLED = ("", "none", "off")


class _SlowpipeSettings(BaseSettings):
    log_level: str = "info"

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
        if v not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}")
        return v

    @classmethod
    def from_env(cls, **overrides: Any):
        """Read the environment, with ``overrides`` taking precedence.

        Raises:
            ConfigError: if any value fails validation.
        """
        try:
            return cls(**overrides)
        except ValidationError as e:
            raise ConfigError(str(e)) from e


class Settings(_SlowpipeSettings):
    """Backend settings. Durations are in seconds, sizes in bytes."""

    model_config = SettingsConfigDict(
        env_prefix="SLOWPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    delay: float = Field(default=10.0, ge=0, description="Seconds to stall")
    # validated per request by build_payload
    payload_size: int = DEFAULT_PAYLOAD_SIZE
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    write_timeout: Optional[float] = Field(
        default=600.0,
        description="Total deadline for one response, counted from handler start",
    )
    send_timeout: Optional[float] = Field(
        default=None, description="Deadline for a single chunk write"
    )
    idle_timeout: float = Field(default=600.0, gt=0)

    @field_validator("write_timeout", "send_timeout", mode="before")
    @classmethod
    def parse_disabled(cls, v: Any) -> Any:
        if v is None or isinstance(v, str) and v.strip().lower() in DISABLED:
            return None
        return v

    @field_validator("write_timeout", "send_timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("timeout must be greater than 0")
        return v


class ProxySettings(_SlowpipeSettings):
    """Reverse proxy settings, mirroring nginx's proxy_*_timeout directives."""

    model_config = SettingsConfigDict(
        env_prefix="SLOWPIPE_PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    host: str = "0.0.0.0"
    port: int = Field(default=80, ge=0, le=65535)
    upstream: str = Field(
        default="backend:8080", description="host:port of the backend"
    )
    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=5.0, gt=0)
    send_timeout: float = Field(default=5.0, gt=0)

    @field_validator("upstream")
    @classmethod
    def validate_upstream(cls, v: str) -> str:
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"upstream must be host:port, got: {v!r}")
        return v

    @property
    def upstream_url(self) -> str:
        return f"http://{self.upstream}"
