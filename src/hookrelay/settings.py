"""Pydantic models for relay configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .config import ConfigError, find_config, read_config

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

DEFAULT_UPSTREAM_TEMPLATE = "https://discord.com/api/webhooks/{id}/{token}"
DEFAULT_BAN_NOTICE = (
    "This webhook has been banned from the relay after repeatedly "
    "overflowing its queue. Reduce your send rate and contact the "
    "relay operator to be unbanned."
)


class ServerSettings(BaseModel):
    """HTTP listener for inbound deliveries."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    max_body_bytes: int = Field(default=1_048_576, ge=1024, le=10_485_760)


class UpstreamSettings(BaseModel):
    """Where deliveries are forwarded to."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    url_template: NonEmptyStr = DEFAULT_UPSTREAM_TEMPLATE
    request_timeout_s: float = Field(default=10.0, gt=0)

    @field_validator("url_template")
    @classmethod
    def _validate_template(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("upstream url_template must be an http(s) URL")
        if "{id}" not in v or "{token}" not in v:
            raise ValueError("upstream url_template must contain {id} and {token}")
        return v


class LimitSettings(BaseModel):
    """Queueing, draining and ban policy."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    max_queue_size: int = Field(default=100, ge=1)
    ban_threshold: int = Field(default=10, ge=1)
    drain_interval_s: float = Field(default=1.0, gt=0)
    drain_order: Literal["fifo", "lifo"] = "fifo"
    fallback_window_s: float = Field(default=1.0, gt=0)
    reset_errors_on_drain: bool = False
    ban_notice: NonEmptyStr = DEFAULT_BAN_NOTICE


class AnalyticsSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    ga_id: NonEmptyStr | None = None
    endpoint: NonEmptyStr = "https://www.google-analytics.com/collect"
    buffer_size: int = Field(default=1000, ge=1)
    timeout_s: float = Field(default=5.0, gt=0)


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        env_prefix="HOOKRELAY__",
        env_nested_delimiter="__",
        str_strip_whitespace=True,
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)

    history_size: int = Field(default=100, ge=0)
    bans_path: NonEmptyStr = "bans.json"
    log_level: NonEmptyStr = "INFO"
    log_json: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # File values arrive as init kwargs; the environment overrides them.
        return (
            env_settings,
            init_settings,
            dotenv_settings,
            file_secret_settings,
        )

    def resolve_bans_path(self, config_path: Path | None) -> Path:
        path = Path(self.bans_path).expanduser()
        if not path.is_absolute() and config_path is not None:
            path = config_path.parent / path
        return path


def parse_settings(raw: dict[str, Any]) -> RelaySettings:
    """Validate a raw config mapping into settings."""
    return RelaySettings(**raw)


def load_settings(
    path: str | Path | None = None,
) -> tuple[RelaySettings, Path | None]:
    """Load settings from TOML (if any) layered under the environment."""
    cfg_path = find_config(path)
    raw = read_config(cfg_path) if cfg_path is not None else {}
    try:
        settings = parse_settings(raw)
    except ValidationError as exc:
        where = str(cfg_path) if cfg_path is not None else "environment"
        raise ConfigError(f"Invalid configuration in {where}:\n{exc}") from None
    return settings, cfg_path
