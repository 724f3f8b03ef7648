"""Declarative options accepted by `Core`."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import ConfigSetup

LogLevelName = Literal["debug", "info", "warning", "error", "critical"]

_LOG_LEVEL_ENV = "COREKIT_LOG_LEVEL"
_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


def slugify(name: str) -> str:
    """`"My App"` and `"my-app"` both become `"my_app"`."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name.strip())
    slug = re.sub(r"[^0-9a-zA-Z]+", "_", spaced).strip("_").lower()
    if not slug:
        raise ValueError(f"cannot derive an identifier from name {name!r}")
    return slug


def default_data_root() -> Path:
    xdg = os.getenv("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


class CoreOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    name: str
    version: str | None = None
    folder: list[str] = Field(default_factory=list)
    app_folder: Path | None = None
    config_setup: ConfigSetup = Field(default_factory=ConfigSetup)

    database: bool = False
    sqlite: bool = False
    database_extensions: list[str] = Field(default_factory=list)

    insecure_port: int | None = Field(default=None, ge=0, le=65535)
    secure_port: int | None = Field(default=None, ge=0, le=65535)
    use_http_client: bool = False

    log_level: LogLevelName = "debug"
    log_to_console: bool = True
    server_log_level: LogLevelName | None = None
    database_log_level: LogLevelName | None = None
    http_client_log_level: LogLevelName | None = None

    hook_timeout: float | None = Field(default=None, gt=0)

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must be non-empty")
        return value.strip()

    @field_validator("folder", mode="before")
    @classmethod
    def _coerce_folder(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("config_setup", mode="before")
    @classmethod
    def _coerce_config_setup(cls, value: Any) -> ConfigSetup:
        if value is None:
            return ConfigSetup()
        return ConfigSetup.coerce(value, source="options.config_setup")

    @property
    def slug(self) -> str:
        return slugify(self.name)

    def resolve_app_folder(self) -> Path:
        if self.app_folder is not None:
            return Path(self.app_folder)
        return default_data_root().joinpath(*self.folder, self.name)

    @classmethod
    def from_env(cls, **values: Any) -> CoreOptions:
        level = (os.getenv(_LOG_LEVEL_ENV) or "").strip().lower()
        if level in _LOG_LEVELS and "log_level" not in values:
            values["log_level"] = level
        return cls(**values)
