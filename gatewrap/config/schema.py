"""Wrapper settings using pydantic-settings."""

from pathlib import Path
from typing import Any

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration for the wrapper.

    Every field maps to one environment variable. Blank values fall back to
    the defaults so a hosting platform can leave variables empty.
    """

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    port: int = Field(default=8080, validation_alias="PORT")
    state_dir: str = Field(default="", validation_alias="OPENCLAW_STATE_DIR")
    workspace_dir: str = Field(default="", validation_alias="OPENCLAW_WORKSPACE_DIR")
    config_path_override: str = Field(default="", validation_alias="OPENCLAW_CONFIG_PATH")
    legacy_config_dir: str = Field(default="/data/.clawdbot", validation_alias="OPENCLAW_LEGACY_CONFIG_DIR")
    setup_password: str = Field(default="", validation_alias="SETUP_PASSWORD")
    gateway_token: str = Field(default="", validation_alias="OPENCLAW_GATEWAY_TOKEN")

    gateway_host: str = Field(default="127.0.0.1", validation_alias="INTERNAL_GATEWAY_HOST")
    gateway_port: int = Field(default=18789, ge=1, le=65535, validation_alias="INTERNAL_GATEWAY_PORT")
    openclaw_entry: str = Field(default="/openclaw/dist/entry.js", validation_alias="OPENCLAW_ENTRY")
    openclaw_node: str = Field(default="node", validation_alias="OPENCLAW_NODE")
    gateway_process_pattern: str = Field(default="openclaw-gateway", validation_alias="GATEWAY_PROCESS_PATTERN")

    ready_timeout_s: float = Field(default=20.0, gt=0, validation_alias="GATEWAY_READY_TIMEOUT_S")
    ready_poll_s: float = Field(default=0.25, gt=0, validation_alias="GATEWAY_READY_POLL_S")
    restart_grace_s: float = Field(default=1.5, ge=0, validation_alias="GATEWAY_RESTART_GRACE_S")

    debug: bool = Field(default=False, validation_alias="OPENCLAW_TEMPLATE_DEBUG")

    @field_validator("*", mode="before")
    @classmethod
    def blank_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value and info.field_name:
                return cls.model_fields[info.field_name].default
        return value

    @property
    def state_path(self) -> Path:
        if self.state_dir:
            return Path(self.state_dir).expanduser()
        return Path.home() / ".openclaw"

    @property
    def workspace_path(self) -> Path:
        if self.workspace_dir:
            return Path(self.workspace_dir).expanduser()
        return self.state_path / "workspace"

    @property
    def config_path(self) -> Path:
        """Path of the gateway's own persisted config document."""
        if self.config_path_override:
            return Path(self.config_path_override).expanduser()
        return self.state_path / "openclaw.json"

    @property
    def token_path(self) -> Path:
        return self.state_path / "gateway.token"

    @property
    def legacy_config_path(self) -> Path:
        return Path(self.legacy_config_dir).expanduser() / "moltbot.json"

    @property
    def gateway_target(self) -> str:
        return f"http://{self.gateway_host}:{self.gateway_port}"

    @property
    def gateway_ws_target(self) -> str:
        return f"ws://{self.gateway_host}:{self.gateway_port}"

    def child_env(self) -> dict[str, str]:
        """Environment overlay handed to every CLI invocation."""
        return {
            "OPENCLAW_STATE_DIR": str(self.state_path),
            "OPENCLAW_WORKSPACE_DIR": str(self.workspace_path),
        }
