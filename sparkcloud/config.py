"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from sparkcloud.utils.platform import get_config_dir, get_data_dir


class WebhooksConfig(BaseModel):
    request_timeout: float = 30.0
    chunk_size: int = Field(default=512, ge=4)
    max_chunks: int = Field(default=100, ge=1)
    max_hooks_per_user: int = 20
    max_hooks_per_device: int = 10


class ApiConfig(BaseModel):
    enabled: bool = True
    bind: str = "127.0.0.1"
    port: int = 8080


class AuthConfig(BaseModel):
    # access token -> user id
    access_tokens: dict[str, str] = Field(default_factory=dict)
    rate_limit_per_minute: int = 120


class BusConfig(BaseModel):
    max_queue_size: int = 256


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SPARKCLOUD_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    webhooks: WebhooksConfig = Field(default_factory=WebhooksConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    data_dir: str = ""
    firmware_dir: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    def get_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return get_data_dir()

    def get_firmware_dir(self) -> Path:
        if self.firmware_dir:
            return Path(self.firmware_dir)
        return self.get_data_dir() / "known_apps"


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config."""
    yaml_data: dict[str, Any] = {}

    # Determine config file path
    if config_path is None:
        config_path = os.environ.get("SPARKCLOUD_CONFIG")
    if config_path is None:
        default = get_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    # Load YAML if found
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    if overrides:
        yaml_data = _deep_merge(yaml_data, overrides)

    # YAML values are init kwargs, so env vars only fill what YAML leaves unset
    return Settings(**yaml_data)
