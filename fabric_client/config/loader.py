"""Load client settings from YAML and environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FABRIC_LOG_", extra="ignore")
    level: str = "INFO"
    json_format: bool = True


class Settings(BaseSettings):
    """Client settings: YAML + env. The API key comes from env only."""

    model_config = SettingsConfigDict(env_prefix="FABRIC_", env_nested_delimiter="__", extra="ignore")

    server_url: str = Field(default="http://localhost:8080")
    api_key: str = Field(default="", description="Sent as X-API-Key when set")
    timeout: float = Field(default=60.0, gt=0, description="Per-operation HTTP timeout, seconds")
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Settings":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        profile = os.getenv("FABRIC_PROFILE", "")
        if profile:
            yaml_data = _deep_merge(yaml_data, _load_yaml(path.parent / f"{profile}.yaml"))
        yaml_data.pop("api_key", None)
        # init kwargs beat env in pydantic-settings; env must win over YAML here
        for key in ("server_url", "timeout"):
            if os.getenv(f"FABRIC_{key.upper()}"):
                yaml_data.pop(key, None)
        for key in ("level", "json_format"):
            value = os.getenv(f"FABRIC_LOG_{key.upper()}")
            if value:
                yaml_data.setdefault("logging", {})[key] = value
        return cls(**yaml_data)


def get_settings(config_path: str | Path | None = None) -> Settings:
    return Settings.load(config_path)
