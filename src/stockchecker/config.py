from __future__ import annotations

import os
from pathlib import Path

import yaml

from stockchecker.errors import ConfigError
from stockchecker.models import AppConfig

API_KEY_ENV = "BESTBUY_API_KEY"
CONFIG_PATH_ENV = "STOCKCHECKER_CONFIG"


def load_config(config_path: str | Path | None = None) -> AppConfig:
    payload: dict = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"config file not found: {path}")
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"config root must be a mapping: {path}")

    config = AppConfig.model_validate(payload)
    api_key = os.getenv(API_KEY_ENV)
    if api_key:
        config.catalog.api_key = api_key
    return config


def config_path_from_env() -> str | None:
    return os.getenv(CONFIG_PATH_ENV) or None
