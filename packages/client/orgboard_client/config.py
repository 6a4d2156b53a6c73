"""
Configuration loading and validation.

Loads client configuration from a YAML file. The session token is resolved
from an environment variable and is never stored in the config file.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class ApiConfig(BaseModel):
    url: str = "http://localhost:8000"
    verify_tls: bool = True
    request_timeout_seconds: float = 30
    token_env: str = "ORGBOARD_TOKEN"

    @property
    def token(self) -> str | None:
        return os.environ.get(self.token_env)


class CacheConfig(BaseModel):
    enabled: bool = True
    db_path: str = "./data/orgboard_cache.db"


class ClientConfig(BaseModel):
    api: ApiConfig = Field(default_factory=ApiConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


def load_config(path: str | Path) -> ClientConfig:
    """Load and validate client configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return ClientConfig.model_validate(raw)
