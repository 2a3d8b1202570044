"""
Configuration loader for Vampire.
Merges built-in defaults with ~/.vampire/config.yaml and VAMPIRE_* env overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class TimeoutsConfig(BaseModel):
    metadata: float = 30
    git: float = 120
    agent: float = 3600
    connection_test: float = 30


class EngineConfig(BaseModel):
    max_retry: int = 2
    flush_interval: float = 2.0
    kill_grace: float = 5.0
    workspace_prefix: str = "vampire-"
    default_provider: str = "claude"


class BusConfig(BaseModel):
    max_subscribers: int = 50
    history_lines: int = 1000
    retained_topics: int = 200


class ClaudeProviderConfig(BaseModel):
    executable: str = "claude"
    co_author: str = "Claude <noreply@anthropic.com>"


class ProvidersConfig(BaseModel):
    claude: ClaudeProviderConfig = Field(default_factory=ClaudeProviderConfig)


class VampireConfig(BaseModel):
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
_USER_CONFIG_PATH = Path.home() / ".vampire" / "config.yaml"

# env var -> config key path
_ENV_OVERRIDES = {
    "VAMPIRE_AGENT_TIMEOUT": ("timeouts", "agent"),
    "VAMPIRE_GIT_TIMEOUT": ("timeouts", "git"),
    "VAMPIRE_FLUSH_INTERVAL": ("engine", "flush_interval"),
    "VAMPIRE_DEFAULT_PROVIDER": ("engine", "default_provider"),
    "VAMPIRE_CLAUDE_BIN": ("providers", "claude", "executable"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, path in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if not value:
            continue
        node = overrides
        for key in path[:-1]:
            node = node.setdefault(key, {})
        node[path[-1]] = value
    return overrides


def load_config(config_path: Path | None = None) -> VampireConfig:
    """
    Load config by merging:
      1. Built-in defaults (vampire/config.yaml)
      2. User overrides (~/.vampire/config.yaml, or config_path)
      3. Environment variable overrides
    """
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    user_config = config_path or _USER_CONFIG_PATH
    if user_config.exists():
        with open(user_config, "r") as f:
            overrides: dict[str, Any] = yaml.safe_load(f) or {}
        base = _deep_merge(base, overrides)

    base = _deep_merge(base, _env_overrides())
    return VampireConfig(**base)
