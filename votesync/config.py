from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

ENV_PREFIX = "VOTESYNC_"

# Block of the first treasury proposal on the Livepeer governor; nothing older is relevant.
FIRST_TREASURY_PROPOSAL_BLOCK = 162890764


def _default_data_dir() -> Path:
    override = os.getenv(f"{ENV_PREFIX}HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve() / "data"
    return Path.cwd().resolve() / "data"


class Settings(BaseModel):
    rpc_url: str = "https://arb1.arbitrum.io/rpc"
    governor_address: str = "0xcFE4E2879B786C3aa075813F0E364bb5acCb6aa0"
    registry_url: str = "https://tools.livepeer.cloud/api/orchestrator"

    database_path: Path = Field(default_factory=lambda: _default_data_dir() / "votesync.db")

    start_block: int = FIRST_TREASURY_PROPOSAL_BLOCK
    sync_interval_seconds: float = 300.0
    request_timeout_seconds: float = 30.0
    max_block_span: int = 500_000

    host: str = "127.0.0.1"
    port: int = 8001


def load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def _env_overrides() -> dict[str, str]:
    out: dict[str, str] = {}
    for name in Settings.model_fields:
        value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if value is not None and value.strip():
            out[name] = value.strip()
    return out


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Build settings from defaults, an optional YAML file, then ``VOTESYNC_*`` env vars.

    Later sources win. The YAML path defaults to ``$VOTESYNC_CONFIG`` when set.
    """
    if config_path is None:
        config_path = os.getenv(f"{ENV_PREFIX}CONFIG", "").strip() or None
    values: dict[str, Any] = {}
    if config_path:
        values.update(load_yaml(Path(config_path).expanduser()))
    values.update(_env_overrides())
    return Settings(**{k: v for k, v in values.items() if k in Settings.model_fields})


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
