from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.domain.errors import ConfigurationError

log = logging.getLogger(__name__)

CUSTOM = "custom"
LOCAL = "local"
MANAGED_ENVIRONMENTS = ("development", "staging", "demo", "production")
# import/clean are refused here
PROTECTED_ENVIRONMENTS = ("demo", "production")


class CustomDb(BaseModel):
    name: str
    user: str
    password: str = ""
    host: str
    port: int = 5432
    sslmode: str = "disable"


class HarvestConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="table-group-name")
    schema_name: str = Field(alias="schema")
    tables: List[str] = Field(default_factory=list)
    obscure: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    custom_db: Dict[str, CustomDb] = Field(default_factory=dict)

    def custom_connection(self, target_env: str) -> Optional[CustomDb]:
        env, custom_name = parse_target_env(target_env)
        if env != CUSTOM:
            return None
        db = self.custom_db.get(custom_name)
        if db is None:
            raise ConfigurationError(f"could not load database configuration custom_db:{custom_name}")
        return db

    def policy_for(self, table: str) -> Dict[str, str]:
        return {col: p for col, p in (self.obscure.get(table) or {}).items() if p}


def parse_target_env(label: Optional[str]) -> Tuple[str, Optional[str]]:
    """Split ``custom:ENV`` into ``("custom", "ENV")``; validate known labels."""
    text = (label or "").strip()
    env, _, rest = text.partition(":")
    if env == CUSTOM:
        if not rest:
            raise ConfigurationError("custom environment requires a name: custom:{ENV}")
        return env, rest
    if env == LOCAL or env in MANAGED_ENVIRONMENTS:
        return env, None
    raise ConfigurationError(
        f"unknown target environment {label!r}, expected custom:{{ENV}}|{LOCAL}|{'|'.join(MANAGED_ENVIRONMENTS)}"
    )


def is_custom(label: Optional[str]) -> bool:
    return (label or "").split(":")[0] == CUSTOM


def ensure_writable(label: str, operation: str) -> None:
    env, _ = parse_target_env(label)
    if env in PROTECTED_ENVIRONMENTS:
        raise ConfigurationError(f"{operation} is not allowed in the {env!r} environment")


def load_config(path: Optional[Union[str, Path]], target_env: Optional[str] = None) -> HarvestConfig:
    if not path:
        raise ConfigurationError("a harvest configuration file is required")
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"config file not found: {p}")
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"cannot read config {p}: {e}") from e
    try:
        config = HarvestConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"invalid config {p}: {e}") from e
    if target_env is not None:
        # fail early on a missing custom_db entry
        config.custom_connection(target_env)
    log.info("config loaded path=%s schema=%s tables=%s", p, config.schema_name, len(config.tables))
    return config
