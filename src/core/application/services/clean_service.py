from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from src.core.domain.errors import QueryError
from src.core.infrastructure.config.harvest_config import HarvestConfig, ensure_writable, load_config
from src.core.infrastructure.persistence.sqlalchemy.repositories import TableRepository
from src.core.infrastructure.persistence.sqlalchemy.session import get_engine, open_connection

log = logging.getLogger(__name__)


@dataclass
class CleanResult:
    schema: str
    deleted: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"schema": self.schema, "deleted": dict(self.deleted)}


def clean_tables(conn: Connection, config: HarvestConfig) -> CleanResult:
    repo = TableRepository(conn)
    result = CleanResult(schema=config.schema_name)
    try:
        with conn.begin():
            for name in config.tables:
                result.deleted[name] = repo.delete_all(config.schema_name, name)
                log.info("table %s.%s cleaned", config.schema_name, name)
    except SQLAlchemyError as e:
        raise QueryError(f"clean of {config.schema_name} failed at commit: {e}") from e
    return result


def db_clean(target_env: str, config_path: Union[str, Path], engine: Optional[Engine] = None) -> CleanResult:
    """Delete every row of the configured tables; the first failure aborts."""
    log.info("cleaning env=%s config=%s", target_env, config_path)
    ensure_writable(target_env, "clean")
    config = load_config(config_path, target_env)
    owned = engine is None
    if owned:
        engine = get_engine(target_env, config.custom_connection(target_env))
    with open_connection(engine, dispose=owned) as conn:
        return clean_tables(conn, config)
