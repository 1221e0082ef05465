from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from src.core.domain.bundle import Bundle, BundleFormat, Table
from src.core.domain.errors import QueryError
from src.core.infrastructure.config.harvest_config import CustomDb, ensure_writable, is_custom, load_config
from src.core.infrastructure.persistence.sqlalchemy.repositories import TableRepository
from src.core.infrastructure.persistence.sqlalchemy.session import get_engine, open_connection
from src.core.infrastructure.serialization.bundle_codec import json_default, read_bundle

log = logging.getLogger(__name__)


@dataclass
class ImportResult:
    schema: str
    inserted: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    sequences: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema,
            "inserted": dict(self.inserted),
            "errors": dict(self.errors),
            "sequences": dict(self.sequences),
        }


def load_table(repo: TableRepository, schema: str, table: Table, fmt: BundleFormat) -> int:
    if fmt is BundleFormat.RAW:
        return repo.copy_rows(schema, table.name, table.columns, table.rows)
    try:
        payload = json.dumps(table.records(), default=json_default, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise QueryError(f"cannot encode records for {schema}.{table.name}: {e}", table=table.name) from e
    return repo.insert_json_records(schema, table.name, payload, table.columns)


def load_bundle(conn: Connection, bundle: Bundle, schema: str, clean: bool = False) -> ImportResult:
    """Load every table of the bundle; a failing table is logged and skipped."""
    repo = TableRepository(conn)
    result = ImportResult(schema=schema)
    for table in bundle.tables:
        try:
            with conn.begin():
                if clean:
                    removed = repo.delete_all(schema, table.name)
                    log.debug("table %s.%s cleaned rows=%s", schema, table.name, removed)
                inserted = load_table(repo, schema, table, bundle.format)
        except QueryError as e:
            log.warning("table %s.%s, error: %s", schema, table.name, e)
            result.errors[table.name] = str(e)
            continue
        except SQLAlchemyError as e:
            # raised by the commit: deferred constraints, lost connection
            log.warning("table %s.%s, commit error: %s", schema, table.name, e)
            result.errors[table.name] = f"commit {schema}.{table.name} failed: {e}"
            continue
        result.inserted[table.name] = inserted
        log.info("table %s.%s, inserted rows: %s", schema, table.name, inserted)

        if bundle.format is BundleFormat.RAW:
            continue
        try:
            with conn.begin():
                seq = repo.resync_sequence(schema, table.name)
        except (QueryError, SQLAlchemyError) as e:
            log.debug("cannot reset serial sequence %s.%s: %s", schema, table.name, e)
            continue
        if seq is not None:
            result.sequences[table.name] = seq
            log.debug("new serial sequence %s.%s is %s", schema, table.name, seq)
    return result


def resolve_target(
    bundle: Bundle,
    target_env: str,
    config_path: Optional[Union[str, Path]],
) -> Tuple[str, Optional[CustomDb]]:
    """Bundle schema, unless a custom environment brings its own from the config."""
    if not is_custom(target_env):
        return bundle.schema, None
    config = load_config(config_path, target_env)
    return config.schema_name, config.custom_connection(target_env)


def db_import(
    target_env: str,
    config_path: Optional[Union[str, Path]],
    bundle_path: Union[str, Path],
    clean: bool = False,
    engine: Optional[Engine] = None,
) -> ImportResult:
    log.info("importing env=%s bundle=%s clean=%s", target_env, bundle_path, clean)
    ensure_writable(target_env, "import")
    bundle = read_bundle(bundle_path)
    schema, custom = resolve_target(bundle, target_env, config_path)
    owned = engine is None
    if owned:
        engine = get_engine(target_env, custom)
    with open_connection(engine, dispose=owned) as conn:
        return load_bundle(conn, bundle, schema, clean=clean)
