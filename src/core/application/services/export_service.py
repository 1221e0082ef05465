from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy.engine import Connection, Engine

from src.core.application.services.pattern import PatternEngine
from src.core.application.services.uniqueness import MAX_ATTEMPTS, UniquenessGuard, build_unique_index_sets
from src.core.domain.bundle import Bundle, BundleFormat, Table, normalise_value
from src.core.infrastructure.config.harvest_config import HarvestConfig, load_config
from src.core.infrastructure.persistence.sqlalchemy.repositories import TableRepository
from src.core.infrastructure.persistence.sqlalchemy.session import get_engine, open_connection
from src.core.infrastructure.serialization.bundle_codec import write_bundle

log = logging.getLogger(__name__)


@dataclass
class ExportResult:
    path: Path
    format: BundleFormat
    exported: Dict[str, int] = field(default_factory=dict)
    dropped: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "format": self.format.value,
            "exported": dict(self.exported),
            "dropped": dict(self.dropped),
        }


class RowObscurer:
    """Rewrites policy columns of a row until it clears the uniqueness guard."""

    def __init__(
        self,
        table: str,
        columns: Sequence[str],
        policy: Mapping[str, str],
        guard: UniquenessGuard,
        patterns: PatternEngine,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self.table = table
        positions = {name: i for i, name in enumerate(columns)}
        self.targets: List[Tuple[int, str]] = [
            (positions[col], pattern) for col, pattern in policy.items() if col in positions
        ]
        self.guard = guard
        self.patterns = patterns
        self.max_attempts = max_attempts

    def apply(self, row: Sequence[Any]) -> Optional[List[Any]]:
        """Obscured copy of ``row``, or None when every attempt collided."""
        for attempt in range(1, self.max_attempts + 1):
            candidate = list(row)
            for pos, pattern in self.targets:
                candidate[pos] = self.patterns.generate(pattern)
            sigs = self.guard.signatures(candidate)
            hit = self.guard.first_collision(sigs)
            if hit is None:
                self.guard.commit(sigs)
                return candidate
            log.debug("%s (%s) duplicate value on %s: %s", self.table, attempt, hit[0], hit[1])
        return None


def read_table(
    repo: TableRepository,
    schema: str,
    name: str,
    policy: Optional[Mapping[str, str]],
    patterns: PatternEngine,
) -> Tuple[Table, int]:
    columns, rows = repo.fetch_table(schema, name)
    table = Table(name=name, columns=columns)
    obscurer = None
    if policy:
        index_sets = build_unique_index_sets(repo.unique_indexes(schema, name), columns)
        obscurer = RowObscurer(name, columns, policy, UniquenessGuard(index_sets), patterns)
    dropped = 0
    for row in rows:
        values = [normalise_value(v) for v in row]
        if obscurer is not None:
            obscured = obscurer.apply(values)
            if obscured is None:
                dropped += 1
                log.debug("%s.%s skipped row: %r", schema, name, values)
                continue
            values = obscured
        table.add_row(values)
    log.info("table %s.%s rows=%s dropped=%s", schema, name, len(table.rows), dropped)
    return table, dropped


def build_bundle(
    conn: Connection,
    config: HarvestConfig,
    target_env: str,
    fmt: BundleFormat,
    obscure: bool = False,
    rng: Optional[random.Random] = None,
) -> Tuple[Bundle, Dict[str, int]]:
    repo = TableRepository(conn)
    patterns = PatternEngine(rng)
    bundle = Bundle(format=fmt, environment=target_env, schema=config.schema_name)
    dropped: Dict[str, int] = {}
    for name in config.tables:
        policy = config.policy_for(name) if obscure else None
        table, n_dropped = read_table(repo, config.schema_name, name, policy, patterns)
        bundle.tables.append(table)
        dropped[name] = n_dropped
    return bundle, dropped


def db_export(
    target_env: str,
    config_path: Union[str, Path],
    export_format: str,
    obscure: bool = False,
    out_dir: Union[str, Path] = ".",
    engine: Optional[Engine] = None,
    rng: Optional[random.Random] = None,
) -> ExportResult:
    """Export the configured tables to a bundle file. Any table error aborts the run."""
    log.info("exporting env=%s config=%s format=%s obscure=%s", target_env, config_path, export_format, obscure)
    config = load_config(config_path, target_env)
    fmt = BundleFormat.from_label(export_format)
    owned = engine is None
    if owned:
        engine = get_engine(target_env, config.custom_connection(target_env))
    with open_connection(engine, dispose=owned) as conn:
        bundle, dropped = build_bundle(conn, config, target_env, fmt, obscure=obscure, rng=rng)
    path = write_bundle(bundle, config.name, out_dir)
    return ExportResult(
        path=path,
        format=fmt,
        exported={t.name: len(t.rows) for t in bundle.tables},
        dropped=dropped,
    )
