from __future__ import annotations

import io
import json
import logging
from datetime import date, datetime, time
from typing import Any, Collection, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from src.core.domain.errors import QueryError
from src.core.infrastructure.serialization.bundle_codec import json_default

log = logging.getLogger(__name__)


_ARRAY_SPECIAL = set('{},"\\')


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "t" if value else "f"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, dict):
        return json.dumps(value, default=json_default)
    return str(value)


def _array_element(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, (list, tuple)):
        return array_literal(value)
    out = _scalar_text(value)
    if out == "" or out.upper() == "NULL" or any(ch in _ARRAY_SPECIAL or ch.isspace() for ch in out):
        return '"' + out.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return out


def array_literal(values: Sequence[Any]) -> str:
    """PostgreSQL array input text, e.g. ``{a,"b c",NULL}``."""
    return "{" + ",".join(_array_element(v) for v in values) + "}"


def _copy_field(value: Any, as_json: bool = False) -> str:
    # PostgreSQL COPY text format
    if value is None:
        return "\\N"
    if as_json:
        out = json.dumps(value, default=json_default)
    elif isinstance(value, (list, tuple)):
        out = array_literal(value)
    else:
        out = _scalar_text(value)
    return (
        out.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def copy_text(rows: Sequence[Sequence[Any]], json_positions: Collection[int] = ()) -> str:
    """COPY payload; lists become array literals except at ``json_positions``."""
    return "".join(
        "\t".join(_copy_field(v, i in json_positions) for i, v in enumerate(row)) + "\n"
        for row in rows
    )


class TableRepository:
    """Whole-table reads and bulk writes against one connection."""

    def __init__(self, conn: Connection) -> None:
        self.c = conn

    @property
    def dialect(self) -> str:
        return self.c.dialect.name

    def _quote(self, name: str) -> str:
        return self.c.dialect.identifier_preparer.quote(name)

    def qualified(self, schema: str, table: str) -> str:
        prep = self.c.dialect.identifier_preparer
        if schema:
            return f"{prep.quote_schema(schema)}.{prep.quote(table)}"
        return prep.quote(table)

    def fetch_table(self, schema: str, table: str) -> Tuple[List[str], List[List[Any]]]:
        try:
            result = self.c.execute(text(f"SELECT * FROM {self.qualified(schema, table)}"))
            columns = list(result.keys())
            rows = [list(r) for r in result.fetchall()]
        except SQLAlchemyError as e:
            raise QueryError(f"read {schema}.{table} failed: {e}", table=table) from e
        return columns, rows

    def unique_indexes(self, schema: str, table: str) -> Dict[str, List[str]]:
        """Primary key, unique constraints and unique indexes of a table."""
        out: Dict[str, List[str]] = {}
        seen = set()

        def add(name: Optional[str], columns) -> None:
            cols = [c for c in columns or () if c]
            key = tuple(cols)
            if not cols or key in seen:
                return
            seen.add(key)
            out[name or f"{table}_{'_'.join(cols)}_key"] = cols

        try:
            insp = inspect(self.c)
            pk = insp.get_pk_constraint(table, schema=schema) or {}
            add(pk.get("name") or f"{table}_pkey", pk.get("constrained_columns"))
            for uc in insp.get_unique_constraints(table, schema=schema):
                add(uc.get("name"), uc.get("column_names"))
            for ix in insp.get_indexes(table, schema=schema):
                if ix.get("unique"):
                    add(ix.get("name"), ix.get("column_names"))
        except SQLAlchemyError as e:
            raise QueryError(f"index lookup {schema}.{table} failed: {e}", table=table) from e
        return out

    def delete_all(self, schema: str, table: str) -> int:
        try:
            result = self.c.execute(text(f"DELETE FROM {self.qualified(schema, table)}"))
        except SQLAlchemyError as e:
            raise QueryError(f"delete {schema}.{table} failed: {e}", table=table) from e
        return result.rowcount

    def _insert_many(self, schema: str, table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> int:
        if not rows:
            return 0
        cols = ", ".join(self._quote(c) for c in columns)
        params = ", ".join(f":p{i}" for i in range(len(columns)))
        stmt = text(f"INSERT INTO {self.qualified(schema, table)} ({cols}) VALUES ({params})")
        self.c.execute(stmt, [{f"p{i}": v for i, v in enumerate(row)} for row in rows])
        return len(rows)

    def json_columns(self, schema: str, table: str) -> Set[str]:
        """json/jsonb columns, whose list values are documents rather than arrays."""
        if self.dialect != "postgresql":
            return set()
        stmt = text(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = :schema AND table_name = :table "
            "AND data_type IN ('json', 'jsonb')"
        )
        return set(self.c.execute(stmt, {"schema": schema, "table": table}).scalars().all())

    def copy_rows(self, schema: str, table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> int:
        """Bulk load rows positionally; COPY on PostgreSQL."""
        try:
            if self.dialect != "postgresql":
                return self._insert_many(schema, table, columns, rows)
            json_cols = self.json_columns(schema, table)
            json_positions = {i for i, c in enumerate(columns) if c in json_cols}
            cols = ", ".join(self._quote(c) for c in columns)
            sql = f"COPY {self.qualified(schema, table)} ({cols}) FROM STDIN"
            cur = self.c.connection.cursor()
            try:
                cur.copy_expert(sql, io.StringIO(copy_text(rows, json_positions)))
            finally:
                cur.close()
            return len(rows)
        except (SQLAlchemyError, self.c.dialect.dbapi.Error) as e:
            raise QueryError(f"copy into {schema}.{table} failed: {e}", table=table) from e

    def insert_json_records(self, schema: str, table: str, payload: str, columns: Sequence[str]) -> int:
        """Insert a JSON array of column-keyed records, expanded by the server."""
        qualified = self.qualified(schema, table)
        try:
            if self.dialect == "postgresql":
                stmt = text(
                    f"INSERT INTO {qualified} "
                    f"SELECT * FROM json_populate_recordset(NULL::{qualified}, CAST(:payload AS json))"
                )
            elif self.dialect == "sqlite":
                cols = ", ".join(self._quote(c) for c in columns)
                extracts = ", ".join(
                    "json_extract(value, '$.\"{}\"')".format(c.replace("'", "''").replace('"', '\\"'))
                    for c in columns
                )
                stmt = text(f"INSERT INTO {qualified} ({cols}) SELECT {extracts} FROM json_each(:payload)")
            else:
                records = json.loads(payload)
                return self._insert_many(schema, table, columns, [[r.get(c) for c in columns] for r in records])
            return self.c.execute(stmt, {"payload": payload}).rowcount
        except SQLAlchemyError as e:
            raise QueryError(f"insert into {schema}.{table} failed: {e}", table=table) from e

    def serial_column(self, schema: str, table: str) -> Optional[str]:
        if self.dialect != "postgresql":
            return None
        stmt = text(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = :schema AND table_name = :table "
            "AND (column_default LIKE 'nextval%' OR is_identity = 'YES') "
            "ORDER BY ordinal_position LIMIT 1"
        )
        try:
            return self.c.execute(stmt, {"schema": schema, "table": table}).scalar()
        except SQLAlchemyError as e:
            raise QueryError(f"sequence lookup {schema}.{table} failed: {e}", table=table) from e

    def resync_sequence(self, schema: str, table: str) -> Optional[int]:
        """Move the table's serial sequence to MAX(column). None when there is none."""
        column = self.serial_column(schema, table)
        if column is None:
            return None
        qualified = self.qualified(schema, table)
        stmt = text(
            f"SELECT pg_catalog.setval(pg_get_serial_sequence(:qualified, :column), MAX({self._quote(column)})) "
            f"FROM {qualified}"
        )
        try:
            value = self.c.execute(stmt, {"qualified": qualified, "column": column}).scalar()
        except SQLAlchemyError as e:
            raise QueryError(f"sequence reset {schema}.{table} failed: {e}", table=table) from e
        return int(value) if value is not None else None
