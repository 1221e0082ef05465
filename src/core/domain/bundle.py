from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID


log = logging.getLogger(__name__)

CSV_ARCHIVE_SUFFIX = "-csv.zip"


class BundleFormat(str, Enum):
    RAW = "raw"
    CSV = "csv"
    JSON = "json"

    @classmethod
    def from_label(cls, label: Optional[str]) -> "BundleFormat":
        """Anything other than raw/csv is exported as json."""
        text = (label or "").strip().lower()
        if text == cls.RAW.value:
            return cls.RAW
        if text == cls.CSV.value:
            return cls.CSV
        if text != cls.JSON.value:
            log.warning("unknown export format %r, falling back to json", label)
        return cls.JSON

    def file_name(self, bundle_name: str) -> str:
        if self is BundleFormat.CSV:
            return f"{bundle_name}{CSV_ARCHIVE_SUFFIX}"
        return f"{bundle_name}.{self.value}"


class ValueKind(str, Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    TEXT = "text"
    TEMPORAL = "temporal"
    BINARY = "binary"
    NESTED = "nested"


def value_kind(value: Any) -> ValueKind:
    # bool before number: bool is an int subclass
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return ValueKind.NUMBER
    if isinstance(value, (str, UUID)):
        return ValueKind.TEXT
    if isinstance(value, (datetime, date, time)):
        return ValueKind.TEMPORAL
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueKind.BINARY
    if isinstance(value, (dict, list, tuple)):
        return ValueKind.NESTED
    raise TypeError(f"unsupported column value type: {type(value).__name__}")


def normalise_value(value: Any) -> Any:
    """Bring a driver value onto one of the supported row value types."""
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, tuple):
        return [normalise_value(item) for item in value]
    if isinstance(value, list):
        return [normalise_value(item) for item in value]
    if isinstance(value, dict):
        return {str(k): normalise_value(v) for k, v in value.items()}
    try:
        value_kind(value)
    except TypeError:
        # intervals, ranges, network types: keep their text form
        log.debug("value of type %s exported as text", type(value).__name__)
        return str(value)
    return value


@dataclass
class Table:
    name: str
    columns: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)

    def add_row(self, row) -> None:
        values = list(row)
        if len(values) != len(self.columns):
            raise ValueError(
                f"row has {len(values)} values, table {self.name} has {len(self.columns)} columns"
            )
        self.rows.append(values)

    def records(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass
class Bundle:
    format: BundleFormat
    environment: str
    schema: str
    tables: List[Table] = field(default_factory=list)

    def table(self, name: str) -> Optional[Table]:
        for t in self.tables:
            if t.name == name:
                return t
        return None

    def header(self) -> Dict[str, str]:
        return {
            "format": self.format.value,
            "environment": self.environment,
            "schema": self.schema,
        }


# table -> column -> pattern
ObscurePolicy = Mapping[str, Mapping[str, str]]

# index name -> ((column name, row position), ...)
UniqueIndexSet = Dict[str, Tuple[Tuple[str, int], ...]]
