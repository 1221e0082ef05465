"""
Bundle wire formats.

- raw:  msgpack of the whole bundle; temporal, Decimal and UUID values travel
        as extension types so they come back with their Python type.
- json: one indented JSON document, rows as positional arrays.
- csv:  zip archive with ``info.json`` plus one ``<table>.csv`` per table. The
        first line is the column header; each following line is the row's
        values JSON-encoded and joined with commas.
"""

from __future__ import annotations

import base64
import io
import json
import logging
import zipfile
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union
from uuid import UUID

import msgpack

from src.core.domain.bundle import CSV_ARCHIVE_SUFFIX, Bundle, BundleFormat, Table, ValueKind, value_kind
from src.core.domain.errors import BundleCodecError

log = logging.getLogger(__name__)

INFO_ENTRY = "info.json"
CSV_EXTENSION = ".csv"

EXT_DATETIME = 1
EXT_DATE = 2
EXT_TIME = 3
EXT_DECIMAL = 4
EXT_UUID = 5


# --- value encoders --------------------------------------------------------

def json_default(value: Any) -> Any:
    """Degrade a value to what JSON can hold."""
    kind = value_kind(value)
    if kind is ValueKind.TEMPORAL:
        return value.isoformat()
    if kind is ValueKind.BINARY:
        return base64.b64encode(bytes(value)).decode("ascii")
    if kind is ValueKind.NUMBER and isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if kind is ValueKind.TEXT and isinstance(value, UUID):
        return str(value)
    if kind is ValueKind.NESTED and isinstance(value, tuple):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _msgpack_default(value: Any) -> Any:
    kind = value_kind(value)
    if kind is ValueKind.TEMPORAL:
        code = EXT_DATETIME if isinstance(value, datetime) else EXT_DATE if isinstance(value, date) else EXT_TIME
        return msgpack.ExtType(code, value.isoformat().encode("utf-8"))
    if isinstance(value, Decimal):
        return msgpack.ExtType(EXT_DECIMAL, str(value).encode("utf-8"))
    if isinstance(value, UUID):
        return msgpack.ExtType(EXT_UUID, str(value).encode("utf-8"))
    if kind is ValueKind.BINARY:
        return bytes(value)
    raise TypeError(f"cannot pack value of type {type(value).__name__}")


def _msgpack_ext_hook(code: int, data: bytes) -> Any:
    text = data.decode("utf-8")
    if code == EXT_DATETIME:
        return datetime.fromisoformat(text)
    if code == EXT_DATE:
        return date.fromisoformat(text)
    if code == EXT_TIME:
        return time.fromisoformat(text)
    if code == EXT_DECIMAL:
        return Decimal(text)
    if code == EXT_UUID:
        return UUID(text)
    return msgpack.ExtType(code, data)


# --- payload <-> bundle ----------------------------------------------------

def _payload(bundle: Bundle) -> Dict[str, Any]:
    out: Dict[str, Any] = bundle.header()
    out["tables"] = [
        {"name": t.name, "columns": list(t.columns), "rows": [list(r) for r in t.rows]}
        for t in bundle.tables
    ]
    return out


def _bundle_from_payload(payload: Any) -> Bundle:
    if not isinstance(payload, dict):
        raise BundleCodecError("bundle payload is not an object")
    try:
        bundle = Bundle(
            format=BundleFormat.from_label(payload.get("format")),
            environment=payload.get("environment") or "",
            schema=payload.get("schema") or "",
        )
        for entry in payload.get("tables") or []:
            table = Table(name=entry["name"], columns=list(entry.get("columns") or []))
            for row in entry.get("rows") or []:
                table.add_row(row)
            bundle.tables.append(table)
    except (KeyError, TypeError, ValueError) as e:
        raise BundleCodecError(f"malformed bundle: {e}") from e
    return bundle


# --- encoders --------------------------------------------------------------

def encode_json(bundle: Bundle) -> bytes:
    try:
        text = json.dumps(_payload(bundle), indent=1, ensure_ascii=False, default=json_default)
    except (TypeError, ValueError) as e:
        raise BundleCodecError(f"json encode failed: {e}") from e
    return text.encode("utf-8")


def encode_raw(bundle: Bundle) -> bytes:
    try:
        return msgpack.packb(_payload(bundle), default=_msgpack_default, use_bin_type=True)
    except (TypeError, ValueError) as e:
        raise BundleCodecError(f"raw encode failed: {e}") from e


def encode_csv_line(row) -> str:
    line = json.dumps(list(row), ensure_ascii=False, separators=(",", ":"), default=json_default)
    return line[1:-1]


def encode_csv(bundle: Bundle) -> bytes:
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            info = dict(bundle.header(), format=BundleFormat.CSV.value)
            zf.writestr(INFO_ENTRY, json.dumps(info))
            for t in bundle.tables:
                lines = [",".join(t.columns)]
                lines.extend(encode_csv_line(row) for row in t.rows)
                zf.writestr(t.name + CSV_EXTENSION, "\n".join(lines) + "\n")
    except (TypeError, ValueError) as e:
        raise BundleCodecError(f"csv encode failed: {e}") from e
    return buf.getvalue()


ENCODERS = {
    BundleFormat.RAW: encode_raw,
    BundleFormat.JSON: encode_json,
    BundleFormat.CSV: encode_csv,
}


def encode(bundle: Bundle, fmt: Optional[BundleFormat] = None) -> bytes:
    fmt = fmt or bundle.format
    return ENCODERS[fmt](bundle)


# --- decoders --------------------------------------------------------------

def decode_json(data: bytes) -> Bundle:
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise BundleCodecError(f"json decode failed: {e}") from e
    return _bundle_from_payload(payload)


def decode_raw(data: bytes) -> Bundle:
    try:
        payload = msgpack.unpackb(data, ext_hook=_msgpack_ext_hook, raw=False, strict_map_key=False)
    except (msgpack.UnpackException, ValueError, TypeError) as e:
        raise BundleCodecError(f"raw decode failed: {e}") from e
    return _bundle_from_payload(payload)


def _decode_csv_table(name: str, text: str) -> Table:
    lines = text.split("\n")
    table = Table(name=name, columns=lines[0].split(","))
    for lineno, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        try:
            row = json.loads("[" + line + "]")
        except ValueError:
            log.warning("%s line %s: cannot decode row, skipped", name, lineno)
            continue
        if len(row) != len(table.columns):
            log.warning("%s line %s: %s values for %s columns, skipped", name, lineno, len(row), len(table.columns))
            continue
        table.rows.append(row)
    return table


def decode_csv(data: bytes) -> Bundle:
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise BundleCodecError(f"csv archive unreadable: {e}") from e
    header: Dict[str, Any] = {}
    tables = []
    with zf:
        for item in zf.infolist():
            try:
                text = zf.read(item).decode("utf-8")
            except (zipfile.BadZipFile, UnicodeDecodeError) as e:
                raise BundleCodecError(f"csv archive entry {item.filename}: {e}") from e
            if item.filename == INFO_ENTRY:
                try:
                    header = json.loads(text)
                except ValueError as e:
                    raise BundleCodecError(f"csv archive info unreadable: {e}") from e
            elif item.filename.endswith(CSV_EXTENSION):
                tables.append(_decode_csv_table(item.filename[: -len(CSV_EXTENSION)], text))
    return Bundle(
        format=BundleFormat.CSV,
        environment=header.get("environment") or "",
        schema=header.get("schema") or "",
        tables=tables,
    )


def detect_format(data: bytes, name: Optional[str] = None) -> BundleFormat:
    if (name and name.endswith(CSV_ARCHIVE_SUFFIX)) or data[:4] == b"PK\x03\x04":
        return BundleFormat.CSV
    if data.lstrip()[:1] == b"{":
        return BundleFormat.JSON
    return BundleFormat.RAW


DECODERS = {
    BundleFormat.RAW: decode_raw,
    BundleFormat.JSON: decode_json,
    BundleFormat.CSV: decode_csv,
}


def decode(data: bytes, fmt: Optional[BundleFormat] = None, name: Optional[str] = None) -> Bundle:
    return DECODERS[fmt or detect_format(data, name)](data)


# --- files -----------------------------------------------------------------

def write_bundle(bundle: Bundle, bundle_name: str, out_dir: Union[str, Path] = ".") -> Path:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    data = encode(bundle)
    path = out / bundle.format.file_name(bundle_name)
    path.write_bytes(data)
    log.info("bundle written path=%s format=%s bytes=%s", path, bundle.format.value, len(data))
    return path


def read_bundle(path: Union[str, Path]) -> Bundle:
    p = Path(path)
    try:
        data = p.read_bytes()
    except OSError as e:
        raise BundleCodecError(f"cannot read bundle {p}: {e}") from e
    return decode(data, name=p.name)
