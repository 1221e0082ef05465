import io
import json
import zipfile
from datetime import date, datetime, time, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from src.core.domain.bundle import Bundle, BundleFormat, Table
from src.core.domain.errors import BundleCodecError
from src.core.infrastructure.serialization import bundle_codec as codec


def make_bundle(fmt=BundleFormat.JSON):
    accounts = Table(name="accounts", columns=["id", "email", "active", "score", "meta"])
    accounts.add_row([1, "a@x.com", True, 1.5, {"tags": ["x", "y"]}])
    accounts.add_row([2, 'quote "and", comma', False, None, None])
    orgs = Table(name="orgs", columns=["id", "name"])
    orgs.add_row([10, "Acme"])
    return Bundle(format=fmt, environment="staging", schema="public", tables=[accounts, orgs])


def assert_same(a, b):
    assert b.schema == a.schema
    assert b.environment == a.environment
    assert [t.name for t in b.tables] == [t.name for t in a.tables]
    for ta, tb in zip(a.tables, b.tables):
        assert tb.columns == ta.columns
        assert tb.rows == ta.rows


@pytest.mark.parametrize("fmt", [BundleFormat.JSON, BundleFormat.RAW, BundleFormat.CSV])
def test_round_trip(fmt):
    bundle = make_bundle(fmt)
    decoded = codec.decode(codec.encode(bundle))
    assert decoded.format is fmt
    assert_same(bundle, decoded)


def test_raw_keeps_native_types():
    stamp = datetime(2021, 3, 4, 5, 6, 7, 891011, tzinfo=timezone.utc)
    t = Table(name="events", columns=["at", "day", "clock", "amount", "ref", "blob", "naive"])
    t.add_row([stamp, date(2021, 3, 4), time(5, 6, 7), Decimal("12.340"), UUID(int=7), b"\x00\x01", datetime(2020, 1, 1)])
    bundle = Bundle(format=BundleFormat.RAW, environment="local", schema="main", tables=[t])
    row = codec.decode(codec.encode(bundle)).tables[0].rows[0]
    assert row == [stamp, date(2021, 3, 4), time(5, 6, 7), Decimal("12.340"), UUID(int=7), b"\x00\x01", datetime(2020, 1, 1)]
    assert isinstance(row[0], datetime) and row[0].tzinfo is not None


def test_json_degrades_types_to_text():
    t = Table(name="events", columns=["at", "amount", "whole", "ref", "blob"])
    t.add_row([datetime(2021, 3, 4, 5, 6, 7), Decimal("1.5"), Decimal("3"), UUID(int=1), b"hi"])
    bundle = Bundle(format=BundleFormat.JSON, environment="local", schema="main", tables=[t])
    payload = json.loads(codec.encode(bundle))
    assert payload["tables"][0]["rows"][0] == [
        "2021-03-04T05:06:07",
        1.5,
        3,
        "00000000-0000-0000-0000-000000000001",
        "aGk=",
    ]


def test_json_layout():
    payload = json.loads(codec.encode(make_bundle()))
    assert set(payload) == {"format", "environment", "schema", "tables"}
    assert payload["format"] == "json"
    assert payload["tables"][1] == {"name": "orgs", "columns": ["id", "name"], "rows": [[10, "Acme"]]}


def test_csv_archive_layout():
    data = codec.encode(make_bundle(BundleFormat.CSV))
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == ["info.json", "accounts.csv", "orgs.csv"]
        info = json.loads(zf.read("info.json"))
        lines = zf.read("accounts.csv").decode("utf-8").splitlines()
    assert info == {"format": "csv", "environment": "staging", "schema": "public"}
    assert lines[0] == "id,email,active,score,meta"
    assert lines[1] == '1,"a@x.com",true,1.5,{"tags":["x","y"]}'
    assert lines[2] == '2,"quote \\"and\\", comma",false,null,null'


def test_csv_skips_rows_that_do_not_fit():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("info.json", '{"format": "csv", "environment": "dev", "schema": "s"}')
        zf.writestr("t.csv", 'a,b\n1,"x"\n2\nnot json at all\n3,"y"\n')
    bundle = codec.decode(buf.getvalue(), name="t-csv.zip")
    assert bundle.format is BundleFormat.CSV
    assert bundle.tables[0].rows == [[1, "x"], [3, "y"]]


def test_detect_format():
    assert codec.detect_format(b"", name="orgs-csv.zip") is BundleFormat.CSV
    assert codec.detect_format(b'  {"format": "json"}') is BundleFormat.JSON
    assert codec.detect_format(codec.encode(make_bundle(BundleFormat.RAW))) is BundleFormat.RAW
    assert codec.detect_format(codec.encode(make_bundle(BundleFormat.CSV))) is BundleFormat.CSV


@pytest.mark.parametrize(
    "data",
    [
        b'{"tables": [{"name": "t", "columns": ["a"], "rows": [[1, 2]]}]}',
        b'{"tables": [{"columns": ["a"]}]}',
        b"{not json",
        b"\xc1\xc1\xc1",
        b"[1, 2, 3]",
    ],
)
def test_malformed_bundles_raise(data):
    with pytest.raises(BundleCodecError):
        codec.decode(data)


def test_unknown_format_label_falls_back_to_json():
    assert BundleFormat.from_label("xml") is BundleFormat.JSON
    assert BundleFormat.from_label(None) is BundleFormat.JSON
    assert BundleFormat.from_label("RAW") is BundleFormat.RAW


def test_file_names():
    assert BundleFormat.CSV.file_name("orgs") == "orgs-csv.zip"
    assert BundleFormat.RAW.file_name("orgs") == "orgs.raw"
    assert BundleFormat.JSON.file_name("orgs") == "orgs.json"


def test_write_and_read_bundle(tmp_path):
    path = codec.write_bundle(make_bundle(BundleFormat.CSV), "orgs", tmp_path / "out")
    assert path.name == "orgs-csv.zip"
    assert_same(make_bundle(), codec.read_bundle(path))


def test_read_missing_bundle(tmp_path):
    with pytest.raises(BundleCodecError):
        codec.read_bundle(tmp_path / "nope.json")


def test_table_rejects_short_rows():
    t = Table(name="t", columns=["a", "b"])
    with pytest.raises(ValueError):
        t.add_row([1])
