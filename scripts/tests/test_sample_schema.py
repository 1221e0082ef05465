import random
import re
from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from src.core.application.services.export_service import db_export
from src.core.application.services.import_service import db_import
from src.core.infrastructure.persistence.sqlalchemy.models import Base, Member, Organization
from src.core.infrastructure.persistence.sqlalchemy.repositories import array_literal, copy_text

POLICY = {
    "members": {
        "email": "[a-z]{3,6}@example.com",
        "first_name": "[Title]{4,8}",
        "last_name": "[Title]{5}",
        "phone": "[0]{1}+1[0-9]{9}",
    }
}


def seed(engine, n=25):
    Base.metadata.create_all(engine)
    with Session(engine) as s:
        orgs = [Organization(name=f"Org {i}", code=f"ORG{i}") for i in range(2)]
        s.add_all(orgs)
        s.flush()
        for i in range(n):
            s.add(
                Member(
                    organization_id=orgs[i % 2].id,
                    email=f"person{i}@real.org",
                    first_name="Real",
                    last_name=f"Person{i}",
                    phone=f"+1555000{i:04d}",
                    profile={"tier": i % 3},
                    created_at=datetime(2021, 1, 1, 12, 0, i),
                )
            )
        s.commit()


@pytest.fixture
def target(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'target.db'}", future=True)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.mark.parametrize("fmt", ["json", "csv"])
def test_obscured_members_round_trip(engine, target, write_config, tmp_path, fmt):
    seed(engine)
    config = write_config(["organizations", "members"], obscure=POLICY, name="people")
    result = db_export("local", config, fmt, obscure=True, out_dir=tmp_path, engine=engine, rng=random.Random(11))
    assert result.exported["organizations"] == 2
    assert result.exported["members"] + result.dropped["members"] == 25

    imported = db_import("local", None, result.path, clean=True, engine=target)
    assert imported.ok, imported.errors

    with Session(target) as s:
        members = s.scalars(select(Member).order_by(Member.id)).all()
        assert len(members) == result.exported["members"]
        assert len({(m.organization_id, m.email) for m in members}) == len(members)
        phones = [m.phone for m in members if m.phone is not None]
        assert len(phones) == len(set(phones))
        for m in members:
            assert re.fullmatch(r"[a-z]{3,5}@example\.com", m.email)
            assert m.first_name[0].isupper() and m.first_name != "Real"
            assert m.phone is None or re.fullmatch(r"\+1[1-9]{9}", m.phone)
            assert m.profile == {"tier": (m.id - 1) % 3}
        orgs = s.scalars(select(Organization).order_by(Organization.id)).all()
        assert [o.code for o in orgs] == ["ORG0", "ORG1"]


def test_copy_text_format():
    rows = [
        [1, None, True, "tab\there", "line\nbreak", "back\\slash"],
        [2, b"\x01\xff", False, {"a": [1]}, datetime(2021, 1, 2, 3, 4, 5), 1.5],
    ]
    assert copy_text(rows) == (
        "1\t\\N\tt\ttab\\there\tline\\nbreak\tback\\\\slash\n"
        '2\t\\\\x01ff\tf\t{"a": [1]}\t2021-01-02T03:04:05\t1.5\n'
    )


def test_copy_text_writes_lists_as_array_literals():
    assert copy_text([[["a", "b"]]]) == "{a,b}\n"
    assert copy_text([[[[1, 2], [3, None]]]]) == "{{1,2},{3,NULL}}\n"
    assert copy_text([[[True, False]]]) == "{t,f}\n"
    assert copy_text([[[]]]) == "{}\n"


def test_array_literal_quotes_awkward_elements():
    assert array_literal(["a b", 'q"x', "", "NULL", "x,y", None]) == '{"a b","q\\"x","","NULL","x,y",NULL}'
    # the backslash escaping of the array text is doubled again by COPY
    assert copy_text([[['q"x']]]) == '{"q\\\\"x"}\n'


def test_copy_text_keeps_json_columns_as_documents():
    row = [1, ["a", "b"], ["a", "b"], {"k": [1]}]
    assert copy_text([row], json_positions={2, 3}) == '1\t{a,b}\t["a", "b"]\t{"k": [1]}\n'
