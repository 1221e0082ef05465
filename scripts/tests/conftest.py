import json
import random

import pytest
from sqlalchemy import create_engine, text


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'harvest.db'}", future=True)
    yield eng
    eng.dispose()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def accounts(engine):
    with engine.begin() as c:
        c.execute(text("CREATE TABLE accounts (id INTEGER PRIMARY KEY, email TEXT)"))
        c.execute(text("INSERT INTO accounts (id, email) VALUES (1, 'a@x.com'), (2, 'b@x.com')"))
    return engine


@pytest.fixture
def write_config(tmp_path):
    def _write(tables, obscure=None, name="accounts-bundle", schema="main", **extra):
        payload = {"table-group-name": name, "schema": schema, "tables": tables}
        if obscure is not None:
            payload["obscure"] = obscure
        payload.update(extra)
        path = tmp_path / "harvest.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path
    return _write


def fetch_all(engine, sql):
    with engine.connect() as c:
        return [tuple(r) for r in c.execute(text(sql)).fetchall()]
