#!/usr/bin/env python3
"""Seed the sample schema in DATABASE_URL and push it through every bundle format."""
import os
import json
import tempfile
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.core.application.services.export_service import db_export
from src.core.application.services.import_service import db_import
from src.core.infrastructure.persistence.sqlalchemy.models import Base, Organization, Member
from src.core.infrastructure.persistence.sqlalchemy.session import DEFAULT_DSN

SCHEMA = os.getenv("SMOKE_SCHEMA", "public")


def main():
    engine = create_engine(os.getenv("DATABASE_URL", DEFAULT_DSN), echo=False, future=True)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, future=True)
    with Session() as s:
        org = s.query(Organization).filter(Organization.code == "SMOKE").one_or_none()
        if not org:
            org = Organization(name="Smoke Org", code="SMOKE", created_at=datetime.utcnow())
            s.add(org)
            s.flush()
        for i in range(5):
            email = f"smoke{i}@example.org"
            if s.query(Member).filter(Member.organization_id == org.id, Member.email == email).one_or_none():
                continue
            s.add(Member(organization_id=org.id, email=email, first_name="Smoke", last_name=str(i), profile={"i": i}))
        s.commit()

    report = {}
    with tempfile.TemporaryDirectory() as tmp:
        config = Path(tmp) / "smoke.json"
        config.write_text(json.dumps({
            "table-group-name": "smoke",
            "schema": SCHEMA,
            # members only: a cleaned organizations table is still referenced
            "tables": ["members"],
            "obscure": {"members": {"email": "[a-z]{6,10}@test.com", "first_name": "[Title]{5}"}},
        }))
        for fmt in ("raw", "csv", "json"):
            exported = db_export("local", config, fmt, obscure=True, out_dir=tmp, engine=engine)
            imported = db_import("local", None, exported.path, clean=True, engine=engine)
            report[fmt] = {"export": exported.to_dict(), "import": imported.to_dict()}
    engine.dispose()
    print(json.dumps(report, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
