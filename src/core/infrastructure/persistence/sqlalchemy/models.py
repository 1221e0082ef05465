"""Sample schema used by the smoke script and the test-suite."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    code = Column(String(32), unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(ForeignKey("organizations.id", ondelete="CASCADE"), index=True)
    email = Column(String(255))
    first_name = Column(String(128))
    last_name = Column(String(128))
    phone = Column(String(32))
    active = Column(Boolean, default=True, nullable=False)
    profile = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "email", name="uq_members_org_email"),
        Index("ix_members_phone", "phone", unique=True),
    )

    organization = relationship("Organization", backref="members")
