"""
pollvault/orm/base.py
Declarative base, shared columns and dialect-aware JSON type.
"""
from sqlalchemy import JSON, Column, DateTime, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from pollvault.core.clock import utcnow

Base = declarative_base()


class UniversalJSON(TypeDecorator):
    """
    JSONB for PostgreSQL, generic JSON for SQLite and others.

    Used for ballot payloads, rank curves and commitment payloads.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class BaseModel(Base):
    """
    Abstract base model with an integer key and audit timestamps.
    All pollvault tables inherit from this.
    """
    __abstract__ = True

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        index=True
    )

    created_at = Column(
        DateTime,
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )


def isoformat(value):
    """Serialize an optional datetime for API payloads."""
    return value.isoformat() if value else None
