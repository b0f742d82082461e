"""
Declarative base and shared columns for invoicetrust models.

WHAT: The Base every table inherits from, plus the id and timestamp
columns shared by tenants, reminders, verification and audit logs.

WHY: Alembic's env.py and the test fixtures both build the schema from
Base.metadata, so every model must register here. Timestamps are naive
UTC throughout; dispatch leases and quota windows compare against
datetime.utcnow().
"""

from datetime import datetime
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Registry for every invoicetrust table (Base.metadata feeds Alembic)."""

    pass


class TimestampMixin:
    """
    created_at / updated_at in naive UTC.

    Bulk UPDATEs in the DAOs bypass onupdate, so they set updated_at
    explicitly.
    """

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PrimaryKeyMixin:
    """Auto-incrementing integer id, the key every DAO lookup uses."""

    id = Column(Integer, primary_key=True, index=True)
