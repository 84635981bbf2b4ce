"""
Declarative bases shared by the approval chain tables.

Every table keys on a uuid4 stored as a 36-character string so the same
schema runs on SQLite in tests and PostgreSQL in production.  Timestamps
are always timezone-aware columns.

Nothing in here may import from models, services, selectors or domain;
the dependency only points inward.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """A ``uuid.UUID`` on the Python side, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """Root of the ORM hierarchy; supplies the ``id`` primary key."""

    type_annotation_map: ClassVar[dict] = {
        PyUUID: UUIDString(),
        datetime: DateTime(timezone=True),
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Abstract base for administrator-maintained rows.

    Step definitions are authored by someone, so the row remembers who
    created it and who last touched it.  ``created_at`` comes from the
    database clock; ``updated_at`` is refreshed on every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(),
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString())


UUID = PyUUID
