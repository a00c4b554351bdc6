"""
Module: posting_kernel.db.base
Responsibility: Declarative base, column type conventions, and the mixins
    shared by every posting-engine table.
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    every model imports from here and this module imports nothing from the
    rest of the package.

Invariants enforced:
    - Primary keys are uuid4 values stored as String(36) on every backend.
    - Python Decimal columns map to Numeric(38, 9): rates, distances, and
      allowance amounts never pass through float.
    - Every table is scoped by institution_id; there is no cross-institution
      row.
    - Rows the engine writes on an actor's behalf (postings, auto-post
      batches) carry created_by_id and, once changed, updated_by_id.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID held as its 36-character text form, so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for posting-engine models.

    Annotated columns pick their SQL type from ``type_annotation_map``:
    Decimal becomes Numeric(38, 9), datetime is timezone-aware, UUID is
    UUIDString, int is BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class InstitutionScoped:
    """Mixin: the owning institution.  Every query filters on it."""

    institution_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)


class TrackedBase(Base):
    """
    Abstract base for rows written on an actor's behalf.

    created_at / updated_at come from the database clock; the actor ids are
    supplied by the writing service.  created_by_id is required.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


UUID = PyUUID
