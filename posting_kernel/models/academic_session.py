"""
Module: posting_kernel.models.academic_session
Responsibility: ORM persistence for an academic session's posting rules.
Architecture position: Kernel > Models.  Reference data; read-only to the
    posting engine.

Invariants enforced:
    - Every rule column is nullable.  NULL means "use the configured
      default" (posting_config SessionDefaults); the ReferenceDataLoader
      resolves NULLs, never the calculator.
"""

from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from posting_kernel.db.base import Base, InstitutionScoped


class AcademicSession(InstitutionScoped, Base):
    """One teaching-practice session of an institution."""

    __tablename__ = "academic_sessions"

    __table_args__ = (
        Index("idx_session_institution_current", "institution_id", "is_current"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    inside_distance_threshold_km: Mapped[Decimal | None] = mapped_column(nullable=True)

    dsa_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    dsa_min_distance_km: Mapped[Decimal | None] = mapped_column(nullable=True)

    dsa_max_distance_km: Mapped[Decimal | None] = mapped_column(nullable=True)

    dsa_percentage: Mapped[Decimal | None] = mapped_column(Numeric(9, 4), nullable=True)

    max_posting_per_supervisor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    max_supervision_visits: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        return f"<AcademicSession {self.name}{' (current)' if self.is_current else ''}>"
