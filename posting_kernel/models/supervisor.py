"""
Module: posting_kernel.models.supervisor
Responsibility: ORM persistence for a field supervisor.
Architecture position: Kernel > Models.  Reference data; read-only to the
    posting engine.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from posting_kernel.db.base import Base, InstitutionScoped, UUIDString
from posting_kernel.models.rank import Rank


class Supervisor(InstitutionScoped, Base):
    """A staff member who can be posted to schools.  Rank may be unset."""

    __tablename__ = "supervisors"

    __table_args__ = (
        Index("idx_supervisor_institution", "institution_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    email: Mapped[str | None] = mapped_column(String(200), nullable=True)

    rank_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ranks.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    rank: Mapped[Rank | None] = relationship(Rank, lazy="joined")

    def __repr__(self) -> str:
        return f"<Supervisor {self.name}>"
