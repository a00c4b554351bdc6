"""
Module: posting_kernel.models.merged_group
Responsibility: ORM persistence for a directed primary -> secondary group link.
Architecture position: Kernel > Models.  Reference data; read by the
    MergedGroupPropagator and the available-slots query.

Invariants enforced:
    - A merge is directed: visiting the primary (school, group) covers the
      secondary (school, group) at no extra cost.  The reverse is not implied.
"""

from uuid import UUID

from sqlalchemy import BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from posting_kernel.db.base import Base, InstitutionScoped, UUIDString
from posting_kernel.domain.dtos import MergedGroupStatus


class MergedGroup(InstitutionScoped, Base):
    """Link from a primary school group to a secondary school group."""

    __tablename__ = "merged_groups"

    __table_args__ = (
        Index(
            "idx_merged_primary",
            "session_id",
            "primary_school_id",
            "primary_group_number",
            "status",
        ),
        Index(
            "idx_merged_secondary",
            "session_id",
            "secondary_school_id",
            "secondary_group_number",
        ),
    )

    session_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    primary_school_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    primary_group_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    secondary_school_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    secondary_group_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[MergedGroupStatus] = mapped_column(
        String(20),
        default=MergedGroupStatus.ACTIVE.value,
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<MergedGroup {self.primary_school_id}/{self.primary_group_number} -> "
            f"{self.secondary_school_id}/{self.secondary_group_number}>"
        )
