"""
Module: posting_kernel.models.acceptance
Responsibility: ORM persistence for a student's acceptance at a school group.
Architecture position: Kernel > Models.  Reference data; the posting engine
    only asks whether an approved acceptance exists for (school, group,
    session).
"""

from uuid import UUID

from sqlalchemy import BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from posting_kernel.db.base import Base, InstitutionScoped, UUIDString
from posting_kernel.domain.dtos import AcceptanceStatus


class StudentAcceptance(InstitutionScoped, Base):
    """A student placed at a school in a numbered group."""

    __tablename__ = "student_acceptances"

    __table_args__ = (
        Index(
            "idx_acceptance_group",
            "institution_id",
            "session_id",
            "school_id",
            "group_number",
            "status",
        ),
    )

    session_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    school_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    group_number: Mapped[int] = mapped_column(BigInteger, default=1, nullable=False)

    student_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[AcceptanceStatus] = mapped_column(
        String(20),
        default=AcceptanceStatus.PENDING.value,
        nullable=False,
    )
