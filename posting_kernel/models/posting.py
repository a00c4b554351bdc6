"""
Module: posting_kernel.models.posting
Responsibility: ORM persistence for supervisor postings, the only table the
    posting engine writes besides auto-post batches.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - One ACTIVE posting per (institution, session, school, group, visit).
      Enforced by the partial unique index ``uq_posting_active_slot``;
      the PostingValidator only pre-checks it.  Cancelled rows fall outside
      the index, so cancelling frees the slot.
    - Secondary postings (is_primary False) carry zero allowances and a
      merged_with_posting_id; enforced by ck_posting_secondary_link and by
      the MergedGroupPropagator writing zero breakdowns.
    - Rows are never deleted by the engine; cancellation is a status flip.

Failure modes:
    - IntegrityError on ``uq_posting_active_slot`` when a concurrent writer
      took the slot first.  PostingService converts it to SlotConflictError.

Audit relevance:
    Each row snapshots the rank, distance, and allowance computed at posting
    time, so later rate-card changes never rewrite past allowances.
    created_by_id is the actor who posted; updated_by_id the last editor.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from posting_kernel.db.base import TrackedBase, InstitutionScoped, UUIDString
from posting_kernel.domain.dtos import (
    LocationCategory,
    PostingStatus,
    PostingType,
)

ACTIVE_SLOT_INDEX = "uq_posting_active_slot"

_ACTIVE_ONLY = text("status = 'active'")


class Posting(InstitutionScoped, TrackedBase):
    """
    One supervisor assigned to one school group for one visit in a session.

    Contract:
        The slot is (institution_id, session_id, school_id, group_number,
        visit_number).  Which supervisor holds the slot is not part of it.

    Guarantees:
        - At most one ACTIVE row per slot (database-enforced).
        - Allowance columns hold the calculator's output unrounded.

    Non-goals:
        - Cancelling a primary does not touch its dependents.
    """

    __tablename__ = "postings"

    __table_args__ = (
        Index(
            ACTIVE_SLOT_INDEX,
            "institution_id",
            "session_id",
            "school_id",
            "group_number",
            "visit_number",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        Index("idx_posting_supervisor", "session_id", "supervisor_id", "status"),
        Index("idx_posting_batch", "auto_post_batch_id"),
        Index("idx_posting_merged_with", "merged_with_posting_id"),
        CheckConstraint(
            "is_primary OR merged_with_posting_id IS NOT NULL",
            name="ck_posting_secondary_link",
        ),
    )

    session_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("academic_sessions.id"),
        nullable=False,
    )

    supervisor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("supervisors.id"),
        nullable=False,
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("institution_schools.id"),
        nullable=False,
    )

    group_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    visit_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Rank snapshot used for the calculation (None if the supervisor had none)
    rank_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    distance_km: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    location_category: Mapped[LocationCategory] = mapped_column(
        String(20),
        nullable=False,
    )

    transport: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    dsa: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    dta: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    local_running: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    tetfund: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    is_primary: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    merged_with_posting_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("postings.id"),
        nullable=True,
    )

    status: Mapped[PostingStatus] = mapped_column(
        String(20),
        default=PostingStatus.ACTIVE.value,
        nullable=False,
    )

    posting_type: Mapped[PostingType] = mapped_column(
        String(20),
        default=PostingType.SINGLE.value,
        nullable=False,
    )

    auto_post_batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("auto_post_batches.id"),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == PostingStatus.ACTIVE

    def cancel(self, actor_id: UUID, cancelled_at: datetime) -> None:
        """Flip to CANCELLED.  The caller checks the current status first."""
        self.status = PostingStatus.CANCELLED.value
        self.cancelled_at = cancelled_at
        self.updated_by_id = actor_id

    def __repr__(self) -> str:
        return (
            f"<Posting {self.school_id}/g{self.group_number}/v{self.visit_number} "
            f"{self.status}>"
        )
