"""
Module: posting_kernel.models.auto_post_batch
Responsibility: ORM persistence for one executed auto-assign run.
Architecture position: Kernel > Models.

Invariants enforced:
    - Status moves COMPLETED -> ROLLED_BACK once.  Rolling back cancels the
      batch's still-active postings; it never deletes them.

Audit relevance:
    ``criteria`` records the route filter and cap the run used, so a rolled
    back run can be explained and repeated.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from posting_kernel.db.base import TrackedBase, InstitutionScoped, UUIDString
from posting_kernel.domain.dtos import AutoPostBatchStatus


class AutoPostBatch(InstitutionScoped, TrackedBase):
    """Record of an auto-assign execution and its counts."""

    __tablename__ = "auto_post_batches"

    __table_args__ = (
        Index("idx_auto_post_batch_session", "institution_id", "session_id"),
    )

    session_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    criteria: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[AutoPostBatchStatus] = mapped_column(
        String(20),
        default=AutoPostBatchStatus.COMPLETED.value,
        nullable=False,
    )

    total_schools: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    total_supervisors: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    postings_created: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    postings_skipped: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    rolled_back_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<AutoPostBatch {self.id} {self.status}>"
