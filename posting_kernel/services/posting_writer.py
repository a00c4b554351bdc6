"""
PostingWriter -- the single write path for posting rows.

Responsibility:
    Inserts postings and changes their visit number inside a SAVEPOINT, and
    translates a rejection by the unique active-slot index into
    SlotConflictError.  Converts ORM rows to ``PostingInfo`` DTOs.

Architecture position:
    Kernel > Services -- imperative shell.  Used by PostingService,
    MergedGroupPropagator, and AutoPostAssigner.  Nothing else adds Posting
    rows to the session.

Invariants enforced:
    - One ACTIVE posting per slot.  The database index is the authority;
      a lost race surfaces as SlotConflictError, distinct from a validation
      failure.
    - A failed write rolls back only its own SAVEPOINT.  Earlier items of a
      batch and the caller's outer transaction are untouched.
    - Flush-only: never commits.

Failure modes:
    - SlotConflictError: ``uq_posting_active_slot`` rejected the row.
    - IntegrityError: any other constraint (unknown foreign key, missing
      merge link) propagates unchanged.
"""

from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from posting_kernel.domain.dtos import (
    AllowanceBreakdown,
    LocationCategory,
    PostingInfo,
    PostingRequest,
    PostingStatus,
    PostingType,
)
from posting_kernel.exceptions import SlotConflictError
from posting_kernel.logging_config import get_logger
from posting_kernel.models.posting import ACTIVE_SLOT_INDEX, Posting
from posting_kernel.services.base import BaseService

logger = get_logger("services.posting_writer")


def is_slot_conflict(exc: IntegrityError) -> bool:
    """
    True if ``exc`` came from the unique active-slot index.

    PostgreSQL names the index; SQLite lists the indexed columns.
    """
    message = str(exc.orig)
    if ACTIVE_SLOT_INDEX in message:
        return True
    return "UNIQUE constraint failed" in message and "postings.visit_number" in message


def to_posting_info(posting: Posting) -> PostingInfo:
    """Convert an ORM Posting to its frozen read-side DTO."""
    return PostingInfo(
        id=posting.id,
        institution_id=posting.institution_id,
        session_id=posting.session_id,
        supervisor_id=posting.supervisor_id,
        school_id=posting.school_id,
        group_number=posting.group_number,
        visit_number=posting.visit_number,
        rank_id=posting.rank_id,
        allowance=AllowanceBreakdown(
            distance_km=posting.distance_km,
            location_category=LocationCategory(posting.location_category),
            transport=posting.transport,
            dsa=posting.dsa,
            dta=posting.dta,
            local_running=posting.local_running,
            tetfund=posting.tetfund,
            is_secondary=not posting.is_primary,
        ),
        is_primary=posting.is_primary,
        merged_with_posting_id=posting.merged_with_posting_id,
        status=PostingStatus(posting.status),
        posting_type=PostingType(posting.posting_type),
        auto_post_batch_id=posting.auto_post_batch_id,
        notes=posting.notes,
    )


class PostingWriter(BaseService[Posting]):
    """
    Savepoint-isolated posting writes.

    Contract:
        ``insert()`` either returns the persisted posting or leaves the
        session exactly as it was before the call.

    Non-goals:
        - Does NOT validate business rules; PostingValidator does.
        - Does NOT compute allowances; the breakdown is passed in.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def insert(
        self,
        *,
        institution_id: UUID,
        session_id: UUID,
        request: PostingRequest,
        breakdown: AllowanceBreakdown,
        rank_id: UUID | None,
        actor_id: UUID,
        posting_type: PostingType,
        merged_with_posting_id: UUID | None = None,
        auto_post_batch_id: UUID | None = None,
    ) -> Posting:
        """
        Insert one ACTIVE posting.

        A secondary breakdown produces a dependent (non-primary) posting;
        ``merged_with_posting_id`` is then required.

        Raises:
            SlotConflictError: The slot is held by another active posting.
            ValueError: A dependent posting without ``merged_with_posting_id``.
        """
        is_primary = not breakdown.is_secondary
        if not is_primary and merged_with_posting_id is None:
            raise ValueError("A dependent posting requires merged_with_posting_id")

        posting = Posting(
            institution_id=institution_id,
            session_id=session_id,
            supervisor_id=request.supervisor_id,
            school_id=request.school_id,
            group_number=request.group_number,
            visit_number=request.visit_number,
            rank_id=rank_id,
            distance_km=breakdown.distance_km,
            location_category=breakdown.location_category.value,
            transport=breakdown.transport,
            dsa=breakdown.dsa,
            dta=breakdown.dta,
            local_running=breakdown.local_running,
            tetfund=breakdown.tetfund,
            is_primary=is_primary,
            merged_with_posting_id=merged_with_posting_id,
            status=PostingStatus.ACTIVE.value,
            posting_type=posting_type.value,
            auto_post_batch_id=auto_post_batch_id,
            notes=request.notes,
            created_by_id=actor_id,
        )

        try:
            with self.session.begin_nested():
                self.session.add(posting)
                self.session.flush()
        except IntegrityError as exc:
            if not is_slot_conflict(exc):
                raise
            logger.warning(
                "posting_slot_conflict",
                extra={
                    "school_id": str(request.school_id),
                    "group_number": request.group_number,
                    "visit_number": request.visit_number,
                },
            )
            raise SlotConflictError(
                school_id=request.school_id,
                group_number=request.group_number,
                visit_number=request.visit_number,
                session_id=session_id,
            ) from exc

        return posting

    def change_visit(self, posting: Posting, visit_number: int, actor_id: UUID) -> None:
        """
        Move a posting to another visit number of the same school group.

        Raises:
            SlotConflictError: The new slot is held by another active posting.
        """
        previous = posting.visit_number
        try:
            with self.session.begin_nested():
                posting.visit_number = visit_number
                posting.updated_by_id = actor_id
                self.session.flush()
        except IntegrityError as exc:
            if not is_slot_conflict(exc):
                raise
            # The savepoint rollback expired the row; restore the in-memory value
            self.session.refresh(posting)
            raise SlotConflictError(
                school_id=posting.school_id,
                group_number=posting.group_number,
                visit_number=visit_number,
                session_id=posting.session_id,
            ) from exc

        logger.info(
            "posting_visit_changed",
            extra={
                "posting_id": str(posting.id),
                "from_visit": previous,
                "to_visit": visit_number,
            },
        )
