"""
PostingValidator -- business-rule pre-checks before a posting is written.

Responsibility:
    Answers "may this supervisor take this slot?" by collecting every
    violation at once: duplicate slot, supervisor capacity, and group
    existence.

Architecture position:
    Kernel > Services -- read-only helper used by PostingService,
    MergedGroupPropagator, and AutoPostAssigner.

Invariants enforced:
    - Duplicate slot: an ACTIVE posting already holding (institution,
      session, school, group, visit) blocks the request, whoever holds it.
    - Capacity: a supervisor already holding ``max_postings_per_supervisor``
      ACTIVE PRIMARY postings in the session is blocked.  Dependent postings
      never count.
    - Group existence: at least one APPROVED acceptance must exist for
      (school, group, session).
    - Cancelled postings never count for any rule.
    - Nothing is cached: every call reads current rows, so a cancellation
      is visible to the next validation.

Failure modes:
    - None raised.  Violations are returned; callers decide whether to raise
      PostingValidationError.
    - This is an advisory check.  Two writers can both pass it; the unique
      active-slot index decides the race (see PostingWriter).
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from posting_kernel.domain.dtos import (
    AcceptanceStatus,
    PostingRequest,
    PostingStatus,
    PostingViolation,
    SessionInfo,
    ViolationCode,
)
from posting_kernel.logging_config import get_logger
from posting_kernel.models.acceptance import StudentAcceptance
from posting_kernel.models.posting import Posting
from posting_kernel.models.supervisor import Supervisor

logger = get_logger("services.posting_validator")


class PostingValidator:
    """
    Pre-persistence validation of posting requests.

    Contract:
        ``validate()`` returns a tuple of ``PostingViolation``; empty means
        the request may proceed.

    Guarantees:
        - All three rules are evaluated; violations come back in the order
          duplicate slot, capacity, group existence.

    Non-goals:
        - Does NOT guarantee the slot is still free at INSERT time.
        - Does NOT check rank or distance inputs; the calculator does.
    """

    def __init__(self, session: Session):
        self._session = session

    def validate(
        self,
        *,
        institution_id: UUID,
        session: SessionInfo,
        request: PostingRequest,
        check_capacity: bool = True,
    ) -> tuple[PostingViolation, ...]:
        """
        Evaluate every rule for ``request``.

        Args:
            institution_id: Scope of the request.
            session: Session whose cap applies.
            request: Supervisor, school, group, and visit.
            check_capacity: False for dependent postings, which never count
                toward the cap.
        """
        violations: list[PostingViolation] = []

        duplicate = self.duplicate_slot_violation(
            institution_id=institution_id,
            session_id=session.id,
            school_id=request.school_id,
            group_number=request.group_number,
            visit_number=request.visit_number,
        )
        if duplicate is not None:
            violations.append(duplicate)

        if check_capacity:
            cap = session.thresholds.max_postings_per_supervisor
            current = self.count_primary_postings(session.id, request.supervisor_id)
            if current >= cap:
                violations.append(
                    PostingViolation(
                        code=ViolationCode.CAPACITY_EXCEEDED,
                        message=(
                            f"Supervisor has reached the maximum of {cap} postings "
                            f"for this session"
                        ),
                        details={
                            "supervisor_id": str(request.supervisor_id),
                            "current": current,
                            "limit": cap,
                        },
                    )
                )

        if not self.group_exists(
            institution_id=institution_id,
            session_id=session.id,
            school_id=request.school_id,
            group_number=request.group_number,
        ):
            violations.append(
                PostingViolation(
                    code=ViolationCode.GROUP_NOT_FOUND,
                    message=(
                        f"Group {request.group_number} has no approved students at "
                        f"this school"
                    ),
                    details={
                        "school_id": str(request.school_id),
                        "group_number": request.group_number,
                    },
                )
            )

        if violations:
            logger.debug(
                "posting_rules_violated",
                extra={"violation_codes": [v.code.value for v in violations]},
            )
        return tuple(violations)

    def duplicate_slot_violation(
        self,
        *,
        institution_id: UUID,
        session_id: UUID,
        school_id: UUID,
        group_number: int,
        visit_number: int,
        exclude_posting_id: UUID | None = None,
    ) -> PostingViolation | None:
        """Violation naming the supervisor who holds the slot, or None."""
        stmt = (
            select(Posting.id, Posting.supervisor_id, Supervisor.name)
            .join(Supervisor, Supervisor.id == Posting.supervisor_id)
            .where(
                Posting.institution_id == institution_id,
                Posting.session_id == session_id,
                Posting.school_id == school_id,
                Posting.group_number == group_number,
                Posting.visit_number == visit_number,
                Posting.status == PostingStatus.ACTIVE.value,
            )
        )
        if exclude_posting_id is not None:
            stmt = stmt.where(Posting.id != exclude_posting_id)

        holder = self._session.execute(stmt.limit(1)).first()
        if holder is None:
            return None

        posting_id, supervisor_id, supervisor_name = holder
        return PostingViolation(
            code=ViolationCode.DUPLICATE_SLOT,
            message=(
                f"Visit {visit_number} for group {group_number} at this school is "
                f"already assigned to {supervisor_name}"
            ),
            details={
                "posting_id": str(posting_id),
                "supervisor_id": str(supervisor_id),
                "supervisor_name": supervisor_name,
            },
        )

    def is_slot_free(
        self,
        *,
        institution_id: UUID,
        session_id: UUID,
        school_id: UUID,
        group_number: int,
        visit_number: int,
    ) -> bool:
        return (
            self.duplicate_slot_violation(
                institution_id=institution_id,
                session_id=session_id,
                school_id=school_id,
                group_number=group_number,
                visit_number=visit_number,
            )
            is None
        )

    def count_primary_postings(self, session_id: UUID, supervisor_id: UUID) -> int:
        """Active primary postings the supervisor holds in the session."""
        return self._session.execute(
            select(func.count(Posting.id)).where(
                Posting.session_id == session_id,
                Posting.supervisor_id == supervisor_id,
                Posting.is_primary.is_(True),
                Posting.status == PostingStatus.ACTIVE.value,
            )
        ).scalar_one()

    def group_exists(
        self,
        *,
        institution_id: UUID,
        session_id: UUID,
        school_id: UUID,
        group_number: int,
    ) -> bool:
        """True if an approved acceptance exists for (school, group, session)."""
        found = self._session.execute(
            select(StudentAcceptance.id)
            .where(
                StudentAcceptance.institution_id == institution_id,
                StudentAcceptance.session_id == session_id,
                StudentAcceptance.school_id == school_id,
                StudentAcceptance.group_number == group_number,
                StudentAcceptance.status == AcceptanceStatus.APPROVED.value,
            )
            .limit(1)
        ).first()
        return found is not None
