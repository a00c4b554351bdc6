"""
PostingService -- create and maintain individual postings.

Responsibility:
    The write pipeline for one posting: load references, validate, compute
    the allowance, write, then propagate to merged groups.  Also the only
    place postings change after creation (visit number, notes, cancel).

Architecture position:
    Kernel > Services -- imperative shell.
    Called by PostingOrchestrator (single, bulk, and multi create) and by
    AutoPostAssigner.  Composes ReferenceDataLoader, PostingValidator,
    AllowanceCalculator, PostingWriter, and MergedGroupPropagator.

Invariants enforced:
    - Validation before write; a non-empty violation list blocks the write.
    - Propagation runs only after a PRIMARY posting is durably flushed.
    - ACTIVE -> CANCELLED is the only status transition.  A cancelled
      posting accepts notes changes and nothing else.
    - A visit change re-checks the duplicate-slot rule for the new visit.
    - Flush-only: never commits.

Failure modes:
    - PostingValidationError: duplicate slot, capacity, or missing group.
    - InvalidAllowanceInputError: negative distance or rate.
    - SlotConflictError: the slot was taken after validation.
    - SessionNotFoundError / SchoolNotFoundError / SupervisorNotFoundError /
      PostingNotFoundError: reference outside the institution.
    - PostingAlreadyCancelledError, InvalidPostingUpdateError.

Audit relevance:
    posting_created, posting_cancelled, and posting_updated are logged with
    the posting id and slot; the row itself keeps created_by_id and
    updated_by_id.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from posting_config.schema import SessionDefaults
from posting_engines.allowance import AllowanceCalculator
from posting_kernel.domain.clock import Clock, SystemClock
from posting_kernel.domain.dtos import (
    PostingInfo,
    PostingOutcome,
    PostingRequest,
    PostingStatus,
    PostingType,
    SessionInfo,
)
from posting_kernel.exceptions import (
    InvalidPostingUpdateError,
    PostingAlreadyCancelledError,
    PostingNotFoundError,
    PostingValidationError,
)
from posting_kernel.logging_config import get_logger
from posting_kernel.models.posting import Posting
from posting_kernel.models.school import InstitutionSchool
from posting_kernel.services.base import BaseService
from posting_kernel.services.merged_group_propagator import MergedGroupPropagator
from posting_kernel.services.posting_validator import PostingValidator
from posting_kernel.services.posting_writer import PostingWriter, to_posting_info
from posting_kernel.services.reference_data_loader import ReferenceDataLoader

logger = get_logger("services.posting")

UNSET = object()


class PostingService(BaseService[Posting]):
    """
    Service for creating, updating, and cancelling postings.

    Contract:
        Accepts ids and ``PostingRequest`` DTOs; returns frozen
        ``PostingOutcome`` / ``PostingInfo``.  Raises typed exceptions on
        any rejection.  Flushes within the caller's transaction.

    Guarantees:
        - A rejected request leaves no row behind.
        - The primary posting survives any failure of its dependents.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT isolate batch items; PostingOrchestrator does.
        - Does NOT cascade a cancel to dependent postings.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        session_defaults: SessionDefaults | None = None,
        calculator: AllowanceCalculator | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._calculator = calculator or AllowanceCalculator()
        self._loader = ReferenceDataLoader(session, session_defaults)
        self._validator = PostingValidator(session)
        self._writer = PostingWriter(session)
        self._propagator = MergedGroupPropagator(
            session,
            validator=self._validator,
            writer=self._writer,
            loader=self._loader,
            calculator=self._calculator,
        )

    @property
    def loader(self) -> ReferenceDataLoader:
        return self._loader

    @property
    def validator(self) -> PostingValidator:
        return self._validator

    @property
    def propagator(self) -> MergedGroupPropagator:
        return self._propagator

    @property
    def calculator(self) -> AllowanceCalculator:
        return self._calculator

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_posting(
        self,
        *,
        institution_id: UUID,
        session: SessionInfo,
        request: PostingRequest,
        actor_id: UUID,
        posting_type: PostingType = PostingType.SINGLE,
        auto_post_batch_id: UUID | None = None,
    ) -> PostingOutcome:
        """
        Validate, price, write, and propagate one primary posting.

        Args:
            institution_id: Scope for every lookup.
            session: The session the posting belongs to.
            request: Supervisor, school, group, visit, notes.
            actor_id: Who is posting.
            posting_type: How the posting was requested.
            auto_post_batch_id: Set by AutoPostAssigner.

        Returns:
            PostingOutcome with the primary and any dependents.

        Raises:
            PostingValidationError, SlotConflictError, and NotFoundError
            subclasses.
        """
        supervisor = self._loader.load_supervisor(institution_id, request.supervisor_id)
        school = self._loader.load_school(institution_id, request.school_id)

        violations = self._validator.validate(
            institution_id=institution_id,
            session=session,
            request=request,
        )
        if violations:
            logger.warning(
                "posting_validation_failed",
                extra={
                    "school_id": str(request.school_id),
                    "supervisor_id": str(request.supervisor_id),
                    "group_number": request.group_number,
                    "visit_number": request.visit_number,
                    "violation_codes": [v.code.value for v in violations],
                },
            )
            raise PostingValidationError(violations)

        rates = self._loader.load_rank_rates(supervisor.rank_id)
        breakdown = self._calculator.compute(
            rank=rates,
            distance_km=school.distance_km,
            thresholds=session.thresholds,
        )

        posting = self._writer.insert(
            institution_id=institution_id,
            session_id=session.id,
            request=request,
            breakdown=breakdown,
            rank_id=rates.rank_id,
            actor_id=actor_id,
            posting_type=posting_type,
            auto_post_batch_id=auto_post_batch_id,
        )
        info = to_posting_info(posting)

        logger.info(
            "posting_created",
            extra={
                "posting_id": str(posting.id),
                "posting_type": posting_type.value,
                "school_id": str(request.school_id),
                "group_number": request.group_number,
                "visit_number": request.visit_number,
                "location_category": breakdown.location_category.value,
                "total_allowance": str(breakdown.total),
            },
        )

        propagation = self._propagator.propagate(info, session=session, actor_id=actor_id)
        return PostingOutcome(
            posting=info,
            dependents=propagation.created,
            propagation_failures=propagation.failures,
        )

    # -------------------------------------------------------------------------
    # Maintain
    # -------------------------------------------------------------------------

    def get_posting(self, institution_id: UUID, posting_id: UUID) -> PostingInfo:
        return to_posting_info(self._get(institution_id, posting_id))

    def cancel_posting(
        self,
        *,
        institution_id: UUID,
        posting_id: UUID,
        actor_id: UUID,
    ) -> PostingInfo:
        """
        Cancel an active posting, freeing its slot.

        Dependents of a cancelled primary stay active.

        Raises:
            PostingNotFoundError: Unknown posting in the institution.
            PostingAlreadyCancelledError: Already cancelled.
        """
        posting = self._get(institution_id, posting_id)
        if not posting.is_active:
            raise PostingAlreadyCancelledError(posting.id)

        posting.cancel(actor_id, self._clock.now())
        self.session.flush()

        logger.info(
            "posting_cancelled",
            extra={
                "posting_id": str(posting.id),
                "is_primary": posting.is_primary,
            },
        )
        return to_posting_info(posting)

    def update_posting(
        self,
        *,
        institution_id: UUID,
        posting_id: UUID,
        actor_id: UUID,
        visit_number: int | None = None,
        notes: str | None | object = UNSET,
        status: PostingStatus | str | None = None,
    ) -> PostingInfo:
        """
        Change visit number, notes, and/or status.

        ``notes=None`` clears the notes; leaving ``notes`` out keeps them.
        ``status`` may only be CANCELLED (or ACTIVE on an active posting,
        which changes nothing).

        Raises:
            InvalidPostingUpdateError: nothing to change, bad status or visit.
            PostingAlreadyCancelledError: visit/status change on a cancelled
                posting.
            PostingValidationError: the new visit's slot is held.
            SlotConflictError: the new visit's slot was taken concurrently.
        """
        if visit_number is None and notes is UNSET and status is None:
            raise InvalidPostingUpdateError(posting_id, "no fields to update")

        target_status: PostingStatus | None = None
        if status is not None:
            try:
                target_status = PostingStatus(status)
            except ValueError:
                raise InvalidPostingUpdateError(
                    posting_id, f"unknown status {status!r}"
                ) from None

        posting = self._get(institution_id, posting_id)

        if not posting.is_active:
            if visit_number is not None:
                raise PostingAlreadyCancelledError(posting.id, attempted="change visit")
            if target_status == PostingStatus.ACTIVE:
                raise PostingAlreadyCancelledError(posting.id, attempted="reactivate")

        if visit_number is not None and visit_number != posting.visit_number:
            self._move_visit(posting, visit_number, actor_id)

        if notes is not UNSET:
            posting.notes = notes
            posting.updated_by_id = actor_id

        if target_status == PostingStatus.CANCELLED and posting.is_active:
            posting.cancel(actor_id, self._clock.now())

        self.session.flush()
        logger.info(
            "posting_updated",
            extra={
                "posting_id": str(posting.id),
                "visit_number": posting.visit_number,
                "status": posting.status,
                "notes_changed": notes is not UNSET,
            },
        )
        return to_posting_info(posting)

    def clear_postings(
        self,
        *,
        institution_id: UUID,
        session_id: UUID,
        actor_id: UUID,
        supervisor_id: UUID | None = None,
        route_id: UUID | None = None,
    ) -> int:
        """
        Cancel every active posting in the session matching the filters.

        Returns:
            Number of postings cancelled.
        """
        stmt = select(Posting).where(
            Posting.institution_id == institution_id,
            Posting.session_id == session_id,
            Posting.status == PostingStatus.ACTIVE.value,
        )
        if supervisor_id is not None:
            stmt = stmt.where(Posting.supervisor_id == supervisor_id)
        if route_id is not None:
            stmt = stmt.join(InstitutionSchool, InstitutionSchool.id == Posting.school_id).where(
                InstitutionSchool.route_id == route_id
            )

        postings = list(self.session.execute(stmt).scalars())
        now = self._clock.now()
        for posting in postings:
            posting.cancel(actor_id, now)
        self.session.flush()

        logger.info(
            "postings_cleared",
            extra={
                "cancelled": len(postings),
                "supervisor_id": str(supervisor_id) if supervisor_id else None,
                "route_id": str(route_id) if route_id else None,
            },
        )
        return len(postings)

    def _move_visit(self, posting: Posting, visit_number: int, actor_id: UUID) -> None:
        if visit_number < 1:
            raise InvalidPostingUpdateError(posting.id, f"visit_number must be >= 1, got {visit_number}")

        duplicate = self._validator.duplicate_slot_violation(
            institution_id=posting.institution_id,
            session_id=posting.session_id,
            school_id=posting.school_id,
            group_number=posting.group_number,
            visit_number=visit_number,
            exclude_posting_id=posting.id,
        )
        if duplicate is not None:
            logger.warning(
                "posting_visit_change_rejected",
                extra={"posting_id": str(posting.id), "visit_number": visit_number},
            )
            raise PostingValidationError((duplicate,))

        self._writer.change_visit(posting, visit_number, actor_id)

    def _get(self, institution_id: UUID, posting_id: UUID) -> Posting:
        posting = self.session.execute(
            select(Posting).where(
                Posting.id == posting_id,
                Posting.institution_id == institution_id,
            )
        ).scalars().first()
        if posting is None:
            raise PostingNotFoundError(posting_id)
        return posting
