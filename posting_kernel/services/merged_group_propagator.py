"""
MergedGroupPropagator -- dependent postings for merged school groups.

Responsibility:
    After a primary posting is written, finds every active MergedGroup whose
    primary side is the posting's (school, group) and writes a zero-allowance
    dependent posting on each secondary (school, group) for the same visit.

Architecture position:
    Kernel > Services -- imperative shell.  Called by PostingService right
    after a primary insert, inside the same outer transaction.

Invariants enforced:
    - Dependents are never primary, carry zero in every allowance field, and
      point at their primary via merged_with_posting_id.
    - Idempotent: a secondary slot that already has an active posting is
      skipped, so running propagation twice for the same primary creates
      nothing the second time.
    - One level deep: a dependent posting is never itself propagated, and
      merges anchored on a secondary group are not followed.
    - A dependent failure never undoes the primary.  Each dependent is
      written in its own SAVEPOINT; a failure is logged and reported.

Failure modes:
    - None raised for per-merge problems.  Each one is reported as a
      ``PropagationFailure`` with code PROPAGATION_FAILED.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from posting_engines.allowance import AllowanceCalculator
from posting_kernel.domain.dtos import (
    MergedGroupStatus,
    PostingInfo,
    PostingRequest,
    PostingType,
    PropagationFailure,
    PropagationResult,
    RankRates,
    SessionInfo,
)
from posting_kernel.exceptions import PostingKernelError, PropagationError
from posting_kernel.logging_config import get_logger
from posting_kernel.models.merged_group import MergedGroup
from posting_kernel.services.posting_validator import PostingValidator
from posting_kernel.services.posting_writer import PostingWriter, to_posting_info
from posting_kernel.services.reference_data_loader import ReferenceDataLoader

logger = get_logger("services.merged_group_propagator")


class MergedGroupPropagator:
    """
    Creates dependent postings for a newly created primary posting.

    Contract:
        ``propagate()`` returns what it created, which merges it skipped
        because the secondary slot was already covered, and which merges
        failed.

    Non-goals:
        - Does NOT cancel dependents when the primary is cancelled.
        - Does NOT follow chains of merges.
        - Does NOT check that the secondary group has approved students;
          the merge itself is the authority that the group exists.
    """

    def __init__(
        self,
        session: Session,
        validator: PostingValidator,
        writer: PostingWriter,
        loader: ReferenceDataLoader,
        calculator: AllowanceCalculator | None = None,
    ):
        self._session = session
        self._validator = validator
        self._writer = writer
        self._loader = loader
        self._calculator = calculator or AllowanceCalculator()

    def propagate(
        self,
        primary: PostingInfo,
        *,
        session: SessionInfo,
        actor_id: UUID,
    ) -> PropagationResult:
        """
        Write dependents for every active merge anchored on ``primary``.

        Args:
            primary: The posting just written.  Non-primary or inactive
                postings propagate nothing.
            session: Session of the posting (thresholds for the category).
            actor_id: Who is posting.
        """
        if not primary.is_primary or not primary.is_active:
            return PropagationResult(primary_posting_id=primary.id)

        merges = self._active_merges(primary)
        created: list[PostingInfo] = []
        skipped: list[UUID] = []
        failures: list[PropagationFailure] = []

        for merge in merges:
            if not self._validator.is_slot_free(
                institution_id=primary.institution_id,
                session_id=primary.session_id,
                school_id=merge.secondary_school_id,
                group_number=merge.secondary_group_number,
                visit_number=primary.visit_number,
            ):
                skipped.append(merge.id)
                logger.debug(
                    "dependent_posting_skipped",
                    extra={"merged_group_id": str(merge.id)},
                )
                continue

            try:
                dependent = self._create_dependent(primary, merge, session, actor_id)
            except PropagationError as err:
                logger.error(
                    "dependent_posting_failed",
                    extra={
                        "primary_posting_id": str(primary.id),
                        "merged_group_id": str(merge.id),
                    },
                    exc_info=True,
                )
                failures.append(
                    PropagationFailure(
                        primary_posting_id=primary.id,
                        merged_group_id=merge.id,
                        secondary_school_id=merge.secondary_school_id,
                        secondary_group_number=merge.secondary_group_number,
                        code=err.code,
                        message=str(err),
                    )
                )
                continue

            created.append(dependent)
            logger.info(
                "dependent_posting_created",
                extra={
                    "primary_posting_id": str(primary.id),
                    "dependent_posting_id": str(dependent.id),
                    "merged_group_id": str(merge.id),
                },
            )

        return PropagationResult(
            primary_posting_id=primary.id,
            created=tuple(created),
            skipped_merged_group_ids=tuple(skipped),
            failures=tuple(failures),
        )

    def _active_merges(self, primary: PostingInfo) -> list[MergedGroup]:
        return list(
            self._session.execute(
                select(MergedGroup)
                .where(
                    MergedGroup.institution_id == primary.institution_id,
                    MergedGroup.session_id == primary.session_id,
                    MergedGroup.primary_school_id == primary.school_id,
                    MergedGroup.primary_group_number == primary.group_number,
                    MergedGroup.status == MergedGroupStatus.ACTIVE.value,
                )
                .order_by(MergedGroup.secondary_school_id, MergedGroup.secondary_group_number)
            ).scalars()
        )

    def _create_dependent(
        self,
        primary: PostingInfo,
        merge: MergedGroup,
        session: SessionInfo,
        actor_id: UUID,
    ) -> PostingInfo:
        """
        Raises:
            PropagationError: wrapping whatever stopped this one dependent.
        """
        try:
            school = self._loader.load_school(primary.institution_id, merge.secondary_school_id)
            breakdown = self._calculator.compute(
                rank=RankRates.zero(),
                distance_km=school.distance_km,
                thresholds=session.thresholds,
                is_secondary=True,
            )
            posting = self._writer.insert(
                institution_id=primary.institution_id,
                session_id=primary.session_id,
                request=PostingRequest(
                    supervisor_id=primary.supervisor_id,
                    school_id=school.id,
                    group_number=merge.secondary_group_number,
                    visit_number=primary.visit_number,
                ),
                breakdown=breakdown,
                rank_id=primary.rank_id,
                actor_id=actor_id,
                posting_type=PostingType.MERGED,
                merged_with_posting_id=primary.id,
                auto_post_batch_id=primary.auto_post_batch_id,
            )
        except (PostingKernelError, IntegrityError) as exc:
            raise PropagationError(primary.id, merge.id, str(exc)) from exc
        return to_posting_info(posting)
