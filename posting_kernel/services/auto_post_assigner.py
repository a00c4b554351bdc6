"""
AutoPostAssigner -- round-robin assignment of supervisors to schools.

Responsibility:
    Builds a pool of under-supervised schools and a pool of supervisors with
    spare capacity, then walks the schools closest-first, handing each to
    the supervisor under a round-robin cursor.  Supports a dry run (plan
    with allowances, nothing written), records each executed run as an
    AutoPostBatch, and rolls a batch back by cancelling its postings.

Architecture position:
    Kernel > Services -- imperative shell.  Called by PostingOrchestrator.
    Writes go through PostingService.create_posting, so every assignment
    passes the same validation, pricing, and propagation as a manual one.

Invariants enforced:
    - School pool: active schools of the institution (optionally one route)
      with at least one approved acceptance in the session and fewer active
      postings than the session's max visits, ordered by distance then name.
    - School pool also leaves out schools whose offered group is the
      secondary side of an active merge: the primary's posting covers it.
    - Supervisor pool: active supervisors with fewer active primary
      postings than the cap, ordered by posting count then name.  With
      priority enabled, rank priority_number (1 first) comes before count.
    - Capacity is re-checked on every assignment.  A supervisor who reaches
      the cap leaves the rotation; once nobody is left, the remaining
      schools are reported as skipped.
    - Each assignment is isolated in a SAVEPOINT.  One failure skips that
      school and never undoes an earlier assignment.
    - Rollback cancels only still-active postings stamped with the batch
      id, dependents included, and only for a COMPLETED batch.

Failure modes:
    - Per-school problems are reported as ``AutoAssignSkip`` entries.
    - AutoPostBatchNotFoundError / AutoPostBatchStateError on rollback.

Audit relevance:
    The batch row keeps the criteria and counts of the run; every posting
    it created carries auto_post_batch_id.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from posting_config.schema import AutoPostDefaults
from posting_kernel.domain.clock import Clock, SystemClock
from posting_kernel.domain.dtos import (
    AcceptanceStatus,
    AutoAssignment,
    AutoAssignResult,
    AutoAssignSkip,
    AutoPostBatchInfo,
    AutoPostBatchStatus,
    MergedGroupStatus,
    PostingRequest,
    PostingStatus,
    PostingType,
    RollbackResult,
    SchoolInfo,
    SessionInfo,
    ViolationCode,
)
from posting_kernel.exceptions import (
    AutoPostBatchNotFoundError,
    AutoPostBatchStateError,
    PostingKernelError,
    PostingValidationError,
)
from posting_kernel.logging_config import get_logger
from posting_kernel.models.acceptance import StudentAcceptance
from posting_kernel.models.auto_post_batch import AutoPostBatch
from posting_kernel.models.merged_group import MergedGroup
from posting_kernel.models.posting import Posting
from posting_kernel.models.rank import DEFAULT_RANK_PRIORITY, Rank
from posting_kernel.models.school import InstitutionSchool
from posting_kernel.models.supervisor import Supervisor
from posting_kernel.services.base import BaseService
from posting_kernel.services.posting_service import PostingService
from posting_kernel.services.reference_data_loader import school_info

logger = get_logger("services.auto_post")

SKIP_NO_CAPACITY = "NO_SUPERVISOR_CAPACITY"


@dataclass
class _PoolSupervisor:
    id: UUID
    name: str
    rank_id: UUID | None
    remaining: int


class AutoPostAssigner(BaseService[AutoPostBatch]):
    """
    Round-robin auto-assignment with dry run, batch history, and rollback.

    Contract:
        ``auto_assign()`` returns the assignments made (or planned) and the
        schools skipped, each with a reason.

    Guarantees:
        - Deterministic for identical data: both pools are totally ordered.
        - No supervisor ends the run above the cap.

    Non-goals:
        - Does NOT commit.
        - Does NOT pick group or visit per school; it uses the configured
          group and visit (1 and 1 by default).
    """

    def __init__(
        self,
        session: Session,
        posting_service: PostingService,
        clock: Clock | None = None,
        defaults: AutoPostDefaults | None = None,
    ):
        super().__init__(session)
        self._postings = posting_service
        self._clock = clock or SystemClock()
        self._defaults = defaults or AutoPostDefaults()

    # -------------------------------------------------------------------------
    # Assign
    # -------------------------------------------------------------------------

    def auto_assign(
        self,
        *,
        institution_id: UUID,
        session: SessionInfo,
        actor_id: UUID,
        route_id: UUID | None = None,
        max_per_supervisor: int | None = None,
        priority_enabled: bool = False,
        dry_run: bool = False,
    ) -> AutoAssignResult:
        """
        Assign supervisors to under-supervised schools.

        Args:
            institution_id: Scope.
            session: Session to post into.
            actor_id: Who runs the assignment.
            route_id: Only schools on this route.
            max_per_supervisor: Cap for this run; defaults to the session's
                and can only lower it, since every posting is also checked
                against the session cap.
            priority_enabled: Rotate supervisors by rank priority first
                (lowest ``priority_number``), then by load.
            dry_run: Plan and price only; write nothing.
        """
        cap = session.thresholds.max_postings_per_supervisor
        if max_per_supervisor is not None:
            cap = min(cap, max_per_supervisor)
        group_number = self._defaults.group_number
        visit_number = self._defaults.visit_number

        schools = self._school_pool(institution_id, session, route_id, group_number)
        supervisors = self._supervisor_pool(institution_id, session.id, cap, priority_enabled)

        if not schools or not supervisors:
            logger.warning(
                "auto_assign_empty_pool",
                extra={"schools": len(schools), "supervisors": len(supervisors)},
            )
            return AutoAssignResult(
                session_id=session.id,
                dry_run=dry_run,
                schools_considered=len(schools),
                supervisors_considered=len(supervisors),
            )

        batch: AutoPostBatch | None = None
        if not dry_run:
            batch = AutoPostBatch(
                institution_id=institution_id,
                session_id=session.id,
                criteria={
                    "route_id": str(route_id) if route_id else None,
                    "max_per_supervisor": cap,
                    "priority_enabled": priority_enabled,
                    "group_number": group_number,
                    "visit_number": visit_number,
                },
                status=AutoPostBatchStatus.COMPLETED.value,
                total_schools=len(schools),
                total_supervisors=len(supervisors),
                executed_at=self._clock.now(),
                created_by_id=actor_id,
            )
            self.session.add(batch)
            self.session.flush()

        successful: list[AutoAssignment] = []
        skipped: list[AutoAssignSkip] = []
        cursor = 0

        for position, school in enumerate(schools):
            index = self._next_with_capacity(supervisors, cursor)
            if index is None:
                for rest in schools[position:]:
                    skipped.append(
                        AutoAssignSkip(
                            school_id=rest.id,
                            school_name=rest.name,
                            reason="No supervisor has capacity left",
                            code=SKIP_NO_CAPACITY,
                        )
                    )
                break

            supervisor = supervisors[index]
            request = PostingRequest(
                supervisor_id=supervisor.id,
                school_id=school.id,
                group_number=group_number,
                visit_number=visit_number,
            )

            if dry_run:
                assignment, skip = self._plan(institution_id, session, school, supervisor, request)
            else:
                assignment, skip = self._execute(institution_id, session, school, supervisor, request, actor_id, batch.id)

            if skip is not None:
                skipped.append(skip)
                continue

            successful.append(assignment)
            supervisor.remaining -= 1
            cursor = (index + 1) % len(supervisors)

        if batch is not None:
            batch.postings_created = len(successful)
            batch.postings_skipped = len(skipped)
            self.session.flush()

        result = AutoAssignResult(
            session_id=session.id,
            dry_run=dry_run,
            successful=tuple(successful),
            skipped=tuple(skipped),
            batch_id=batch.id if batch is not None else None,
            schools_considered=len(schools),
            supervisors_considered=len(supervisors),
        )
        logger.info(
            "auto_assign_completed",
            extra={
                "dry_run": dry_run,
                "batch_id": str(result.batch_id) if result.batch_id else None,
                "assigned": len(successful),
                "skipped": len(skipped),
                "total_allowance": str(result.total_allowance),
            },
        )
        return result

    def _plan(
        self,
        institution_id: UUID,
        session: SessionInfo,
        school: SchoolInfo,
        supervisor: _PoolSupervisor,
        request: PostingRequest,
    ) -> tuple[AutoAssignment | None, AutoAssignSkip | None]:
        validator = self._postings.validator
        # Capacity is tracked in memory across the plan
        violations = validator.validate(
            institution_id=institution_id,
            session=session,
            request=request,
            check_capacity=False,
        )
        if violations:
            return None, _skip(school, violations[0].code.value, violations[0].message)

        rates = self._postings.loader.load_rank_rates(supervisor.rank_id)
        breakdown = self._postings.calculator.compute(
            rank=rates,
            distance_km=school.distance_km,
            thresholds=session.thresholds,
        )
        return (
            AutoAssignment(
                supervisor_id=supervisor.id,
                supervisor_name=supervisor.name,
                school_id=school.id,
                school_name=school.name,
                group_number=request.group_number,
                visit_number=request.visit_number,
                allowance=breakdown,
            ),
            None,
        )

    def _execute(
        self,
        institution_id: UUID,
        session: SessionInfo,
        school: SchoolInfo,
        supervisor: _PoolSupervisor,
        request: PostingRequest,
        actor_id: UUID,
        batch_id: UUID,
    ) -> tuple[AutoAssignment | None, AutoAssignSkip | None]:
        savepoint = self.session.begin_nested()
        try:
            outcome = self._postings.create_posting(
                institution_id=institution_id,
                session=session,
                request=request,
                actor_id=actor_id,
                posting_type=PostingType.AUTO,
                auto_post_batch_id=batch_id,
            )
        except PostingValidationError as exc:
            savepoint.rollback()
            if ViolationCode.CAPACITY_EXCEEDED.value in exc.violation_codes:
                supervisor.remaining = 0
            first = exc.violations[0] if exc.violations else None
            code = first.code.value if first is not None else exc.code
            return None, _skip(school, code, str(exc))
        except PostingKernelError as exc:
            savepoint.rollback()
            logger.warning(
                "auto_assign_item_failed",
                extra={"school_id": str(school.id), "error_code": exc.code},
            )
            return None, _skip(school, exc.code, str(exc))
        savepoint.commit()

        return (
            AutoAssignment(
                supervisor_id=supervisor.id,
                supervisor_name=supervisor.name,
                school_id=school.id,
                school_name=school.name,
                group_number=request.group_number,
                visit_number=request.visit_number,
                allowance=outcome.posting.allowance,
                posting=outcome.posting,
                dependents=outcome.dependents,
            ),
            None,
        )

    @staticmethod
    def _next_with_capacity(supervisors: list[_PoolSupervisor], cursor: int) -> int | None:
        count = len(supervisors)
        for step in range(count):
            index = (cursor + step) % count
            if supervisors[index].remaining > 0:
                return index
        return None

    def _school_pool(
        self,
        institution_id: UUID,
        session: SessionInfo,
        route_id: UUID | None,
        group_number: int,
    ) -> list[SchoolInfo]:
        approved = (
            select(StudentAcceptance.school_id)
            .where(
                StudentAcceptance.institution_id == institution_id,
                StudentAcceptance.session_id == session.id,
                StudentAcceptance.status == AcceptanceStatus.APPROVED.value,
            )
            .distinct()
        )
        # A merged secondary group is covered by its primary's postings
        merged_away = select(MergedGroup.secondary_school_id).where(
            MergedGroup.institution_id == institution_id,
            MergedGroup.session_id == session.id,
            MergedGroup.secondary_group_number == group_number,
            MergedGroup.status == MergedGroupStatus.ACTIVE.value,
        )
        counts = (
            select(Posting.school_id, func.count(Posting.id).label("postings"))
            .where(
                Posting.session_id == session.id,
                Posting.status == PostingStatus.ACTIVE.value,
            )
            .group_by(Posting.school_id)
            .subquery()
        )
        existing = func.coalesce(counts.c.postings, 0)

        stmt = (
            select(InstitutionSchool)
            .outerjoin(counts, counts.c.school_id == InstitutionSchool.id)
            .where(
                InstitutionSchool.institution_id == institution_id,
                InstitutionSchool.is_active.is_(True),
                InstitutionSchool.id.in_(approved),
                InstitutionSchool.id.not_in(merged_away),
                existing < session.thresholds.max_visits,
            )
            .order_by(InstitutionSchool.distance_km, InstitutionSchool.name)
        )
        if route_id is not None:
            stmt = stmt.where(InstitutionSchool.route_id == route_id)

        return [school_info(row) for row in self.session.execute(stmt).scalars()]

    def _supervisor_pool(
        self,
        institution_id: UUID,
        session_id: UUID,
        cap: int,
        priority_enabled: bool = False,
    ) -> list[_PoolSupervisor]:
        counts = (
            select(Posting.supervisor_id, func.count(Posting.id).label("postings"))
            .where(
                Posting.session_id == session_id,
                Posting.is_primary.is_(True),
                Posting.status == PostingStatus.ACTIVE.value,
            )
            .group_by(Posting.supervisor_id)
            .subquery()
        )
        current = func.coalesce(counts.c.postings, 0)
        ordering = [current, Supervisor.name]
        if priority_enabled:
            ordering.insert(0, func.coalesce(Rank.priority_number, DEFAULT_RANK_PRIORITY))

        rows = self.session.execute(
            select(Supervisor.id, Supervisor.name, Supervisor.rank_id, current)
            .outerjoin(counts, counts.c.supervisor_id == Supervisor.id)
            .outerjoin(Rank, Rank.id == Supervisor.rank_id)
            .where(
                Supervisor.institution_id == institution_id,
                Supervisor.is_active.is_(True),
                current < cap,
            )
            .order_by(*ordering)
        ).all()

        return [
            _PoolSupervisor(id=sid, name=name, rank_id=rank_id, remaining=cap - held)
            for sid, name, rank_id, held in rows
        ]

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def rollback_batch(
        self,
        *,
        institution_id: UUID,
        batch_id: UUID,
        actor_id: UUID,
    ) -> RollbackResult:
        """
        Cancel every still-active posting of a completed batch.

        Returns:
            RollbackResult counting the postings cancelled (dependents
            included).

        Raises:
            AutoPostBatchNotFoundError, AutoPostBatchStateError.
        """
        batch = self._get_batch(institution_id, batch_id)
        if batch.status != AutoPostBatchStatus.COMPLETED:
            raise AutoPostBatchStateError(batch.id, batch.status)

        postings = list(
            self.session.execute(
                select(Posting).where(
                    Posting.auto_post_batch_id == batch.id,
                    Posting.status == PostingStatus.ACTIVE.value,
                )
            ).scalars()
        )
        now = self._clock.now()
        for posting in postings:
            posting.cancel(actor_id, now)

        batch.status = AutoPostBatchStatus.ROLLED_BACK.value
        batch.rolled_back_at = now
        batch.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "auto_post_batch_rolled_back",
            extra={"batch_id": str(batch.id), "postings_cancelled": len(postings)},
        )
        return RollbackResult(batch_id=batch.id, postings_cancelled=len(postings))

    def list_batches(self, institution_id: UUID, session_id: UUID) -> tuple[AutoPostBatchInfo, ...]:
        """Batch history of a session, newest first."""
        rows = self.session.execute(
            select(AutoPostBatch)
            .where(
                AutoPostBatch.institution_id == institution_id,
                AutoPostBatch.session_id == session_id,
            )
            .order_by(AutoPostBatch.executed_at.desc())
        ).scalars()
        return tuple(_batch_info(row) for row in rows)

    def _get_batch(self, institution_id: UUID, batch_id: UUID) -> AutoPostBatch:
        batch = self.session.execute(
            select(AutoPostBatch).where(
                AutoPostBatch.id == batch_id,
                AutoPostBatch.institution_id == institution_id,
            )
        ).scalars().first()
        if batch is None:
            raise AutoPostBatchNotFoundError(batch_id)
        return batch


def _skip(school: SchoolInfo, code: str, reason: str) -> AutoAssignSkip:
    return AutoAssignSkip(school_id=school.id, school_name=school.name, reason=reason, code=code)


def _batch_info(row: AutoPostBatch) -> AutoPostBatchInfo:
    return AutoPostBatchInfo(
        id=row.id,
        institution_id=row.institution_id,
        session_id=row.session_id,
        status=AutoPostBatchStatus(row.status),
        criteria=dict(row.criteria or {}),
        total_schools=row.total_schools,
        total_supervisors=row.total_supervisors,
        postings_created=row.postings_created,
        postings_skipped=row.postings_skipped,
    )
