"""
PostingOrchestrator -- engine-level operations and their transaction boundary.

Responsibility:
    The one object callers talk to.  Resolves the session, binds the
    request's log context, runs the operation through the services and
    selectors, and commits on success or rolls back on failure.

Architecture position:
    Kernel > Services -- outermost kernel layer.  Wires PostingService,
    AutoPostAssigner, and PostingSelector around one SQLAlchemy Session.

Invariants enforced:
    - Single-item operations fail fast: the first blocking problem is raised
      and nothing is written.
    - Batch operations (bulk, multi) are best-effort.  Items run in input
      order, each in its own SAVEPOINT; a failed item becomes a
      ``PostingFailure`` and never undoes an earlier success.
    - With ``auto_commit=True`` every write operation commits on success and
      rolls back on any exception.  With ``auto_commit=False`` the caller
      owns the transaction.
    - Read operations never commit.

Audit relevance:
    Every operation logs ``<operation>_started`` and ``<operation>_completed``
    (or ``<operation>_failed`` with the exception) under a fresh
    correlation id, together with actor, institution, and session.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from posting_config.schema import AutoPostDefaults, EngineSettings, SessionDefaults
from posting_engines.allowance import AllowanceCalculator
from posting_kernel.domain.clock import Clock, SystemClock
from posting_kernel.domain.dtos import (
    AllowanceSummary,
    AutoAssignResult,
    AutoPostBatchInfo,
    BulkPostingResult,
    PostingFailure,
    PostingInfo,
    PostingOutcome,
    PostingRequest,
    PostingStatistics,
    PostingStatus,
    PostingType,
    PostingViolation,
    RollbackResult,
    SchoolSlots,
    SessionInfo,
    SupervisorAllowanceTotal,
)
from posting_kernel.exceptions import PostingKernelError, PostingValidationError
from posting_kernel.logging_config import LogContext, get_logger
from posting_kernel.selectors.posting_selector import PostingSelector
from posting_kernel.services.auto_post_assigner import AutoPostAssigner
from posting_kernel.services.posting_service import UNSET, PostingService

logger = get_logger("services.orchestrator")

T = TypeVar("T")


class PostingOrchestrator:
    """
    Facade over the posting engine.

    Contract:
        Accepts plain ids and ``PostingRequest`` DTOs; returns frozen DTOs.
        ``session_id=None`` means the institution's current session.

    Non-goals:
        - Does NOT shape transport responses or check permissions.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_commit: bool = True,
        settings: EngineSettings | None = None,
        calculator: AllowanceCalculator | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        session_defaults = settings.session_defaults if settings else SessionDefaults()
        auto_post = settings.auto_post if settings else AutoPostDefaults()

        self._postings = PostingService(
            session,
            clock=self._clock,
            session_defaults=session_defaults,
            calculator=calculator,
        )
        self._auto_post = AutoPostAssigner(
            session,
            self._postings,
            clock=self._clock,
            defaults=auto_post,
        )
        self._selector = PostingSelector(session)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def posting_service(self) -> PostingService:
        return self._postings

    @property
    def auto_post_assigner(self) -> AutoPostAssigner:
        return self._auto_post

    @property
    def selector(self) -> PostingSelector:
        return self._selector

    # -------------------------------------------------------------------------
    # Transaction and log plumbing
    # -------------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[], T],
        *,
        institution_id: UUID,
        actor_id: UUID | None = None,
        session_id: UUID | None = None,
        batch_id: UUID | None = None,
        writes: bool = True,
        extra: dict | None = None,
    ) -> T:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id) if actor_id else None,
            institution_id=str(institution_id),
            session_id=str(session_id) if session_id else None,
            batch_id=str(batch_id) if batch_id else None,
        ):
            logger.info(f"{operation}_started", extra=extra or {})
            t0 = time.monotonic()
            try:
                result = work()
                if writes and self._auto_commit:
                    self._session.commit()
            except PostingKernelError as exc:
                if writes and self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    f"{operation}_failed",
                    extra={
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise
            except Exception:
                if writes and self._auto_commit:
                    self._session.rollback()
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                f"{operation}_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
            return result

    def resolve_session(self, institution_id: UUID, session_id: UUID | None = None) -> SessionInfo:
        """The given session, or the institution's current one."""
        return self._postings.loader.load_session(institution_id, session_id)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_posting(
        self,
        *,
        institution_id: UUID,
        request: PostingRequest,
        actor_id: UUID,
        session_id: UUID | None = None,
    ) -> PostingOutcome:
        """
        Create one posting, failing fast.

        Raises:
            PostingValidationError: with every violation of the request.
            SlotConflictError: the slot was taken after validation.
            NotFoundError subclasses for unknown references.
        """

        def work() -> PostingOutcome:
            session = self.resolve_session(institution_id, session_id)
            return self._postings.create_posting(
                institution_id=institution_id,
                session=session,
                request=request,
                actor_id=actor_id,
            )

        return self._run(
            "create_posting",
            work,
            institution_id=institution_id,
            actor_id=actor_id,
            session_id=session_id,
            extra={
                "school_id": str(request.school_id),
                "supervisor_id": str(request.supervisor_id),
            },
        )

    def bulk_create_postings(
        self,
        *,
        institution_id: UUID,
        requests: Sequence[PostingRequest],
        actor_id: UUID,
        session_id: UUID | None = None,
    ) -> BulkPostingResult:
        """Create many postings best-effort, in input order."""
        return self._run(
            "bulk_create_postings",
            lambda: self._create_many(institution_id, requests, actor_id, session_id, PostingType.BULK),
            institution_id=institution_id,
            actor_id=actor_id,
            session_id=session_id,
            extra={"item_count": len(requests)},
        )

    def create_multi_postings(
        self,
        *,
        institution_id: UUID,
        requests: Sequence[PostingRequest],
        actor_id: UUID,
        session_id: UUID | None = None,
    ) -> BulkPostingResult:
        """
        Create several postings across schools and groups best-effort.

        Dependents created by merged-group propagation are reported on
        ``result.dependent_postings``.
        """
        return self._run(
            "create_multi_postings",
            lambda: self._create_many(institution_id, requests, actor_id, session_id, PostingType.MULTI),
            institution_id=institution_id,
            actor_id=actor_id,
            session_id=session_id,
            extra={"item_count": len(requests)},
        )

    def _create_many(
        self,
        institution_id: UUID,
        requests: Sequence[PostingRequest],
        actor_id: UUID,
        session_id: UUID | None,
        posting_type: PostingType,
    ) -> BulkPostingResult:
        session = self.resolve_session(institution_id, session_id)
        successful: list[PostingOutcome] = []
        failed: list[PostingFailure] = []

        for index, request in enumerate(requests):
            savepoint = self._session.begin_nested()
            try:
                outcome = self._postings.create_posting(
                    institution_id=institution_id,
                    session=session,
                    request=request,
                    actor_id=actor_id,
                    posting_type=posting_type,
                )
            except PostingKernelError as exc:
                savepoint.rollback()
                violations = exc.violations if isinstance(exc, PostingValidationError) else ()
                failed.append(
                    PostingFailure(
                        request=request,
                        code=exc.code,
                        message=str(exc),
                        violations=violations,
                    )
                )
                logger.info(
                    "posting_item_failed",
                    extra={"item_index": index, "error_code": exc.code},
                )
                continue
            savepoint.commit()
            successful.append(outcome)

        result = BulkPostingResult(successful=tuple(successful), failed=tuple(failed))
        logger.info(
            "posting_batch_summary",
            extra={
                "posting_type": posting_type.value,
                "succeeded": len(result.successful),
                "failed": len(result.failed),
                "dependents": len(result.dependent_postings),
            },
        )
        return result

    def validate_posting(
        self,
        *,
        institution_id: UUID,
        request: PostingRequest,
        session_id: UUID | None = None,
    ) -> tuple[PostingViolation, ...]:
        """Every violation ``request`` would hit, without writing anything."""

        def work() -> tuple[PostingViolation, ...]:
            session = self.resolve_session(institution_id, session_id)
            self._postings.loader.load_supervisor(institution_id, request.supervisor_id)
            self._postings.loader.load_school(institution_id, request.school_id)
            return self._postings.validator.validate(
                institution_id=institution_id,
                session=session,
                request=request,
            )

        return self._run(
            "validate_posting",
            work,
            institution_id=institution_id,
            session_id=session_id,
            writes=False,
        )

    # -------------------------------------------------------------------------
    # Maintain
    # -------------------------------------------------------------------------

    def get_posting(self, *, institution_id: UUID, posting_id: UUID) -> PostingInfo:
        return self._postings.get_posting(institution_id, posting_id)

    def cancel_posting(
        self,
        *,
        institution_id: UUID,
        posting_id: UUID,
        actor_id: UUID,
    ) -> PostingInfo:
        return self._run(
            "cancel_posting",
            lambda: self._postings.cancel_posting(
                institution_id=institution_id,
                posting_id=posting_id,
                actor_id=actor_id,
            ),
            institution_id=institution_id,
            actor_id=actor_id,
            extra={"posting_id": str(posting_id)},
        )

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
        return self._run(
            "update_posting",
            lambda: self._postings.update_posting(
                institution_id=institution_id,
                posting_id=posting_id,
                actor_id=actor_id,
                visit_number=visit_number,
                notes=notes,
                status=status,
            ),
            institution_id=institution_id,
            actor_id=actor_id,
            extra={"posting_id": str(posting_id)},
        )

    def clear_postings(
        self,
        *,
        institution_id: UUID,
        actor_id: UUID,
        session_id: UUID | None = None,
        supervisor_id: UUID | None = None,
        route_id: UUID | None = None,
    ) -> int:
        """Cancel every matching active posting of the session; returns the count."""

        def work() -> int:
            session = self.resolve_session(institution_id, session_id)
            return self._postings.clear_postings(
                institution_id=institution_id,
                session_id=session.id,
                actor_id=actor_id,
                supervisor_id=supervisor_id,
                route_id=route_id,
            )

        return self._run(
            "clear_postings",
            work,
            institution_id=institution_id,
            actor_id=actor_id,
            session_id=session_id,
        )

    # -------------------------------------------------------------------------
    # Auto-post
    # -------------------------------------------------------------------------

    def auto_assign(
        self,
        *,
        institution_id: UUID,
        actor_id: UUID,
        session_id: UUID | None = None,
        route_id: UUID | None = None,
        max_per_supervisor: int | None = None,
        priority_enabled: bool = False,
        dry_run: bool = False,
    ) -> AutoAssignResult:
        """Round-robin auto-assignment; ``dry_run=True`` writes nothing."""

        def work() -> AutoAssignResult:
            session = self.resolve_session(institution_id, session_id)
            return self._auto_post.auto_assign(
                institution_id=institution_id,
                session=session,
                actor_id=actor_id,
                route_id=route_id,
                max_per_supervisor=max_per_supervisor,
                priority_enabled=priority_enabled,
                dry_run=dry_run,
            )

        return self._run(
            "auto_assign",
            work,
            institution_id=institution_id,
            actor_id=actor_id,
            session_id=session_id,
            writes=not dry_run,
            extra={"dry_run": dry_run},
        )

    def rollback_auto_post(
        self,
        *,
        institution_id: UUID,
        batch_id: UUID,
        actor_id: UUID,
    ) -> RollbackResult:
        return self._run(
            "rollback_auto_post",
            lambda: self._auto_post.rollback_batch(
                institution_id=institution_id,
                batch_id=batch_id,
                actor_id=actor_id,
            ),
            institution_id=institution_id,
            actor_id=actor_id,
            batch_id=batch_id,
        )

    def auto_post_history(
        self,
        *,
        institution_id: UUID,
        session_id: UUID | None = None,
    ) -> tuple[AutoPostBatchInfo, ...]:
        session = self.resolve_session(institution_id, session_id)
        return self._auto_post.list_batches(institution_id, session.id)

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def summarize_allowances(
        self,
        *,
        institution_id: UUID,
        session_id: UUID | None = None,
    ) -> AllowanceSummary:
        session = self.resolve_session(institution_id, session_id)
        return self._selector.summarize(institution_id, session.id)

    def posting_statistics(
        self,
        *,
        institution_id: UUID,
        session_id: UUID | None = None,
    ) -> PostingStatistics:
        session = self.resolve_session(institution_id, session_id)
        return self._selector.statistics(institution_id, session.id)

    def supervisor_allowance_totals(
        self,
        *,
        institution_id: UUID,
        session_id: UUID | None = None,
    ) -> list[SupervisorAllowanceTotal]:
        session = self.resolve_session(institution_id, session_id)
        return self._selector.supervisor_totals(institution_id, session.id)

    def available_slots(
        self,
        *,
        institution_id: UUID,
        session_id: UUID | None = None,
        route_id: UUID | None = None,
    ) -> list[SchoolSlots]:
        session = self.resolve_session(institution_id, session_id)
        return self._selector.available_slots(
            institution_id,
            session.id,
            session.thresholds.max_visits,
            route_id=route_id,
        )
