"""
Module: posting_kernel.selectors.posting_selector
Responsibility: Read-only aggregation over persisted postings: the session
    allowance summary, posting statistics, per-supervisor totals, and the
    slots still open for assignment.
Architecture position: Kernel > Selectors.  Reads models only; used by
    PostingOrchestrator and the operator scripts.

Invariants enforced:
    - Only ACTIVE postings are counted anywhere.
    - Transport, DSA, DTA, and local running are summed across postings.
    - Tetfund is counted once per supervisor per session: MAX(tetfund) per
      supervisor, then summed.  Cancelling one eligible posting leaves the
      supervisor's tetfund in place while another eligible posting remains.
    - grand_total = transport + dsa + dta + local_running + deduplicated
      tetfund.
    - Nothing is rounded here; round_money() is applied at presentation.

Failure modes:
    - An empty session yields zero counts and Decimal("0") totals.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, distinct, func, select
from sqlalchemy.orm import Session

from posting_kernel.db.types import to_decimal
from posting_kernel.domain.dtos import (
    AcceptanceStatus,
    AllowanceSummary,
    GroupSlots,
    LocationCategory,
    MergedGroupStatus,
    PostingStatistics,
    PostingStatus,
    SchoolSlots,
    SupervisorAllowanceTotal,
)
from posting_kernel.models.acceptance import StudentAcceptance
from posting_kernel.models.merged_group import MergedGroup
from posting_kernel.models.posting import Posting
from posting_kernel.models.school import InstitutionSchool
from posting_kernel.models.supervisor import Supervisor
from posting_kernel.selectors.base import BaseSelector


def _active(institution_id: UUID, session_id: UUID) -> tuple:
    return (
        Posting.institution_id == institution_id,
        Posting.session_id == session_id,
        Posting.status == PostingStatus.ACTIVE.value,
    )


def _flag_sum(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


class PostingSelector(BaseSelector[Posting]):
    """
    Aggregation queries over postings.

    Contract:
        Every method takes (institution_id, session_id) and returns frozen
        DTOs built from the current rows.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def deduplicated_tetfund(self, institution_id: UUID, session_id: UUID) -> Decimal:
        """Sum over supervisors of each supervisor's highest tetfund."""
        per_supervisor = (
            select(func.max(Posting.tetfund).label("tetfund"))
            .where(*_active(institution_id, session_id))
            .group_by(Posting.supervisor_id)
            .subquery()
        )
        total = self.session.execute(
            select(func.sum(per_supervisor.c.tetfund))
        ).scalar_one()
        return to_decimal(total)

    def summarize(self, institution_id: UUID, session_id: UUID) -> AllowanceSummary:
        """
        Session allowance totals with tetfund counted once per supervisor.

        Args:
            institution_id: Scope.
            session_id: Session to total.

        Returns:
            AllowanceSummary; ``grand_total`` is subtotal plus the
            deduplicated tetfund.
        """
        row = self.session.execute(
            select(
                func.count(Posting.id).label("total_postings"),
                func.count(distinct(Posting.supervisor_id)).label("total_supervisors"),
                _flag_sum(Posting.is_primary.is_(True)).label("primary_postings"),
                func.sum(Posting.transport).label("transport"),
                func.sum(Posting.dsa).label("dsa"),
                func.sum(Posting.dta).label("dta"),
                func.sum(Posting.local_running).label("local_running"),
            ).where(*_active(institution_id, session_id))
        ).one()

        primary = int(row.primary_postings or 0)
        return AllowanceSummary(
            session_id=session_id,
            total_supervisors=row.total_supervisors,
            total_postings=row.total_postings,
            primary_postings=primary,
            merged_postings=row.total_postings - primary,
            transport=to_decimal(row.transport),
            dsa=to_decimal(row.dsa),
            dta=to_decimal(row.dta),
            local_running=to_decimal(row.local_running),
            tetfund=self.deduplicated_tetfund(institution_id, session_id),
        )

    def statistics(self, institution_id: UUID, session_id: UUID) -> PostingStatistics:
        """Counts by primary/secondary, location category, and visit number."""
        active = _active(institution_id, session_id)

        counts = self.session.execute(
            select(
                func.count(Posting.id).label("total"),
                _flag_sum(Posting.is_primary.is_(True)).label("primary"),
                func.count(distinct(Posting.supervisor_id)).label("supervisors"),
                func.count(distinct(Posting.school_id)).label("schools"),
            ).where(*active)
        ).one()

        by_location = {category.value: 0 for category in LocationCategory}
        for category, n in self.session.execute(
            select(Posting.location_category, func.count(Posting.id))
            .where(*active)
            .group_by(Posting.location_category)
        ).all():
            by_location[category] = n

        by_visit = {
            visit: n
            for visit, n in self.session.execute(
                select(Posting.visit_number, func.count(Posting.id))
                .where(*active)
                .group_by(Posting.visit_number)
                .order_by(Posting.visit_number)
            ).all()
        }

        primary = int(counts.primary or 0)
        return PostingStatistics(
            session_id=session_id,
            total_postings=counts.total,
            primary_postings=primary,
            secondary_postings=counts.total - primary,
            unique_supervisors=counts.supervisors,
            unique_schools=counts.schools,
            by_location=by_location,
            by_visit=by_visit,
            allowances=self.summarize(institution_id, session_id),
        )

    def supervisor_totals(
        self,
        institution_id: UUID,
        session_id: UUID,
    ) -> list[SupervisorAllowanceTotal]:
        """Per-supervisor counts and totals, ordered by supervisor name."""
        subtotal = func.sum(
            Posting.transport + Posting.dsa + Posting.dta + Posting.local_running
        ).label("subtotal")

        query = (
            select(
                Posting.supervisor_id,
                Supervisor.name.label("supervisor_name"),
                func.count(Posting.id).label("total_postings"),
                _flag_sum(Posting.is_primary.is_(True)).label("primary_postings"),
                _flag_sum(Posting.location_category == LocationCategory.INSIDE.value).label("inside"),
                _flag_sum(Posting.location_category == LocationCategory.OUTSIDE.value).label("outside"),
                func.count(distinct(Posting.school_id)).label("unique_schools"),
                subtotal,
                func.max(Posting.tetfund).label("tetfund"),
            )
            .join(Supervisor, Supervisor.id == Posting.supervisor_id)
            .where(*_active(institution_id, session_id))
            .group_by(Posting.supervisor_id, Supervisor.name)
            .order_by(Supervisor.name, Posting.supervisor_id)
        )

        return [
            SupervisorAllowanceTotal(
                supervisor_id=row.supervisor_id,
                supervisor_name=row.supervisor_name,
                total_postings=row.total_postings,
                primary_postings=int(row.primary_postings or 0),
                inside_postings=int(row.inside or 0),
                outside_postings=int(row.outside or 0),
                unique_schools=row.unique_schools,
                subtotal=to_decimal(row.subtotal),
                tetfund=to_decimal(row.tetfund),
            )
            for row in self.session.execute(query).all()
        ]

    def available_slots(
        self,
        institution_id: UUID,
        session_id: UUID,
        max_visits: int,
        route_id: UUID | None = None,
    ) -> list[SchoolSlots]:
        """
        Groups that can still take a visit, per school.

        A group exists when it has an approved acceptance.  Groups that are
        the secondary side of an active merge are covered by their primary
        and are left out.  Schools with nothing free are omitted.

        Args:
            institution_id: Scope.
            session_id: Session to inspect.
            max_visits: Visits 1..max_visits are the candidate slots.
            route_id: Only schools on this route.
        """
        groups: dict[UUID, set[int]] = defaultdict(set)
        for school_id, group_number in self.session.execute(
            select(StudentAcceptance.school_id, StudentAcceptance.group_number)
            .where(
                StudentAcceptance.institution_id == institution_id,
                StudentAcceptance.session_id == session_id,
                StudentAcceptance.status == AcceptanceStatus.APPROVED.value,
            )
            .distinct()
        ).all():
            groups[school_id].add(group_number)

        for school_id, group_number in self.session.execute(
            select(MergedGroup.secondary_school_id, MergedGroup.secondary_group_number).where(
                MergedGroup.institution_id == institution_id,
                MergedGroup.session_id == session_id,
                MergedGroup.status == MergedGroupStatus.ACTIVE.value,
            )
        ).all():
            groups.get(school_id, set()).discard(group_number)

        assigned: dict[tuple[UUID, int], set[int]] = defaultdict(set)
        for school_id, group_number, visit_number in self.session.execute(
            select(Posting.school_id, Posting.group_number, Posting.visit_number).where(
                *_active(institution_id, session_id)
            )
        ).all():
            assigned[(school_id, group_number)].add(visit_number)

        if not groups:
            return []

        query = (
            select(InstitutionSchool)
            .where(
                InstitutionSchool.institution_id == institution_id,
                InstitutionSchool.is_active.is_(True),
                InstitutionSchool.id.in_(list(groups)),
            )
            .order_by(InstitutionSchool.distance_km, InstitutionSchool.name)
        )
        if route_id is not None:
            query = query.where(InstitutionSchool.route_id == route_id)

        visits = range(1, max_visits + 1)
        result: list[SchoolSlots] = []
        for school in self.session.execute(query).scalars():
            slots = []
            for group_number in sorted(groups[school.id]):
                taken = assigned.get((school.id, group_number), set())
                free = tuple(v for v in visits if v not in taken)
                if free:
                    slots.append(
                        GroupSlots(
                            group_number=group_number,
                            assigned_visits=tuple(sorted(taken)),
                            available_visits=free,
                        )
                    )
            if slots:
                result.append(
                    SchoolSlots(
                        school_id=school.id,
                        school_name=school.name,
                        distance_km=school.distance_km,
                        groups=tuple(slots),
                    )
                )
        return result
