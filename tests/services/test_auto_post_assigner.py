"""
Tests for AutoPostAssigner.

Covers:
- Round-robin over the supervisor pool, schools closest first
- Load-balanced supervisor ordering (fewest postings, then name)
- Capacity re-checked on every assignment
- School pool eligibility (approved groups, max visits, merges, route)
- Run cap bounded by the session cap
- Rank priority ordering
- Dry run preview
- Batch record, history, and rollback
"""

from collections import Counter
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from posting_kernel.domain.dtos import (
    AutoPostBatchStatus,
    PostingRequest,
    PostingStatus,
    PostingType,
)
from posting_kernel.exceptions import AutoPostBatchNotFoundError, AutoPostBatchStateError
from posting_kernel.models import AutoPostBatch, Posting
from posting_kernel.services.auto_post_assigner import SKIP_NO_CAPACITY


def _posting_count(session) -> int:
    return session.execute(select(func.count(Posting.id))).scalar_one()


@pytest.fixture
def three_supervisors(make_supervisor):
    # Created out of name order; the pool sorts by name on ties
    return {
        name: make_supervisor(name)
        for name in ("Chinedu Eze", "Adaeze Okafor", "Bello Musa")
    }


class TestRoundRobin:

    def test_closest_schools_first_rotating_supervisors(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        schools = {d: posted_school(d) for d in ("25", "5", "15", "20", "10")}

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assigned = [(a.school_id, a.supervisor_name) for a in result.successful]
        assert assigned == [
            (schools["5"].id, "Adaeze Okafor"),
            (schools["10"].id, "Bello Musa"),
            (schools["15"].id, "Chinedu Eze"),
            (schools["20"].id, "Adaeze Okafor"),
            (schools["25"].id, "Bello Musa"),
        ]
        assert result.skipped == ()
        assert result.schools_considered == 5
        assert result.supervisors_considered == 3

    def test_assignments_are_visit_one_group_one_auto_postings(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        posted_school("20")

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assignment = result.successful[0]
        assert (assignment.group_number, assignment.visit_number) == (1, 1)
        assert assignment.posting.posting_type == PostingType.AUTO
        assert assignment.posting.auto_post_batch_id == result.batch_id
        assert assignment.allowance.total == Decimal("1800")

    def test_least_loaded_supervisor_goes_first(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        route = uuid4()
        busy = three_supervisors["Adaeze Okafor"]
        orchestrator.create_posting(
            institution_id=institution_id,
            request=PostingRequest(supervisor_id=busy.id, school_id=posted_school("50").id),
            actor_id=test_actor_id,
        )
        for d in ("5", "10", "15"):
            posted_school(d, route_id=route)

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, route_id=route,
        )

        assert [a.supervisor_name for a in result.successful] == [
            "Bello Musa",
            "Chinedu Eze",
            "Adaeze Okafor",
        ]


class TestCapacity:

    def test_supervisor_leaves_rotation_at_cap(
        self, orchestrator, institution_id, make_supervisor, posted_school, test_actor_id,
    ):
        make_supervisor("Adaeze Okafor")
        make_supervisor("Bello Musa")
        for d in ("5", "10", "15", "20", "25"):
            posted_school(d)

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, max_per_supervisor=2,
        )

        per_supervisor = Counter(a.supervisor_id for a in result.successful)
        assert len(result.successful) == 4
        assert max(per_supervisor.values()) == 2
        assert [s.code for s in result.skipped] == [SKIP_NO_CAPACITY]

    def test_existing_postings_count_toward_cap(
        self, orchestrator, institution_id, make_supervisor, posted_school, test_actor_id,
    ):
        route = uuid4()
        adaeze = make_supervisor("Adaeze Okafor")
        make_supervisor("Bello Musa")
        orchestrator.create_posting(
            institution_id=institution_id,
            request=PostingRequest(supervisor_id=adaeze.id, school_id=posted_school("50").id),
            actor_id=test_actor_id,
        )
        for d in ("5", "10", "15"):
            posted_school(d, route_id=route)

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, route_id=route, max_per_supervisor=2,
        )

        per_supervisor = Counter(a.supervisor_name for a in result.successful)
        assert per_supervisor == {"Bello Musa": 2, "Adaeze Okafor": 1}

    def test_session_cap_is_default(
        self, session, orchestrator, institution_id, academic_session, make_supervisor, posted_school, test_actor_id,
    ):
        academic_session.max_posting_per_supervisor = 1
        session.flush()
        make_supervisor("Adaeze Okafor")
        posted_school("5")
        posted_school("10")

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assert len(result.successful) == 1
        assert len(result.skipped) == 1

    def test_run_cap_cannot_exceed_session_cap(
        self, session, orchestrator, institution_id, academic_session, make_supervisor, posted_school, test_actor_id,
    ):
        academic_session.max_posting_per_supervisor = 2
        session.flush()
        make_supervisor("Adaeze Okafor")
        for d in ("5", "10", "15", "20"):
            posted_school(d)

        preview = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, max_per_supervisor=4, dry_run=True,
        )
        real = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, max_per_supervisor=4,
        )

        for result in (preview, real):
            assert len(result.successful) == 2
            assert [s.code for s in result.skipped] == [SKIP_NO_CAPACITY, SKIP_NO_CAPACITY]
        assert [a.school_id for a in preview.successful] == [a.school_id for a in real.successful]
        assert session.get(AutoPostBatch, real.batch_id).criteria["max_per_supervisor"] == 2

    def test_zero_cap_assigns_nothing(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        posted_school("5")

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, max_per_supervisor=0,
        )

        assert result.successful == ()
        assert result.supervisors_considered == 0
        assert result.batch_id is None


class TestRankPriority:

    @pytest.fixture
    def chinedu_outranks(self, session, make_rank, three_supervisors):
        three_supervisors["Chinedu Eze"].rank_id = make_rank(name="Chief Lecturer", priority_number=1).id
        session.flush()
        return three_supervisors

    def test_higher_priority_rank_rotates_first(
        self, orchestrator, institution_id, chinedu_outranks, posted_school, test_actor_id,
    ):
        for d in ("5", "10", "15"):
            posted_school(d)

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, priority_enabled=True,
        )

        assert [a.supervisor_name for a in result.successful] == [
            "Chinedu Eze",
            "Adaeze Okafor",
            "Bello Musa",
        ]
        batch_id = result.batch_id
        history = orchestrator.auto_post_history(institution_id=institution_id)
        assert [b.criteria["priority_enabled"] for b in history if b.id == batch_id] == [True]

    def test_priority_outweighs_load(
        self, orchestrator, institution_id, chinedu_outranks, posted_school, test_actor_id,
    ):
        route = uuid4()
        orchestrator.create_posting(
            institution_id=institution_id,
            request=PostingRequest(
                supervisor_id=chinedu_outranks["Chinedu Eze"].id, school_id=posted_school("50").id,
            ),
            actor_id=test_actor_id,
        )
        posted_school("5", route_id=route)

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, route_id=route, priority_enabled=True,
        )

        assert [a.supervisor_name for a in result.successful] == ["Chinedu Eze"]

    def test_priority_ignored_unless_enabled(
        self, orchestrator, institution_id, chinedu_outranks, posted_school, test_actor_id,
    ):
        posted_school("5")

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assert [a.supervisor_name for a in result.successful] == ["Adaeze Okafor"]


class TestSchoolPool:

    def test_school_without_approved_group_is_not_considered(
        self, orchestrator, institution_id, three_supervisors, posted_school, make_school, test_actor_id,
    ):
        posted_school("20")
        make_school("5")

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assert result.schools_considered == 1

    def test_fully_visited_school_is_not_considered(
        self, orchestrator, institution_id, academic_session, session, three_supervisors,
        posted_school, test_actor_id,
    ):
        academic_session.max_supervision_visits = 1
        session.flush()
        full = posted_school("5")
        orchestrator.create_posting(
            institution_id=institution_id,
            request=PostingRequest(
                supervisor_id=three_supervisors["Bello Musa"].id, school_id=full.id,
            ),
            actor_id=test_actor_id,
        )
        open_school = posted_school("20")

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assert [a.school_id for a in result.successful] == [open_school.id]

    def test_taken_first_visit_is_skipped(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        school = posted_school("5")
        orchestrator.create_posting(
            institution_id=institution_id,
            request=PostingRequest(
                supervisor_id=three_supervisors["Bello Musa"].id, school_id=school.id,
            ),
            actor_id=test_actor_id,
        )

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assert result.successful == ()
        assert [(s.school_id, s.code) for s in result.skipped] == [(school.id, "DUPLICATE_SLOT")]

    def test_merged_secondary_group_is_not_offered(
        self, orchestrator, institution_id, three_supervisors, posted_school, merge_groups, test_actor_id,
    ):
        primary_school = posted_school("25")
        secondary_school = posted_school("15")
        merge_groups(primary_school, secondary_school)

        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assert result.schools_considered == 1
        assert [a.school_id for a in result.successful] == [primary_school.id]
        dependents = result.successful[0].dependents
        assert [(d.school_id, d.is_primary) for d in dependents] == [(secondary_school.id, False)]
        assert dependents[0].allowance.total == Decimal("0")

    def test_route_filter(self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id):
        route = uuid4()
        on_route = posted_school("20", route_id=route)
        posted_school("5", route_id=uuid4())

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, route_id=route,
        )

        assert [a.school_id for a in result.successful] == [on_route.id]

    def test_empty_pool_assigns_nothing(self, orchestrator, institution_id, academic_session, three_supervisors, test_actor_id):
        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        assert result.successful == ()
        assert result.batch_id is None


class TestDryRun:

    def test_preview_writes_nothing(
        self, session, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        posted_school("5")
        posted_school("20")
        posted_school("40")

        preview = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, dry_run=True,
        )

        assert preview.dry_run
        assert preview.batch_id is None
        assert len(preview.successful) == 3
        assert all(a.posting is None for a in preview.successful)
        assert preview.total_allowance == Decimal("2000") + Decimal("1800") + Decimal("3300")
        assert _posting_count(session) == 0
        assert session.execute(select(func.count(AutoPostBatch.id))).scalar_one() == 0

    def test_preview_matches_real_run(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        for d in ("5", "20", "40", "12"):
            posted_school(d)

        preview = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id, dry_run=True)
        real = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        def plan(result):
            return [(a.school_id, a.supervisor_id, a.allowance.total) for a in result.successful]

        assert plan(preview) == plan(real)

    def test_preview_respects_cap(
        self, orchestrator, institution_id, make_supervisor, posted_school, test_actor_id,
    ):
        make_supervisor("Adaeze Okafor")
        posted_school("5")
        posted_school("10")

        preview = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, dry_run=True, max_per_supervisor=1,
        )

        assert len(preview.successful) == 1
        assert [s.code for s in preview.skipped] == [SKIP_NO_CAPACITY]


class TestBatches:

    def test_batch_records_run(
        self, session, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
        deterministic_clock,
    ):
        route = uuid4()
        posted_school("5", route_id=route)

        result = orchestrator.auto_assign(
            institution_id=institution_id, actor_id=test_actor_id, route_id=route, max_per_supervisor=4,
        )

        batch = session.get(AutoPostBatch, result.batch_id)
        assert batch.status == AutoPostBatchStatus.COMPLETED.value
        assert batch.postings_created == 1
        assert batch.postings_skipped == 0
        assert batch.total_schools == 1
        assert batch.total_supervisors == 3
        assert batch.criteria["route_id"] == str(route)
        assert batch.criteria["max_per_supervisor"] == 4
        assert batch.executed_at == deterministic_clock.now()
        assert batch.created_by_id == test_actor_id

    def test_rollback_cancels_postings_and_dependents(
        self, session, orchestrator, institution_id, three_supervisors, posted_school, make_school,
        merge_groups, test_actor_id,
    ):
        primary_school = posted_school("20")
        merge_groups(primary_school, make_school("22"))
        posted_school("40")
        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)
        assert sum(len(a.dependents) for a in result.successful) == 1

        rollback = orchestrator.rollback_auto_post(
            institution_id=institution_id, batch_id=result.batch_id, actor_id=test_actor_id,
        )

        assert rollback.postings_cancelled == 3
        statuses = session.execute(
            select(Posting.status).where(Posting.auto_post_batch_id == result.batch_id)
        ).scalars().all()
        assert set(statuses) == {PostingStatus.CANCELLED.value}
        batch = session.get(AutoPostBatch, result.batch_id)
        assert batch.status == AutoPostBatchStatus.ROLLED_BACK.value
        assert batch.rolled_back_at is not None

    def test_rollback_leaves_manual_postings(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        manual = orchestrator.create_posting(
            institution_id=institution_id,
            request=PostingRequest(
                supervisor_id=three_supervisors["Bello Musa"].id,
                school_id=posted_school("5").id,
                visit_number=2,
            ),
            actor_id=test_actor_id,
        )
        posted_school("20")
        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        orchestrator.rollback_auto_post(
            institution_id=institution_id, batch_id=result.batch_id, actor_id=test_actor_id,
        )

        assert orchestrator.get_posting(institution_id=institution_id, posting_id=manual.posting.id).is_active

    def test_rollback_twice_raises(
        self, session, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
    ):
        posted_school("20")
        result = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)
        orchestrator.rollback_auto_post(
            institution_id=institution_id, batch_id=result.batch_id, actor_id=test_actor_id,
        )

        with pytest.raises(AutoPostBatchStateError):
            orchestrator.rollback_auto_post(
                institution_id=institution_id, batch_id=result.batch_id, actor_id=test_actor_id,
            )

    def test_rollback_unknown_batch(self, orchestrator, institution_id, test_actor_id):
        with pytest.raises(AutoPostBatchNotFoundError):
            orchestrator.rollback_auto_post(
                institution_id=institution_id, batch_id=uuid4(), actor_id=test_actor_id,
            )

    def test_history_newest_first(
        self, orchestrator, institution_id, three_supervisors, posted_school, test_actor_id,
        deterministic_clock,
    ):
        posted_school("5")
        first = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)
        deterministic_clock.advance(60)
        posted_school("10")
        second = orchestrator.auto_assign(institution_id=institution_id, actor_id=test_actor_id)

        history = orchestrator.auto_post_history(institution_id=institution_id)

        assert [b.id for b in history] == [second.batch_id, first.batch_id]
        assert history[0].status == AutoPostBatchStatus.COMPLETED
