"""
Tests for PostingService.

Covers:
- The create pipeline: validation, pricing, persistence of the rank snapshot
- Rejections leave no row behind
- Institution scoping of every lookup
- Cancel (one-way, no cascade) and update (visit, notes, status)
- Clearing a session's postings by supervisor or route
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from posting_kernel.domain.dtos import (
    LocationCategory,
    PostingRequest,
    PostingStatus,
    PostingType,
    ViolationCode,
)
from posting_kernel.exceptions import (
    InvalidPostingUpdateError,
    PostingAlreadyCancelledError,
    PostingNotFoundError,
    PostingValidationError,
    SchoolNotFoundError,
    SupervisorNotFoundError,
)
from posting_kernel.models import Posting


def _count_postings(session) -> int:
    return session.execute(select(func.count(Posting.id))).scalar_one()


@pytest.fixture
def create(posting_service, institution_id, session_info, test_actor_id):
    """Create a posting through the service with the suite's defaults."""

    def _create(supervisor, school, **request_fields):
        return posting_service.create_posting(
            institution_id=institution_id,
            session=session_info,
            request=PostingRequest(supervisor_id=supervisor.id, school_id=school.id, **request_fields),
            actor_id=test_actor_id,
        )

    return _create


class TestCreatePosting:

    def test_inside_posting(self, create, supervisor, posted_school):
        outcome = create(supervisor, posted_school("5"))

        posting = outcome.posting
        assert posting.is_primary
        assert posting.status == PostingStatus.ACTIVE
        assert posting.location_category == LocationCategory.INSIDE
        assert posting.allowance.local_running == Decimal("2000")
        assert posting.allowance.total == Decimal("2000")
        assert outcome.dependents == ()

    def test_dsa_band_posting(self, create, supervisor, posted_school):
        posting = create(supervisor, posted_school("20")).posting

        assert posting.allowance.transport == Decimal("1000")
        assert posting.allowance.dsa == Decimal("500")
        assert posting.allowance.dta == 0
        assert posting.allowance.tetfund == Decimal("300")
        assert posting.allowance.total == Decimal("1800")

    def test_full_dta_posting(self, create, supervisor, posted_school):
        posting = create(supervisor, posted_school("40")).posting

        assert posting.allowance.total == Decimal("3300")

    def test_row_keeps_rank_snapshot_and_audit_fields(
        self, session, create, supervisor, rank, posted_school, test_actor_id,
    ):
        outcome = create(supervisor, posted_school("40"), notes="first visit")

        row = session.get(Posting, outcome.posting.id)
        assert row.rank_id == rank.id
        assert row.distance_km == Decimal("40")
        assert row.location_category == LocationCategory.OUTSIDE.value
        assert row.posting_type == PostingType.SINGLE.value
        assert row.created_by_id == test_actor_id
        assert row.notes == "first visit"

    def test_supervisor_without_rank_gets_zero_allowance(self, create, make_supervisor, posted_school):
        unranked = make_supervisor("No Rank", rank_id=None)

        posting = create(unranked, posted_school("40")).posting

        assert posting.rank_id is None
        assert posting.allowance.total == 0
        assert posting.location_category == LocationCategory.OUTSIDE

    def test_later_rate_change_does_not_touch_existing_posting(
        self, session, create, supervisor, rank, posted_school,
    ):
        outcome = create(supervisor, posted_school("40"))
        rank.dta_rate = Decimal("5000")
        session.flush()

        row = session.get(Posting, outcome.posting.id)
        assert row.dta == Decimal("1000")


class TestCreateRejections:

    def test_duplicate_slot_raises_and_writes_nothing(self, session, create, supervisor, make_supervisor, posted_school):
        school = posted_school()
        create(supervisor, school)
        before = _count_postings(session)

        with pytest.raises(PostingValidationError) as exc_info:
            create(make_supervisor("Bello Musa"), school)

        assert exc_info.value.violation_codes == (ViolationCode.DUPLICATE_SLOT.value,)
        assert _count_postings(session) == before

    def test_missing_group_raises(self, create, supervisor, make_school):
        with pytest.raises(PostingValidationError) as exc_info:
            create(supervisor, make_school())

        assert exc_info.value.violation_codes == (ViolationCode.GROUP_NOT_FOUND.value,)

    def test_validation_failure_is_logged(self, create, supervisor, make_school, captured_logs):
        with pytest.raises(PostingValidationError):
            create(supervisor, make_school())

        failures = [r for r in captured_logs() if r["message"] == "posting_validation_failed"]
        assert failures
        assert failures[0]["level"] == "WARNING"
        assert failures[0]["violation_codes"] == ["GROUP_NOT_FOUND"]

    def test_supervisor_of_other_institution_not_found(
        self, create, make_supervisor, posted_school,
    ):
        outsider = make_supervisor("Outsider", institution_id=uuid4())

        with pytest.raises(SupervisorNotFoundError):
            create(outsider, posted_school())

    def test_school_of_other_institution_not_found(self, create, supervisor, make_school):
        foreign = make_school(institution_id=uuid4())

        with pytest.raises(SchoolNotFoundError):
            create(supervisor, foreign)


class TestCancelPosting:

    def test_cancel_flips_status(
        self, session, posting_service, create, supervisor, posted_school,
        institution_id, test_actor_id, deterministic_clock,
    ):
        outcome = create(supervisor, posted_school())

        cancelled = posting_service.cancel_posting(
            institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id,
        )

        assert cancelled.status == PostingStatus.CANCELLED
        row = session.get(Posting, outcome.posting.id)
        assert row.cancelled_at == deterministic_clock.now()
        assert row.updated_by_id == test_actor_id

    def test_cancel_twice_raises(self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id):
        outcome = create(supervisor, posted_school())
        posting_service.cancel_posting(
            institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id,
        )

        with pytest.raises(PostingAlreadyCancelledError):
            posting_service.cancel_posting(
                institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id,
            )

    def test_cancel_unknown_posting(self, posting_service, institution_id, test_actor_id):
        with pytest.raises(PostingNotFoundError):
            posting_service.cancel_posting(
                institution_id=institution_id, posting_id=uuid4(), actor_id=test_actor_id,
            )

    def test_cancel_is_scoped_to_institution(self, posting_service, create, supervisor, posted_school, test_actor_id):
        outcome = create(supervisor, posted_school())

        with pytest.raises(PostingNotFoundError):
            posting_service.cancel_posting(
                institution_id=uuid4(), posting_id=outcome.posting.id, actor_id=test_actor_id,
            )

    def test_cancel_frees_slot_for_reuse(
        self, posting_service, create, supervisor, make_supervisor, posted_school,
        institution_id, test_actor_id,
    ):
        school = posted_school()
        first = create(supervisor, school)
        posting_service.cancel_posting(
            institution_id=institution_id, posting_id=first.posting.id, actor_id=test_actor_id,
        )

        second = create(make_supervisor("Bello Musa"), school)

        assert second.posting.visit_number == 1
        assert second.posting.is_active


class TestUpdatePosting:

    def test_change_visit(self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id):
        outcome = create(supervisor, posted_school())

        updated = posting_service.update_posting(
            institution_id=institution_id,
            posting_id=outcome.posting.id,
            actor_id=test_actor_id,
            visit_number=2,
        )

        assert updated.visit_number == 2

    def test_change_to_taken_visit_is_rejected(
        self, posting_service, create, supervisor, make_supervisor, posted_school,
        institution_id, test_actor_id,
    ):
        school = posted_school()
        create(make_supervisor("Bello Musa"), school, visit_number=2)
        outcome = create(supervisor, school, visit_number=1)

        with pytest.raises(PostingValidationError) as exc_info:
            posting_service.update_posting(
                institution_id=institution_id,
                posting_id=outcome.posting.id,
                actor_id=test_actor_id,
                visit_number=2,
            )

        assert exc_info.value.violation_codes == (ViolationCode.DUPLICATE_SLOT.value,)
        assert posting_service.get_posting(institution_id, outcome.posting.id).visit_number == 1

    def test_visit_below_one_is_rejected(self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id):
        outcome = create(supervisor, posted_school())

        with pytest.raises(InvalidPostingUpdateError):
            posting_service.update_posting(
                institution_id=institution_id,
                posting_id=outcome.posting.id,
                actor_id=test_actor_id,
                visit_number=0,
            )

    def test_notes_set_and_cleared(self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id):
        outcome = create(supervisor, posted_school(), notes="bring forms")

        kept = posting_service.update_posting(
            institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id, visit_number=2,
        )
        cleared = posting_service.update_posting(
            institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id, notes=None,
        )

        assert kept.notes == "bring forms"
        assert cleared.notes is None

    def test_status_cancelled_cancels(self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id):
        outcome = create(supervisor, posted_school())

        updated = posting_service.update_posting(
            institution_id=institution_id,
            posting_id=outcome.posting.id,
            actor_id=test_actor_id,
            status="cancelled",
        )

        assert updated.status == PostingStatus.CANCELLED

    def test_cancelled_posting_accepts_notes_only(
        self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id,
    ):
        outcome = create(supervisor, posted_school())
        posting_service.cancel_posting(
            institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id,
        )

        noted = posting_service.update_posting(
            institution_id=institution_id,
            posting_id=outcome.posting.id,
            actor_id=test_actor_id,
            notes="supervisor withdrew",
        )
        assert noted.notes == "supervisor withdrew"

        with pytest.raises(PostingAlreadyCancelledError):
            posting_service.update_posting(
                institution_id=institution_id,
                posting_id=outcome.posting.id,
                actor_id=test_actor_id,
                visit_number=2,
            )
        with pytest.raises(PostingAlreadyCancelledError):
            posting_service.update_posting(
                institution_id=institution_id,
                posting_id=outcome.posting.id,
                actor_id=test_actor_id,
                status=PostingStatus.ACTIVE,
            )

    def test_no_fields_is_rejected(self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id):
        outcome = create(supervisor, posted_school())

        with pytest.raises(InvalidPostingUpdateError):
            posting_service.update_posting(
                institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id,
            )

    def test_unknown_status_is_rejected(self, posting_service, create, supervisor, posted_school, institution_id, test_actor_id):
        outcome = create(supervisor, posted_school())

        with pytest.raises(InvalidPostingUpdateError):
            posting_service.update_posting(
                institution_id=institution_id,
                posting_id=outcome.posting.id,
                actor_id=test_actor_id,
                status="archived",
            )


class TestClearPostings:

    def test_clear_by_supervisor(
        self, posting_service, create, supervisor, make_supervisor, posted_school,
        institution_id, session_info, test_actor_id,
    ):
        other = make_supervisor("Bello Musa")
        create(supervisor, posted_school())
        create(supervisor, posted_school())
        kept = create(other, posted_school())

        cleared = posting_service.clear_postings(
            institution_id=institution_id,
            session_id=session_info.id,
            actor_id=test_actor_id,
            supervisor_id=supervisor.id,
        )

        assert cleared == 2
        assert posting_service.get_posting(institution_id, kept.posting.id).is_active

    def test_clear_by_route(
        self, posting_service, create, supervisor, posted_school,
        institution_id, session_info, test_actor_id,
    ):
        north = uuid4()
        on_route = create(supervisor, posted_school(route_id=north))
        off_route = create(supervisor, posted_school(route_id=uuid4()))

        cleared = posting_service.clear_postings(
            institution_id=institution_id,
            session_id=session_info.id,
            actor_id=test_actor_id,
            route_id=north,
        )

        assert cleared == 1
        assert not posting_service.get_posting(institution_id, on_route.posting.id).is_active
        assert posting_service.get_posting(institution_id, off_route.posting.id).is_active

    def test_clear_skips_cancelled(
        self, posting_service, create, supervisor, posted_school,
        institution_id, session_info, test_actor_id,
    ):
        outcome = create(supervisor, posted_school())
        posting_service.cancel_posting(
            institution_id=institution_id, posting_id=outcome.posting.id, actor_id=test_actor_id,
        )

        assert posting_service.clear_postings(
            institution_id=institution_id, session_id=session_info.id, actor_id=test_actor_id,
        ) == 0
