#!/usr/bin/env python3
"""
End-to-end posting scenarios against a scratch database.

Seeds one institution (a rank, four supervisors, five schools on two routes,
a current session with DSA enabled, approved groups, and one merged group),
then runs the engine through PostingOrchestrator:

  - single postings inside, in the DSA band, and beyond it
  - merged-group propagation to a secondary school
  - a duplicate slot rejected with the holder's name
  - a best-effort bulk create with one failing item
  - an auto-assign preview, a real run, and its rollback

and prints the session summary.

Usage:
    python3 scripts/demo_postings.py
    python3 scripts/demo_postings.py --db-url sqlite:///demo.db
    python3 scripts/demo_postings.py --verbose     # JSON logs to stderr
"""

from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal
from pathlib import Path
from uuid import UUID, uuid4

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
INSTITUTION_ID = UUID("5b0f3c1e-8a51-4e55-9d3a-2f4a6c1d7e90")
ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")

SCHOOLS = [
    # name, distance km, route
    ("Model Primary School", "5", "north"),
    ("Government Secondary School", "20", "north"),
    ("Community High School", "40", "south"),
    ("Unity College", "25", "south"),
    ("St. Mary's Annex", "22", "north"),
]
SUPERVISORS = ["Adaeze Okafor", "Bello Musa", "Chinedu Eze", "Dami Ade"]


def seed_reference_data(session) -> dict:
    """Insert the demo institution's reference rows; returns their ids."""
    from posting_kernel.domain.dtos import AcceptanceStatus, MergedGroupStatus, OtherAllowance
    from posting_kernel.models import (
        AcademicSession,
        InstitutionSchool,
        MergedGroup,
        Rank,
        StudentAcceptance,
        Supervisor,
    )

    rank = Rank(
        institution_id=INSTITUTION_ID,
        code="SL",
        name="Senior Lecturer",
        local_running_rate=Decimal("2000"),
        transport_per_km=Decimal("50"),
        dta_rate=Decimal("1000"),
        tetfund_rate=Decimal("300"),
    )
    rank.set_other_allowances([OtherAllowance(name="Research", amount=Decimal("150"))])
    session.add(rank)

    academic_session = AcademicSession(
        institution_id=INSTITUTION_ID,
        name="2024/2025",
        is_current=True,
        inside_distance_threshold_km=Decimal("10"),
        dsa_enabled=True,
        dsa_min_distance_km=Decimal("11"),
        dsa_max_distance_km=Decimal("30"),
        dsa_percentage=Decimal("50"),
        max_posting_per_supervisor=3,
        max_supervision_visits=3,
    )
    session.add(academic_session)
    session.flush()

    routes = {"north": uuid4(), "south": uuid4()}
    schools = {}
    for name, distance, route in SCHOOLS:
        school = InstitutionSchool(
            institution_id=INSTITUTION_ID,
            name=name,
            distance_km=Decimal(distance),
            route_id=routes[route],
        )
        session.add(school)
        schools[name] = school

    supervisors = {}
    for name in SUPERVISORS:
        supervisor = Supervisor(institution_id=INSTITUTION_ID, name=name, rank_id=rank.id)
        session.add(supervisor)
        supervisors[name] = supervisor
    session.flush()

    for n, school in enumerate(schools.values()):
        session.add(
            StudentAcceptance(
                institution_id=INSTITUTION_ID,
                session_id=academic_session.id,
                school_id=school.id,
                group_number=1,
                student_ref=f"STU-{n:04d}",
                status=AcceptanceStatus.APPROVED.value,
            )
        )

    session.add(
        MergedGroup(
            institution_id=INSTITUTION_ID,
            session_id=academic_session.id,
            primary_school_id=schools["Government Secondary School"].id,
            primary_group_number=1,
            secondary_school_id=schools["St. Mary's Annex"].id,
            secondary_group_number=1,
            status=MergedGroupStatus.ACTIVE.value,
        )
    )
    session.commit()

    return {
        "session_id": academic_session.id,
        "schools": {name: s.id for name, s in schools.items()},
        "supervisors": {name: s.id for name, s in supervisors.items()},
        "routes": routes,
    }


def run_scenarios(orchestrator, ids: dict) -> None:
    from posting_kernel.domain.dtos import PostingRequest
    from posting_kernel.exceptions import PostingValidationError

    schools = ids["schools"]
    sups = ids["supervisors"]

    def show(label, posting):
        a = posting.allowance
        print(
            f"  {label:<34} {a.location_category.value:<8} transport={a.transport:>10} "
            f"dsa={a.dsa:>8} dta={a.dta:>8} local={a.local_running:>8} "
            f"tetfund={a.tetfund:>6} total={a.total:>10}"
        )

    print()
    print("  SINGLE POSTINGS")
    for supervisor, school in (
        ("Adaeze Okafor", "Model Primary School"),
        ("Adaeze Okafor", "Community High School"),
        ("Bello Musa", "Government Secondary School"),
    ):
        outcome = orchestrator.create_posting(
            institution_id=INSTITUTION_ID,
            request=PostingRequest(supervisor_id=sups[supervisor], school_id=schools[school]),
            actor_id=ACTOR_ID,
        )
        show(f"{supervisor} -> {school}"[:34], outcome.posting)
        for dependent in outcome.dependents:
            show("  merged dependent", dependent)

    print()
    print("  DUPLICATE SLOT")
    try:
        orchestrator.create_posting(
            institution_id=INSTITUTION_ID,
            request=PostingRequest(
                supervisor_id=sups["Chinedu Eze"],
                school_id=schools["Model Primary School"],
            ),
            actor_id=ACTOR_ID,
        )
    except PostingValidationError as exc:
        print(f"  rejected: {exc}")

    print()
    print("  BULK (best effort)")
    bulk = orchestrator.bulk_create_postings(
        institution_id=INSTITUTION_ID,
        requests=[
            PostingRequest(
                supervisor_id=sups["Chinedu Eze"],
                school_id=schools["Unity College"],
                visit_number=2,
            ),
            PostingRequest(
                supervisor_id=sups["Dami Ade"],
                school_id=schools["Unity College"],
                visit_number=2,
            ),
        ],
        actor_id=ACTOR_ID,
    )
    print(f"  succeeded={len(bulk.successful)} failed={len(bulk.failed)}")
    for failure in bulk.failed:
        print(f"  failed [{failure.code}]: {failure.message}")

    print()
    print("  AUTO-ASSIGN")
    preview = orchestrator.auto_assign(
        institution_id=INSTITUTION_ID, actor_id=ACTOR_ID, dry_run=True,
    )
    print(f"  preview: {len(preview.successful)} planned, total {preview.total_allowance}")
    run = orchestrator.auto_assign(institution_id=INSTITUTION_ID, actor_id=ACTOR_ID)
    for item in run.successful:
        print(f"  {item.supervisor_name:<16} -> {item.school_name} (visit {item.visit_number})")
    for skip in run.skipped:
        print(f"  skipped {skip.school_name}: [{skip.code}] {skip.reason}")
    if run.batch_id is not None:
        rollback = orchestrator.rollback_auto_post(
            institution_id=INSTITUTION_ID, batch_id=run.batch_id, actor_id=ACTOR_ID,
        )
        print(f"  rolled back batch, {rollback.postings_cancelled} postings cancelled")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run posting engine scenarios")
    parser.add_argument("--db-url", default="sqlite:///:memory:", help="Scratch database URL")
    parser.add_argument("--verbose", action="store_true", help="Emit JSON logs to stderr")
    args = parser.parse_args()

    from posting_kernel.db.engine import create_tables, drop_tables, get_session, init_engine_from_url
    from posting_kernel.logging_config import configure_logging
    from posting_kernel.services.posting_orchestrator import PostingOrchestrator
    from scripts.posting_summary import print_summary, print_supervisors

    if args.verbose:
        configure_logging(level=logging.INFO)
    else:
        logging.disable(logging.CRITICAL)

    init_engine_from_url(args.db_url)
    drop_tables()
    create_tables()

    session = get_session()
    try:
        ids = seed_reference_data(session)
        orchestrator = PostingOrchestrator(session)
        run_scenarios(orchestrator, ids)

        print_summary(
            orchestrator.summarize_allowances(institution_id=INSTITUTION_ID),
            orchestrator.posting_statistics(institution_id=INSTITUTION_ID),
        )
        print_supervisors(
            orchestrator.supervisor_allowance_totals(institution_id=INSTITUTION_ID)
        )
        print()
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
