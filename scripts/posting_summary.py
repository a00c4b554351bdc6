#!/usr/bin/env python3
"""
Print the allowance summary and posting statistics of a session.

Connects to an existing database (tables and data must already exist) and
prints session totals, per-supervisor totals, and the open slots.

Usage:
    python3 scripts/posting_summary.py --institution <uuid>
    python3 scripts/posting_summary.py --institution <uuid> --session <uuid> --slots
    python3 scripts/posting_summary.py --db-url postgresql://... --institution <uuid>
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from uuid import UUID

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _money(value) -> str:
    from posting_kernel.db.types import round_money

    return f"{round_money(value):>14,}"


def print_summary(summary, stats) -> None:
    print()
    print("  ALLOWANCE SUMMARY")
    print("  " + "-" * 40)
    print(f"  Supervisors        {summary.total_supervisors:>14}")
    print(f"  Postings           {summary.total_postings:>14}")
    print(f"    primary          {summary.primary_postings:>14}")
    print(f"    merged           {summary.merged_postings:>14}")
    print(f"    inside           {stats.inside_postings:>14}")
    print(f"    outside          {stats.outside_postings:>14}")
    print("  " + "-" * 40)
    print(f"  Transport          {_money(summary.transport)}")
    print(f"  DSA                {_money(summary.dsa)}")
    print(f"  DTA                {_money(summary.dta)}")
    print(f"  Local running      {_money(summary.local_running)}")
    print(f"  Subtotal           {_money(summary.subtotal)}")
    print(f"  Tetfund            {_money(summary.tetfund)}")
    print("  " + "=" * 40)
    print(f"  Grand total        {_money(summary.grand_total)}")
    if stats.by_visit:
        visits = ", ".join(f"visit {v}: {n}" for v, n in sorted(stats.by_visit.items()))
        print(f"  By visit           {visits}")


def print_supervisors(totals) -> None:
    print()
    print("  PER SUPERVISOR")
    print(f"  {'Name':<30} {'Postings':>8} {'Schools':>8} {'Total':>14}")
    for row in totals:
        print(
            f"  {row.supervisor_name[:30]:<30} {row.total_postings:>8} "
            f"{row.unique_schools:>8} {_money(row.total_allowance)}"
        )


def print_slots(slots) -> None:
    print()
    print("  OPEN SLOTS")
    for school in slots:
        groups = "; ".join(
            f"group {g.group_number}: visits {', '.join(str(v) for v in g.available_visits)}"
            for g in school.groups
        )
        print(f"  {school.school_name[:30]:<30} {school.distance_km:>8} km  {groups}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Print a session's posting summary")
    parser.add_argument("--db-url", help="Database URL (default: configured database_url)")
    parser.add_argument("--config", help="Settings YAML (default: posting_config/defaults.yaml)")
    parser.add_argument("--institution", required=True, type=UUID, help="Institution id")
    parser.add_argument("--session", type=UUID, help="Session id (default: current session)")
    parser.add_argument("--slots", action="store_true", help="Also list open slots")
    args = parser.parse_args()

    logging.disable(logging.CRITICAL)

    from posting_config import get_active_settings
    from posting_kernel.db.engine import get_session, init_engine_from_settings
    from posting_kernel.exceptions import PostingKernelError
    from posting_kernel.services.posting_orchestrator import PostingOrchestrator

    settings = get_active_settings(args.config)
    if args.db_url:
        settings = replace(settings, database_url=args.db_url)

    try:
        init_engine_from_settings(settings)
    except Exception as exc:
        print(f"  ERROR: Could not connect: {exc}", file=sys.stderr)
        return 1

    session = get_session()
    try:
        orchestrator = PostingOrchestrator(session, auto_commit=False, settings=settings)
        try:
            summary = orchestrator.summarize_allowances(
                institution_id=args.institution, session_id=args.session,
            )
            stats = orchestrator.posting_statistics(
                institution_id=args.institution, session_id=args.session,
            )
            totals = orchestrator.supervisor_allowance_totals(
                institution_id=args.institution, session_id=args.session,
            )
            slots = (
                orchestrator.available_slots(
                    institution_id=args.institution, session_id=args.session,
                )
                if args.slots
                else []
            )
        except PostingKernelError as exc:
            print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
            return 1

        print_summary(summary, stats)
        print_supervisors(totals)
        if args.slots:
            print_slots(slots)
        print()
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
