"""
Engine settings schema.

YAML files are parsed into these frozen types by ``posting_config.loader``.
The rest of the system only ever sees ``EngineSettings``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class SessionDefaults:
    """
    Values used when an academic session leaves a rule column NULL.

    These mirror the fallbacks institutions have always relied on: 10 km
    inside threshold, DSA off with an 11-30 km band at 50%, 50 postings per
    supervisor, 3 supervision visits.
    """

    inside_distance_threshold_km: Decimal = Decimal("10")
    dsa_enabled: bool = False
    dsa_min_distance_km: Decimal = Decimal("11")
    dsa_max_distance_km: Decimal = Decimal("30")
    dsa_percentage: Decimal = Decimal("50")
    max_postings_per_supervisor: int = 50
    max_supervision_visits: int = 3


@dataclass(frozen=True)
class AutoPostDefaults:
    """Auto-assign knobs not stored on the session."""

    group_number: int = 1
    visit_number: int = 1


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the posting engine."""

    database_url: str = "sqlite:///:memory:"
    echo_sql: bool = False
    log_level: str = "INFO"
    session_defaults: SessionDefaults = field(default_factory=SessionDefaults)
    auto_post: AutoPostDefaults = field(default_factory=AutoPostDefaults)
    checksum: str = ""
