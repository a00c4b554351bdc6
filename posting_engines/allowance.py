"""
Module: posting_engines.allowance
Responsibility:
    Compute the travel and subsistence allowance of one posting from the
    supervisor's rank rates, the school's distance, and the session's
    thresholds.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import posting_kernel domain DTOs, exceptions, and logging.

Invariants enforced:
    - Secondary postings: every amount is zero, whatever the rank or distance.
    - Inside postings (distance <= threshold) earn local running only and are
      never eligible for tetfund.
    - Outside postings inside an enabled DSA band [min, max] (inclusive) earn
      transport + DSA (a percentage of DTA) + tetfund, and no DTA.
    - Other outside postings earn transport + full DTA + tetfund, and no DSA.
    - No rounding.  Amounts keep full Decimal precision; presentation code
      rounds with posting_kernel.db.types.round_money.

Failure modes:
    - InvalidAllowanceInputError on a negative distance or rate, a negative
      inside threshold, a DSA percentage outside [0, 100], or an enabled DSA
      band whose min exceeds its max.

Usage:
    from posting_engines.allowance import AllowanceCalculator

    breakdown = AllowanceCalculator().compute(
        rank=rates,
        distance_km=Decimal("20"),
        thresholds=session.thresholds,
    )
    breakdown.total
"""

from __future__ import annotations

from decimal import Decimal

from posting_engines.tracer import traced_engine
from posting_kernel.domain.dtos import (
    AllowanceBreakdown,
    LocationCategory,
    RankRates,
    SessionThresholds,
)
from posting_kernel.exceptions import InvalidAllowanceInputError
from posting_kernel.logging_config import get_logger

logger = get_logger("engines.allowance")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def classify_location(distance_km: Decimal, inside_threshold_km: Decimal) -> LocationCategory:
    """A distance equal to the threshold is inside."""
    if distance_km <= inside_threshold_km:
        return LocationCategory.INSIDE
    return LocationCategory.OUTSIDE


def in_dsa_band(distance_km: Decimal, thresholds: SessionThresholds) -> bool:
    return (
        thresholds.dsa_enabled
        and thresholds.dsa_min_km <= distance_km <= thresholds.dsa_max_km
    )


class AllowanceCalculator:
    """
    Map (rank rates, distance, session thresholds, secondary flag) to an
    AllowanceBreakdown.

    Contract:
        Pure and deterministic.  Identical inputs always give an identical
        breakdown.
    Guarantees:
        - ``breakdown.total == transport + dsa + dta + local_running + tetfund``.
        - Exactly one of DSA and DTA can be non-zero.
    Non-goals:
        - Does not look up rates or distances; the ReferenceDataLoader does.
        - Does not deduplicate tetfund across postings; the PostingSelector
          does that when totalling.
        - Does not add a rank's other allowances.
    """

    @traced_engine(
        "allowance",
        "1.0",
        fingerprint_fields=("rank", "distance_km", "thresholds", "is_secondary"),
    )
    def compute(
        self,
        *,
        rank: RankRates,
        distance_km: Decimal,
        thresholds: SessionThresholds,
        is_secondary: bool = False,
    ) -> AllowanceBreakdown:
        """
        Compute the allowance for one posting.

        Args:
            rank: Rate card of the supervisor's rank (RankRates.zero() if none).
            distance_km: Institution-specific distance to the school.
            thresholds: The session's inside/DSA rules.
            is_secondary: True for a dependent posting of a merged group.

        Returns:
            AllowanceBreakdown with unrounded Decimal amounts.
        """
        self._validate(rank, distance_km, thresholds)

        category = classify_location(distance_km, thresholds.inside_threshold_km)

        if is_secondary:
            return AllowanceBreakdown(
                distance_km=distance_km,
                location_category=category,
                is_secondary=True,
            )

        match category:
            case LocationCategory.INSIDE:
                return AllowanceBreakdown(
                    distance_km=distance_km,
                    location_category=category,
                    local_running=rank.local_running_rate,
                )
            case LocationCategory.OUTSIDE:
                transport = rank.transport_per_km * distance_km
                if in_dsa_band(distance_km, thresholds):
                    return AllowanceBreakdown(
                        distance_km=distance_km,
                        location_category=category,
                        transport=transport,
                        dsa=rank.dta_rate * thresholds.dsa_percentage / _HUNDRED,
                        tetfund=rank.tetfund_rate,
                    )
                return AllowanceBreakdown(
                    distance_km=distance_km,
                    location_category=category,
                    transport=transport,
                    dta=rank.dta_rate,
                    tetfund=rank.tetfund_rate,
                )
            case _:
                raise ValueError(f"Unknown location category: {category}")

    def _validate(
        self,
        rank: RankRates,
        distance_km: Decimal,
        thresholds: SessionThresholds,
    ) -> None:
        if distance_km < _ZERO:
            logger.warning("allowance_invalid_input", extra={
                "field": "distance_km",
                "value": str(distance_km),
            })
            raise InvalidAllowanceInputError("distance_km", distance_km, "must not be negative")

        for name in ("local_running_rate", "transport_per_km", "dta_rate", "tetfund_rate"):
            value = getattr(rank, name)
            if value < _ZERO:
                raise InvalidAllowanceInputError(name, value, "rate must not be negative")

        if thresholds.inside_threshold_km < _ZERO:
            raise InvalidAllowanceInputError(
                "inside_threshold_km",
                thresholds.inside_threshold_km,
                "must not be negative",
            )

        if not _ZERO <= thresholds.dsa_percentage <= _HUNDRED:
            raise InvalidAllowanceInputError(
                "dsa_percentage",
                thresholds.dsa_percentage,
                "must be between 0 and 100",
            )

        if thresholds.dsa_enabled and thresholds.dsa_min_km > thresholds.dsa_max_km:
            raise InvalidAllowanceInputError(
                "dsa_min_km",
                thresholds.dsa_min_km,
                f"exceeds dsa_max_km {thresholds.dsa_max_km}",
            )
