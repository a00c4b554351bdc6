"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow between the reference
    data loader, the allowance engine, the posting services, and the read
    side: rate cards, session thresholds, school/supervisor snapshots,
    allowance breakdowns, posting requests, violations, batch reports, and
    aggregation results.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies.  Models import the enums defined here so that
    stored string values and domain values are the same objects.

Invariants enforced:
    - Money and distance fields are Decimal, never float.
    - A secondary AllowanceBreakdown has every amount equal to zero.
    - OtherAllowance amounts are non-negative and named.
    - GeoPoint latitude in [-90, 90], longitude in [-180, 180].

Failure modes:
    - ValueError on a malformed OtherAllowance, GeoPoint, PostingRequest,
      or a secondary breakdown carrying a non-zero amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ZERO = Decimal("0")


class LocationCategory(str, Enum):
    """Where a school sits relative to the session's inside-distance threshold."""

    INSIDE = "inside"
    OUTSIDE = "outside"


class PostingStatus(str, Enum):
    """Lifecycle of a posting.  ACTIVE -> CANCELLED is one-way."""

    ACTIVE = "active"
    CANCELLED = "cancelled"


class PostingType(str, Enum):
    """How a posting came to exist."""

    SINGLE = "single"
    BULK = "bulk"
    AUTO = "auto"
    MULTI = "multi"
    MERGED = "merged"  # dependent posting for a merged group


class MergedGroupStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AcceptanceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AutoPostBatchStatus(str, Enum):
    """An auto-post run is recorded COMPLETED and may later be ROLLED_BACK."""

    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


class ViolationCode(str, Enum):
    """Machine-readable reasons a posting request is rejected."""

    DUPLICATE_SLOT = "DUPLICATE_SLOT"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"


# =============================================================================
# Reference data
# =============================================================================


@dataclass(frozen=True)
class OtherAllowance:
    """One named extra allowance on a rank's rate card."""

    name: str
    amount: Decimal

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Other allowance name is required")
        if self.amount < ZERO:
            raise ValueError(f"Other allowance '{self.name}' cannot be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OtherAllowance:
        return cls(name=str(data["name"]).strip(), amount=Decimal(str(data["amount"])))

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "amount": str(self.amount)}


@dataclass(frozen=True)
class RankRates:
    """
    Rate card of a supervisor's rank at the moment of posting.

    Contract:
        DSA has no rate of its own; it is a percentage of ``dta_rate``
        set on the session.
    Guarantees:
        - ``other_allowances`` keeps the order in which the rank lists them.
    Non-goals:
        - ``other_allowances`` are informational and never enter a posting's
          allowance total.
    """

    rank_id: UUID | None
    local_running_rate: Decimal = ZERO
    transport_per_km: Decimal = ZERO
    dta_rate: Decimal = ZERO
    tetfund_rate: Decimal = ZERO
    other_allowances: tuple[OtherAllowance, ...] = ()

    @classmethod
    def zero(cls) -> RankRates:
        """Rates for a supervisor without a rank: every amount is zero."""
        return cls(rank_id=None)

    @property
    def other_allowances_total(self) -> Decimal:
        return sum((a.amount for a in self.other_allowances), ZERO)


@dataclass(frozen=True)
class GeoPoint:
    """Coordinates of a school.  Display only; distance_km is authoritative."""

    latitude: Decimal
    longitude: Decimal

    def __post_init__(self) -> None:
        if not Decimal("-90") <= self.latitude <= Decimal("90"):
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not Decimal("-180") <= self.longitude <= Decimal("180"):
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class SessionThresholds:
    """
    Allowance and capacity rules of one academic session.

    The DSA band [dsa_min_km, dsa_max_km] is inclusive at both ends.
    A distance equal to ``inside_threshold_km`` is inside.
    """

    inside_threshold_km: Decimal
    dsa_enabled: bool
    dsa_min_km: Decimal
    dsa_max_km: Decimal
    dsa_percentage: Decimal
    max_postings_per_supervisor: int
    max_visits: int


@dataclass(frozen=True)
class SessionInfo:
    id: UUID
    institution_id: UUID
    name: str
    is_current: bool
    thresholds: SessionThresholds


@dataclass(frozen=True)
class SchoolInfo:
    """An institution's view of a school; ``distance_km`` is per institution."""

    id: UUID
    institution_id: UUID
    name: str
    code: str | None
    route_id: UUID | None
    distance_km: Decimal
    location: GeoPoint | None = None


@dataclass(frozen=True)
class SupervisorInfo:
    id: UUID
    institution_id: UUID
    name: str
    rank_id: UUID | None


# =============================================================================
# Calculation
# =============================================================================


@dataclass(frozen=True)
class AllowanceBreakdown:
    """
    Allowance for one posting.

    Contract:
        Produced by ``AllowanceCalculator.compute``; persisted field by field
        on the posting row.
    Guarantees:
        - ``total`` is the sum of the five amount fields.
        - A secondary breakdown carries zero in every amount field but
          still reports distance and location category.
    """

    distance_km: Decimal
    location_category: LocationCategory
    transport: Decimal = ZERO
    dsa: Decimal = ZERO
    dta: Decimal = ZERO
    local_running: Decimal = ZERO
    tetfund: Decimal = ZERO
    is_secondary: bool = False

    def __post_init__(self) -> None:
        if self.is_secondary and any(
            amount != ZERO
            for amount in (self.transport, self.dsa, self.dta, self.local_running, self.tetfund)
        ):
            raise ValueError("Secondary allowance breakdown must be all zero")

    @property
    def total(self) -> Decimal:
        return self.transport + self.dsa + self.dta + self.local_running + self.tetfund


# =============================================================================
# Posting requests and results
# =============================================================================


@dataclass(frozen=True)
class PostingRequest:
    """One supervisor-to-school assignment request for a group and visit."""

    supervisor_id: UUID
    school_id: UUID
    group_number: int = 1
    visit_number: int = 1
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.group_number < 1:
            raise ValueError(f"group_number must be >= 1, got {self.group_number}")
        if self.visit_number < 1:
            raise ValueError(f"visit_number must be >= 1, got {self.visit_number}")


@dataclass(frozen=True)
class PostingViolation:
    """
    A single business-rule violation.

    Contract:
        Carries a machine-readable code, a human-readable message, and
        optional details (e.g. the supervisor occupying a slot).
    Non-goals:
        - Does NOT raise; it IS the error representation.
    """

    code: ViolationCode
    message: str
    details: dict[str, Any] | None = None


@dataclass(frozen=True)
class PostingInfo:
    """Read-side snapshot of a persisted posting."""

    id: UUID
    institution_id: UUID
    session_id: UUID
    supervisor_id: UUID
    school_id: UUID
    group_number: int
    visit_number: int
    rank_id: UUID | None
    allowance: AllowanceBreakdown
    is_primary: bool
    merged_with_posting_id: UUID | None
    status: PostingStatus
    posting_type: PostingType
    auto_post_batch_id: UUID | None = None
    notes: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == PostingStatus.ACTIVE

    @property
    def location_category(self) -> LocationCategory:
        return self.allowance.location_category

    @property
    def distance_km(self) -> Decimal:
        return self.allowance.distance_km


@dataclass(frozen=True)
class PostingFailure:
    """Why one item of a batch operation was not posted."""

    request: PostingRequest
    code: str
    message: str
    violations: tuple[PostingViolation, ...] = ()


@dataclass(frozen=True)
class PropagationFailure:
    """A merged group whose dependent posting could not be created."""

    primary_posting_id: UUID
    merged_group_id: UUID
    secondary_school_id: UUID
    secondary_group_number: int
    code: str
    message: str


@dataclass(frozen=True)
class PropagationResult:
    """Outcome of propagating one primary posting to its merged groups."""

    primary_posting_id: UUID
    created: tuple[PostingInfo, ...] = ()
    skipped_merged_group_ids: tuple[UUID, ...] = ()
    failures: tuple[PropagationFailure, ...] = ()


@dataclass(frozen=True)
class PostingOutcome:
    """A created primary posting and the dependents created with it."""

    posting: PostingInfo
    dependents: tuple[PostingInfo, ...] = ()
    propagation_failures: tuple[PropagationFailure, ...] = ()


@dataclass(frozen=True)
class BulkPostingResult:
    """
    Per-item report of a best-effort batch.

    Items are reported in input order.  A failure never undoes an earlier
    success in the same batch.
    """

    successful: tuple[PostingOutcome, ...] = ()
    failed: tuple[PostingFailure, ...] = ()

    @property
    def dependent_postings(self) -> tuple[PostingInfo, ...]:
        return tuple(d for outcome in self.successful for d in outcome.dependents)

    @property
    def propagation_failures(self) -> tuple[PropagationFailure, ...]:
        return tuple(f for outcome in self.successful for f in outcome.propagation_failures)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


# =============================================================================
# Auto-assignment
# =============================================================================


@dataclass(frozen=True)
class AutoAssignment:
    """One planned or executed round-robin assignment."""

    supervisor_id: UUID
    supervisor_name: str
    school_id: UUID
    school_name: str
    group_number: int
    visit_number: int
    allowance: AllowanceBreakdown
    posting: PostingInfo | None = None
    dependents: tuple[PostingInfo, ...] = ()


@dataclass(frozen=True)
class AutoAssignSkip:
    school_id: UUID
    school_name: str
    reason: str
    code: str


@dataclass(frozen=True)
class AutoAssignResult:
    """
    Outcome of an auto-assign run.

    ``batch_id`` is None for a dry run; nothing was persisted.
    """

    session_id: UUID
    dry_run: bool
    successful: tuple[AutoAssignment, ...] = ()
    skipped: tuple[AutoAssignSkip, ...] = ()
    batch_id: UUID | None = None
    schools_considered: int = 0
    supervisors_considered: int = 0

    @property
    def total_allowance(self) -> Decimal:
        return sum((a.allowance.total for a in self.successful), ZERO)


@dataclass(frozen=True)
class AutoPostBatchInfo:
    id: UUID
    institution_id: UUID
    session_id: UUID
    status: AutoPostBatchStatus
    criteria: dict[str, Any]
    total_schools: int
    total_supervisors: int
    postings_created: int
    postings_skipped: int


@dataclass(frozen=True)
class RollbackResult:
    batch_id: UUID
    postings_cancelled: int


# =============================================================================
# Aggregation
# =============================================================================


@dataclass(frozen=True)
class AllowanceSummary:
    """
    Session totals over active postings.

    ``tetfund`` counts once per supervisor (the maximum of that supervisor's
    postings); ``grand_total = subtotal + tetfund``.
    """

    session_id: UUID
    total_supervisors: int
    total_postings: int
    primary_postings: int
    merged_postings: int
    transport: Decimal = ZERO
    dsa: Decimal = ZERO
    dta: Decimal = ZERO
    local_running: Decimal = ZERO
    tetfund: Decimal = ZERO

    @property
    def subtotal(self) -> Decimal:
        return self.transport + self.dsa + self.dta + self.local_running

    @property
    def grand_total(self) -> Decimal:
        return self.subtotal + self.tetfund


@dataclass(frozen=True)
class PostingStatistics:
    session_id: UUID
    total_postings: int
    primary_postings: int
    secondary_postings: int
    unique_supervisors: int
    unique_schools: int
    by_location: dict[str, int] = field(default_factory=dict)
    by_visit: dict[int, int] = field(default_factory=dict)
    allowances: AllowanceSummary | None = None

    @property
    def inside_postings(self) -> int:
        return self.by_location.get(LocationCategory.INSIDE.value, 0)

    @property
    def outside_postings(self) -> int:
        return self.by_location.get(LocationCategory.OUTSIDE.value, 0)


@dataclass(frozen=True)
class SupervisorAllowanceTotal:
    """One supervisor's session totals; tetfund counted once."""

    supervisor_id: UUID
    supervisor_name: str
    total_postings: int
    primary_postings: int
    inside_postings: int
    outside_postings: int
    unique_schools: int
    subtotal: Decimal
    tetfund: Decimal

    @property
    def total_allowance(self) -> Decimal:
        return self.subtotal + self.tetfund


@dataclass(frozen=True)
class GroupSlots:
    group_number: int
    assigned_visits: tuple[int, ...]
    available_visits: tuple[int, ...]


@dataclass(frozen=True)
class SchoolSlots:
    """A school's groups that can still take a visit."""

    school_id: UUID
    school_name: str
    distance_km: Decimal
    groups: tuple[GroupSlots, ...]

    @property
    def available_count(self) -> int:
        return sum(len(g.available_visits) for g in self.groups)
