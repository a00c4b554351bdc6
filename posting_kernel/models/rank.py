"""
Module: posting_kernel.models.rank
Responsibility: ORM persistence for a rank's allowance rate card.
Architecture position: Kernel > Models.  Reference data owned by the
    institution administration; read-only to the posting engine.

Invariants enforced:
    - Rates are Decimal (Numeric(38, 9)), never float.
    - other_allowances is stored as a JSON list of {"name", "amount"} objects
      and only ever read back through ``typed_other_allowances()``.
"""

from decimal import Decimal

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from posting_kernel.db.base import Base, InstitutionScoped
from posting_kernel.domain.dtos import OtherAllowance

# Ranks nobody has prioritised sort after every numbered one
DEFAULT_RANK_PRIORITY = 99


class Rank(InstitutionScoped, Base):
    """
    Per-institution rate card for supervisors of one rank.

    Contract:
        DSA is not a rate on the rank: the session supplies a percentage
        of ``dta_rate``.
    """

    __tablename__ = "ranks"

    __table_args__ = (
        UniqueConstraint("institution_id", "code", name="uq_rank_institution_code"),
        Index("idx_rank_institution", "institution_id"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    local_running_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    transport_per_km: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    dta_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    tetfund_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Auto-posting rotation order when priority is enabled; 1 goes first
    priority_number: Mapped[int] = mapped_column(default=DEFAULT_RANK_PRIORITY, nullable=False)

    other_allowances: Mapped[list | None] = mapped_column(JSON, nullable=True)

    def typed_other_allowances(self) -> tuple[OtherAllowance, ...]:
        """Parse the stored JSON list.  Raises ValueError on a malformed item."""
        return tuple(OtherAllowance.from_dict(item) for item in (self.other_allowances or []))

    def set_other_allowances(self, allowances: list[OtherAllowance]) -> None:
        self.other_allowances = [a.to_dict() for a in allowances]

    def __repr__(self) -> str:
        return f"<Rank {self.code}>"
