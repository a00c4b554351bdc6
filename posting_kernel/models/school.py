"""
Module: posting_kernel.models.school
Responsibility: ORM persistence for an institution's link to a school.
Architecture position: Kernel > Models.  Reference data; read-only to the
    posting engine.

Invariants enforced:
    - distance_km on this row is authoritative for allowance calculation.
      The same physical school may sit at different distances from
      different institutions.
    - latitude/longitude are display data only.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from posting_kernel.db.base import Base, InstitutionScoped, UUIDString
from posting_kernel.domain.dtos import GeoPoint


class InstitutionSchool(InstitutionScoped, Base):
    """A school as seen by one institution, with its distance and route."""

    __tablename__ = "institution_schools"

    __table_args__ = (
        Index("idx_school_institution", "institution_id"),
        Index("idx_school_route", "institution_id", "route_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    route_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    distance_km: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)

    longitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def location(self) -> GeoPoint | None:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)

    def __repr__(self) -> str:
        return f"<InstitutionSchool {self.name} {self.distance_km}km>"
