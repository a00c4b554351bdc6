"""
Reference Data Loader - Loads rate cards, schools, supervisors, and session
rules for the pure allowance engine.

Keeps database access out of posting_engines: everything the calculator
needs arrives as a frozen DTO built here.

Every lookup is scoped by institution.  A row that exists but belongs to
another institution is reported as not found.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from posting_config.schema import SessionDefaults
from posting_kernel.domain.dtos import (
    RankRates,
    SchoolInfo,
    SessionInfo,
    SessionThresholds,
    SupervisorInfo,
)
from posting_kernel.exceptions import (
    SchoolNotFoundError,
    SessionNotFoundError,
    SupervisorNotFoundError,
)
from posting_kernel.logging_config import get_logger
from posting_kernel.models.academic_session import AcademicSession
from posting_kernel.models.rank import Rank
from posting_kernel.models.school import InstitutionSchool
from posting_kernel.models.supervisor import Supervisor

logger = get_logger("services.reference_data_loader")


class ReferenceDataLoader:
    """
    Loads reference data from the database for the pure allowance engine.

    Session rule columns left NULL resolve to ``session_defaults``.
    """

    def __init__(self, session: Session, session_defaults: SessionDefaults | None = None):
        self._session = session
        self._defaults = session_defaults or SessionDefaults()

    @property
    def session_defaults(self) -> SessionDefaults:
        return self._defaults

    def load_session(self, institution_id: UUID, session_id: UUID | None = None) -> SessionInfo:
        """
        Load a session, or the institution's current session when
        ``session_id`` is None.

        Several sessions flagged current resolve to the one with the
        greatest name (names are year ranges such as "2024/2025").

        Raises:
            SessionNotFoundError: unknown id, or no current session.
        """
        stmt = select(AcademicSession).where(AcademicSession.institution_id == institution_id)
        if session_id is None:
            stmt = stmt.where(AcademicSession.is_current.is_(True)).order_by(
                AcademicSession.name.desc()
            )
        else:
            stmt = stmt.where(AcademicSession.id == session_id)

        row = self._session.execute(stmt.limit(1)).scalars().first()
        if row is None:
            raise SessionNotFoundError(institution_id, session_id)
        return self.session_info(row)

    def session_info(self, row: AcademicSession) -> SessionInfo:
        return SessionInfo(
            id=row.id,
            institution_id=row.institution_id,
            name=row.name,
            is_current=row.is_current,
            thresholds=self.thresholds_for(row),
        )

    def thresholds_for(self, row: AcademicSession) -> SessionThresholds:
        d = self._defaults
        return SessionThresholds(
            inside_threshold_km=_coalesce(row.inside_distance_threshold_km, d.inside_distance_threshold_km),
            dsa_enabled=_coalesce(row.dsa_enabled, d.dsa_enabled),
            dsa_min_km=_coalesce(row.dsa_min_distance_km, d.dsa_min_distance_km),
            dsa_max_km=_coalesce(row.dsa_max_distance_km, d.dsa_max_distance_km),
            dsa_percentage=_coalesce(row.dsa_percentage, d.dsa_percentage),
            max_postings_per_supervisor=_coalesce(
                row.max_posting_per_supervisor, d.max_postings_per_supervisor
            ),
            max_visits=_coalesce(row.max_supervision_visits, d.max_supervision_visits),
        )

    def load_school(self, institution_id: UUID, school_id: UUID) -> SchoolInfo:
        """Raises SchoolNotFoundError."""
        row = self._session.execute(
            select(InstitutionSchool).where(
                InstitutionSchool.id == school_id,
                InstitutionSchool.institution_id == institution_id,
            )
        ).scalars().first()
        if row is None:
            raise SchoolNotFoundError(school_id)
        return school_info(row)

    def load_supervisor(self, institution_id: UUID, supervisor_id: UUID) -> SupervisorInfo:
        """Raises SupervisorNotFoundError."""
        row = self._session.execute(
            select(Supervisor).where(
                Supervisor.id == supervisor_id,
                Supervisor.institution_id == institution_id,
            )
        ).scalars().first()
        if row is None:
            raise SupervisorNotFoundError(supervisor_id)
        return SupervisorInfo(
            id=row.id,
            institution_id=row.institution_id,
            name=row.name,
            rank_id=row.rank_id,
        )

    def load_rank_rates(self, rank_id: UUID | None) -> RankRates:
        """
        Rate card for ``rank_id``.

        No rank, or a rank that no longer exists, gives zero rates: the
        posting is still allowed and earns nothing.
        """
        if rank_id is None:
            return RankRates.zero()
        rank = self._session.get(Rank, rank_id)
        if rank is None:
            logger.warning("rank_not_found_zero_rates", extra={"rank_id": str(rank_id)})
            return RankRates.zero()
        return RankRates(
            rank_id=rank.id,
            local_running_rate=rank.local_running_rate,
            transport_per_km=rank.transport_per_km,
            dta_rate=rank.dta_rate,
            tetfund_rate=rank.tetfund_rate,
            other_allowances=rank.typed_other_allowances(),
        )


def school_info(row: InstitutionSchool) -> SchoolInfo:
    return SchoolInfo(
        id=row.id,
        institution_id=row.institution_id,
        name=row.name,
        code=row.code,
        route_id=row.route_id,
        distance_km=row.distance_km,
        location=row.location,
    )


def _coalesce(value, default):
    return default if value is None else value
