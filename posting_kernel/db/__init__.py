"""Database layer - engine, base classes, and column types."""

from posting_kernel.db.base import UUID, Base, InstitutionScoped, TrackedBase, UUIDString
from posting_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_settings,
    init_engine_from_url,
    session_scope,
)
from posting_kernel.db.types import round_money, to_decimal

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_settings",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "InstitutionScoped",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "round_money",
    "to_decimal",
]
