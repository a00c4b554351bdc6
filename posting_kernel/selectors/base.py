"""
Module: posting_kernel.selectors.base
Responsibility: Common base for read-only query classes.
Architecture position: Kernel > Selectors.  Imports db/, models/, and the
    frozen DTOs of domain/; never services/.

Invariants enforced:
    - A selector only SELECTs: no add, delete, flush, or commit.
    - Results are frozen DTOs, never ORM rows, so callers cannot write
      through them.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from posting_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Runs queries on a Session owned by the caller."""

    def __init__(self, session: Session):
        self.session = session
