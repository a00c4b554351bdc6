"""
Base class for the kernel's write services.

A service works inside the caller's transaction: it adds rows, flushes,
and opens SAVEPOINTs (``session.begin_nested()``) to isolate one item of a
batch.  It never commits or rolls back the outer transaction; that belongs
to PostingOrchestrator or a ``session_scope()`` block.  A service that
committed would make an earlier batch item impossible to keep when a later
one fails.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from posting_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the caller's Session.  ``ModelType`` is the table the service owns."""

    def __init__(self, session: Session):
        self.session = session
