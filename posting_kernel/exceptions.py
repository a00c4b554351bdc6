"""
Typed Exception Hierarchy for the Posting Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, batch jobs, operator scripts) decide what to do with a
failure by its TYPE, never by parsing its message:

  1. Every error has a typed exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        orchestrator.create_posting(...)
    except PostingValidationError as e:
        return {"code": e.code, "violations": [v.message for v in e.violations]}
    except SlotConflictError as e:
        # Lost the race for the slot; the caller may retry with another visit
        ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PostingKernelError (base)
    |
    +-- PostingValidationError        business rule violated; never retried
    |   +-- InvalidAllowanceInputError
    |
    +-- NotFoundError                 reference missing in institution scope
    |   +-- SessionNotFoundError
    |   +-- SchoolNotFoundError
    |   +-- SupervisorNotFoundError
    |   +-- PostingNotFoundError
    |   +-- AutoPostBatchNotFoundError
    |
    +-- ConflictError                 storage constraint lost a race
    |   +-- SlotConflictError
    |
    +-- PropagationError              one dependent posting failed
    |
    +-- PostingStateError             lifecycle transition not allowed
        +-- PostingAlreadyCancelledError
        +-- InvalidPostingUpdateError
        +-- AutoPostBatchStateError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|--------------------------------------
Validation   | POSTING_VALIDATION_FAILED   | Duplicate slot, capacity, no group
             | INVALID_ALLOWANCE_INPUT     | Negative distance/rate, bad DSA band
-------------|-----------------------------|--------------------------------------
Not found    | SESSION_NOT_FOUND           | Session id unknown / no current session
             | SCHOOL_NOT_FOUND            | School id unknown in institution
             | SUPERVISOR_NOT_FOUND        | Supervisor id unknown in institution
             | POSTING_NOT_FOUND           | Posting id unknown in institution
             | AUTO_POST_BATCH_NOT_FOUND   | Batch id unknown in institution
-------------|-----------------------------|--------------------------------------
Conflict     | SLOT_CONFLICT               | Unique slot index rejected the write
-------------|-----------------------------|--------------------------------------
Propagation  | PROPAGATION_FAILED          | Dependent posting could not be created
-------------|-----------------------------|--------------------------------------
State        | POSTING_ALREADY_CANCELLED   | Mutating a cancelled posting
             | INVALID_POSTING_UPDATE      | Update with nothing to change
             | AUTO_POST_BATCH_STATE       | Rolling back a non-completed batch

===============================================================================
DESIGN DECISIONS
===============================================================================

1. PostingValidationError carries ALL violations found, not just the first,
   so a caller can show every problem at once.

2. SlotConflictError is NOT a PostingValidationError.  The pre-check passed;
   another writer won.  Retrying may succeed, retrying a validation failure
   never will.

3. PropagationError is never raised out of a primary create.  The primary
   posting stands; the error is collected into the result report.
===============================================================================
"""

from typing import Any
from uuid import UUID


class PostingKernelError(Exception):
    """
    Base exception for all posting kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "POSTING_KERNEL_ERROR"


# Validation


class PostingValidationError(PostingKernelError):
    """
    One or more business rules reject the posting.

    ``violations`` is the full tuple of ``PostingViolation`` DTOs.
    """

    code: str = "POSTING_VALIDATION_FAILED"

    def __init__(self, violations: tuple[Any, ...], message: str | None = None):
        self.violations = tuple(violations)
        if message is None:
            message = "; ".join(v.message for v in self.violations) or "Posting rejected"
        super().__init__(message)

    @property
    def violation_codes(self) -> tuple[str, ...]:
        return tuple(v.code.value for v in self.violations)


class InvalidAllowanceInputError(PostingValidationError):
    """A distance, rate, or session threshold is malformed."""

    code: str = "INVALID_ALLOWANCE_INPUT"

    def __init__(self, field_name: str, value: Any, reason: str):
        self.field_name = field_name
        self.value = value
        self.reason = reason
        super().__init__((), f"Invalid {field_name}={value}: {reason}")


# Not found


class NotFoundError(PostingKernelError):
    """Base exception for references missing within the institution scope."""

    code: str = "NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    """Academic session not found (or no current session configured)."""

    code: str = "SESSION_NOT_FOUND"

    def __init__(self, institution_id: UUID, session_id: UUID | None = None):
        self.institution_id = institution_id
        self.session_id = session_id
        if session_id is None:
            msg = f"No current academic session for institution {institution_id}"
        else:
            msg = f"Academic session not found: {session_id}"
        super().__init__(msg)


class SchoolNotFoundError(NotFoundError):
    """School not linked to the institution."""

    code: str = "SCHOOL_NOT_FOUND"

    def __init__(self, school_id: UUID):
        self.school_id = school_id
        super().__init__(f"School not found: {school_id}")


class SupervisorNotFoundError(NotFoundError):
    """Supervisor not found in the institution."""

    code: str = "SUPERVISOR_NOT_FOUND"

    def __init__(self, supervisor_id: UUID):
        self.supervisor_id = supervisor_id
        super().__init__(f"Supervisor not found: {supervisor_id}")


class PostingNotFoundError(NotFoundError):
    """Posting not found in the institution."""

    code: str = "POSTING_NOT_FOUND"

    def __init__(self, posting_id: UUID):
        self.posting_id = posting_id
        super().__init__(f"Posting not found: {posting_id}")


class AutoPostBatchNotFoundError(NotFoundError):
    """Auto-post batch not found in the institution."""

    code: str = "AUTO_POST_BATCH_NOT_FOUND"

    def __init__(self, batch_id: UUID):
        self.batch_id = batch_id
        super().__init__(f"Auto-post batch not found: {batch_id}")


# Conflict


class ConflictError(PostingKernelError):
    """Base exception for write races lost at the storage layer."""

    code: str = "CONFLICT"


class SlotConflictError(ConflictError):
    """
    The slot was taken between validation and persistence.

    Raised when the unique active-slot index rejects an INSERT, or an
    UPDATE of visit_number.  Callers may retry.
    """

    code: str = "SLOT_CONFLICT"

    def __init__(
        self,
        school_id: UUID,
        group_number: int,
        visit_number: int,
        session_id: UUID,
    ):
        self.school_id = school_id
        self.group_number = group_number
        self.visit_number = visit_number
        self.session_id = session_id
        super().__init__(
            f"Slot already taken: school {school_id}, group {group_number}, "
            f"visit {visit_number}"
        )


# Propagation


class PropagationError(PostingKernelError):
    """A dependent posting for a merged group could not be created."""

    code: str = "PROPAGATION_FAILED"

    def __init__(
        self,
        primary_posting_id: UUID,
        merged_group_id: UUID,
        reason: str,
    ):
        self.primary_posting_id = primary_posting_id
        self.merged_group_id = merged_group_id
        self.reason = reason
        super().__init__(
            f"Dependent posting for merge {merged_group_id} of posting "
            f"{primary_posting_id} failed: {reason}"
        )


# State


class PostingStateError(PostingKernelError):
    """Base exception for disallowed lifecycle transitions."""

    code: str = "POSTING_STATE_ERROR"


class PostingAlreadyCancelledError(PostingStateError):
    """Cancelled postings are terminal; only notes may change."""

    code: str = "POSTING_ALREADY_CANCELLED"

    def __init__(self, posting_id: UUID, attempted: str = "cancel"):
        self.posting_id = posting_id
        self.attempted = attempted
        super().__init__(f"Posting {posting_id} is cancelled; cannot {attempted}")


class InvalidPostingUpdateError(PostingStateError):
    """Update request carries no change or an unsupported status."""

    code: str = "INVALID_POSTING_UPDATE"

    def __init__(self, posting_id: UUID, reason: str):
        self.posting_id = posting_id
        self.reason = reason
        super().__init__(f"Invalid update for posting {posting_id}: {reason}")


class AutoPostBatchStateError(PostingStateError):
    """Only completed batches can be rolled back."""

    code: str = "AUTO_POST_BATCH_STATE"

    def __init__(self, batch_id: UUID, status: str):
        self.batch_id = batch_id
        self.status = status
        super().__init__(f"Auto-post batch {batch_id} is {status}; cannot roll back")
