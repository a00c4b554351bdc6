"""ORM models for the posting kernel."""

from posting_kernel.models.academic_session import AcademicSession
from posting_kernel.models.acceptance import StudentAcceptance
from posting_kernel.models.auto_post_batch import AutoPostBatch
from posting_kernel.models.merged_group import MergedGroup
from posting_kernel.models.posting import ACTIVE_SLOT_INDEX, Posting
from posting_kernel.models.rank import Rank
from posting_kernel.models.school import InstitutionSchool
from posting_kernel.models.supervisor import Supervisor

__all__ = [
    "ACTIVE_SLOT_INDEX",
    "AcademicSession",
    "AutoPostBatch",
    "InstitutionSchool",
    "MergedGroup",
    "Posting",
    "Rank",
    "StudentAcceptance",
    "Supervisor",
]
