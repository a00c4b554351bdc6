"""Services for the posting kernel (write side)."""

from posting_kernel.services.auto_post_assigner import AutoPostAssigner
from posting_kernel.services.merged_group_propagator import MergedGroupPropagator
from posting_kernel.services.posting_orchestrator import PostingOrchestrator
from posting_kernel.services.posting_service import PostingService
from posting_kernel.services.posting_validator import PostingValidator
from posting_kernel.services.posting_writer import PostingWriter
from posting_kernel.services.reference_data_loader import ReferenceDataLoader

__all__ = [
    "AutoPostAssigner",
    "MergedGroupPropagator",
    "PostingOrchestrator",
    "PostingService",
    "PostingValidator",
    "PostingWriter",
    "ReferenceDataLoader",
]
