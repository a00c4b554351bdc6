"""Selectors for the posting kernel (read side)."""

from posting_kernel.selectors.posting_selector import PostingSelector

__all__ = [
    "PostingSelector",
]
