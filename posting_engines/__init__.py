"""
Module: posting_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import posting_kernel.domain, posting_kernel.exceptions, and
    posting_kernel.logging_config.  MUST NOT import services or selectors.

Invariants enforced:
    - Decimal-only arithmetic for money and distance.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``posting_engines.tracer``), emitting POSTING_ENGINE_TRACE log records.
"""

from posting_engines.allowance import AllowanceCalculator, classify_location, in_dsa_band
from posting_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AllowanceCalculator",
    "classify_location",
    "compute_input_fingerprint",
    "in_dsa_band",
    "traced_engine",
]
