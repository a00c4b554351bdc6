"""
Posting Kernel

Supervisor posting assignment for teaching-practice programs with:
- Slot uniqueness enforced by the storage layer
- Per-supervisor capacity limits
- Zero-cost dependent postings for merged groups
- Round-robin auto-assignment with rollback
- Allowance aggregation with once-per-supervisor tetfund
"""

__version__ = "0.1.0"
