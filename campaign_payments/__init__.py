"""
Campaign Payments - batch payment orchestration.

Drives campaigns of independent payment attempts (bulk payouts, split
payments, scheduled payments) against an unreliable gateway:
1. Per-item execution with error isolation
2. Atomic aggregate tracking through optimistic concurrency
3. Partial success and retry of the failed subset
4. Time-driven transitions (due dates, expiry, retention)
"""

__version__ = "0.1.0"
