"""
Durable job queue and external batch reconciliation.

This package provides:
- A single ``jobs`` table that is the queue, claimed with SKIP LOCKED
- Registry-based handlers with payload schemas validated at enqueue
- Lease-checked releases, stale-lease recovery and exponential backoff
- Two-phase batch jobs: external submission, then reconciliation
"""
