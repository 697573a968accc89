"""Application review workflow.

Modules:
- models (statuses, audit rows, transition results)
- claims (claim guard)
- transitions (atomic state changes + audit trail)
- notifications (applicant DMs, welcome announcement)
- tickets (support ticket closure after a decision)
- service (command-level orchestration)
"""
