"""
Background job queue for the wholesale VoIP admin platform.

This package provides:
- A store contract with durable (SQL) and in-process backends
- Registry-based pluggable handlers keyed by job type
- A worker with a bounded consumer pool, timeouts and cooperative cancellation
- Stuck job recovery and periodic, lease-guarded scheduling
"""
