"""
Job queue for background processing.

This package provides:
- A durable queue table with lease-based claiming
- Registry-based pluggable handlers
- Exponential backoff retries and a dead-letter state
- A worker that runs handlers, records outcomes and writes heartbeats
"""
