"""Auditable pipeline stages wrapping the orchestrator and the store import."""
