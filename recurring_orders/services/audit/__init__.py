"""Audit trail sinks."""
