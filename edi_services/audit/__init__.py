"""Audit trail: immutable per-transition records, their store, and correlation aggregation."""
