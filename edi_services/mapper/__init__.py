"""Mapper: retailer-specific positional mapping from X12 segments to business fields.

- profiles/*.json: one MappingProfile per (retailer, transaction set)
- rules.py: MappingRule / MappingProfile and their invariants
- registry.py: immutable profile lookup built once at startup
- engine.py: applies a profile to a segment stream
- canonical.py: caller-side coercion of mapped 850 documents into typed orders
"""
