"""Document lifecycle: RECEIVED -> PARSED -> VALIDATED -> TRANSMITTED -> ACKNOWLEDGED, FAILED from any non-terminal state.

- states.py: status enum, transition table, per-document state
- clock.py: injectable UTC clock
- tracker.py: the only writer of audit records
"""
