"""Typed errors for the EDI pipeline.

Every error carries a machine-readable ``code`` plus the structured fields the
audit trail and the HTTP layer need, so callers catch by type rather than by
message text.

    EdiError
    +-- ProfileNotFound          PROFILE_NOT_FOUND
    +-- InvalidProfile           INVALID_PROFILE
    +-- MalformedSegment         MALFORMED_SEGMENT
    +-- InvalidTransition        INVALID_TRANSITION
    +-- DocumentValidationError  VALIDATION_FAILED
    +-- TransmissionError        TRANSMISSION_FAILED
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence


class EdiError(Exception):
    code: str = "EDI_ERROR"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class ProfileNotFound(EdiError):
    code = "PROFILE_NOT_FOUND"

    def __init__(self, retailer_id: str, transaction_set_code: str):
        self.retailer_id = retailer_id
        self.transaction_set_code = transaction_set_code
        super().__init__(
            f"No mapping profile found for retailer '{retailer_id}' and transaction '{transaction_set_code}'. "
            f"Add {retailer_id.lower()}-{transaction_set_code}.json to the mappings directory and restart."
        )


class InvalidProfile(EdiError):
    code = "INVALID_PROFILE"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid mapping profile '{source}': {reason}")


class MalformedSegment(EdiError):
    code = "MALFORMED_SEGMENT"

    def __init__(self, message: str, segment_id: str, line_number: int = 0):
        self.segment_id = segment_id
        self.line_number = line_number
        self.detail = message
        super().__init__(f"[Line {line_number} | Segment: {segment_id}] {message}")


class InvalidTransition(EdiError):
    """Raised when a lifecycle write does not match the document's current state.

    Losing a race for the same correlation id ends here too; nothing is written
    to the audit trail for it.
    """

    code = "INVALID_TRANSITION"

    def __init__(self, correlation_id: str, from_expected: Any, to_state: Any, actual: Any = None):
        self.correlation_id = correlation_id
        self.from_expected = from_expected
        self.to_state = to_state
        self.actual = actual
        actual_str = _state_name(actual) if actual is not None else "<none>"
        super().__init__(
            f"Invalid transition for {correlation_id}: {_state_name(from_expected)} -> {_state_name(to_state)} "
            f"(current state: {actual_str})"
        )


class DocumentValidationError(EdiError):
    code = "VALIDATION_FAILED"

    def __init__(self, errors: Sequence[Any]):
        self.errors: List[Any] = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors) or "validation failed")


class TransmissionError(EdiError):
    code = "TRANSMISSION_FAILED"

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


def _state_name(state: Any) -> str:
    return getattr(state, "value", str(state))
