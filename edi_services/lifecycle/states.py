from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional


class DocumentStatus(str, Enum):
    RECEIVED = "RECEIVED"
    PARSED = "PARSED"
    VALIDATED = "VALIDATED"
    TRANSMITTED = "TRANSMITTED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    FAILED = "FAILED"

    @property
    def allowed_next(self) -> FrozenSet["DocumentStatus"]:
        return VALID_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self]

    def can_transition_to(self, other: "DocumentStatus") -> bool:
        return other in VALID_TRANSITIONS[self]

    @classmethod
    def parse(cls, value: str) -> "DocumentStatus":
        return cls(value.strip().upper())


VALID_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.RECEIVED: frozenset({DocumentStatus.PARSED, DocumentStatus.FAILED}),
    DocumentStatus.PARSED: frozenset({DocumentStatus.VALIDATED, DocumentStatus.FAILED}),
    DocumentStatus.VALIDATED: frozenset({DocumentStatus.TRANSMITTED, DocumentStatus.FAILED}),
    DocumentStatus.TRANSMITTED: frozenset({DocumentStatus.ACKNOWLEDGED, DocumentStatus.FAILED}),
    # Terminal
    DocumentStatus.ACKNOWLEDGED: frozenset(),
    DocumentStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class DocumentState:
    """Where one correlation id currently stands, derived from its latest audit record."""

    correlation_id: str
    status: DocumentStatus
    retailer_id: str
    updated_at: datetime
    transaction_set_code: Optional[str] = None
    po_number: Optional[str] = None
    source_file_path: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def dead_lettered(self) -> bool:
        return self.status is DocumentStatus.FAILED
