from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional
import threading
import uuid

from edi_services.config.logging_config import get_logger
from edi_services.exports.reports import dead_letter_report

logger = get_logger("deadletter")


@dataclass(frozen=True)
class DeadLetterEntry:
    id: str
    correlation_id: str
    retailer_id: str
    file_name: Optional[str]
    original_content: str = field(repr=False)
    error_report: str = field(repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self, include_content: bool = False) -> Dict[str, object]:
        d: Dict[str, object] = {
            "id": self.id,
            "correlationId": self.correlation_id,
            "retailerId": self.retailer_id,
            "fileName": self.file_name,
            "createdAt": self.created_at.isoformat(),
        }
        if include_content:
            d["originalContent"] = self.original_content
            d["errorReport"] = self.error_report
        return d


class DeadLetterQueue:
    """Parks the original content of failed documents with an error report.

    Nothing here retries; remediation is a resubmission under a new correlation id.
    """

    def __init__(self, root: Optional[Path] = None):
        self._root = Path(root) if root else None
        self._entries: Dict[str, DeadLetterEntry] = {}
        self._lock = threading.Lock()
        if self._root is not None:
            self._root.mkdir(parents=True, exist_ok=True)

    def quarantine(self, correlation_id: str, retailer_id: str, original_content: Optional[str],
                   file_name: Optional[str], error_message: str,
                   cause: Optional[BaseException] = None) -> Optional[DeadLetterEntry]:
        try:
            now = datetime.now(timezone.utc)
            report = dead_letter_report(
                correlation_id=correlation_id,
                retailer_id=retailer_id,
                file_name=file_name,
                error_message=error_message,
                timestamp=now.isoformat(),
                exc_type=type(cause).__name__ if cause is not None else None,
                exc_message=str(cause) if cause is not None else None,
            )
            entry = DeadLetterEntry(
                id=str(uuid.uuid4()),
                correlation_id=correlation_id,
                retailer_id=(retailer_id or "").upper(),
                file_name=file_name,
                original_content=original_content or "",
                error_report=report,
                created_at=now,
            )
            with self._lock:
                self._entries[correlation_id] = entry
            if self._root is not None:
                self._persist(entry)
            logger.warning("[DLQ] Quarantined failed EDI file. correlationId=%s retailer=%s id=%s",
                           correlation_id, retailer_id, entry.id)
            return entry
        except OSError as e:
            # Losing the DLQ copy must not hide the document's own failure
            logger.error("[DLQ] Failed to persist dead letter for correlationId=%s: %s",
                         correlation_id, e, exc_info=True)
            return None

    def _persist(self, entry: DeadLetterEntry) -> None:
        assert self._root is not None
        (self._root / f"{entry.correlation_id}.edi").write_text(entry.original_content, encoding="utf-8")
        (self._root / f"{entry.correlation_id}.error").write_text(entry.error_report, encoding="utf-8")

    def get(self, correlation_id: str) -> Optional[DeadLetterEntry]:
        with self._lock:
            return self._entries.get(correlation_id)

    def entries(self, retailer_id: Optional[str] = None) -> List[DeadLetterEntry]:
        with self._lock:
            rows = list(self._entries.values())
        if retailer_id:
            rows = [e for e in rows if e.retailer_id == retailer_id.strip().upper()]
        return sorted(rows, key=lambda e: e.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> int:
        """Drop every entry and its files on disk; returns the number removed."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        if self._root is not None:
            for entry in entries:
                for suffix in (".edi", ".error"):
                    (self._root / f"{entry.correlation_id}{suffix}").unlink(missing_ok=True)
        return len(entries)
