from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
import json
import threading

from edi_services.audit.models import AuditLog
from edi_services.config.logging_config import get_logger
from edi_services.lifecycle.states import DocumentStatus

logger = get_logger("audit.store")

AUDIT_FILE_NAME = "audit-log.jsonl"


class AuditStore:
    """Append-only, thread-safe audit log.

    Reads return copies taken under the lock, so a reader sees a point-in-time
    snapshot while writers keep appending.

    With ``root`` set every record is also appended as one JSON line to
    ``root/audit-log.jsonl`` and that file is reloaded on construction, so the
    trail survives a restart. Only ``purge()`` removes it.
    """

    def __init__(self, root: Optional[Path] = None):
        self._records: List[AuditLog] = []
        self._by_correlation: Dict[str, List[AuditLog]] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        if root is not None:
            Path(root).mkdir(parents=True, exist_ok=True)
            self._path = Path(root) / AUDIT_FILE_NAME
            self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        with self._path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, 1):
                if not line.strip():
                    continue
                try:
                    entry = AuditLog.from_dict(json.loads(line))
                except (ValueError, KeyError) as e:
                    logger.error("[AUDIT] Skipping unreadable record %s:%d: %s", self._path, lineno, e)
                    continue
                self._index(entry)
                self._next_id = max(self._next_id, entry.id + 1)
        logger.info("[AUDIT] Reloaded %d records from %s", len(self._records), self._path)

    def _index(self, entry: AuditLog) -> None:
        self._records.append(entry)
        self._by_correlation.setdefault(entry.correlation_id, []).append(entry)

    def append(self, *, correlation_id: str, retailer_id: str, status: DocumentStatus, created_at: datetime,
               message: str = "", transaction_set_code: Optional[str] = None, po_number: Optional[str] = None,
               source_file_path: Optional[str] = None, error_detail: Optional[str] = None,
               duration_ms: Optional[int] = None) -> AuditLog:
        with self._lock:
            entry = AuditLog(
                id=self._next_id,
                correlation_id=correlation_id,
                retailer_id=retailer_id,
                status=status,
                created_at=created_at,
                message=message,
                transaction_set_code=transaction_set_code,
                po_number=po_number,
                source_file_path=source_file_path,
                error_detail=error_detail,
                duration_ms=duration_ms,
            )
            # Written to disk first so a failed write leaves memory untouched
            if self._path is not None:
                with self._path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(entry.to_dict()) + "\n")
            self._next_id += 1
            self._index(entry)
            return entry

    def for_correlation(self, correlation_id: str) -> List[AuditLog]:
        """All records for one id, oldest first (stable on equal timestamps)."""
        with self._lock:
            rows = list(self._by_correlation.get(correlation_id, ()))
        rows.sort(key=lambda r: r.created_at)
        return rows

    def latest(self, correlation_id: str) -> Optional[AuditLog]:
        with self._lock:
            rows = self._by_correlation.get(correlation_id)
            if not rows:
                return None
            best = rows[0]
            for r in rows[1:]:
                if r.created_at >= best.created_at:
                    best = r
            return best

    def snapshot(self) -> List[AuditLog]:
        with self._lock:
            return list(self._records)

    def correlation_ids(self) -> List[str]:
        with self._lock:
            return list(self._by_correlation)

    def purge(self) -> int:
        """Delete every record. Administrative use only; returns the number removed."""
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._by_correlation.clear()
            if self._path is not None and self._path.exists():
                self._path.unlink()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
