from __future__ import annotations
from datetime import timedelta
from typing import Callable, List, Optional
import threading
import uuid

from edi_services.audit.models import AuditLog
from edi_services.audit.store import AuditStore
from edi_services.config.logging_config import get_logger
from edi_services.errors import InvalidTransition
from edi_services.lifecycle.clock import Clock, SystemClock
from edi_services.lifecycle.states import DocumentState, DocumentStatus

logger = get_logger("lifecycle.tracker")

_TICK = timedelta(microseconds=1)

# Fixed pool of locks shared across correlation ids by hash
LOCK_STRIPES = 64


def new_correlation_id() -> str:
    return str(uuid.uuid4())


class LifecycleTracker:
    """Validates and records lifecycle transitions, one audit record per transition.

    Transitions for the same correlation id are serialized; of two writers racing
    from the same state exactly one succeeds and the other gets InvalidTransition.
    A terminal document is never reopened: resubmission mints a new correlation id.
    """

    def __init__(self, store: AuditStore, clock: Clock | None = None,
                 id_factory: Callable[[], str] = new_correlation_id, lock_stripes: int = LOCK_STRIPES):
        self._store = store
        self._clock = clock or SystemClock()
        self._id_factory = id_factory
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(max(1, lock_stripes))]

    @property
    def store(self) -> AuditStore:
        return self._store

    def _lock_for(self, correlation_id: str) -> threading.Lock:
        return self._locks[hash(correlation_id) % len(self._locks)]

    def begin(self, retailer_id: str, *, source_file_path: Optional[str] = None,
              transaction_set_code: Optional[str] = None, message: Optional[str] = None,
              duration_ms: Optional[int] = None, correlation_id: Optional[str] = None) -> AuditLog:
        """Mint a correlation id for an inbound file and write its RECEIVED record."""
        cid = correlation_id or self._id_factory()
        with self._lock_for(cid):
            existing = self._store.latest(cid)
            if existing is not None:
                raise InvalidTransition(cid, None, DocumentStatus.RECEIVED, existing.status)
            entry = self._store.append(
                correlation_id=cid,
                retailer_id=retailer_id.strip().upper(),
                status=DocumentStatus.RECEIVED,
                created_at=self._clock.now(),
                message=message or f"File received: {source_file_path or 'inline content'}",
                transaction_set_code=transaction_set_code,
                source_file_path=source_file_path,
                duration_ms=duration_ms,
            )
        self._log(entry)
        return entry

    def record_transition(self, correlation_id: str, from_expected: DocumentStatus | str,
                          to_state: DocumentStatus | str, message: str,
                          error_detail: Optional[str] = None, duration_ms: Optional[int] = None, *,
                          po_number: Optional[str] = None, transaction_set_code: Optional[str] = None,
                          source_file_path: Optional[str] = None) -> AuditLog:
        """Append the record for ``from_expected -> to_state``.

        Raises:
            InvalidTransition: the document is not currently at ``from_expected``
                (unknown id included) or the table does not allow ``to_state``.
            ValueError: a FAILED transition without ``error_detail``.
        """
        try:
            from_expected = DocumentStatus(from_expected)
            to_state = DocumentStatus(to_state)
        except ValueError as e:
            raise InvalidTransition(correlation_id, from_expected, to_state, None) from e
        if to_state is DocumentStatus.FAILED and not (error_detail and error_detail.strip()):
            raise ValueError("A transition into FAILED requires a non-empty error_detail")

        with self._lock_for(correlation_id):
            latest = self._store.latest(correlation_id)
            actual = latest.status if latest is not None else None
            if latest is None or actual is not from_expected or not from_expected.can_transition_to(to_state):
                raise InvalidTransition(correlation_id, from_expected, to_state, actual)

            created_at = self._clock.now()
            if created_at <= latest.created_at:
                created_at = latest.created_at + _TICK
            entry = self._store.append(
                correlation_id=correlation_id,
                retailer_id=latest.retailer_id,
                status=to_state,
                created_at=created_at,
                message=message,
                transaction_set_code=transaction_set_code or latest.transaction_set_code,
                po_number=po_number or latest.po_number,
                source_file_path=source_file_path or latest.source_file_path,
                error_detail=error_detail,
                duration_ms=duration_ms,
            )
        self._log(entry)
        return entry

    def current(self, correlation_id: str) -> Optional[DocumentState]:
        latest = self._store.latest(correlation_id)
        if latest is None:
            return None
        return DocumentState(
            correlation_id=latest.correlation_id,
            status=latest.status,
            retailer_id=latest.retailer_id,
            updated_at=latest.created_at,
            transaction_set_code=latest.transaction_set_code,
            po_number=latest.po_number,
            source_file_path=latest.source_file_path,
        )

    def history(self, correlation_id: str) -> List[AuditLog]:
        return self._store.for_correlation(correlation_id)

    def _log(self, entry: AuditLog) -> None:
        level = "warning" if entry.status is DocumentStatus.FAILED else "info"
        getattr(logger, level)(
            "[AUDIT] correlationId=%s retailer=%s poNumber=%s status=%s durationMs=%s",
            entry.correlation_id, entry.retailer_id, entry.po_number, entry.status.value, entry.duration_ms,
        )
