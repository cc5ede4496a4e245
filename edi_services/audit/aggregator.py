"""Correlation aggregation over audit records.

Pure functions: no I/O and no shared state, safe to call from any thread on a
store snapshot.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from edi_services.audit.models import AuditLog
from edi_services.lifecycle.states import DocumentStatus


@dataclass(frozen=True)
class CorrelationGroup:
    correlation_id: str
    entries: Tuple[AuditLog, ...]
    latest: AuditLog

    @property
    def status(self) -> DocumentStatus:
        return self.latest.status


def latest_entry(entries: Sequence[AuditLog]) -> AuditLog:
    """Max ``created_at``; on a tie the later entry in ``entries`` (last written) wins."""
    if not entries:
        raise ValueError("latest_entry() needs at least one entry")
    best_idx = 0
    for idx in range(1, len(entries)):
        if entries[idx].created_at >= entries[best_idx].created_at:
            best_idx = idx
    return entries[best_idx]


def group_by_correlation(logs: Iterable[AuditLog]) -> List[CorrelationGroup]:
    """One group per correlation id, in order of first appearance; entries keep input order."""
    buckets: Dict[str, List[AuditLog]] = {}
    for entry in logs:
        buckets.setdefault(entry.correlation_id, []).append(entry)
    return [
        CorrelationGroup(correlation_id=cid, entries=tuple(rows), latest=latest_entry(rows))
        for cid, rows in buckets.items()
    ]


def status_summary(logs: Iterable[AuditLog]) -> Dict[DocumentStatus, int]:
    """Count documents by their latest status (not audit rows). Every state is present."""
    counts = {s: 0 for s in DocumentStatus}
    for g in group_by_correlation(logs):
        counts[g.latest.status] += 1
    return counts


def dead_letters(logs: Iterable[AuditLog]) -> List[CorrelationGroup]:
    return [g for g in group_by_correlation(logs) if g.latest.status is DocumentStatus.FAILED]


def filter_groups(groups: Iterable[CorrelationGroup], status: Optional[DocumentStatus] = None,
                  retailer_id: Optional[str] = None) -> List[CorrelationGroup]:
    out = []
    for g in groups:
        if status is not None and g.latest.status is not status:
            continue
        if retailer_id and g.latest.retailer_id != retailer_id.strip().upper():
            continue
        out.append(g)
    return out


def document_summary(group: CorrelationGroup) -> Dict[str, Any]:
    first = min(group.entries, key=lambda e: e.created_at)
    # PO number and transaction set appear only once parsing got that far
    po_number = next((e.po_number for e in reversed(group.entries) if e.po_number), None)
    tx_code = next((e.transaction_set_code for e in reversed(group.entries) if e.transaction_set_code), None)
    durations = [e.duration_ms for e in group.entries if e.duration_ms is not None]
    return {
        "correlationId": group.correlation_id,
        "retailerId": group.latest.retailer_id,
        "transactionSetCode": tx_code,
        "poNumber": po_number,
        "status": group.latest.status.value,
        "message": group.latest.message,
        "errorDetail": group.latest.error_detail,
        "entryCount": len(group.entries),
        "firstSeenAt": first.created_at.isoformat(),
        "lastUpdatedAt": group.latest.created_at.isoformat(),
        "totalDurationMs": sum(durations) if durations else None,
    }
