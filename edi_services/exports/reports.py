from __future__ import annotations
from typing import Dict, Optional


def dead_letter_report(*, correlation_id: str, retailer_id: str, file_name: Optional[str], error_message: str,
                       timestamp: str, exc_type: Optional[str] = None, exc_message: Optional[str] = None) -> str:
    lines = [
        "=== Dead Letter Queue Error Report ===",
        f"Timestamp     : {timestamp}",
        f"Correlation ID: {correlation_id}",
        f"Retailer      : {retailer_id}",
        f"Original File : {file_name or 'unknown.edi'}",
        "",
        "--- Error ---",
        error_message,
    ]
    if exc_type:
        lines += ["", "--- Exception ---", f"{exc_type}: {exc_message or ''}"]
    lines += [
        "",
        "--- Resolution Steps ---",
        "1. Correct the EDI segment/element identified in the error above.",
        "2. Resubmit the corrected file to POST /api/v1/edi/ingest.",
        "   The resubmission is tracked under a new correlation id;",
        f"   this document ({correlation_id}) stays FAILED for traceability.",
        "=" * 38,
    ]
    return "\n".join(lines) + "\n"


def status_summary_md(counts: Dict[str, int], generated_at: Optional[str] = None) -> str:
    lines = ["# Pipeline Status", ""]
    if generated_at:
        lines += [f"Generated at {generated_at}", ""]
    total = sum(counts.values())
    for k, v in counts.items():
        lines.append(f"- {k}: {v}")
    lines.append(f"\nTotal documents: {total}")
    return "\n".join(lines) + "\n"
