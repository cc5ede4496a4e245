from __future__ import annotations
from typing import List, Dict, Any, Iterable
import csv
import io

SCHEMAS = {
    "audit_log": [
        "id","correlationId","retailerId","transactionSetCode","poNumber","status","sourceFilePath","message","errorDetail","createdAt","durationMs"
    ],
    "documents": [
        "correlationId","retailerId","transactionSetCode","poNumber","status","message","errorDetail","entryCount","firstSeenAt","lastUpdatedAt","totalDurationMs"
    ],
}


def write_csv(rows: Iterable[Dict[str, Any]], columns: List[str]) -> str:
    buf = io.StringIO()
    w = csv.DictWriter(buf, fieldnames=columns, extrasaction="ignore")
    w.writeheader()
    for r in rows:
        w.writerow({k: r.get(k) for k in columns})
    return buf.getvalue()


def write_audit_log(rows: Iterable[Dict[str, Any]]) -> str:
    return write_csv(rows, SCHEMAS["audit_log"])


def write_documents(rows: Iterable[Dict[str, Any]]) -> str:
    return write_csv(rows, SCHEMAS["documents"])
