from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from edi_services.lifecycle.states import DocumentStatus


@dataclass(frozen=True)
class AuditLog:
    """One lifecycle transition. Never mutated once written."""

    id: int
    correlation_id: str
    retailer_id: str
    status: DocumentStatus
    created_at: datetime
    message: str = ""
    transaction_set_code: Optional[str] = None
    po_number: Optional[str] = None
    source_file_path: Optional[str] = None
    error_detail: Optional[str] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "correlationId": self.correlation_id,
            "retailerId": self.retailer_id,
            "transactionSetCode": self.transaction_set_code,
            "poNumber": self.po_number,
            "status": self.status.value,
            "sourceFilePath": self.source_file_path,
            "message": self.message,
            "errorDetail": self.error_detail,
            "createdAt": self.created_at.isoformat(),
            "durationMs": self.duration_ms,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AuditLog":
        return AuditLog(
            id=int(data["id"]),
            correlation_id=data["correlationId"],
            retailer_id=data["retailerId"],
            status=DocumentStatus(data["status"]),
            created_at=datetime.fromisoformat(data["createdAt"]),
            message=data.get("message") or "",
            transaction_set_code=data.get("transactionSetCode"),
            po_number=data.get("poNumber"),
            source_file_path=data.get("sourceFilePath"),
            error_detail=data.get("errorDetail"),
            duration_ms=data.get("durationMs"),
        )
