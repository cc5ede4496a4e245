from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import threading
import uuid

from edi_services.mapper.canonical import CanonicalOrder, CanonicalOrderLine
from edi_services.transmission.base import TransmissionReceipt


@dataclass(frozen=True)
class SellerOrder:
    id: str
    seller_id: str
    retailer_id: str
    po_number: Optional[str]
    platform: str
    platform_order_id: str
    correlation_id: str
    status: str = "SYNCED"
    order_value: Decimal = Decimal("0")
    currency: str = "USD"
    line_count: int = 0
    total_units: int = 0
    ship_to_name: Optional[str] = None
    ship_to_city: Optional[str] = None
    ship_to_state: Optional[str] = None
    requested_delivery_date: Optional[date] = None
    line_items: Tuple[CanonicalOrderLine, ...] = ()
    received_at: Optional[datetime] = None
    synced_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self, detail: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "retailerId": self.retailer_id,
            "poNumber": self.po_number,
            "platform": self.platform,
            "platformOrderId": self.platform_order_id,
            "status": self.status,
            "orderValue": str(self.order_value),
            "currency": self.currency,
            "lineCount": self.line_count,
            "totalUnits": self.total_units,
            "shipToName": self.ship_to_name,
            "shipToCity": self.ship_to_city,
            "shipToState": self.ship_to_state,
            "requestedDeliveryDate": self.requested_delivery_date.isoformat() if self.requested_delivery_date else None,
            "correlationId": self.correlation_id,
            "receivedAt": self.received_at.isoformat() if self.received_at else None,
            "syncedAt": self.synced_at.isoformat(),
        }
        if detail:
            d["lineItems"] = [
                {**ln.to_dict(), "lineTotal": str(ln.line_total)} for ln in self.line_items
            ]
        return d


class SellerOrderBook:
    """Acknowledged orders keyed by seller. A seller only ever sees its own orders."""

    def __init__(self):
        self._orders: Dict[str, Dict[str, SellerOrder]] = {}
        self._lock = threading.Lock()

    def record(self, seller_id: str, order: CanonicalOrder, receipt: TransmissionReceipt,
               received_at: Optional[datetime] = None) -> SellerOrder:
        entry = SellerOrder(
            id=str(uuid.uuid4()),
            seller_id=seller_id,
            retailer_id=order.retailer_id,
            po_number=order.po_number,
            platform=receipt.platform,
            platform_order_id=receipt.platform_order_id,
            correlation_id=order.correlation_id,
            order_value=order.order_total,
            line_count=len(order.lines),
            total_units=order.total_units,
            ship_to_name=order.ship_to_name,
            ship_to_city=order.ship_to_city,
            ship_to_state=order.ship_to_state,
            requested_delivery_date=order.requested_delivery_date,
            line_items=order.lines,
            received_at=received_at,
        )
        with self._lock:
            self._orders.setdefault(seller_id, {})[entry.id] = entry
        return entry

    def list_for_seller(self, seller_id: str, retailer_id: Optional[str] = None) -> List[SellerOrder]:
        with self._lock:
            rows = list(self._orders.get(seller_id, {}).values())
        if retailer_id:
            rows = [o for o in rows if o.retailer_id == retailer_id.strip().upper()]
        # Newest first
        return sorted(rows, key=lambda o: o.synced_at, reverse=True)

    def get(self, seller_id: str, order_id: str) -> Optional[SellerOrder]:
        with self._lock:
            return self._orders.get(seller_id, {}).get(order_id)

    def summary(self, seller_id: str) -> Dict[str, Any]:
        rows = self.list_for_seller(seller_id)
        by_retailer: Dict[str, int] = {}
        for o in rows:
            by_retailer[o.retailer_id] = by_retailer.get(o.retailer_id, 0) + 1
        return {
            "sellerId": seller_id,
            "orderCount": len(rows),
            "totalOrderValue": str(sum((o.order_value for o in rows), Decimal("0"))),
            "totalUnits": sum(o.total_units for o in rows),
            "ordersByRetailer": dict(sorted(by_retailer.items())),
        }

    def clear(self) -> None:
        with self._lock:
            self._orders.clear()
