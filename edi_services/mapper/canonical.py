"""Canonical purchase order built from a mapped 850 document.

The mapping engine only moves strings around; this is where the pipeline turns
them into dates, quantities and prices and checks the order is usable
downstream.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from edi_services.mapper.engine import NormalizedDocument

PURCHASE_ORDER_SETS = frozenset({"850"})

EDI_DATE_FORMAT = "%Y%m%d"


@dataclass(frozen=True)
class ConstraintViolation:
    field: str
    message: str
    line: Optional[int] = None

    def __str__(self) -> str:
        where = f" on line {self.line}" if self.line is not None else ""
        return f"{self.field}: {self.message}{where}"

    def describe(self) -> str:
        return str(self)


@dataclass(frozen=True)
class CanonicalOrderLine:
    line_sequence_number: int
    sku: Optional[str]
    quantity_ordered: Optional[int]
    unit_of_measure: Optional[str]
    unit_price: Optional[Decimal]
    product_description: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        if self.unit_price is None or self.quantity_ordered is None:
            return Decimal("0")
        return self.unit_price * self.quantity_ordered

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lineSequenceNumber": self.line_sequence_number,
            "sku": self.sku,
            "quantityOrdered": self.quantity_ordered,
            "unitOfMeasure": self.unit_of_measure,
            "unitPrice": str(self.unit_price) if self.unit_price is not None else None,
            "productDescription": self.product_description,
        }


@dataclass(frozen=True)
class CanonicalOrder:
    correlation_id: str
    retailer_id: str
    po_number: Optional[str]
    purchase_order_type: Optional[str]
    po_date: Optional[date]
    requested_delivery_date: Optional[date] = None
    ship_to_name: Optional[str] = None
    ship_to_address: Optional[str] = None
    ship_to_city: Optional[str] = None
    ship_to_state: Optional[str] = None
    ship_to_zip: Optional[str] = None
    department_number: Optional[str] = None
    lines: Tuple[CanonicalOrderLine, ...] = field(default_factory=tuple)
    interchange_control_number: Optional[str] = None
    transaction_control_number: Optional[str] = None

    @property
    def order_total(self) -> Decimal:
        return sum((ln.line_total for ln in self.lines), Decimal("0"))

    @property
    def total_units(self) -> int:
        return sum(ln.quantity_ordered or 0 for ln in self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlationId": self.correlation_id,
            "retailerId": self.retailer_id,
            "poNumber": self.po_number,
            "purchaseOrderType": self.purchase_order_type,
            "poDate": self.po_date.isoformat() if self.po_date else None,
            "requestedDeliveryDate": self.requested_delivery_date.isoformat() if self.requested_delivery_date else None,
            "shipToName": self.ship_to_name,
            "shipToAddress": self.ship_to_address,
            "shipToCity": self.ship_to_city,
            "shipToState": self.ship_to_state,
            "shipToZip": self.ship_to_zip,
            "departmentNumber": self.department_number,
            "lines": [ln.to_dict() for ln in self.lines],
            "interchangeControlNumber": self.interchange_control_number,
            "transactionControlNumber": self.transaction_control_number,
        }


def _blank(v: Optional[str]) -> bool:
    return v is None or not v.strip()


def _parse_date(name: str, raw: Optional[str], problems: List[ConstraintViolation]) -> Optional[date]:
    if _blank(raw):
        return None
    try:
        return datetime.strptime(raw.strip(), EDI_DATE_FORMAT).date()
    except ValueError:
        problems.append(ConstraintViolation(name, f"invalid date '{raw}', expected YYYYMMDD"))
        return None


def _parse_int(name: str, raw: Optional[str], line: int, problems: List[ConstraintViolation]) -> Optional[int]:
    if _blank(raw):
        return None
    try:
        # Some partners send "120.0" for whole quantities
        d = Decimal(raw.strip())
    except InvalidOperation:
        problems.append(ConstraintViolation(name, f"expected integer but got '{raw}'", line))
        return None
    if d != d.to_integral_value():
        problems.append(ConstraintViolation(name, f"expected integer but got '{raw}'", line))
        return None
    return int(d)


def _parse_decimal(name: str, raw: Optional[str], line: int, problems: List[ConstraintViolation]) -> Optional[Decimal]:
    if _blank(raw):
        return None
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        problems.append(ConstraintViolation(name, f"expected decimal number but got '{raw}'", line))
        return None


def to_canonical_order(doc: NormalizedDocument, correlation_id: str,
                       interchange_control_number: Optional[str] = None,
                       transaction_control_number: Optional[str] = None,
                       ) -> Tuple[CanonicalOrder, List[ConstraintViolation]]:
    """Coerce a mapped purchase order and check its constraints.

    Always returns the (possibly partial) order; the list holds every problem found.
    """
    problems: List[ConstraintViolation] = []
    h = doc.header

    order_lines: List[CanonicalOrderLine] = []
    for ln in doc.lines:
        f = ln.fields
        order_lines.append(CanonicalOrderLine(
            line_sequence_number=ln.sequence,
            sku=f.get("sku"),
            quantity_ordered=_parse_int("quantityOrdered", f.get("quantityOrdered"), ln.sequence, problems),
            unit_of_measure=f.get("unitOfMeasure"),
            unit_price=_parse_decimal("unitPrice", f.get("unitPrice"), ln.sequence, problems),
            product_description=f.get("productDescription"),
        ))

    order = CanonicalOrder(
        correlation_id=correlation_id,
        retailer_id=doc.retailer_id,
        po_number=h.get("poNumber"),
        purchase_order_type=h.get("purchaseOrderType"),
        po_date=_parse_date("poDate", h.get("poDate"), problems),
        requested_delivery_date=_parse_date("requestedDeliveryDate", h.get("requestedDeliveryDate"), problems),
        ship_to_name=h.get("shipToName"),
        ship_to_address=h.get("shipToAddress"),
        ship_to_city=h.get("shipToCity"),
        ship_to_state=h.get("shipToState"),
        ship_to_zip=h.get("shipToZip"),
        department_number=h.get("departmentNumber"),
        lines=tuple(order_lines),
        interchange_control_number=interchange_control_number,
        transaction_control_number=transaction_control_number,
    )
    problems.extend(check_constraints(order, already_reported=problems))
    return order, problems


def check_constraints(order: CanonicalOrder,
                      already_reported: Optional[List[ConstraintViolation]] = None) -> List[ConstraintViolation]:
    reported = {(p.field, p.line) for p in (already_reported or [])}
    out: List[ConstraintViolation] = []

    def add(name: str, message: str, line: Optional[int] = None) -> None:
        if (name, line) not in reported:
            out.append(ConstraintViolation(name, message, line))

    if _blank(order.po_number):
        add("poNumber", "must not be blank")
    if _blank(order.purchase_order_type):
        add("purchaseOrderType", "must not be blank")
    if order.po_date is None:
        add("poDate", "must not be null")
    if _blank(order.ship_to_name):
        add("shipToName", "must not be blank")
    if not order.lines:
        add("lines", "a purchase order must have at least one line item")
    for ln in order.lines:
        n = ln.line_sequence_number
        if _blank(ln.sku):
            add("sku", "must not be blank", n)
        if _blank(ln.unit_of_measure):
            add("unitOfMeasure", "must not be blank", n)
        if ln.quantity_ordered is None:
            add("quantityOrdered", "must not be null", n)
        elif ln.quantity_ordered < 1:
            add("quantityOrdered", "must be at least 1", n)
        if ln.unit_price is None:
            add("unitPrice", "must not be null", n)
        elif ln.unit_price <= 0:
            add("unitPrice", "must be positive", n)
    return out
