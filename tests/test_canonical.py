import unittest
from datetime import date
from decimal import Decimal

from edi_services.mapper.canonical import check_constraints, to_canonical_order
from edi_services.mapper.engine import NormalizedDocument, NormalizedLine

HEADER = {
    "poNumber": "TGT-2026-00042",
    "purchaseOrderType": "SA",
    "poDate": "20260219",
    "requestedDeliveryDate": "20260305",
    "shipToName": "Target DC 0553",
    "shipToCity": "Minneapolis",
}


def _doc(header=None, lines=None):
    if lines is None:
        lines = [
            {"sku": "SKU-1001", "quantityOrdered": "120", "unitOfMeasure": "EA", "unitPrice": "4.25"},
            {"sku": "SKU-2002", "quantityOrdered": "48", "unitOfMeasure": "CS", "unitPrice": "18.50"},
        ]
    return NormalizedDocument(
        retailer_id="TARGET",
        transaction_set_code="850",
        header=dict(HEADER if header is None else header),
        lines=tuple(NormalizedLine(i, f) for i, f in enumerate(lines, start=1)),
    )


class TestCanonicalOrder(unittest.TestCase):
    def test_coerces_types(self):
        order, problems = to_canonical_order(_doc(), "cid-1", "000000042", "0001")
        self.assertEqual(problems, [])
        self.assertEqual(order.po_date, date(2026, 2, 19))
        self.assertEqual(order.requested_delivery_date, date(2026, 3, 5))
        self.assertEqual(order.lines[0].quantity_ordered, 120)
        self.assertEqual(order.lines[1].unit_price, Decimal("18.50"))
        self.assertEqual(order.order_total, Decimal("1398.00"))
        self.assertEqual(order.total_units, 168)
        self.assertEqual(order.interchange_control_number, "000000042")

    def test_whole_decimal_quantity_accepted(self):
        order, problems = to_canonical_order(
            _doc(lines=[{"sku": "A", "quantityOrdered": "12.0", "unitOfMeasure": "EA", "unitPrice": "1"}]), "c")
        self.assertEqual(problems, [])
        self.assertEqual(order.lines[0].quantity_ordered, 12)

    def test_bad_values_reported_once(self):
        order, problems = to_canonical_order(
            _doc(lines=[{"sku": "A", "quantityOrdered": "1.5", "unitOfMeasure": "EA", "unitPrice": "abc"}]), "c")
        self.assertEqual(sorted(str(p) for p in problems), [
            "quantityOrdered: expected integer but got '1.5' on line 1",
            "unitPrice: expected decimal number but got 'abc' on line 1",
        ])

    def test_invalid_date(self):
        _, problems = to_canonical_order(_doc(header={**HEADER, "poDate": "2026-02-19"}), "c")
        self.assertEqual([p.field for p in problems], ["poDate"])

    def test_constraints(self):
        order, problems = to_canonical_order(
            _doc(header={"poNumber": "", "purchaseOrderType": "SA", "poDate": "20260219"},
                 lines=[{"sku": "A", "quantityOrdered": "0", "unitOfMeasure": "EA", "unitPrice": "-1"}]), "c")
        fields = sorted(p.field for p in problems)
        self.assertEqual(fields, ["poNumber", "quantityOrdered", "shipToName", "unitPrice"])
        self.assertEqual(check_constraints(order), problems)

    def test_order_needs_lines(self):
        _, problems = to_canonical_order(_doc(lines=[]), "c")
        self.assertEqual([p.field for p in problems], ["lines"])

    def test_to_dict_uses_strings_for_money(self):
        order, _ = to_canonical_order(_doc(), "cid-1")
        d = order.to_dict()
        self.assertEqual(d["poDate"], "2026-02-19")
        self.assertEqual(d["lines"][0]["unitPrice"], "4.25")


if __name__ == '__main__':
    unittest.main()
