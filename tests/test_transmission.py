import unittest
import threading
from datetime import date
from decimal import Decimal
from unittest import mock

import requests

from edi_services.config.env import ShopifyConfig
from edi_services.errors import TransmissionError
from edi_services.mapper.canonical import CanonicalOrder, CanonicalOrderLine
from edi_services.mapper.engine import NormalizedDocument
from edi_services.transmission.base import LocalTransmitter
from edi_services.transmission.rate_limit import LeakyBucket
from edi_services.transmission.shopify_client import (
    ShopifyTransmitter, build_draft_order_payload, build_draft_orders_url, parse_draft_order_id,
)

CONFIG = ShopifyConfig(store_domain="acme.myshopify.com", access_token="shpat_x", max_attempts=3, backoff_base_sec=0.5)
DOC = NormalizedDocument("TARGET", "850", {"poNumber": "TGT-1"})
ORDER = CanonicalOrder(
    correlation_id="cid-1", retailer_id="TARGET", po_number="TGT-1", purchase_order_type="SA",
    po_date=date(2026, 2, 19), requested_delivery_date=date(2026, 3, 5), ship_to_name="Target DC 0553",
    ship_to_city="Minneapolis", ship_to_state="MN",
    lines=(CanonicalOrderLine(1, "SKU-1", 120, "EA", Decimal("4.25"), "Oat Bar"),),
)


def _resp(status, body=None, text=""):
    r = mock.Mock()
    r.status_code = status
    r.text = text
    r.json.return_value = body
    return r


class TestLocalTransmitter(unittest.TestCase):
    def test_sequential_ids(self):
        t = LocalTransmitter()
        a = t.transmit(DOC, ORDER)
        b = t.transmit(DOC)
        self.assertEqual((a.platform_order_id, b.platform_order_id), ("local-draft-000001", "local-draft-000002"))
        self.assertTrue(a.acknowledged)


class TestShopifyPayloads(unittest.TestCase):
    def test_url(self):
        self.assertEqual(build_draft_orders_url("https://acme.myshopify.com/", "2024-01"),
                         "https://acme.myshopify.com/admin/api/2024-01/draft_orders.json")

    def test_payload(self):
        p = build_draft_order_payload(ORDER)["draft_order"]
        self.assertEqual(p["line_items"][0], {"title": "Oat Bar", "sku": "SKU-1", "quantity": 120, "price": "4.25"})
        self.assertEqual(p["shipping_address"]["province_code"], "MN")
        self.assertNotIn("zip", p["shipping_address"])
        self.assertIn({"name": "po_number", "value": "TGT-1"}, p["note_attributes"])

    def test_parse_id(self):
        self.assertEqual(parse_draft_order_id({"draft_order": {"id": 991}}), "991")
        self.assertIsNone(parse_draft_order_id({}))


class TestShopifyTransmitter(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.sleep = mock.Mock()
        self.t = ShopifyTransmitter(CONFIG, session=self.session, sleep=self.sleep)

    def test_requires_configuration(self):
        with self.assertRaises(ValueError):
            ShopifyTransmitter(ShopifyConfig())

    def test_success(self):
        self.session.post.return_value = _resp(201, {"draft_order": {"id": 12345}})
        receipt = self.t.transmit(DOC, ORDER)
        self.assertEqual(receipt.platform_order_id, "12345")
        self.assertTrue(receipt.acknowledged)
        _, kwargs = self.session.post.call_args
        self.assertEqual(kwargs["headers"]["X-Shopify-Access-Token"], "shpat_x")
        self.assertEqual(kwargs["timeout"], CONFIG.timeout_sec)
        self.sleep.assert_not_called()

    def test_retries_server_errors_with_backoff(self):
        self.session.post.side_effect = [
            _resp(503), requests.ConnectionError("reset"), _resp(200, {"draft_order": {"id": 7}}),
        ]
        receipt = self.t.transmit(DOC, ORDER)
        self.assertEqual(receipt.platform_order_id, "7")
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [0.5, 1.0])

    def test_gives_up_after_max_attempts(self):
        self.session.post.return_value = _resp(500)
        with self.assertRaises(TransmissionError) as ctx:
            self.t.transmit(DOC, ORDER)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.session.post.call_count, 3)

    def test_client_error_not_retried(self):
        self.session.post.return_value = _resp(422, text='{"errors":"line_items"}')
        with self.assertRaises(TransmissionError) as ctx:
            self.t.transmit(DOC, ORDER)
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(self.session.post.call_count, 1)

    def test_rejects_non_purchase_orders(self):
        with self.assertRaises(TransmissionError):
            self.t.transmit(NormalizedDocument("TARGET", "810"))
        self.session.post.assert_not_called()

    def test_missing_id_is_an_error(self):
        self.session.post.return_value = _resp(201, {"draft_order": {}})
        with self.assertRaises(TransmissionError):
            self.t.transmit(DOC, ORDER)

    def test_waits_for_call_budget(self):
        clock = _FakeClock()
        bucket = LeakyBucket(1, 2.0, clock=clock.now, sleep=clock.sleep)
        t = ShopifyTransmitter(CONFIG, session=self.session, sleep=self.sleep, bucket=bucket)
        self.session.post.return_value = _resp(201, {"draft_order": {"id": 1}})
        t.transmit(DOC, ORDER)
        t.transmit(DOC, ORDER)
        self.assertEqual(clock.sleeps, [0.5])
        self.assertEqual(self.session.post.call_count, 2)


class _FakeClock:
    def __init__(self):
        self.t = 100.0
        self.sleeps = []

    def now(self):
        return self.t

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.t += seconds


class TestLeakyBucket(unittest.TestCase):
    def setUp(self):
        self.clock = _FakeClock()
        self.bucket = LeakyBucket(3, 2.0, clock=self.clock.now, sleep=self.clock.sleep)

    def test_burst_up_to_capacity_then_waits(self):
        for _ in range(3):
            self.assertEqual(self.bucket.acquire(), 0.0)
        self.assertEqual(self.bucket.available(), 0)
        self.assertEqual(self.bucket.acquire(), 0.5)
        self.assertEqual(self.clock.sleeps, [0.5])

    def test_refill_is_capped_at_capacity(self):
        self.bucket.acquire()
        self.bucket.acquire()
        self.clock.t += 60
        self.assertEqual(self.bucket.available(), 3)

    def test_partial_refill(self):
        for _ in range(3):
            self.bucket.acquire()
        self.clock.t += 1.0
        self.assertEqual(self.bucket.available(), 2)

    def test_rejects_bad_settings(self):
        with self.assertRaises(ValueError):
            LeakyBucket(0, 1.0)
        with self.assertRaises(ValueError):
            LeakyBucket(5, 0)

    def test_shared_across_threads(self):
        bucket = LeakyBucket(50, 1.0, clock=self.clock.now, sleep=self.clock.sleep)
        threads = [threading.Thread(target=bucket.acquire) for _ in range(50)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()
        self.assertEqual(bucket.available(), 0)
        self.assertEqual(self.clock.sleeps, [])


if __name__ == '__main__':
    unittest.main()
