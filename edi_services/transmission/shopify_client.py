from __future__ import annotations
from typing import Any, Dict, Optional
import time

import requests

from edi_services.config.env import ShopifyConfig
from edi_services.config.logging_config import get_logger
from edi_services.errors import TransmissionError
from edi_services.mapper.canonical import CanonicalOrder
from edi_services.mapper.engine import NormalizedDocument
from edi_services.transmission.base import TransmissionReceipt
from edi_services.transmission.rate_limit import LeakyBucket

"""
Shopify Admin API sink: each canonical purchase order becomes a draft order.
Every POST first takes a permit from a leaky bucket sized to the store's call
budget. Retries server errors and dropped connections with exponential backoff;
client errors are final.
"""

logger = get_logger("transmission.shopify")


def build_draft_orders_url(store_domain: str, api_version: str) -> str:
    domain = store_domain.strip().removeprefix("https://").removeprefix("http://").rstrip("/")
    return f"https://{domain}/admin/api/{api_version}/draft_orders.json"


def build_draft_order_payload(order: CanonicalOrder) -> Dict[str, Any]:
    line_items = [
        {
            "title": ln.product_description or ln.sku,
            "sku": ln.sku,
            "quantity": ln.quantity_ordered,
            "price": str(ln.unit_price) if ln.unit_price is not None else None,
        }
        for ln in order.lines
    ]
    shipping: Dict[str, Any] = {
        "name": order.ship_to_name,
        "address1": order.ship_to_address,
        "city": order.ship_to_city,
        "province_code": order.ship_to_state,
        "zip": order.ship_to_zip,
        "country_code": "US",
    }
    note_attributes = [
        {"name": "retailer", "value": order.retailer_id},
        {"name": "po_number", "value": order.po_number},
        {"name": "correlation_id", "value": order.correlation_id},
    ]
    if order.requested_delivery_date:
        note_attributes.append({"name": "requested_delivery_date", "value": order.requested_delivery_date.isoformat()})
    return {
        "draft_order": {
            "line_items": line_items,
            "shipping_address": {k: v for k, v in shipping.items() if v},
            "note": f"{order.retailer_id} PO {order.po_number}",
            "note_attributes": note_attributes,
            "tags": f"edi,{order.retailer_id.lower()}",
        }
    }


def parse_draft_order_id(payload: Dict[str, Any]) -> Optional[str]:
    try:
        return str(payload["draft_order"]["id"])
    except (KeyError, TypeError):
        return None


class ShopifyTransmitter:
    platform = "SHOPIFY"

    def __init__(self, config: ShopifyConfig, session: Optional[requests.Session] = None,
                 sleep=time.sleep, bucket: Optional[LeakyBucket] = None):
        if not config.configured:
            raise ValueError("ShopifyTransmitter needs SHOPIFY_STORE_DOMAIN and SHOPIFY_ACCESS_TOKEN")
        self._config = config
        self._session = session or requests.Session()
        self._sleep = sleep
        self._bucket = bucket or LeakyBucket(config.bucket_capacity, config.refill_rate_per_sec, sleep=sleep)

    def transmit(self, document: NormalizedDocument, order: Optional[CanonicalOrder] = None) -> TransmissionReceipt:
        if order is None:
            raise TransmissionError(
                f"Shopify only accepts purchase orders; got transaction set {document.transaction_set_code}")
        url = build_draft_orders_url(self._config.store_domain or "", self._config.api_version)
        payload = build_draft_order_payload(order)
        attempts = max(1, self._config.max_attempts)
        last_error: Optional[TransmissionError] = None

        for attempt in range(attempts):
            if attempt:
                self._sleep(self._config.backoff_base_sec * (2 ** (attempt - 1)))
            try:
                last_error = None
                return self._post(url, payload, order)
            except TransmissionError as e:
                if not e.retryable:
                    raise
                last_error = e
                logger.warning("[SHOPIFY] attempt %d/%d failed for PO %s: %s",
                               attempt + 1, attempts, order.po_number, e)
        assert last_error is not None
        raise last_error

    def _post(self, url: str, payload: Dict[str, Any], order: CanonicalOrder) -> TransmissionReceipt:
        waited = self._bucket.acquire()
        if waited:
            logger.info("[SHOPIFY] Waited %.2fs for the API call budget", waited)
        headers = {"X-Shopify-Access-Token": self._config.access_token or "", "Content-Type": "application/json"}
        logger.info("[SHOPIFY] Transmitting PO %s to store %s", order.po_number, self._config.store_domain)
        try:
            resp = self._session.post(url, json=payload, headers=headers, timeout=self._config.timeout_sec)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransmissionError(f"Shopify unreachable: {e}", retryable=True) from e

        if resp.status_code >= 500:
            raise TransmissionError(f"Shopify server error (HTTP {resp.status_code})",
                                    status_code=resp.status_code, retryable=True)
        if resp.status_code >= 400:
            raise TransmissionError(f"Shopify rejected (HTTP {resp.status_code}): {resp.text}",
                                    status_code=resp.status_code)
        try:
            body = resp.json()
        except ValueError as e:
            raise TransmissionError("Shopify returned a non-JSON response", status_code=resp.status_code) from e
        draft_id = parse_draft_order_id(body)
        if draft_id is None:
            raise TransmissionError("Shopify response is missing draft_order.id", status_code=resp.status_code)
        logger.info("[SHOPIFY] Draft order %s created for PO %s", draft_id, order.po_number)
        return TransmissionReceipt(
            platform=self.platform,
            platform_order_id=draft_id,
            acknowledged=True,
            message=f"Shopify draft order {draft_id}",
        )
