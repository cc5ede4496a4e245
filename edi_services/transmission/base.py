from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Protocol
import itertools
import threading

from edi_services.mapper.canonical import CanonicalOrder
from edi_services.mapper.engine import NormalizedDocument


@dataclass(frozen=True)
class TransmissionReceipt:
    platform: str
    platform_order_id: str
    acknowledged: bool
    message: str = ""


class Transmitter(Protocol):
    """Downstream sink. Raises TransmissionError when delivery fails."""

    platform: str

    def transmit(self, document: NormalizedDocument, order: Optional[CanonicalOrder] = None) -> TransmissionReceipt:
        ...


class LocalTransmitter:
    """Stand-in sink for local and test environments; every delivery is acknowledged."""

    platform = "LOCAL"

    def __init__(self):
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    def transmit(self, document: NormalizedDocument, order: Optional[CanonicalOrder] = None) -> TransmissionReceipt:
        with self._lock:
            n = next(self._seq)
        order_id = f"local-draft-{n:06d}"
        return TransmissionReceipt(
            platform=self.platform,
            platform_order_id=order_id,
            acknowledged=True,
            message=f"Local stub accepted {document.transaction_set_code} as {order_id}",
        )
