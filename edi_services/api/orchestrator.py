from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple
import queue
import threading
import time

from edi_services.audit.store import AuditStore
from edi_services.config.env import AppConfig, get_app_config, get_shopify_config
from edi_services.config.logging_config import LogContext, configure_logging, get_logger
from edi_services.deadletter.quarantine import DeadLetterQueue
from edi_services.errors import DocumentValidationError, EdiError, InvalidTransition
from edi_services.ingestion.x12 import parse_interchange
from edi_services.lifecycle.states import DocumentStatus
from edi_services.lifecycle.tracker import LifecycleTracker
from edi_services.mapper.canonical import PURCHASE_ORDER_SETS, CanonicalOrder, to_canonical_order
from edi_services.mapper.engine import NormalizedDocument, apply
from edi_services.mapper.registry import ProfileRegistry
from edi_services.portal.orders import SellerOrderBook
from edi_services.transmission.base import LocalTransmitter, Transmitter
from edi_services.transmission.shopify_client import ShopifyTransmitter

logger = get_logger("api.orchestrator")


@dataclass
class IngestJob:
    correlation_id: str
    retailer_id: str
    content: str = field(repr=False)
    file_name: Optional[str] = None
    seller_id: Optional[str] = None
    accepted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _error_detail(exc: BaseException) -> str:
    if isinstance(exc, DocumentValidationError):
        return "; ".join(e.describe() if hasattr(e, "describe") else str(e) for e in exc.errors)
    return f"{type(exc).__name__}: {exc}"


class IngestionPipeline:
    """Drives one document RECEIVED -> PARSED -> VALIDATED -> TRANSMITTED -> ACKNOWLEDGED.

    Any failure is quarantined and recorded as FAILED from the stage it happened in.
    Nothing is retried here.
    """

    def __init__(self, profiles: ProfileRegistry, tracker: LifecycleTracker, transmitter: Transmitter,
                 dead_letters: DeadLetterQueue, orders: Optional[SellerOrderBook] = None):
        self.profiles = profiles
        self.tracker = tracker
        self.transmitter = transmitter
        self.dead_letters = dead_letters
        self.orders = orders if orders is not None else SellerOrderBook()

    @property
    def store(self) -> AuditStore:
        return self.tracker.store

    def accept(self, retailer_id: str, content: str, file_name: Optional[str] = None,
               seller_id: Optional[str] = None) -> IngestJob:
        start = time.monotonic()
        retailer = retailer_id.strip().upper()
        entry = self.tracker.begin(
            retailer,
            source_file_path=file_name,
            message=f"File received: {file_name or 'inline content'} ({len(content)} bytes)",
        )
        job = IngestJob(
            correlation_id=entry.correlation_id,
            retailer_id=retailer,
            content=content,
            file_name=file_name,
            seller_id=seller_id,
            accepted_at=entry.created_at,
        )
        logger.info("[INGEST] Accepted file=%s retailer=%s correlationId=%s in %dms",
                    file_name, retailer, job.correlation_id, _elapsed_ms(start))
        return job

    def process(self, job: IngestJob) -> DocumentStatus:
        with LogContext.bind(correlation_id=job.correlation_id, retailer_id=job.retailer_id):
            stage = DocumentStatus.RECEIVED
            try:
                with LogContext.bind(stage="parse"):
                    doc, order, problems = self._parse(job)
                stage = DocumentStatus.PARSED

                with LogContext.bind(stage="validate"):
                    self._validate(job, doc, problems)
                stage = DocumentStatus.VALIDATED

                with LogContext.bind(stage="transmit"):
                    status = self._transmit(job, doc, order)
                logger.info("[ORCHESTRATOR] Pipeline complete correlationId=%s poNumber=%s status=%s",
                            job.correlation_id, doc.get("poNumber"), status.value)
                return status
            except InvalidTransition as e:
                # Another writer moved this document; no state change of ours happened
                logger.warning("[ORCHESTRATOR] Transition conflict for %s: %s", job.correlation_id, e)
                current = self.tracker.current(job.correlation_id)
                return current.status if current is not None else stage
            except EdiError as e:
                return self.fail(job, stage, e)
            except Exception as e:
                logger.exception("[ORCHESTRATOR] Unexpected error for %s at %s", job.correlation_id, stage.value)
                return self.fail(job, stage, e)

    def _parse(self, job: IngestJob) -> Tuple[NormalizedDocument, Optional[CanonicalOrder], list]:
        start = time.monotonic()
        interchange = parse_interchange(job.content)
        tx = interchange.first_transaction()
        ignored = len(interchange.transactions) - 1
        if ignored:
            logger.warning("[ORCHESTRATOR] Interchange %s carries %d more transaction(s); only ST %s is processed",
                           interchange.control_number, ignored, tx.control_number)
        profile = self.profiles.get(job.retailer_id, tx.code)
        doc, errors = apply(profile, tx.segments, interchange.delimiters.element)

        problems: list = list(errors)
        order: Optional[CanonicalOrder] = None
        if tx.code in PURCHASE_ORDER_SETS:
            order, violations = to_canonical_order(doc, job.correlation_id,
                                                   interchange.control_number, tx.control_number)
            reported = {(e.target_field, e.line) for e in errors}
            problems.extend(v for v in violations if (v.field, v.line) not in reported)

        self.tracker.record_transition(
            job.correlation_id, DocumentStatus.RECEIVED, DocumentStatus.PARSED,
            f"Parsed {len(doc.lines)} line items from {tx.code} transaction",
            duration_ms=_elapsed_ms(start),
            po_number=doc.get("poNumber"),
            transaction_set_code=tx.code,
        )
        return doc, order, problems

    def _validate(self, job: IngestJob, doc: NormalizedDocument, problems: list) -> None:
        start = time.monotonic()
        if problems:
            raise DocumentValidationError(problems)
        self.tracker.record_transition(
            job.correlation_id, DocumentStatus.PARSED, DocumentStatus.VALIDATED,
            f"Validation passed: {len(doc.lines)} lines verified",
            duration_ms=_elapsed_ms(start),
        )

    def _transmit(self, job: IngestJob, doc: NormalizedDocument, order: Optional[CanonicalOrder]) -> DocumentStatus:
        start = time.monotonic()
        receipt = self.transmitter.transmit(doc, order)
        self.tracker.record_transition(
            job.correlation_id, DocumentStatus.VALIDATED, DocumentStatus.TRANSMITTED,
            f"Transmitted to {receipt.platform}. Order ID: {receipt.platform_order_id}",
            duration_ms=_elapsed_ms(start),
        )
        if not receipt.acknowledged:
            return DocumentStatus.TRANSMITTED

        self.tracker.record_transition(
            job.correlation_id, DocumentStatus.TRANSMITTED, DocumentStatus.ACKNOWLEDGED,
            f"Pipeline complete. {receipt.platform} order: {receipt.platform_order_id}",
            duration_ms=0,
        )
        if job.seller_id and order is not None:
            self.orders.record(job.seller_id, order, receipt, received_at=job.accepted_at)
        return DocumentStatus.ACKNOWLEDGED

    def fail(self, job: IngestJob, stage: DocumentStatus, exc: BaseException) -> DocumentStatus:
        """Record FAILED from ``stage``, then quarantine the file."""
        detail = _error_detail(exc)
        if isinstance(exc, DocumentValidationError):
            message = f"Validation failed with {len(exc.errors)} problem(s)"
        elif isinstance(exc, EdiError):
            message = str(exc)
        else:
            message = f"Unexpected error during {stage.value} processing"

        try:
            self.tracker.record_transition(job.correlation_id, stage, DocumentStatus.FAILED, message,
                                           error_detail=detail)
        except InvalidTransition as e:
            logger.warning("[ORCHESTRATOR] Could not record FAILED for %s: %s", job.correlation_id, e)
            current = self.tracker.current(job.correlation_id)
            return current.status if current is not None else stage
        self.dead_letters.quarantine(job.correlation_id, job.retailer_id, job.content, job.file_name,
                                     detail, cause=exc)
        logger.error("[ORCHESTRATOR] Pipeline failed correlationId=%s stage=%s error=%s",
                     job.correlation_id, stage.value, detail, exc_info=exc)
        return DocumentStatus.FAILED

    def purge(self) -> int:
        removed = self.store.purge()
        self.dead_letters.clear()
        self.orders.clear()
        return removed


def build_pipeline(config: AppConfig) -> IngestionPipeline:
    shopify = get_shopify_config()
    transmitter: Transmitter = ShopifyTransmitter(shopify) if shopify.configured else LocalTransmitter()
    return IngestionPipeline(
        profiles=ProfileRegistry.load(config.mappings_dir),
        tracker=LifecycleTracker(AuditStore(config.audit_dir)),
        transmitter=transmitter,
        dead_letters=DeadLetterQueue(config.dead_letter_dir),
    )


CONFIG = get_app_config()
configure_logging(level=CONFIG.log_level, fmt=CONFIG.log_format)
PIPELINE = build_pipeline(CONFIG)

# Bounded in-process queue drained by daemon workers
_JOB_Q: "queue.Queue[IngestJob]" = queue.Queue(maxsize=max(1, CONFIG.queue_size))
_workers: List[threading.Thread] = []
_workers_lock = threading.Lock()


def _worker_loop(worker_id: int = 0):  # pragma: no cover (verified via API tests)
    while True:
        job = _JOB_Q.get()
        try:
            PIPELINE.process(job)
        except Exception:
            # process() records failures itself; keep the worker alive for the next job
            logger.exception("[WORKER-%d] Unhandled error for %s", worker_id, job.correlation_id)
        finally:
            _JOB_Q.task_done()


def start_workers(count: Optional[int] = None) -> List[threading.Thread]:
    with _workers_lock:
        if not _workers:
            for i in range(max(1, count or CONFIG.job_workers)):
                t = threading.Thread(target=_worker_loop, kwargs={'worker_id': i}, daemon=True,
                                     name=f"edi-worker-{i}")
                t.start()
                _workers.append(t)
        return list(_workers)


def workers_status() -> Tuple[int, int]:
    """(started, alive) worker thread counts."""
    with _workers_lock:
        return len(_workers), sum(1 for t in _workers if t.is_alive())


def queue_depth() -> int:
    return _JOB_Q.qsize()


def submit(retailer_id: str, content: str, file_name: Optional[str] = None,
           seller_id: Optional[str] = None) -> IngestJob:
    """Accept a file and hand it to the workers. Raises queue.Full when the backlog is full."""
    start_workers()
    job = PIPELINE.accept(retailer_id, content, file_name, seller_id)
    try:
        _JOB_Q.put_nowait(job)
    except queue.Full as e:
        PIPELINE.fail(job, DocumentStatus.RECEIVED, RuntimeError("ingest queue is full"))
        raise e
    return job
