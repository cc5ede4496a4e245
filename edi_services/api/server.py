from __future__ import annotations
from typing import Any
from flask import Flask, request, jsonify, Response
from flask_sock import Sock
from edi_services.api.orchestrator import CONFIG, PIPELINE, submit, workers_status, queue_depth
from edi_services.audit.aggregator import (
    dead_letters, document_summary, filter_groups, group_by_correlation, status_summary,
)
from edi_services.config.env import AppConfig, get_api_config
from edi_services.config.logging_config import get_logger
from edi_services.errors import EdiError, InvalidTransition, ProfileNotFound
from edi_services.exports.reports import status_summary_md
from edi_services.exports.writers import write_audit_log, write_documents
from edi_services.lifecycle.states import DocumentStatus

import os
import queue
import time
import json
from collections import deque, defaultdict
from datetime import datetime, timezone
from pathlib import Path

logger = get_logger("api.server")

app = Flask(__name__)
sock = Sock(app)

OPENAPI_PATH = Path(__file__).resolve().parent / "openapi.json"
INGEST_PATHS = frozenset({'/api/v1/edi/ingest', '/api/v1/edi/ingest/upload'})

# Configuration helpers (overridable via app.config in tests)

def _get_api_key() -> str | None:
    if 'API_KEY' in app.config:
        return app.config.get('API_KEY')
    return get_api_config().api_key


def _get_rate_limit() -> tuple[int, float]:
    n = app.config.get('RATE_LIMIT_N')
    w = app.config.get('RATE_LIMIT_WINDOW_SEC')
    if n is None or w is None:
        cfg = get_api_config()
        n = cfg.rate_limit_n if n is None else n
        w = cfg.rate_limit_window_sec if w is None else w
    return int(n), float(w)


def _purge_allowed() -> bool:
    env = app.config.get('APP_ENV')
    if env is None:
        return CONFIG.purge_allowed
    return AppConfig(environment=env.strip().lower()).purge_allowed


_recent: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=100))


def _error(code: str, message: str, status: int):
    return jsonify({'error': code, 'message': message}), status


_STATUS_BY_CODE = {
    InvalidTransition.code: 409,
    ProfileNotFound.code: 404,
}


@app.errorhandler(EdiError)
def _edi_error(e: EdiError):
    return jsonify(e.to_dict()), _STATUS_BY_CODE.get(e.code, 400)


def _client_ip() -> str:
    xff = request.headers.get('X-Forwarded-For')
    if xff:
        return xff.split(',')[0].strip()
    return request.remote_addr or 'anon'


def _check_api_key():
    api_key = _get_api_key()
    if api_key:
        provided = request.headers.get('X-API-Key')
        if provided != api_key:
            return _error('unauthorized', 'Missing or invalid X-API-Key header', 401)
    return None


def _check_rate_limit(ip: str):
    # Allow if rate limiting disabled or N <= 0
    n, window = _get_rate_limit()
    if n <= 0:
        return None
    now = time.time()
    dq = _recent[ip]
    # Drop old entries outside window
    while dq and now - dq[0] > window:
        dq.popleft()
    if len(dq) >= n:
        retry = max(0.0, window - (now - dq[0]))
        resp = jsonify({'error': 'rate_limited', 'message': f'More than {n} ingest requests in {window}s'})
        resp.status_code = 429
        resp.headers['Retry-After'] = f"{retry:.2f}"
        return resp
    dq.append(now)
    return None


@app.before_request
def _auth_and_rate_limit():
    # Only enforce for API and dev routes; health and openapi stay open
    if request.path.startswith('/api/') or request.path.startswith('/dev/'):
        unauthorized = _check_api_key()
        if unauthorized is not None:
            return unauthorized
        if request.method == 'POST' and request.path in INGEST_PATHS:
            rl = _check_rate_limit(_client_ip())
            if rl is not None:
                return rl
    return None


def _seller_id() -> str | None:
    sid = (request.headers.get('X-Seller-Id') or '').strip()
    return sid or None


def _accepted(job) -> tuple[Response, int]:
    return jsonify({
        'correlationId': job.correlation_id,
        'message': (f"EDI file accepted for async processing. Retailer: {job.retailer_id}. "
                    f"Poll the audit trail for status updates."),
        'acceptedAt': job.accepted_at.isoformat(),
        'auditTrailUrl': f"/api/v1/edi/audit/{job.correlation_id}",
    }), 202


def _submit(retailer_id: str, content: str, file_name: str | None):
    logger.info("[API] EDI ingest request retailer=%s file=%s", retailer_id, file_name)
    try:
        job = submit(retailer_id, content, file_name, _seller_id())
    except queue.Full:
        return _error('queue_full', 'Ingest backlog is full, retry later', 503)
    return _accepted(job)


@app.post('/api/v1/edi/ingest')
def post_ingest():
    payload = request.get_json(force=True, silent=True) or {}
    retailer_id = str(payload.get('retailerId') or '').strip()
    content = payload.get('ediContent') or ''
    if not retailer_id:
        return _error('bad_request', 'retailerId is required', 400)
    if not isinstance(content, str) or not content.strip():
        return _error('bad_request', 'ediContent is required', 400)
    file_name = payload.get('fileName') or None
    return _submit(retailer_id, content, file_name)


@app.post('/api/v1/edi/ingest/upload')
def post_ingest_upload():
    upload = request.files.get('file')
    retailer_id = (request.form.get('retailerId') or '').strip()
    if not retailer_id:
        return _error('bad_request', 'retailerId is required', 400)
    if upload is None:
        return _error('bad_request', 'file is required', 400)
    content = upload.read().decode('utf-8', errors='replace')
    if not content.strip():
        return _error('bad_request', 'uploaded file is empty', 400)
    return _submit(retailer_id, content, upload.filename or 'upload.edi')


@app.get('/api/v1/edi/audit/<correlation_id>')
def get_audit_trail(correlation_id: str):
    rows = PIPELINE.tracker.history(correlation_id)
    if not rows:
        return _error('not_found', f'No audit records for {correlation_id}', 404)
    return jsonify([r.to_dict() for r in rows])


@app.get('/api/v1/edi/documents')
def list_documents():
    status = None
    raw_status = request.args.get('status')
    if raw_status:
        try:
            status = DocumentStatus.parse(raw_status)
        except ValueError:
            return _error('bad_request', f'Unknown status {raw_status!r}', 400)
    groups = filter_groups(group_by_correlation(PIPELINE.store.snapshot()), status=status,
                           retailer_id=request.args.get('retailerId'))
    return jsonify([document_summary(g) for g in groups])


@app.get('/api/v1/edi/status/summary')
def get_status_summary():
    counts = status_summary(PIPELINE.store.snapshot())
    return jsonify({s.value.lower(): n for s, n in counts.items()})


@app.get('/api/v1/edi/dead-letters')
def list_dead_letters():
    out = []
    for g in dead_letters(PIPELINE.store.snapshot()):
        row = document_summary(g)
        entry = PIPELINE.dead_letters.get(g.correlation_id)
        row['quarantined'] = entry is not None
        row['fileName'] = entry.file_name if entry else g.latest.source_file_path
        out.append(row)
    return jsonify(out)


@app.get('/api/v1/edi/dead-letters/<correlation_id>/report')
def get_dead_letter_report(correlation_id: str):
    entry = PIPELINE.dead_letters.get(correlation_id)
    if entry is None:
        return _error('not_found', f'No dead letter for {correlation_id}', 404)
    return Response(entry.error_report, mimetype='text/plain')


@app.get('/api/v1/edi/export/audit.csv')
def export_audit_csv():
    body = write_audit_log(r.to_dict() for r in PIPELINE.store.snapshot())
    return Response(body, mimetype='text/csv', headers={
        'Content-Disposition': 'attachment; filename="audit.csv"'
    })


@app.get('/api/v1/edi/export/documents.csv')
def export_documents_csv():
    groups = group_by_correlation(PIPELINE.store.snapshot())
    body = write_documents(document_summary(g) for g in groups)
    return Response(body, mimetype='text/csv', headers={
        'Content-Disposition': 'attachment; filename="documents.csv"'
    })


@app.get('/api/v1/edi/export/status.md')
def export_status_md():
    counts = status_summary(PIPELINE.store.snapshot())
    body = status_summary_md({s.value.lower(): n for s, n in counts.items()},
                             generated_at=datetime.now(timezone.utc).isoformat())
    return Response(body, mimetype='text/markdown')


@app.get('/api/v1/mappings')
def list_mappings():
    return jsonify([p.to_dict() for p in PIPELINE.profiles.all()])


@app.get('/api/v1/mappings/<retailer_id>/<transaction_set_code>')
def get_mapping(retailer_id: str, transaction_set_code: str):
    profile = PIPELINE.profiles.find(retailer_id, transaction_set_code)
    if profile is None:
        return _error('PROFILE_NOT_FOUND',
                      f"No mapping profile for retailer '{retailer_id.upper()}' and transaction "
                      f"'{transaction_set_code}'", 404)
    return jsonify(profile.to_dict())


@app.get('/api/v1/portal/orders')
def portal_orders():
    sid = _seller_id()
    if not sid:
        return _error('seller_required', 'X-Seller-Id header is required', 401)
    rows = PIPELINE.orders.list_for_seller(sid, request.args.get('retailerId'))
    return jsonify([o.to_dict() for o in rows])


@app.get('/api/v1/portal/orders/<order_id>')
def portal_order(order_id: str):
    sid = _seller_id()
    if not sid:
        return _error('seller_required', 'X-Seller-Id header is required', 401)
    order = PIPELINE.orders.get(sid, order_id)
    if order is None:
        return _error('not_found', f'Order {order_id} not found', 404)
    return jsonify(order.to_dict(detail=True))


@app.get('/api/v1/portal/summary')
def portal_summary():
    sid = _seller_id()
    if not sid:
        return _error('seller_required', 'X-Seller-Id header is required', 401)
    return jsonify(PIPELINE.orders.summary(sid))


@app.get('/dev/audit-log')
def dev_audit_log():
    return jsonify([r.to_dict() for r in PIPELINE.store.snapshot()])


@app.get('/dev/stats')
def dev_stats():
    logs = PIPELINE.store.snapshot()
    counts = status_summary(logs)
    started, alive = workers_status()
    return jsonify({
        'totalRecords': len(logs),
        'documents': sum(counts.values()),
        'byStatus': {s.value: n for s, n in counts.items()},
        'deadLetters': len(PIPELINE.dead_letters),
        'queueDepth': queue_depth(),
        'workers': {'started': started, 'alive': alive},
    })


@app.delete('/dev/audit-log')
def dev_purge_audit_log():
    if not _purge_allowed():
        return _error('purge_disabled', 'Audit purge is only available in local and test environments', 403)
    removed = PIPELINE.purge()
    logger.warning("[DEV] Purged %d audit records", removed)
    return jsonify({'deleted': removed, 'message': f'Deleted {removed} audit records'})


@app.get('/actuator/health')
def health():
    started, alive = workers_status()
    up = alive == started
    body: dict[str, Any] = {
        'status': 'UP' if up else 'DOWN',
        'components': {
            'workers': {'status': 'UP' if up else 'DOWN', 'started': started, 'alive': alive},
            'mappingProfiles': {'status': 'UP', 'loaded': len(PIPELINE.profiles)},
            'jobQueue': {'status': 'UP', 'depth': queue_depth()},
        },
    }
    return jsonify(body), (200 if up else 503)


@app.get('/openapi.json')
def get_openapi():
    try:
        with open(OPENAPI_PATH, 'r') as f:
            spec = json.load(f)
        return jsonify(spec)
    except (OSError, ValueError):
        return _error('openapi_not_found', 'OpenAPI document is not available', 404)


@sock.route('/api/v1/edi/audit/<correlation_id>/events')
def ws_audit_events(ws, correlation_id):  # pragma: no cover (basic smoke only)
    sent = 0
    start = time.time()
    while ws.connected and time.time() - start < 30:
        rows = PIPELINE.tracker.history(correlation_id)
        for r in rows[sent:]:
            ws.send(json.dumps(r.to_dict()))
        sent = max(sent, len(rows))
        if rows and rows[-1].status.is_terminal:
            break
        time.sleep(0.05)
    ws.close()


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', '8080')))
