"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics and the back-office counters:
quota consumption and denials, access denials by reason, billing webhook
outcomes. Restrict it to the monitoring network.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share counters through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_target = None if MULTIPROCESS_MODE else registry

# Scrapes and probes are not recorded
UNINSTRUMENTED_PATHS = ('/metrics', '/health')

http_requests_total = Counter(
    'voxpop_http_requests_total',
    'HTTP requests by route',
    ['method', 'endpoint', 'http_status'],
    registry=_target
)

http_request_duration_seconds = Histogram(
    'voxpop_http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_target,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

quota_creations_total = Counter(
    'voxpop_quota_creations_total',
    'Quota slots consumed by creations and attachments',
    ['resource'],
    registry=_target
)

quota_denials_total = Counter(
    'voxpop_quota_denials_total',
    'Creations rejected by the quota service',
    ['resource', 'reason'],
    registry=_target
)

access_denials_total = Counter(
    'voxpop_access_denials_total',
    'Requests rejected by session, permission, entitlement or billing checks',
    ['reason'],
    registry=_target
)

billing_webhooks_total = Counter(
    'voxpop_billing_webhooks_total',
    'Billing webhook calls by outcome',
    ['outcome'],
    registry=_target
)


def setup_metrics_instrumentation(app):
    """Register before/after request hooks recording HTTP metrics."""

    @app.before_request
    def before_request_metrics():
        if request.path not in UNINSTRUMENTED_PATHS:
            g._metrics_start = time.time()

    @app.after_request
    def after_request_metrics(response):
        start = g.pop('_metrics_start', None)
        if start is None:
            return response
        try:
            # Endpoint names keep tenant slugs out of the label values
            endpoint = request.endpoint or 'unmatched'
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(time.time() - start)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                http_status=response.status_code
            ).inc()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics: {e}")

        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus exposition (not authenticated)."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
