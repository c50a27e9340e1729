"""
Webhooks Blueprint for billing notifications.
The payment pipeline pushes the billing status of billing-owner tenants.
"""

import logging
import hmac
import hashlib
from flask import Blueprint, request, jsonify, current_app
from voxpopulous.blueprints.metrics import billing_webhooks_total
from voxpopulous.database import get_session
from voxpopulous.exceptions import VoxError
from voxpopulous.models import BillingStatus
from voxpopulous.services.hierarchy_service import get_tenant_by_slug
from voxpopulous.services.lifecycle_service import set_billing_status

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


def verify_signature(request_data: bytes, signature: str) -> bool:
    """
    Verify the HMAC-SHA256 signature of a billing webhook.

    Without BILLING_WEBHOOK_SECRET every call is rejected.
    """
    secret = current_app.config.get('BILLING_WEBHOOK_SECRET')
    if not secret:
        logger.warning("BILLING_WEBHOOK_SECRET not configured, rejecting webhook")
        return False

    if not signature:
        logger.warning("Missing X-Signature header in billing webhook")
        return False

    expected_signature = hmac.new(secret.encode('utf-8'), request_data, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected_signature)


@webhooks_bp.route('/billing', methods=['POST'])
def billing_webhook():
    """
    Handle billing status notifications.

    Payload: {"tenant_slug": "...", "billing_status": "ACTIVE|TRIAL|SUSPENDED|CANCELLED"}
    """
    signature = request.headers.get('X-Signature', '')
    if not verify_signature(request.get_data(), signature):
        logger.warning("Invalid billing webhook signature")
        billing_webhooks_total.labels(outcome='bad_signature').inc()
        return jsonify({'error': 'Invalid signature'}), 401

    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        logger.warning("Empty webhook payload")
        billing_webhooks_total.labels(outcome='invalid').inc()
        return jsonify({'error': 'Empty payload'}), 400

    slug = data.get('tenant_slug')
    try:
        status = BillingStatus(data.get('billing_status'))
    except ValueError:
        billing_webhooks_total.labels(outcome='invalid').inc()
        return jsonify({'error': f"Unknown billing_status {data.get('billing_status')}"}), 400

    session = get_session()
    try:
        tenant = get_tenant_by_slug(session, slug or '', include_archived=True)
        set_billing_status(session, tenant, status)
        session.commit()
    except VoxError as e:
        session.rollback()
        billing_webhooks_total.labels(outcome='rejected').inc()
        logger.warning(f"Billing webhook for '{slug}' rejected: {e.message}")
        return jsonify({'error': e.message}), e.status_code

    billing_webhooks_total.labels(outcome='applied').inc()
    logger.info(f"Billing webhook: tenant {tenant.id} -> {status.value}")
    return jsonify({'status': 'ok', 'tenant_id': tenant.id, 'billing_status': status.value})
