"""
Billing status gate.

Two independent reasons can stop a tenant from writing:
- its own lifecycle is SUSPENDED (data-governance decision, read-only);
- its billing owner did not pay (subscription SUSPENDED or trial expired).

Child tenants never look at their own billing status, only at the billing
root's; lifecycle suspension is always read on the tenant itself.
"""

import logging
from datetime import datetime, timezone
from flask import current_app, has_app_context

from voxpopulous.models import Tenant, BillingStatus
from voxpopulous.exceptions import TenantSuspendedError, BillingBlockedError
from voxpopulous.services.hierarchy_service import get_billing_root

logger = logging.getLogger(__name__)

DEFAULT_SUSPENDED_MESSAGE = (
    "Votre structure est suspendue. Les données restent consultables mais ne peuvent plus être modifiées."
)
DEFAULT_BLOCK_MESSAGE = (
    "Votre compte est actuellement suspendu pour défaut de paiement. Veuillez régulariser votre situation."
)
CHILD_BLOCK_MESSAGE = (
    "Le compte de votre structure de rattachement est suspendu pour défaut de paiement. "
    "Contactez votre structure parente."
)
REGULARIZE_LABEL = 'Régulariser'


class BillingState:
    """Read-only / blocked state of a tenant as shown to its admins."""

    def __init__(self, account_blocked=False, block_reason=None, read_only=False, suspended_reason=None,
                 billing_owner_id=None, shows_billing=True, action_url=None):
        self.account_blocked = account_blocked
        self.block_reason = block_reason
        self.read_only = read_only
        self.suspended_reason = suspended_reason
        self.billing_owner_id = billing_owner_id
        self.shows_billing = shows_billing
        self.action_url = action_url

    @property
    def is_writable(self):
        return not (self.account_blocked or self.read_only)

    def to_dict(self):
        rv = {
            'accountBlocked': self.account_blocked,
            'blockReason': self.block_reason,
            'readOnly': self.read_only,
            'suspendedReason': self.suspended_reason,
            'billingOwnerId': self.billing_owner_id,
            'showsBilling': self.shows_billing,
        }
        if self.account_blocked and self.action_url:
            rv['action'] = {'label': REGULARIZE_LABEL, 'url': self.action_url}
        return rv


def _config(key, default):
    if has_app_context():
        value = current_app.config.get(key)
        return default if value is None else value
    return default


def billing_admin_url(tenant: Tenant) -> str:
    """Front-end path of the tenant's billing admin page."""
    base = _config('PUBLIC_BASE_PATH', '/structures').rstrip('/')
    return f"{base}/{tenant.slug}/admin/billing"


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_payment_blocked(tenant: Tenant, now: datetime = None) -> bool:
    """Non-payment check on a billing owner's own status."""
    if tenant.billing_status == BillingStatus.SUSPENDED:
        return True
    if tenant.billing_status == BillingStatus.TRIAL and tenant.trial_ends_at is not None:
        now = now or datetime.now(timezone.utc)
        return _as_aware(tenant.trial_ends_at) < _as_aware(now)
    return False


def resolve_billing_state(tenant: Tenant, now: datetime = None) -> BillingState:
    """
    Compute the billing state of a tenant.

    Args:
        tenant: Tenant being served
        now: Reference time for trial expiry (defaults to current UTC time)

    Returns:
        BillingState
    """
    root = get_billing_root(tenant)
    is_child = root.id != tenant.id
    state = BillingState(billing_owner_id=root.id, shows_billing=not is_child)

    if tenant.is_suspended:
        state.read_only = True
        state.suspended_reason = tenant.suspended_reason or _config(
            'DEFAULT_SUSPENDED_MESSAGE', DEFAULT_SUSPENDED_MESSAGE
        )

    if not _config('BILLING_GATE_ENABLED', True):
        return state

    if is_payment_blocked(root, now):
        state.account_blocked = True
        if is_child:
            state.block_reason = CHILD_BLOCK_MESSAGE
        else:
            state.block_reason = _config('DEFAULT_BLOCK_MESSAGE', DEFAULT_BLOCK_MESSAGE)
            state.action_url = billing_admin_url(root)

    return state


def assert_writable(tenant: Tenant, now: datetime = None) -> BillingState:
    """
    Reject writes on suspended or blocked tenants.

    Raises:
        TenantSuspendedError: lifecycle SUSPENDED
        BillingBlockedError: billing owner blocked for non-payment
    """
    state = resolve_billing_state(tenant, now)
    if state.read_only:
        logger.info(f"Write rejected on suspended tenant {tenant.id}")
        raise TenantSuspendedError(state.suspended_reason)
    if state.account_blocked:
        logger.info(f"Write rejected on tenant {tenant.id}: billing owner {state.billing_owner_id} blocked")
        raise BillingBlockedError(state.block_reason, state.action_url)
    return state
