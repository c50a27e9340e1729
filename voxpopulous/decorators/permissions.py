"""
Permission decorators for tenant admin routes.

Must be used AFTER tenant_admin_required, which loads g.tenant and checks
g.principal belongs to it.
"""

import logging
from functools import wraps
from flask import g, request
from voxpopulous.database import get_session
from voxpopulous.exceptions import PermissionDeniedError, FeatureNotEnabledError, BillingBlockedError, TenantSuspendedError
from voxpopulous.principals import has_menu_access
from voxpopulous.services.entitlement_service import resolve_entitlements
from voxpopulous.services.billing_state_service import assert_writable
from voxpopulous.blueprints.metrics import access_denials_total

logger = logging.getLogger(__name__)

SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS')


def get_entitlements():
    """Entitlements of g.tenant, resolved once per request."""
    if g.get('entitlements') is None:
        g.entitlements = resolve_entitlements(get_session(), g.tenant)
    return g.entitlements


def require_menu(menu_code):
    """
    Decorator to restrict a route to principals allowed on an admin menu.

    Usage:
        @require_menu(AdminMenuCode.BILLING)
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            principal = g.principal
            if not has_menu_access(principal, menu_code):
                access_denials_total.labels(reason='permission_denied').inc()
                logger.warning(
                    f"{principal.kind.value} {principal.id} denied menu {menu_code.value} on tenant {g.tenant.id}"
                )
                raise PermissionDeniedError(payload={'menu_code': menu_code.value})
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_feature(feature_code):
    """
    Decorator to restrict a route to tenants whose plan includes a feature.

    Usage:
        @require_feature(FeatureCode.IDEA_BOX_CORE)
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not get_entitlements().has_feature(feature_code):
                access_denials_total.labels(reason='upgrade_required').inc()
                raise FeatureNotEnabledError(feature_code.value)
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_writable(f):
    """
    Decorator: reject unsafe methods on suspended or payment-blocked tenants.

    Super admins are not gated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if request.method not in SAFE_METHODS and not g.principal.is_super_admin:
            try:
                assert_writable(g.tenant)
            except (BillingBlockedError, TenantSuspendedError) as e:
                access_denials_total.labels(reason=e.payload['reason']).inc()
                raise
        return f(*args, **kwargs)

    return decorated_function


def billing_root_required(f):
    """Decorator: billing administration only exists on billing-owner tenants."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.tenant.is_child:
            access_denials_total.labels(reason='child_tenant_billing').inc()
            raise PermissionDeniedError('La facturation est gérée par la structure parente')
        return f(*args, **kwargs)

    return decorated_function
