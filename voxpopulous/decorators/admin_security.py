"""
Authentication decorators.

Super admin routes and tenant admin routes authenticate separately: the first
need a SuperAdmin principal, the second a principal bound to the tenant in the
URL (or a super admin).
"""

import logging
from functools import wraps
from flask import g, current_app
from voxpopulous.database import get_session
from voxpopulous.exceptions import AuthenticationRequiredError, PermissionDeniedError
from voxpopulous.services.hierarchy_service import get_tenant_by_slug
from voxpopulous.blueprints.metrics import access_denials_total

logger = logging.getLogger(__name__)


def tenant_login_url(slug):
    """Front-end login page of a tenant's back-office."""
    base = current_app.config.get('PUBLIC_BASE_PATH', '/structures').rstrip('/')
    return f"{base}/{slug}/admin/login"


def superadmin_login_url():
    return current_app.config.get('SUPERADMIN_LOGIN_PATH', '/superadmin/login')


def superadmin_required(f):
    """
    Decorator: Require a super admin session.

    Raises AuthenticationRequiredError (401) otherwise; tenant sessions never
    reach these routes.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = g.get('principal')
        if principal is None or not principal.is_super_admin:
            raise AuthenticationRequiredError(superadmin_login_url())
        return f(*args, **kwargs)

    return decorated_function


def load_tenant(f):
    """
    Decorator: Resolve the <slug> URL argument into g.tenant.

    Unknown and archived tenants raise NotFoundError (404).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.tenant = get_tenant_by_slug(get_session(), kwargs['slug'])
        return f(*args, **kwargs)

    return decorated_function


def tenant_admin_required(f):
    """
    Decorator: Require a principal allowed on the tenant of the URL.

    Loads g.tenant from the slug. Anonymous requests get 401 with the tenant
    login URL; sessions opened on another tenant get 403.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        slug = kwargs['slug']
        g.tenant = get_tenant_by_slug(get_session(), slug)
        principal = g.get('principal')

        if principal is None or not principal.is_authenticated:
            raise AuthenticationRequiredError(tenant_login_url(slug))

        if not principal.can_access_tenant(g.tenant):
            access_denials_total.labels(reason='cross_tenant').inc()
            logger.warning(
                f"{principal.kind.value} {principal.id} of tenant {principal.tenant_id} "
                f"denied on tenant {g.tenant.id}"
            )
            raise PermissionDeniedError()

        return f(*args, **kwargs)

    return decorated_function
