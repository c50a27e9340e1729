"""Middleware for principal and tenant context."""
from flask import session, g, current_app
from sqlalchemy.exc import SQLAlchemyError
from voxpopulous.database import get_session
from voxpopulous.principals import ANONYMOUS, resolve_principal


def load_principal():
    """
    Load the request principal into g.

    Called before each request. Sets g.principal (ANONYMOUS when the session
    carries nothing usable) and g.tenant, which tenant routes fill in from
    the URL slug. g.entitlements is filled lazily by the permission decorators.
    """
    g.principal = ANONYMOUS
    g.tenant = None
    g.entitlements = None

    if not any(key in session for key in ('superadmin_id', 'admin_user_id', 'elected_official_id')):
        return

    try:
        g.principal = resolve_principal(get_session(), session)
    except SQLAlchemyError as e:
        # Routes that need a principal fail with 401; the database error
        # resurfaces as 503 on the route's own queries
        current_app.logger.error(f"Error in load_principal: {e}")
        get_session().rollback()
