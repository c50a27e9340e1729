"""
Public tenant API.

Routes:
- /api/tenants/<slug> - Public tenant card
- /api/tenants/<slug>/features - Enabled features (cached)
"""

from flask import Blueprint, jsonify, g, Response
from voxpopulous.database import get_session
from voxpopulous.decorators.admin_security import load_tenant
from voxpopulous.services.entitlement_service import get_features_payload

tenants_bp = Blueprint('tenants', __name__, url_prefix='/api/tenants')


@tenants_bp.route('/<slug>')
@load_tenant
def tenant_card(slug: str) -> Response:
    return jsonify(g.tenant.to_public_dict())


@tenants_bp.route('/<slug>/features')
@load_tenant
def tenant_features(slug: str) -> Response:
    """Feature booleans the front-end uses to show or lock screens."""
    return jsonify(get_features_payload(get_session(), g.tenant))
