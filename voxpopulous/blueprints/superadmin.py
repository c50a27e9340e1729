"""
Super admin API - platform operator back-office.

Routes (prefix /api/superadmin):
- /login, /logout - Super admin session
- /tenants - Tenant list, creation
- /tenants/<id> - Tenant detail
- /tenants/<id>/suspend, /reactivate, /archive - Lifecycle
- /tenants/<id>/billing-status - Billing status
- /tenants/<id>/plan - Plan assignment
- /tenants/<id>/parent - Parent link
- /tenants/<id>/feature-overrides - Per-tenant feature overrides
- /plans - Plan catalog
- /plans/<code>/features - Catalog feature assignments
- /plans/<code>/addons/<addon_code> - Plan addon access
"""

import logging
from typing import Optional, Tuple
from flask import Blueprint, request, jsonify, session, Response
from voxpopulous.database import get_session
from voxpopulous.exceptions import AuthenticationRequiredError, BusinessLogicError, NotFoundError
from voxpopulous.models import Tenant, TenantType, LifecycleStatus, BillingStatus, SubscriptionPlan, AddonCode
from voxpopulous.decorators.admin_security import superadmin_required, superadmin_login_url
from voxpopulous.forms.admin_forms import LoginForm, TenantSuspendForm, BillingStatusForm
from voxpopulous.services import account_service, entitlement_service, hierarchy_service, lifecycle_service, quota_service
from voxpopulous.services.billing_state_service import resolve_billing_state

logger = logging.getLogger(__name__)

superadmin_bp = Blueprint('superadmin', __name__, url_prefix='/api/superadmin')

OVERRIDE_FIELDS = {
    'hasIdeas': 'has_ideas',
    'hasIncidents': 'has_incidents',
    'hasMeetings': 'has_meetings',
    'maxAdmins': 'max_admins',
    'notes': 'notes',
}


def _get_tenant_or_404(tenant_id: int) -> Tenant:
    """Fetch tenant (archived included) or raise NotFoundError."""
    return hierarchy_service.get_tenant(get_session(), tenant_id)


def _get_plan_or_404(code: str) -> SubscriptionPlan:
    plan = get_session().query(SubscriptionPlan).filter_by(code=code).first()
    if not plan:
        raise NotFoundError(f"Forfait '{code}' introuvable")
    return plan


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BusinessLogicError('Corps JSON invalide')
    return data


def _parse_enum(enum_class, value, label: str):
    try:
        return enum_class(value)
    except ValueError:
        raise BusinessLogicError(f'{label} invalide : {value}')


def _tenant_summary(tenant: Tenant) -> dict:
    rv = tenant.to_public_dict()
    rv.update({
        'planCode': tenant.plan.code if tenant.plan else None,
        'billingStatus': tenant.billing_status.value,
        'suspendedReason': tenant.suspended_reason,
        'archivedReason': tenant.archived_reason,
    })
    return rv


def _plan_dict(plan: SubscriptionPlan) -> dict:
    return {
        'id': plan.id,
        'code': plan.code,
        'name': plan.name,
        'monthlyPrice': plan.monthly_price,
        'yearlyPrice': plan.yearly_price,
        'isActive': plan.is_active,
        'targetTenantTypes': plan.target_tenant_types or [],
        'features': sorted(a.feature.code for a in plan.feature_assignments),
        'legacyFlags': {
            'hasIdeas': plan.has_ideas,
            'hasIncidents': plan.has_incidents,
            'hasMeetings': plan.has_meetings,
        },
        'maxAdmins': plan.max_admins,
        'associationsIncluded': plan.associations_included,
        'communesIncluded': plan.communes_included,
        'addons': [
            {
                'code': access.addon.code,
                'isEnabled': access.is_enabled,
                'quantity': access.quantity,
                'monthlyPrice': float(access.monthly_price) if access.monthly_price is not None else None,
                'yearlyPrice': float(access.yearly_price) if access.yearly_price is not None else None,
            }
            for access in plan.addon_access
        ],
    }


# ============================================================================
# SESSION
# ============================================================================

@superadmin_bp.route('/login', methods=['POST'])
def login() -> Response:
    """Super admin login - separate from tenant sessions."""
    session_db = get_session()
    form = LoginForm()
    if not form.validate():
        raise BusinessLogicError(form.error_message())

    superadmin = account_service.authenticate_superadmin(session_db, form.email.data, form.password.data)
    if not superadmin:
        raise AuthenticationRequiredError(superadmin_login_url(), 'Email ou mot de passe incorrect')

    session_db.commit()
    session.clear()
    session['superadmin_id'] = superadmin.id
    session.permanent = True
    logger.info(f"Superadmin {superadmin.id} logged in")
    return jsonify({'id': superadmin.id, 'email': superadmin.email, 'name': superadmin.name})


@superadmin_bp.route('/logout', methods=['POST'])
def logout() -> Response:
    session.pop('superadmin_id', None)
    return jsonify({'status': 'ok'})


# ============================================================================
# TENANTS
# ============================================================================

@superadmin_bp.route('/tenants')
@superadmin_required
def list_tenants() -> Response:
    """Tenant list, filterable by ?type=, ?status= and ?q=."""
    query = get_session().query(Tenant)

    tenant_type = request.args.get('type')
    if tenant_type:
        query = query.filter(Tenant.tenant_type == _parse_enum(TenantType, tenant_type, 'Type'))
    status = request.args.get('status')
    if status:
        query = query.filter(Tenant.lifecycle_status == _parse_enum(LifecycleStatus, status, 'Statut'))
    search = (request.args.get('q') or '').strip()
    if search:
        like = f'%{search}%'
        query = query.filter(Tenant.name.ilike(like) | Tenant.slug.ilike(like))

    tenants = query.order_by(Tenant.name).all()
    return jsonify({'tenants': [_tenant_summary(t) for t in tenants]})


@superadmin_bp.route('/tenants', methods=['POST'])
@superadmin_required
def create_tenant() -> Tuple[Response, int]:
    """Create a billing-owner tenant, optionally subscribed to a plan."""
    session_db = get_session()
    data = _json_body()
    tenant_type = _parse_enum(TenantType, data.get('tenantType'), 'Type')
    tenant = hierarchy_service.create_root_tenant(session_db, tenant_type, data.get('name'), data.get('slug'))
    if data.get('planCode'):
        entitlement_service.assign_plan(session_db, tenant, data['planCode'])
    session_db.commit()
    return jsonify(_tenant_summary(tenant)), 201


@superadmin_bp.route('/tenants/<int:tenant_id>')
@superadmin_required
def tenant_detail(tenant_id: int) -> Response:
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    entitlements = entitlement_service.resolve_entitlements(session_db, tenant)
    override = tenant.feature_override

    return jsonify({
        'tenant': _tenant_summary(tenant),
        'billingRootId': hierarchy_service.get_billing_root(tenant).id,
        'children': [_tenant_summary(c) for c in hierarchy_service.get_children(session_db, tenant, True)],
        'features': entitlement_service.features_payload(entitlements),
        'quotas': quota_service.get_all_quotas(session_db, tenant),
        'billingState': resolve_billing_state(tenant).to_dict(),
        'featureOverrides': {
            key: getattr(override, column) for key, column in OVERRIDE_FIELDS.items()
        } if override else None,
    })


@superadmin_bp.route('/tenants/<int:tenant_id>/suspend', methods=['POST'])
@superadmin_required
def suspend_tenant(tenant_id: int) -> Response:
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    form = TenantSuspendForm()
    if not form.validate():
        raise BusinessLogicError(form.error_message())
    lifecycle_service.suspend_tenant(session_db, tenant, form.reason.data)
    session_db.commit()
    return jsonify(_tenant_summary(tenant))


@superadmin_bp.route('/tenants/<int:tenant_id>/reactivate', methods=['POST'])
@superadmin_required
def reactivate_tenant(tenant_id: int) -> Response:
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    lifecycle_service.reactivate_tenant(session_db, tenant)
    session_db.commit()
    return jsonify(_tenant_summary(tenant))


@superadmin_bp.route('/tenants/<int:tenant_id>/archive', methods=['POST'])
@superadmin_required
def archive_tenant(tenant_id: int) -> Response:
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    form = TenantSuspendForm()
    if not form.validate():
        raise BusinessLogicError(form.error_message())
    lifecycle_service.archive_tenant(session_db, tenant, form.reason.data)
    session_db.commit()
    return jsonify(_tenant_summary(tenant))


@superadmin_bp.route('/tenants/<int:tenant_id>/billing-status', methods=['PUT'])
@superadmin_required
def update_billing_status(tenant_id: int) -> Response:
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    form = BillingStatusForm()
    if not form.validate():
        raise BusinessLogicError(form.error_message())
    lifecycle_service.set_billing_status(session_db, tenant, BillingStatus(form.billing_status.data))
    session_db.commit()
    return jsonify(_tenant_summary(tenant))


@superadmin_bp.route('/tenants/<int:tenant_id>/plan', methods=['PUT'])
@superadmin_required
def update_plan(tenant_id: int) -> Response:
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    plan_code = _json_body().get('planCode')
    if not plan_code:
        raise BusinessLogicError('planCode est requis')
    entitlement_service.assign_plan(session_db, tenant, plan_code)
    session_db.commit()
    return jsonify(_tenant_summary(tenant))


@superadmin_bp.route('/tenants/<int:tenant_id>/parent', methods=['PUT'])
@superadmin_required
def update_parent(tenant_id: int) -> Response:
    """Attach under {parentSlug}, or detach with {parentSlug: null}."""
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    parent_slug: Optional[str] = _json_body().get('parentSlug')
    parent = hierarchy_service.get_tenant_by_slug(session_db, parent_slug) if parent_slug else None

    hierarchy_service.set_parent(session_db, tenant, parent)
    entitlement_service.invalidate_tenant_tree(session_db, tenant)
    session_db.commit()
    return jsonify(_tenant_summary(tenant))


@superadmin_bp.route('/tenants/<int:tenant_id>/feature-overrides', methods=['PUT'])
@superadmin_required
def update_feature_overrides(tenant_id: int) -> Response:
    """Tri-state overrides: true grants, false withdraws, null follows the plan."""
    session_db = get_session()
    tenant = _get_tenant_or_404(tenant_id)
    data = _json_body()

    values = {}
    for key, column in OVERRIDE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if column.startswith('has_') and value is not None and not isinstance(value, bool):
            raise BusinessLogicError(f'{key} doit valoir true, false ou null')
        if column == 'max_admins' and value is not None and (not isinstance(value, int) or value < 0):
            raise BusinessLogicError('maxAdmins doit être un entier positif ou null')
        values[column] = value

    override = entitlement_service.set_feature_override(session_db, tenant, **values)
    session_db.commit()
    return jsonify({key: getattr(override, column) for key, column in OVERRIDE_FIELDS.items()})


# ============================================================================
# PLAN CATALOG
# ============================================================================

@superadmin_bp.route('/plans')
@superadmin_required
def list_plans() -> Response:
    plans = get_session().query(SubscriptionPlan).order_by(SubscriptionPlan.display_order).all()
    return jsonify({'plans': [_plan_dict(p) for p in plans]})


@superadmin_bp.route('/plans/<code>/features', methods=['PUT'])
@superadmin_required
def update_plan_features(code: str) -> Response:
    """Replace catalog assignments; an empty list falls back to the legacy flags."""
    session_db = get_session()
    plan = _get_plan_or_404(code)
    features = _json_body().get('features')
    if not isinstance(features, list):
        raise BusinessLogicError('features doit être une liste de codes')
    entitlement_service.set_plan_features(session_db, plan, features)
    session_db.commit()
    return jsonify(_plan_dict(plan))


@superadmin_bp.route('/plans/<code>/addons/<addon_code>', methods=['PUT'])
@superadmin_required
def update_plan_addon(code: str, addon_code: str) -> Response:
    session_db = get_session()
    plan = _get_plan_or_404(code)
    data = _json_body()
    entitlement_service.set_plan_addon_access(
        session_db,
        plan,
        _parse_enum(AddonCode, addon_code, 'Option'),
        is_enabled=bool(data.get('isEnabled', True)),
        quantity=int(data.get('quantity') or 0),
        monthly_price=data.get('monthlyPrice'),
        yearly_price=data.get('yearlyPrice'),
    )
    session_db.commit()
    return jsonify(_plan_dict(plan))
