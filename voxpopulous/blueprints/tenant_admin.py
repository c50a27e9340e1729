"""
Tenant back-office API.

Routes (prefix /api/tenants/<slug>):
- /admin/login, /admin/logout - Tenant and association admin session
- /elus/login - Elected official session
- /admin/me - Current principal with billing banners
- /admin/nav - Navigation model
- /admin/quotas - Admin, association and commune quotas
- /admin/admins - Back-office administrators
- /admin/communes - Member communes (EPCI only)
- /admin/associations - Attached associations
- /admin/elus - Elected officials and their menu permissions
- /admin/billing - Plan, addons and purchases (billing owners only)
"""

import logging
from typing import Tuple
from flask import Blueprint, request, jsonify, session, g, current_app, Response
from voxpopulous.database import get_session
from voxpopulous.exceptions import AuthenticationRequiredError, BusinessLogicError, NotFoundError, PermissionDeniedError
from voxpopulous.models import AdminMenuCode, AddonCode, TenantType
from voxpopulous.principals import PrincipalKind
from voxpopulous.navigation import build_navigation, menu_code_for_path, path_access_allowed
from voxpopulous.decorators.admin_security import tenant_admin_required, tenant_login_url
from voxpopulous.decorators.permissions import (
    require_menu, require_writable, billing_root_required, get_entitlements
)
from voxpopulous.forms.admin_forms import (
    LoginForm, TenantUserForm, ChildTenantForm, ElectedOfficialForm, MenuPermissionsForm, AddonPurchaseForm
)
from voxpopulous.services import account_service, hierarchy_service, quota_service
from voxpopulous.services.hierarchy_service import get_tenant_by_slug
from voxpopulous.services.entitlement_service import purchase_addon
from voxpopulous.services.billing_state_service import resolve_billing_state

logger = logging.getLogger(__name__)

tenant_admin_bp = Blueprint('tenant_admin', __name__, url_prefix='/api/tenants')

SESSION_KEYS = ('superadmin_id', 'admin_user_id', 'elected_official_id', 'tenant_id')


def _validated(form_class):
    """Instantiate a JSON form from the request and validate it."""
    form = form_class()
    if not form.validate():
        raise BusinessLogicError(form.error_message())
    return form


def _start_tenant_session(tenant, **keys):
    for key in SESSION_KEYS:
        session.pop(key, None)
    session['tenant_id'] = tenant.id
    session.update(keys)
    session.permanent = True


def _me_payload():
    state = resolve_billing_state(g.tenant)
    payload = g.principal.to_dict()
    payload.update(state.to_dict())
    payload['tenant'] = g.tenant.to_public_dict()
    return payload


def _public_base_path():
    return current_app.config.get('PUBLIC_BASE_PATH', '/structures')


# ============================================================================
# SESSION
# ============================================================================

@tenant_admin_bp.route('/<slug>/admin/login', methods=['POST'])
def login(slug: str) -> Response:
    """Tenant admin login; accounts of ASSOCIATION tenants sign in as association admins."""
    session_db = get_session()
    tenant = get_tenant_by_slug(session_db, slug)
    form = _validated(LoginForm)

    user = account_service.authenticate_tenant_user(session_db, tenant, form.email.data, form.password.data)
    if not user:
        raise AuthenticationRequiredError(tenant_login_url(slug), 'Email ou mot de passe incorrect')

    session_db.commit()
    _start_tenant_session(tenant, admin_user_id=user.id)
    logger.info(f"Admin {user.id} logged in on tenant {tenant.id}")

    state = resolve_billing_state(tenant)
    return jsonify({'user': user.to_dict(), **state.to_dict()})


@tenant_admin_bp.route('/<slug>/elus/login', methods=['POST'])
def elected_official_login(slug: str) -> Response:
    session_db = get_session()
    tenant = get_tenant_by_slug(session_db, slug)
    form = _validated(LoginForm)

    official = account_service.authenticate_elected_official(
        session_db, tenant, form.email.data, form.password.data
    )
    if not official:
        raise AuthenticationRequiredError(tenant_login_url(slug), 'Email ou mot de passe incorrect')

    session_db.commit()
    _start_tenant_session(tenant, elected_official_id=official.id)
    logger.info(f"Elected official {official.id} logged in on tenant {tenant.id}")

    state = resolve_billing_state(tenant)
    return jsonify({'electedOfficial': official.to_dict(), **state.to_dict()})


@tenant_admin_bp.route('/<slug>/admin/logout', methods=['POST'])
def logout(slug: str) -> Response:
    for key in SESSION_KEYS:
        session.pop(key, None)
    return jsonify({'status': 'ok'})


@tenant_admin_bp.route('/<slug>/admin/me')
@tenant_admin_required
def me(slug: str) -> Response:
    return jsonify(_me_payload())


@tenant_admin_bp.route('/<slug>/admin/nav')
@tenant_admin_required
def navigation(slug: str) -> Response:
    """Navigation model: every item of the tenant type, enabled or locked with a reason."""
    items = build_navigation(g.tenant, get_entitlements(), g.principal, base_path=_public_base_path())
    state = resolve_billing_state(g.tenant)
    return jsonify({'items': items, **state.to_dict()})


@tenant_admin_bp.route('/<slug>/admin/nav/check')
@tenant_admin_required
def navigation_check(slug: str) -> Response:
    """Route guard for the admin shell: may the principal open ?path=..."""
    path = request.args.get('path', '')
    menu_code = menu_code_for_path(path)
    return jsonify({
        'path': path,
        'menuCode': menu_code.value if menu_code else None,
        'allowed': path_access_allowed(g.principal, path),
    })


@tenant_admin_bp.route('/<slug>/admin/quotas')
@tenant_admin_required
@require_menu(AdminMenuCode.DASHBOARD)
def quotas(slug: str) -> Response:
    return jsonify(quota_service.get_all_quotas(get_session(), g.tenant))


# ============================================================================
# ADMINS
# ============================================================================

@tenant_admin_bp.route('/<slug>/admin/admins')
@tenant_admin_required
@require_menu(AdminMenuCode.ADMINS)
def list_admins(slug: str) -> Response:
    session_db = get_session()
    users = account_service.list_tenant_users(session_db, g.tenant)
    quota = quota_service.check_quota(session_db, g.tenant, quota_service.QuotaResource.ADMINS)
    return jsonify({'admins': [u.to_dict() for u in users], 'quota': quota.to_dict()})


@tenant_admin_bp.route('/<slug>/admin/admins', methods=['POST'])
@tenant_admin_required
@require_menu(AdminMenuCode.ADMINS)
@require_writable
def create_admin(slug: str) -> Tuple[Response, int]:
    session_db = get_session()
    form = _validated(TenantUserForm)
    user = account_service.create_tenant_user(
        session_db, g.tenant, form.name.data, form.email.data, form.password.data, form.role.data
    )
    session_db.commit()
    return jsonify(user.to_dict()), 201


@tenant_admin_bp.route('/<slug>/admin/admins/<int:user_id>', methods=['DELETE'])
@tenant_admin_required
@require_menu(AdminMenuCode.ADMINS)
@require_writable
def delete_admin(slug: str, user_id: int) -> Response:
    session_db = get_session()
    acting_user_id = g.principal.id if g.principal.kind in (
        PrincipalKind.TENANT_ADMIN, PrincipalKind.ASSOCIATION_ADMIN
    ) else None
    user = account_service.deactivate_tenant_user(session_db, g.tenant, user_id, acting_user_id)
    session_db.commit()
    return jsonify(user.to_dict())


# ============================================================================
# CHILD TENANTS
# ============================================================================

def _require_epci():
    if not g.tenant.is_epci:
        raise NotFoundError('Seuls les EPCI gèrent des communes membres')


def _require_association_parent():
    if g.tenant.is_association:
        raise NotFoundError("Une association ne gère pas d'associations rattachées")


@tenant_admin_bp.route('/<slug>/admin/communes')
@tenant_admin_required
@require_menu(AdminMenuCode.ASSOCIATIONS)
def list_communes(slug: str) -> Response:
    _require_epci()
    session_db = get_session()
    communes = hierarchy_service.get_member_communes(session_db, g.tenant)
    quota = quota_service.check_quota(session_db, g.tenant, quota_service.QuotaResource.COMMUNES)
    return jsonify({'communes': [c.to_public_dict() for c in communes], 'quota': quota.to_dict()})


@tenant_admin_bp.route('/<slug>/admin/communes/quote')
@tenant_admin_required
@require_menu(AdminMenuCode.ASSOCIATIONS)
def quote_communes(slug: str) -> Response:
    _require_epci()
    increment = request.args.get('increment', 1, type=int)
    return jsonify(quota_service.quote_commune_addition(get_session(), g.tenant, increment))


@tenant_admin_bp.route('/<slug>/admin/communes', methods=['POST'])
@tenant_admin_required
@require_menu(AdminMenuCode.ASSOCIATIONS)
@require_writable
def create_commune(slug: str) -> Tuple[Response, int]:
    _require_epci()
    session_db = get_session()
    form = _validated(ChildTenantForm)
    commune = hierarchy_service.create_child_tenant(
        session_db, g.tenant, TenantType.MAIRIE, form.name.data, form.slug.data or None
    )
    session_db.commit()
    return jsonify(commune.to_public_dict()), 201


@tenant_admin_bp.route('/<slug>/admin/associations')
@tenant_admin_required
@require_menu(AdminMenuCode.ASSOCIATIONS)
def list_associations(slug: str) -> Response:
    _require_association_parent()
    session_db = get_session()
    associations = hierarchy_service.get_child_associations(session_db, g.tenant)
    quota = quota_service.check_quota(session_db, g.tenant, quota_service.QuotaResource.ASSOCIATIONS)
    return jsonify({'associations': [a.to_public_dict() for a in associations], 'quota': quota.to_dict()})


@tenant_admin_bp.route('/<slug>/admin/associations', methods=['POST'])
@tenant_admin_required
@require_menu(AdminMenuCode.ASSOCIATIONS)
@require_writable
def create_association(slug: str) -> Tuple[Response, int]:
    _require_association_parent()
    session_db = get_session()
    form = _validated(ChildTenantForm)
    association = hierarchy_service.create_child_tenant(
        session_db, g.tenant, TenantType.ASSOCIATION, form.name.data, form.slug.data or None
    )
    session_db.commit()
    return jsonify(association.to_public_dict()), 201


# ============================================================================
# ELECTED OFFICIALS
# ============================================================================

@tenant_admin_bp.route('/<slug>/admin/elus')
@tenant_admin_required
@require_menu(AdminMenuCode.ELUS)
def list_elus(slug: str) -> Response:
    officials = account_service.list_elected_officials(get_session(), g.tenant)
    return jsonify({'elus': [o.to_dict() for o in officials]})


@tenant_admin_bp.route('/<slug>/admin/elus', methods=['POST'])
@tenant_admin_required
@require_menu(AdminMenuCode.ELUS)
@require_writable
def create_elu(slug: str) -> Tuple[Response, int]:
    session_db = get_session()
    form = _validated(ElectedOfficialForm)
    official = account_service.create_elected_official(
        session_db, g.tenant,
        first_name=form.first_name.data,
        last_name=form.last_name.data,
        function=form.function.data,
        email=form.email.data or None,
        password=form.password.data or None,
        has_full_access=form.has_full_access.data,
        menu_codes=form.menu_codes.data,
        granted_by=g.principal,
    )
    session_db.commit()
    return jsonify(official.to_dict()), 201


@tenant_admin_bp.route('/<slug>/admin/elus/<int:official_id>/permissions', methods=['PUT'])
@tenant_admin_required
@require_menu(AdminMenuCode.ELUS)
@require_writable
def update_elu_permissions(slug: str, official_id: int) -> Response:
    if g.principal.kind == PrincipalKind.ELECTED_OFFICIAL and g.principal.id == official_id:
        raise PermissionDeniedError('Vous ne pouvez pas modifier vos propres accès')

    session_db = get_session()
    form = _validated(MenuPermissionsForm)
    official = account_service.set_menu_permissions(
        session_db, g.tenant, official_id, form.has_full_access.data, form.menu_codes.data,
        granted_by=g.principal
    )
    session_db.commit()
    return jsonify(official.to_dict())


# ============================================================================
# BILLING
# ============================================================================

@tenant_admin_bp.route('/<slug>/admin/billing')
@tenant_admin_required
@require_menu(AdminMenuCode.BILLING)
@billing_root_required
def billing(slug: str) -> Response:
    """Plan, addon offers and quotas of a billing owner."""
    session_db = get_session()
    entitlements = get_entitlements()
    plan = entitlements.plan

    addons = []
    for code, access in entitlements.addon_access.items():
        if code == AddonCode.MAIRIES and not g.tenant.is_epci:
            continue
        addons.append(access.to_dict())

    return jsonify({
        'plan': {
            'code': plan.code,
            'name': plan.name,
            'monthlyPrice': plan.monthly_price,
            'yearlyPrice': plan.yearly_price,
            'formattedMonthlyPrice': plan.formatted_monthly_price,
        } if plan else None,
        'billingStatus': g.tenant.billing_status.value,
        'billingInterval': g.tenant.billing_interval,
        'trialEndsAt': g.tenant.trial_ends_at.isoformat() if g.tenant.trial_ends_at else None,
        'addons': addons,
        'quotas': quota_service.get_all_quotas(session_db, g.tenant),
        **resolve_billing_state(g.tenant).to_dict(),
    })


@tenant_admin_bp.route('/<slug>/admin/billing/addons', methods=['POST'])
@tenant_admin_required
@require_menu(AdminMenuCode.BILLING)
@billing_root_required
@require_writable
def buy_addon(slug: str) -> Response:
    session_db = get_session()
    form = _validated(AddonPurchaseForm)
    if form.quantity.data is None:
        raise BusinessLogicError('La quantité est requise')

    addon_code = AddonCode(form.addon.data)
    result = purchase_addon(session_db, g.tenant, addon_code, form.quantity.data)
    session_db.commit()
    return jsonify(result)
