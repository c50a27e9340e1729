"""
Request principals.

The session cookie is resolved once per request into one Principal value
(g.principal) which permission checks receive explicitly.
"""
import enum
import logging
from voxpopulous.models import SuperAdmin, TenantUser, ElectedOfficial, Tenant, TenantType

logger = logging.getLogger(__name__)


class PrincipalKind(enum.Enum):
    SUPER_ADMIN = 'SUPER_ADMIN'
    TENANT_ADMIN = 'TENANT_ADMIN'
    ELECTED_OFFICIAL = 'ELECTED_OFFICIAL'
    ASSOCIATION_ADMIN = 'ASSOCIATION_ADMIN'
    ANONYMOUS = 'ANONYMOUS'


class Principal:
    """Base principal. Tenant-bound principals carry tenant_id."""
    kind = None
    tenant_id = None

    @property
    def is_authenticated(self):
        return self.kind != PrincipalKind.ANONYMOUS

    @property
    def is_super_admin(self):
        return self.kind == PrincipalKind.SUPER_ADMIN

    def can_access_tenant(self, tenant):
        """Super admins reach every tenant; others only their own."""
        if self.is_super_admin:
            return True
        return self.tenant_id is not None and tenant is not None and self.tenant_id == tenant.id

    def to_dict(self):
        return {'kind': self.kind.value}


class AnonymousPrincipal(Principal):
    kind = PrincipalKind.ANONYMOUS


class SuperAdminPrincipal(Principal):
    kind = PrincipalKind.SUPER_ADMIN

    def __init__(self, superadmin):
        self.superadmin = superadmin
        self.id = superadmin.id

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'id': self.id,
            'name': self.superadmin.name,
            'email': self.superadmin.email,
        }


class TenantAdminPrincipal(Principal):
    kind = PrincipalKind.TENANT_ADMIN

    def __init__(self, user):
        self.user = user
        self.id = user.id
        self.tenant_id = user.tenant_id

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'id': self.id,
            'name': self.user.name,
            'email': self.user.email,
            'role': self.user.role,
            'isElectedOfficial': False,
        }


class AssociationAdminPrincipal(TenantAdminPrincipal):
    """Admin account of an ASSOCIATION tenant."""
    kind = PrincipalKind.ASSOCIATION_ADMIN


class ElectedOfficialPrincipal(Principal):
    kind = PrincipalKind.ELECTED_OFFICIAL

    def __init__(self, official):
        self.official = official
        self.id = official.id
        self.tenant_id = official.tenant_id
        self.has_full_access = official.has_full_access
        self.menu_codes = frozenset(official.menu_codes)

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'id': self.id,
            'name': self.official.full_name,
            'email': self.official.email,
            'isElectedOfficial': True,
            'electedOfficial': self.official.to_dict(),
        }


ANONYMOUS = AnonymousPrincipal()


def has_menu_access(principal, menu_code):
    """
    Check whether principal may open an admin menu.

    Args:
        principal: Principal of the request
        menu_code: AdminMenuCode, or None for an unmapped route

    Returns:
        bool: anonymous never; elected officials need full access or the code
            in their permissions (unmapped routes are denied to them); every
            other authenticated principal always
    """
    if not principal.is_authenticated:
        return False
    if principal.kind != PrincipalKind.ELECTED_OFFICIAL:
        return True
    if principal.has_full_access:
        return True
    if menu_code is None:
        return False
    return menu_code in principal.menu_codes


def resolve_principal(db_session, flask_session):
    """
    Build the principal from the session cookie.

    Keys: superadmin_id; admin_user_id + tenant_id; elected_official_id +
    tenant_id. Stale or mismatched keys resolve to ANONYMOUS.
    """
    superadmin_id = flask_session.get('superadmin_id')
    if superadmin_id:
        superadmin = db_session.query(SuperAdmin).filter_by(id=superadmin_id).first()
        if superadmin:
            return SuperAdminPrincipal(superadmin)
        logger.info(f"Stale superadmin session {superadmin_id}")

    tenant_id = flask_session.get('tenant_id')
    if not tenant_id:
        return ANONYMOUS

    admin_user_id = flask_session.get('admin_user_id')
    if admin_user_id:
        user = db_session.query(TenantUser).filter_by(id=admin_user_id, tenant_id=tenant_id, active=True).first()
        if user:
            tenant = db_session.query(Tenant).filter_by(id=tenant_id).first()
            if tenant and tenant.tenant_type == TenantType.ASSOCIATION:
                return AssociationAdminPrincipal(user)
            return TenantAdminPrincipal(user)

    official_id = flask_session.get('elected_official_id')
    if official_id:
        official = db_session.query(ElectedOfficial).filter_by(
            id=official_id, tenant_id=tenant_id, is_active=True
        ).first()
        if official:
            return ElectedOfficialPrincipal(official)

    return ANONYMOUS
