"""
Back-office accounts: tenant admins, elected officials and super admins.

Admin creation consumes the ADMINS quota through the quota write path.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session

from voxpopulous.models import (
    Tenant, TenantUser, UserRole, ElectedOfficial, ElectedOfficialMenuPermission, AdminMenuCode, SuperAdmin
)
from voxpopulous.exceptions import BusinessLogicError, NotFoundError, PermissionDeniedError
from voxpopulous.principals import PrincipalKind
from voxpopulous.services.quota_service import QuotaResource, create_with_quota

logger = logging.getLogger(__name__)


def _normalize_email(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email else None


# ============================================================================
# AUTHENTICATION
# ============================================================================

def authenticate_tenant_user(session: Session, tenant: Tenant, email: str, password: str) -> Optional[TenantUser]:
    """Return the active admin of tenant matching the credentials, or None."""
    user = session.query(TenantUser).filter_by(
        tenant_id=tenant.id, email=_normalize_email(email), active=True
    ).first()
    if not user or not user.check_password(password):
        logger.info(f"Failed admin login on tenant {tenant.id}")
        return None
    user.last_login_at = datetime.now(timezone.utc)
    return user


def authenticate_elected_official(
    session: Session, tenant: Tenant, email: str, password: str
) -> Optional[ElectedOfficial]:
    """Return the active official of tenant matching the credentials, or None."""
    official = session.query(ElectedOfficial).filter_by(
        tenant_id=tenant.id, email=_normalize_email(email), is_active=True
    ).first()
    if not official or not official.check_password(password):
        logger.info(f"Failed elected official login on tenant {tenant.id}")
        return None
    official.last_login_at = datetime.now(timezone.utc)
    return official


def authenticate_superadmin(session: Session, email: str, password: str) -> Optional[SuperAdmin]:
    superadmin = session.query(SuperAdmin).filter_by(email=_normalize_email(email)).first()
    if not superadmin or not superadmin.check_password(password):
        logger.warning(f"Failed superadmin login for {email}")
        return None
    superadmin.last_login = datetime.now(timezone.utc)
    return superadmin


# ============================================================================
# TENANT ADMINS
# ============================================================================

def list_tenant_users(session: Session, tenant: Tenant) -> List[TenantUser]:
    return session.query(TenantUser).filter_by(tenant_id=tenant.id).order_by(TenantUser.name).all()


def create_tenant_user(
    session: Session,
    tenant: Tenant,
    name: str,
    email: str,
    password: str,
    role: str = UserRole.ADMIN.value
) -> TenantUser:
    """
    Create a back-office admin for tenant, within the ADMINS quota.

    Raises:
        BusinessLogicError: email already used
        QuotaExceededError / QuotaRaceLostError: no admin slot left
    """
    email = _normalize_email(email)
    if session.query(TenantUser.id).filter(TenantUser.email == email).first():
        raise BusinessLogicError('Cet email est déjà utilisé par un autre compte')

    # Hashed before taking the quota lock
    user = TenantUser(tenant_id=tenant.id, name=name.strip(), email=email, role=role, active=True)
    user.set_password(password)

    def factory():
        session.add(user)
        return user

    user = create_with_quota(session, tenant, QuotaResource.ADMINS, factory)
    logger.info(f"Admin {user.id} created on tenant {tenant.id}")
    return user


def deactivate_tenant_user(session: Session, tenant: Tenant, user_id: int, acting_user_id: Optional[int] = None):
    """
    Deactivate an admin of tenant; it stops counting against the quota.

    Raises:
        NotFoundError: user not in this tenant
        BusinessLogicError: an admin cannot remove their own account
    """
    user = session.query(TenantUser).filter_by(id=user_id, tenant_id=tenant.id).first()
    if not user:
        raise NotFoundError('Administrateur introuvable')
    if acting_user_id is not None and user.id == acting_user_id:
        raise BusinessLogicError('Vous ne pouvez pas supprimer votre propre compte')

    user.active = False
    session.flush()
    logger.info(f"Admin {user.id} deactivated on tenant {tenant.id}")
    return user


# ============================================================================
# ELECTED OFFICIALS
# ============================================================================

def list_elected_officials(session: Session, tenant: Tenant) -> List[ElectedOfficial]:
    return session.query(ElectedOfficial).filter_by(tenant_id=tenant.id).order_by(
        ElectedOfficial.display_order, ElectedOfficial.last_name
    ).all()


def _parse_menu_codes(codes: Iterable) -> List[AdminMenuCode]:
    parsed = []
    for code in codes or ():
        try:
            parsed.append(code if isinstance(code, AdminMenuCode) else AdminMenuCode(code))
        except ValueError:
            raise BusinessLogicError(f'Menu inconnu : {code}')
    return parsed


def _assert_grantable(granted_by, has_full_access: bool, codes: Iterable[AdminMenuCode]) -> None:
    """A restricted elected official only hands out the menus they hold."""
    if granted_by is None or granted_by.kind != PrincipalKind.ELECTED_OFFICIAL or granted_by.has_full_access:
        return
    if has_full_access:
        raise PermissionDeniedError("Vous ne pouvez pas accorder un accès complet")
    extra = sorted(code.value for code in set(codes) - granted_by.menu_codes)
    if extra:
        raise PermissionDeniedError(f"Vous ne pouvez pas accorder l'accès : {', '.join(extra)}")


def create_elected_official(
    session: Session,
    tenant: Tenant,
    first_name: str,
    last_name: str,
    function: str,
    email: Optional[str] = None,
    password: Optional[str] = None,
    has_full_access: bool = False,
    menu_codes: Iterable = (),
    granted_by=None
) -> ElectedOfficial:
    """
    Create an elected official; without password the official cannot sign in.

    granted_by is the acting principal; a restricted official cannot grant
    more than their own menus.
    """
    codes = set(_parse_menu_codes(menu_codes))
    _assert_grantable(granted_by, has_full_access, codes)
    email = _normalize_email(email)
    if email and session.query(ElectedOfficial.id).filter_by(tenant_id=tenant.id, email=email).first():
        raise BusinessLogicError('Un élu utilise déjà cet email')

    official = ElectedOfficial(
        tenant_id=tenant.id,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        function=function.strip(),
        email=email,
        has_full_access=bool(has_full_access),
        is_active=True,
    )
    if password:
        official.set_password(password)
    for code in codes:
        official.menu_permissions.append(ElectedOfficialMenuPermission(menu_code=code))

    session.add(official)
    session.flush()
    logger.info(f"Elected official {official.id} created on tenant {tenant.id}")
    return official


def set_menu_permissions(
    session: Session,
    tenant: Tenant,
    official_id: int,
    has_full_access: bool,
    menu_codes: Iterable,
    granted_by=None
) -> ElectedOfficial:
    """Replace the menu permissions of an official of tenant."""
    official = session.query(ElectedOfficial).filter_by(id=official_id, tenant_id=tenant.id).first()
    if not official:
        raise NotFoundError('Élu introuvable')

    wanted = set(_parse_menu_codes(menu_codes))
    _assert_grantable(granted_by, has_full_access, wanted)
    official.has_full_access = bool(has_full_access)
    for permission in list(official.menu_permissions):
        if permission.menu_code not in wanted:
            official.menu_permissions.remove(permission)
    current = {p.menu_code for p in official.menu_permissions}
    for code in wanted - current:
        official.menu_permissions.append(ElectedOfficialMenuPermission(menu_code=code))

    session.flush()
    logger.info(
        f"Menu permissions of official {official.id} set to "
        f"{'FULL' if official.has_full_access else sorted(c.value for c in wanted)}"
    )
    return official


# ============================================================================
# SUPER ADMINS
# ============================================================================

def create_superadmin(session: Session, email: str, password: str, name: str = 'Super Admin') -> SuperAdmin:
    email = _normalize_email(email)
    if session.query(SuperAdmin.id).filter_by(email=email).first():
        raise BusinessLogicError(f'Un super administrateur existe déjà pour {email}')
    superadmin = SuperAdmin(email=email, name=name)
    superadmin.set_password(password)
    session.add(superadmin)
    session.flush()
    return superadmin
