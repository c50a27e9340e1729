"""
Tenant hierarchy service.

Reads and validated writes on the EPCI -> MAIRIE -> ASSOCIATION tree. Parent
links only point one level up, so reads never need cycle detection; writes go
through set_parent(), which rejects self-parenting, ancestor loops and type
violations.
"""

import logging
import re
import unicodedata
from typing import List, Optional
from sqlalchemy.orm import Session

from voxpopulous.models import Tenant, TenantType, LifecycleStatus, BillingStatus
from voxpopulous.exceptions import NotFoundError, HierarchyError, BusinessLogicError

logger = logging.getLogger(__name__)

# Allowed parent types per child type
ALLOWED_PARENT_TYPES = {
    TenantType.EPCI: (),
    TenantType.MAIRIE: (TenantType.EPCI,),
    TenantType.ASSOCIATION: (TenantType.MAIRIE, TenantType.EPCI),
}


def get_tenant(session: Session, tenant_id: int) -> Tenant:
    """Fetch a tenant by id or raise NotFoundError."""
    tenant = session.query(Tenant).filter_by(id=tenant_id).first()
    if not tenant:
        raise NotFoundError('Structure introuvable')
    return tenant


def get_tenant_by_slug(session: Session, slug: str, include_archived: bool = False) -> Tenant:
    """
    Fetch a tenant by its routing slug.

    Args:
        session: Database session
        slug: Tenant slug
        include_archived: Archived tenants are hidden unless True

    Returns:
        Tenant
    """
    query = session.query(Tenant).filter(Tenant.slug == slug)
    if not include_archived:
        query = query.filter(Tenant.lifecycle_status != LifecycleStatus.ARCHIVED)
    tenant = query.first()
    if not tenant:
        raise NotFoundError('Structure introuvable')
    return tenant


def get_parent(tenant: Tenant) -> Optional[Tenant]:
    """Return the owning tenant one level up, if any."""
    if tenant.parent_epci_id:
        return tenant.parent_epci
    if tenant.parent_tenant_id:
        return tenant.parent_tenant
    return None


def get_billing_root(tenant: Tenant) -> Tenant:
    """
    Return the tenant that owns the subscription for this tenant.

    Child tenants delegate billing upwards; an association of a commune that
    belongs to an EPCI is billed through the EPCI.
    """
    current = tenant
    seen = {current.id}
    parent = get_parent(current)
    while parent is not None:
        if parent.id in seen:
            # Only reachable with data written outside set_parent()
            logger.error(f"Parent loop detected above tenant {tenant.id}")
            break
        seen.add(parent.id)
        current = parent
        parent = get_parent(current)
    return current


def get_ancestors(tenant: Tenant) -> List[Tenant]:
    """Return the chain of parents, nearest first."""
    ancestors = []
    seen = {tenant.id}
    parent = get_parent(tenant)
    while parent is not None and parent.id not in seen:
        ancestors.append(parent)
        seen.add(parent.id)
        parent = get_parent(parent)
    return ancestors


def get_children(session: Session, tenant: Tenant, include_archived: bool = False) -> List[Tenant]:
    """
    Return the direct children of a tenant.

    EPCI: member communes (MAIRIE) and directly attached associations.
    MAIRIE: attached associations. ASSOCIATION: none.
    """
    query = session.query(Tenant).filter(
        (Tenant.parent_epci_id == tenant.id) | (Tenant.parent_tenant_id == tenant.id)
    )
    if not include_archived:
        query = query.filter(Tenant.lifecycle_status != LifecycleStatus.ARCHIVED)
    return query.order_by(Tenant.tenant_type, Tenant.name).all()


def get_member_communes(session: Session, epci: Tenant, include_archived: bool = False) -> List[Tenant]:
    """Return the MAIRIE children of an EPCI."""
    query = session.query(Tenant).filter(
        Tenant.parent_epci_id == epci.id,
        Tenant.tenant_type == TenantType.MAIRIE
    )
    if not include_archived:
        query = query.filter(Tenant.lifecycle_status != LifecycleStatus.ARCHIVED)
    return query.order_by(Tenant.name).all()


def get_child_associations(session: Session, tenant: Tenant, include_archived: bool = False) -> List[Tenant]:
    """Return the ASSOCIATION children of a MAIRIE or EPCI."""
    query = session.query(Tenant).filter(
        Tenant.parent_tenant_id == tenant.id,
        Tenant.tenant_type == TenantType.ASSOCIATION
    )
    if not include_archived:
        query = query.filter(Tenant.lifecycle_status != LifecycleStatus.ARCHIVED)
    return query.order_by(Tenant.name).all()


def validate_parent(tenant: Tenant, parent: Tenant) -> None:
    """
    Check that parent may own tenant.

    Raises:
        HierarchyError: on self-parenting, ancestor loops, archived parents or
            type combinations the tree does not allow
    """
    if tenant.id is not None and parent.id == tenant.id:
        raise HierarchyError('Une structure ne peut pas être sa propre structure parente')

    if tenant.id is not None and any(a.id == tenant.id for a in get_ancestors(parent)):
        raise HierarchyError('Cette structure est déjà un ancêtre de la structure parente')

    allowed = ALLOWED_PARENT_TYPES[tenant.tenant_type]
    if parent.tenant_type not in allowed:
        if not allowed:
            raise HierarchyError('Un EPCI ne peut pas être rattaché à une autre structure')
        raise HierarchyError(
            f"Une structure {tenant.tenant_type.value} ne peut pas être rattachée à une structure "
            f"{parent.tenant_type.value}"
        )

    if parent.is_archived:
        raise HierarchyError('La structure parente est archivée')


def _release_own_subscription(tenant: Tenant) -> None:
    """Drop what a tenant bought as a billing root; children bill through their root."""
    if tenant.subscription_plan_id or tenant.addons:
        logger.info(f"Tenant {tenant.id} gives up its own plan and addons on attachment")
    tenant.subscription_plan_id = None
    tenant.plan = None
    tenant.billing_interval = None
    tenant.billing_status = BillingStatus.TRIAL
    tenant.trial_ends_at = None
    tenant.purchased_admins = 0
    tenant.purchased_associations = 0
    tenant.purchased_communes = 0
    tenant.addons.clear()


def set_parent(session: Session, tenant: Tenant, parent: Optional[Tenant]) -> Tenant:
    """
    Attach tenant under parent, or detach it when parent is None.

    A MAIRIE is stored under parent_epci_id, an ASSOCIATION under
    parent_tenant_id; the other link is always cleared. Attaching consumes a
    slot of the parent's commune or association quota through the same locked
    path as a creation, unless the tenant already counts against that pool,
    and releases the tenant's own plan and addons.

    Args:
        session: Database session
        tenant: Tenant to move
        parent: New parent or None

    Returns:
        Tenant: Updated tenant (flushed, not committed)

    Raises:
        HierarchyError: invalid parent
        QuotaExceededError: the parent has no slot left
    """
    from voxpopulous.services import quota_service

    if parent is None:
        tenant.parent_epci_id = None
        tenant.parent_tenant_id = None
        session.flush()
        logger.info(f"Tenant {tenant.id} detached from its parent")
        return tenant

    validate_parent(tenant, parent)
    current = get_parent(tenant)
    if current is not None and current.id == parent.id:
        return tenant

    if tenant.tenant_type == TenantType.MAIRIE:
        resource = quota_service.QuotaResource.COMMUNES
    else:
        resource = quota_service.QuotaResource.ASSOCIATIONS

    def attach():
        if tenant.tenant_type == TenantType.MAIRIE:
            tenant.parent_epci_id = parent.id
            tenant.parent_tenant_id = None
        else:
            tenant.parent_tenant_id = parent.id
            tenant.parent_epci_id = None
        _release_own_subscription(tenant)
        return tenant

    same_pool = current is not None and (
        quota_service.quota_owner(current, resource).id == quota_service.quota_owner(parent, resource).id
    )
    if same_pool:
        attach()
        session.flush()
    else:
        quota_service.create_with_quota(session, parent, resource, attach)

    logger.info(f"Tenant {tenant.id} attached to parent {parent.id}")
    return tenant


def slugify(value: str) -> str:
    """Turn a structure name into a URL-safe slug."""
    value = unicodedata.normalize('NFKD', value).encode('ascii', 'ignore').decode('ascii')
    value = re.sub(r'[^a-zA-Z0-9]+', '-', value).strip('-').lower()
    return value[:80]


def ensure_unique_slug(session: Session, slug: str) -> str:
    """Validate slug format and uniqueness."""
    if not slug or not re.match(r'^[a-z0-9]+(?:-[a-z0-9]+)*$', slug):
        raise BusinessLogicError('Identifiant de structure invalide')
    if session.query(Tenant.id).filter(Tenant.slug == slug).first():
        raise BusinessLogicError(f'L\'identifiant "{slug}" est déjà utilisé')
    return slug


def create_root_tenant(session: Session, tenant_type: TenantType, name: str, slug: Optional[str] = None) -> Tenant:
    """Create a tenant without parent; it owns its subscription."""
    name = (name or '').strip()
    if not name:
        raise BusinessLogicError('Le nom de la structure est requis')
    tenant = Tenant(slug=ensure_unique_slug(session, slug or slugify(name)), name=name, tenant_type=tenant_type)
    session.add(tenant)
    session.flush()
    logger.info(f"Created {tenant_type.value} tenant '{tenant.slug}'")
    return tenant


def create_child_tenant(
    session: Session,
    parent: Tenant,
    tenant_type: TenantType,
    name: str,
    slug: Optional[str] = None
) -> Tenant:
    """
    Create a MAIRIE or ASSOCIATION under parent, through the quota write path.

    MAIRIE children consume the EPCI's commune quota; ASSOCIATION children the
    association quota. The caller commits.

    Returns:
        Tenant: Created child tenant (flushed)
    """
    from voxpopulous.services import quota_service

    name = (name or '').strip()
    if not name:
        raise BusinessLogicError('Le nom de la structure est requis')
    slug = ensure_unique_slug(session, slug or slugify(name))

    if tenant_type == TenantType.MAIRIE:
        resource = quota_service.QuotaResource.COMMUNES
    elif tenant_type == TenantType.ASSOCIATION:
        resource = quota_service.QuotaResource.ASSOCIATIONS
    else:
        raise HierarchyError('Un EPCI ne peut pas être créé comme structure enfant')

    child = Tenant(slug=slug, name=name, tenant_type=tenant_type)
    validate_parent(child, parent)

    def factory():
        if tenant_type == TenantType.MAIRIE:
            child.parent_epci_id = parent.id
        else:
            child.parent_tenant_id = parent.id
        session.add(child)
        return child

    quota_service.create_with_quota(session, parent, resource, factory)
    logger.info(f"Created child {tenant_type.value} '{slug}' under tenant {parent.id}")
    return child
