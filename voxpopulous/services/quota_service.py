"""
Quota enforcement for admins, associations and member communes.

Quota = plan included quantity + purchased quantity. Creations go through
create_with_quota(), which re-counts under a row lock on the quota owner so
that N concurrent attempts against K remaining slots yield exactly K
successes.
"""

import enum
import logging
from typing import Callable
from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from voxpopulous.models import Tenant, TenantType, TenantUser, LifecycleStatus, AddonCode, Addon, PlanAddonAccess
from voxpopulous.exceptions import QuotaExceededError, QuotaRaceLostError, BusinessLogicError, NotFoundError
from voxpopulous.services import entitlement_service
from voxpopulous.blueprints.metrics import quota_creations_total, quota_denials_total

logger = logging.getLogger(__name__)


class QuotaResource(enum.Enum):
    """Countable resources bounded by the subscription."""
    ADMINS = 'ADMINS'
    ASSOCIATIONS = 'ASSOCIATIONS'
    COMMUNES = 'COMMUNES'

    @property
    def label(self):
        return RESOURCE_LABELS[self]


RESOURCE_LABELS = {
    QuotaResource.ADMINS: 'administrateurs',
    QuotaResource.ASSOCIATIONS: 'associations',
    QuotaResource.COMMUNES: 'communes',
}

ADDON_BY_RESOURCE = {
    QuotaResource.ADMINS: AddonCode.ADMIN,
    QuotaResource.ASSOCIATIONS: AddonCode.ASSOCIATIONS,
    QuotaResource.COMMUNES: AddonCode.MAIRIES,
}
RESOURCE_BY_ADDON = {addon: resource for resource, addon in ADDON_BY_RESOURCE.items()}

# Tenant columns holding back-office granted quantities
PURCHASED_COLUMNS = {
    QuotaResource.ADMINS: 'purchased_admins',
    QuotaResource.ASSOCIATIONS: 'purchased_associations',
    QuotaResource.COMMUNES: 'purchased_communes',
}

# PostgreSQL: serialization_failure, deadlock_detected, lock_not_available
LOCK_ERROR_PGCODES = {'40001', '40P01', '55P03'}


class Quota:
    """Derived quota of one resource for one tenant."""

    def __init__(self, resource: QuotaResource, plan_included: int, purchased: int, used: int, owner_id: int):
        self.resource = resource
        self.plan_included = plan_included
        self.purchased = purchased
        self.used = used
        self.owner_id = owner_id

    @property
    def allowed(self) -> int:
        return self.plan_included + self.purchased

    @property
    def remaining(self) -> int:
        return max(0, self.allowed - self.used)

    @property
    def is_exhausted(self) -> bool:
        return self.remaining <= 0

    def to_dict(self):
        return {
            'resource': self.resource.value,
            'allowed': self.allowed,
            'used': self.used,
            'remaining': self.remaining,
            'planIncluded': self.plan_included,
            'purchased': self.purchased,
            'label': f"{self.used}/{self.allowed} {self.resource.label} utilisés",
        }

    def __repr__(self):
        return f"<Quota {self.resource.value} {self.used}/{self.allowed}>"


def quota_owner(tenant: Tenant, resource: QuotaResource) -> Tenant:
    """
    Tenant whose allowance bounds the resource.

    Associations of a commune that belongs to an EPCI are drawn from the
    EPCI's pool; everything else is counted on the tenant itself.
    """
    if resource == QuotaResource.ASSOCIATIONS and tenant.tenant_type == TenantType.MAIRIE and tenant.parent_epci_id:
        return tenant.parent_epci
    return tenant


def _plan_included(session: Session, owner: Tenant, resource: QuotaResource) -> int:
    plan = entitlement_service.resolve_plan(owner)
    if plan is None or not plan.is_active:
        return 0

    if resource == QuotaResource.ADMINS:
        override = owner.feature_override
        if override is not None and override.max_admins is not None:
            included = override.max_admins
        else:
            included = plan.max_admins
    elif resource == QuotaResource.ASSOCIATIONS:
        included = plan.associations_included
    else:
        included = plan.communes_included

    access = session.query(PlanAddonAccess).join(Addon, PlanAddonAccess.addon_id == Addon.id).filter(
        PlanAddonAccess.plan_id == plan.id,
        Addon.code == ADDON_BY_RESOURCE[resource].value,
        PlanAddonAccess.is_enabled.is_(True)
    ).first()
    if access is not None:
        included += access.quantity or 0
    return included or 0


def _purchased(session: Session, owner: Tenant, resource: QuotaResource) -> int:
    addon_quantity = entitlement_service.get_purchased_quantity(session, owner, ADDON_BY_RESOURCE[resource])
    return addon_quantity + (getattr(owner, PURCHASED_COLUMNS[resource]) or 0)


def _used(session: Session, owner: Tenant, resource: QuotaResource) -> int:
    if resource == QuotaResource.ADMINS:
        return session.query(func.count(TenantUser.id)).filter(
            TenantUser.tenant_id == owner.id,
            TenantUser.active.is_(True)
        ).scalar() or 0

    if resource == QuotaResource.COMMUNES:
        return session.query(func.count(Tenant.id)).filter(
            Tenant.parent_epci_id == owner.id,
            Tenant.tenant_type == TenantType.MAIRIE,
            Tenant.lifecycle_status != LifecycleStatus.ARCHIVED
        ).scalar() or 0

    parent_ids = [owner.id]
    if owner.is_epci:
        commune_ids = session.query(Tenant.id).filter(
            Tenant.parent_epci_id == owner.id,
            Tenant.tenant_type == TenantType.MAIRIE
        ).all()
        parent_ids.extend(row.id for row in commune_ids)
    return session.query(func.count(Tenant.id)).filter(
        Tenant.parent_tenant_id.in_(parent_ids),
        Tenant.tenant_type == TenantType.ASSOCIATION,
        Tenant.lifecycle_status != LifecycleStatus.ARCHIVED
    ).scalar() or 0


def check_quota(session: Session, tenant: Tenant, resource: QuotaResource) -> Quota:
    """
    Compute the quota of a resource for a tenant.

    Args:
        session: Database session
        tenant: Tenant asking
        resource: Resource to count

    Returns:
        Quota: allowed / used / remaining, with the owner the counts apply to
    """
    owner = quota_owner(tenant, resource)
    if resource == QuotaResource.COMMUNES and not owner.is_epci:
        return Quota(resource, 0, 0, 0, owner.id)

    return Quota(
        resource,
        plan_included=_plan_included(session, owner, resource),
        purchased=_purchased(session, owner, resource),
        used=_used(session, owner, resource),
        owner_id=owner.id,
    )


def get_all_quotas(session: Session, tenant: Tenant) -> dict:
    """The three quotas of a tenant, keyed by resource value."""
    return {resource.value: check_quota(session, tenant, resource).to_dict() for resource in QuotaResource}


def _is_lock_error(error: OperationalError) -> bool:
    pgcode = getattr(error.orig, 'pgcode', None) or getattr(error.orig, 'sqlstate', None)
    if pgcode in LOCK_ERROR_PGCODES:
        return True
    return 'database is locked' in str(error.orig).lower()


def _deny(tenant: Tenant, quota: Quota, error_class):
    quota_denials_total.labels(resource=quota.resource.value, reason=error_class.reason).inc()
    logger.warning(
        f"Quota denied for tenant {tenant.id} on {quota.resource.value}: "
        f"{quota.used}/{quota.allowed} ({error_class.reason})"
    )
    return error_class(quota.resource.value, quota.used, quota.allowed, label=quota.resource.label)


def create_with_quota(session: Session, tenant: Tenant, resource: QuotaResource, factory: Callable):
    """
    Create a quota-bounded row atomically.

    The owner's tenant row is locked by bumping quota_revision, the usage is
    counted again under that lock, then factory() adds the new row. The lock is
    held until the caller commits or rolls back.

    Args:
        session: Database session
        tenant: Tenant creating the resource
        resource: Resource consumed
        factory: Callable adding the new row to the session and returning it

    Returns:
        Whatever factory() returned, flushed

    Raises:
        QuotaExceededError: quota already exhausted (403)
        QuotaRaceLostError: a concurrent creation took the last slot (409)
    """
    quota = check_quota(session, tenant, resource)
    if quota.is_exhausted:
        raise _deny(tenant, quota, QuotaExceededError)

    try:
        session.query(Tenant).filter(Tenant.id == quota.owner_id).update(
            {Tenant.quota_revision: Tenant.quota_revision + 1},
            synchronize_session=False
        )

        quota = check_quota(session, tenant, resource)
        if quota.is_exhausted:
            raise _deny(tenant, quota, QuotaRaceLostError)

        created = factory()
        session.flush()
    except OperationalError as e:
        if not _is_lock_error(e):
            raise
        session.rollback()
        logger.warning(f"Lock contention on quota owner {quota.owner_id} for {resource.value}: {e.orig}")
        raise _deny(tenant, quota, QuotaRaceLostError) from e

    quota_creations_total.labels(resource=resource.value).inc()
    logger.info(
        f"Tenant {tenant.id} consumed one {resource.value} slot ({quota.used + 1}/{quota.allowed})"
    )
    return created


def quote_commune_addition(session: Session, tenant: Tenant, increment: int = 1) -> dict:
    """
    Price adding member communes to an EPCI.

    The MAIRIES tier is the one containing the total number of communes after
    the addition: an EPCI with 41 communes adding one is priced on the tier
    holding 42.
    """
    if not tenant.is_epci:
        raise BusinessLogicError('Seul un EPCI peut rattacher des communes')
    if increment is None or increment < 1:
        raise BusinessLogicError("Le nombre de communes à ajouter doit être d'au moins 1")

    addon = session.query(Addon).filter_by(code=AddonCode.MAIRIES.value).first()
    if not addon:
        raise NotFoundError('Option Mairies introuvable')

    quota = check_quota(session, tenant, QuotaResource.COMMUNES)
    total = quota.used + increment

    access = None
    plan = entitlement_service.resolve_plan(tenant)
    if plan is not None:
        access = session.query(PlanAddonAccess).filter_by(plan_id=plan.id, addon_id=addon.id).first()

    tier = entitlement_service.select_tier(addon, total)
    monthly, yearly, source = entitlement_service.resolve_unit_price(addon, access, total)

    return {
        'currentCount': quota.used,
        'increment': increment,
        'totalCount': total,
        'tier': {
            'name': tier.name,
            'minQuantity': tier.min_quantity,
            'maxQuantity': tier.max_quantity,
        } if tier else None,
        'monthlyPrice': float(monthly),
        'yearlyPrice': float(yearly),
        'pricing': source,
        'addonAvailable': bool(access and access.is_enabled),
        'withinQuota': quota.remaining >= increment,
        'quota': quota.to_dict(),
    }
