"""
Tenant lifecycle and billing status transitions (super admin and webhook).

Tenants are never deleted: ACTIVE <-> SUSPENDED, then ARCHIVED as terminal
soft state.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session

from voxpopulous.models import Tenant, LifecycleStatus, BillingStatus
from voxpopulous.exceptions import BusinessLogicError, HierarchyError
from voxpopulous.services.hierarchy_service import get_children

logger = logging.getLogger(__name__)


def suspend_tenant(session: Session, tenant: Tenant, reason: Optional[str] = None) -> Tenant:
    """Put tenant in read-only mode."""
    if tenant.is_archived:
        raise BusinessLogicError('Une structure archivée ne peut pas être suspendue')
    if tenant.is_suspended:
        raise BusinessLogicError('La structure est déjà suspendue')

    tenant.lifecycle_status = LifecycleStatus.SUSPENDED
    tenant.suspended_at = datetime.now(timezone.utc)
    tenant.suspended_reason = (reason or '').strip() or None
    session.flush()
    logger.info(f"Tenant {tenant.id} suspended: {tenant.suspended_reason}")
    return tenant


def reactivate_tenant(session: Session, tenant: Tenant) -> Tenant:
    """Lift a lifecycle suspension."""
    if not tenant.is_suspended:
        raise BusinessLogicError("La structure n'est pas suspendue")

    tenant.lifecycle_status = LifecycleStatus.ACTIVE
    tenant.suspended_at = None
    tenant.suspended_reason = None
    session.flush()
    logger.info(f"Tenant {tenant.id} reactivated")
    return tenant


def archive_tenant(session: Session, tenant: Tenant, reason: Optional[str] = None) -> Tenant:
    """
    Archive tenant. Archived tenants disappear from public lookups and free
    their slot in the parent's quota.

    Raises:
        HierarchyError: tenant still has non-archived children
    """
    if tenant.is_archived:
        raise BusinessLogicError('La structure est déjà archivée')
    if get_children(session, tenant):
        raise HierarchyError("Archivez d'abord les structures rattachées")

    tenant.lifecycle_status = LifecycleStatus.ARCHIVED
    tenant.archived_at = datetime.now(timezone.utc)
    tenant.archived_reason = (reason or '').strip() or None
    session.flush()
    logger.info(f"Tenant {tenant.id} archived: {tenant.archived_reason}")
    return tenant


def set_billing_status(session: Session, tenant: Tenant, status: BillingStatus) -> Tenant:
    """
    Record the billing status of a billing-owner tenant.

    Child tenants have no billing status of their own to set.
    """
    if tenant.is_child:
        raise BusinessLogicError('Le statut de facturation est porté par la structure parente')

    previous = tenant.billing_status
    tenant.billing_status = status
    session.flush()
    logger.info(
        f"Tenant {tenant.id} billing status {previous.value if previous else None} -> {status.value}"
    )
    return tenant
