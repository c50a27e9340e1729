"""
Subscription & entitlement resolution.

Turns a tenant's plan into the set of enabled features and the addons it may
buy. Catalog assignments are the source of truth; the plan's legacy has_*
flags are only read when a plan has no assignment. Resolution is fail-closed:
a tenant without an active plan gets nothing enabled.
"""

import enum
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional
from sqlalchemy.orm import Session

from voxpopulous.models import (
    Tenant, SubscriptionPlan, Feature, PlanFeatureAssignment,
    Addon, AddonCode, AddonTier, PlanAddonAccess, TenantAddon, TenantFeatureOverride
)
from voxpopulous.exceptions import (
    AddonNotAvailableError, BusinessLogicError, NotFoundError, PermissionDeniedError
)
from voxpopulous.services import cache_service
from voxpopulous.services.hierarchy_service import get_billing_root

logger = logging.getLogger(__name__)


class FeatureCode(enum.Enum):
    """Closed set of features the back-office gates on."""
    IDEA_BOX_CORE = 'IDEA_BOX_CORE'
    INCIDENTS_CORE = 'INCIDENTS_CORE'
    EVENTS_CORE = 'EVENTS_CORE'


# (plan / override column, feature granted when True)
LEGACY_FLAG_FEATURES = (
    ('has_ideas', FeatureCode.IDEA_BOX_CORE),
    ('has_incidents', FeatureCode.INCIDENTS_CORE),
    ('has_meetings', FeatureCode.EVENTS_CORE),
)


class AddonAccess:
    """Resolved access to one addon for a tenant."""

    def __init__(self, code, is_enabled, quantity, purchased, monthly_price, yearly_price, pricing):
        self.code = code
        self.is_enabled = is_enabled
        self.quantity = quantity
        self.purchased = purchased
        self.monthly_price = monthly_price
        self.yearly_price = yearly_price
        self.pricing = pricing  # 'tier', 'plan' or 'default'

    def to_dict(self):
        return {
            'code': self.code.value,
            'isEnabled': self.is_enabled,
            'quantity': self.quantity,
            'purchased': self.purchased,
            'monthlyPrice': float(self.monthly_price),
            'yearlyPrice': float(self.yearly_price),
            'pricing': self.pricing,
        }


class Entitlements:
    """Features and addon access resolved for one tenant."""

    def __init__(self, plan: Optional[SubscriptionPlan] = None, features=frozenset(), addon_access=None):
        self.plan = plan
        self.features = frozenset(features)
        self.addon_access: Dict[AddonCode, AddonAccess] = addon_access or {}

    @classmethod
    def disabled(cls):
        """All-disabled entitlements, used when no active plan applies."""
        return cls()

    def has_feature(self, code: FeatureCode) -> bool:
        return code in self.features

    def addon(self, code: AddonCode) -> Optional[AddonAccess]:
        return self.addon_access.get(code)

    def is_addon_enabled(self, code: AddonCode) -> bool:
        access = self.addon_access.get(code)
        return bool(access and access.is_enabled)


def resolve_plan(tenant: Tenant) -> Optional[SubscriptionPlan]:
    """
    Return the plan that governs this tenant.

    A tenant's own plan wins; child tenants without a plan use the billing
    root's plan.
    """
    if tenant.subscription_plan_id:
        return tenant.plan
    if tenant.is_child:
        root = get_billing_root(tenant)
        if root.subscription_plan_id:
            return root.plan
    return None


def _catalog_feature_codes(plan: SubscriptionPlan) -> Optional[set]:
    """Feature codes assigned to plan, or None when the plan has no assignment."""
    if not plan.feature_assignments:
        return None
    codes = set()
    for assignment in plan.feature_assignments:
        try:
            codes.add(FeatureCode(assignment.feature.code))
        except ValueError:
            logger.warning(f"Ignoring unknown catalog feature '{assignment.feature.code}' on plan {plan.code}")
    return codes


def _legacy_feature_codes(plan: SubscriptionPlan) -> set:
    return {code for column, code in LEGACY_FLAG_FEATURES if getattr(plan, column)}


def _apply_overrides(features: set, override: Optional[TenantFeatureOverride]) -> set:
    if override is None:
        return features
    features = set(features)
    for column, code in LEGACY_FLAG_FEATURES:
        value = getattr(override, column)
        if value is True:
            features.add(code)
        elif value is False:
            features.discard(code)
    return features


def _feature_override_for(tenant: Tenant) -> Optional[TenantFeatureOverride]:
    if tenant.feature_override is not None:
        return tenant.feature_override
    if tenant.is_child:
        return get_billing_root(tenant).feature_override
    return None


def select_tier(addon: Addon, quantity: int) -> Optional[AddonTier]:
    """Return the tier whose [min_quantity, max_quantity] contains quantity."""
    for tier in addon.tiers:
        if tier.contains(quantity):
            return tier
    return None


def resolve_unit_price(addon: Addon, access: Optional[PlanAddonAccess], quantity: int):
    """
    Effective prices for an addon at a given quantity.

    Tier pricing wins when the addon has a tier for quantity, then the plan's
    override price, then the addon default.

    Returns:
        tuple: (monthly_price, yearly_price, pricing_source)
    """
    if addon.tiers:
        tier = select_tier(addon, quantity)
        if tier is not None:
            return Decimal(tier.monthly_price), Decimal(tier.yearly_price), 'tier'

    if access is not None and access.monthly_price is not None:
        yearly = access.yearly_price if access.yearly_price is not None else addon.default_yearly_price
        return Decimal(access.monthly_price), Decimal(yearly), 'plan'

    return Decimal(addon.default_monthly_price), Decimal(addon.default_yearly_price), 'default'


def get_purchased_quantity(session: Session, tenant: Tenant, addon_code: AddonCode) -> int:
    """Quantity of an addon bought by tenant (0 when never purchased)."""
    row = session.query(TenantAddon).join(Addon, TenantAddon.addon_id == Addon.id).filter(
        TenantAddon.tenant_id == tenant.id,
        Addon.code == addon_code.value
    ).first()
    return row.quantity if row else 0


def resolve_entitlements(session: Session, tenant: Tenant) -> Entitlements:
    """
    Resolve features and addon access for a tenant.

    Args:
        session: Database session
        tenant: Tenant to resolve

    Returns:
        Entitlements: all-disabled when no active plan applies
    """
    plan = resolve_plan(tenant)
    if plan is None or not plan.is_active:
        logger.info(f"No active plan for tenant {tenant.id}, entitlements disabled")
        return Entitlements.disabled()

    features = _catalog_feature_codes(plan)
    if features is None:
        features = _legacy_feature_codes(plan)
    features = _apply_overrides(features, _feature_override_for(tenant))

    owner = get_billing_root(tenant)
    addon_access = {}
    for access in plan.addon_access:
        addon = access.addon
        if not addon.is_active:
            continue
        try:
            code = AddonCode(addon.code)
        except ValueError:
            logger.warning(f"Ignoring unknown addon '{addon.code}' on plan {plan.code}")
            continue
        purchased = get_purchased_quantity(session, owner, code)
        monthly, yearly, source = resolve_unit_price(addon, access, purchased)
        addon_access[code] = AddonAccess(
            code=code,
            is_enabled=access.is_enabled,
            quantity=access.quantity,
            purchased=purchased,
            monthly_price=monthly,
            yearly_price=yearly,
            pricing=source,
        )

    return Entitlements(plan=plan, features=features, addon_access=addon_access)


def features_payload(entitlements: Entitlements) -> dict:
    """JSON served by GET /api/tenants/<slug>/features."""
    return {
        'hasIdeas': entitlements.has_feature(FeatureCode.IDEA_BOX_CORE),
        'hasIncidents': entitlements.has_feature(FeatureCode.INCIDENTS_CORE),
        'hasEvents': entitlements.has_feature(FeatureCode.EVENTS_CORE),
        'features': sorted(code.value for code in entitlements.features),
        'planName': entitlements.plan.name if entitlements.plan else None,
    }


def get_features_payload(session: Session, tenant: Tenant) -> dict:
    """Cached variant of features_payload() for the public endpoint."""
    cache = cache_service.get_cache()
    cached = cache.get_payload(tenant.id)
    if cached is not None:
        return cached
    payload = features_payload(resolve_entitlements(session, tenant))
    cache.set_payload(tenant.id, payload)
    return payload


def invalidate_tenant_tree(session: Session, tenant: Tenant) -> None:
    """Drop cached entitlements of tenant and everything below it."""
    from voxpopulous.services.hierarchy_service import get_children

    pending = [tenant]
    seen = set()
    while pending:
        current = pending.pop()
        if current.id in seen:
            continue
        seen.add(current.id)
        pending.extend(get_children(session, current, include_archived=True))
    cache_service.get_cache().invalidate(seen)


def invalidate_plan(session: Session, plan: SubscriptionPlan) -> None:
    """Drop cached entitlements of every tenant subscribed to plan."""
    for tenant in plan.tenants:
        invalidate_tenant_tree(session, tenant)


# ============================================================================
# WRITES (tenant billing page and back-office)
# ============================================================================

def purchase_addon(session: Session, tenant: Tenant, addon_code: AddonCode, quantity: int) -> dict:
    """
    Set the purchased quantity of an addon for a billing-owner tenant.

    Args:
        session: Database session
        tenant: Tenant buying the addon (must own its subscription)
        addon_code: Addon to buy
        quantity: Target purchased quantity (not an increment)

    Returns:
        dict: tenant addon summary with the price of the resulting quantity

    Raises:
        PermissionDeniedError: child tenants cannot buy addons
        AddonNotAvailableError: addon disabled for the plan, or MAIRIES on a non-EPCI
        BusinessLogicError: negative quantity or quantity below current usage
    """
    from voxpopulous.services import quota_service

    if tenant.is_child:
        raise PermissionDeniedError('La facturation est gérée par la structure parente')
    if quantity is None or quantity < 0:
        raise BusinessLogicError('La quantité doit être positive')

    plan = tenant.plan if tenant.subscription_plan_id else None
    if plan is None or not plan.is_active:
        raise AddonNotAvailableError(addon_code.value, "Aucun forfait actif : souscrivez un forfait d'abord")

    addon = session.query(Addon).filter_by(code=addon_code.value, is_active=True).first()
    if not addon:
        raise NotFoundError(f'Option {addon_code.value} introuvable')

    access = session.query(PlanAddonAccess).filter_by(plan_id=plan.id, addon_id=addon.id).first()
    if access is None or not access.is_enabled:
        logger.warning(f"Tenant {tenant.id} tried to buy disabled addon {addon_code.value} on plan {plan.code}")
        raise AddonNotAvailableError(addon_code.value)

    if addon_code == AddonCode.MAIRIES and not tenant.is_epci:
        raise AddonNotAvailableError(addon_code.value, "L'option Mairies est réservée aux EPCI")

    resource = quota_service.RESOURCE_BY_ADDON[addon_code]
    quota = quota_service.check_quota(session, tenant, resource)
    current = get_purchased_quantity(session, tenant, addon_code)
    allowed_after = quota.allowed - current + quantity
    if allowed_after < quota.used:
        raise BusinessLogicError(
            f"Impossible de réduire à {quantity} : {quota.used} {resource.label} déjà utilisés"
        )

    tenant_addon = session.query(TenantAddon).filter_by(tenant_id=tenant.id, addon_id=addon.id).first()
    if tenant_addon is None:
        tenant_addon = TenantAddon(tenant_id=tenant.id, addon_id=addon.id, quantity=quantity)
        session.add(tenant_addon)
    else:
        tenant_addon.quantity = quantity
    session.flush()

    monthly, yearly, source = resolve_unit_price(addon, access, quantity)
    logger.info(f"Tenant {tenant.id} addon {addon_code.value}: {current} -> {quantity}")
    invalidate_tenant_tree(session, tenant)

    return {
        'addon': addon_code.value,
        'quantity': quantity,
        'previousQuantity': current,
        'monthlyPrice': float(monthly),
        'yearlyPrice': float(yearly),
        'pricing': source,
    }


def assign_plan(session: Session, tenant: Tenant, plan_code: str) -> Tenant:
    """Subscribe a billing-owner tenant to a plan."""
    if tenant.is_child:
        raise BusinessLogicError('Une structure rattachée hérite du forfait de sa structure parente')

    plan = session.query(SubscriptionPlan).filter_by(code=plan_code, is_active=True).first()
    if not plan:
        raise NotFoundError(f"Forfait '{plan_code}' introuvable ou inactif")
    if not plan.is_available_for(tenant.tenant_type):
        raise BusinessLogicError(
            f"Le forfait {plan.name} n'est pas proposé aux structures {tenant.tenant_type.value}"
        )

    tenant.subscription_plan_id = plan.id
    tenant.plan = plan
    session.flush()
    invalidate_tenant_tree(session, tenant)
    logger.info(f"Tenant {tenant.id} subscribed to plan {plan.code}")
    return tenant


def set_feature_override(session: Session, tenant: Tenant, **values) -> TenantFeatureOverride:
    """
    Create or update the tenant's feature overrides.

    Accepted keys: has_ideas, has_incidents, has_meetings, max_admins, notes.
    """
    allowed = {'has_ideas', 'has_incidents', 'has_meetings', 'max_admins', 'notes'}
    unknown = set(values) - allowed
    if unknown:
        raise BusinessLogicError(f"Champs inconnus : {', '.join(sorted(unknown))}")

    override = session.query(TenantFeatureOverride).filter_by(tenant_id=tenant.id).first()
    if override is None:
        override = TenantFeatureOverride(tenant_id=tenant.id)
        session.add(override)
        tenant.feature_override = override
    for key, value in values.items():
        setattr(override, key, value)
    session.flush()
    invalidate_tenant_tree(session, tenant)
    logger.info(f"Feature overrides updated for tenant {tenant.id}: {values}")
    return override


def set_plan_features(session: Session, plan: SubscriptionPlan, codes: Iterable[str]) -> SubscriptionPlan:
    """Replace the catalog feature assignments of a plan."""
    codes = set(codes)
    features = session.query(Feature).filter(Feature.code.in_(codes)).all() if codes else []
    missing = codes - {f.code for f in features}
    if missing:
        raise NotFoundError(f"Fonctionnalités inconnues : {', '.join(sorted(missing))}")

    plan.feature_assignments.clear()
    session.flush()
    for feature in features:
        plan.feature_assignments.append(PlanFeatureAssignment(feature_id=feature.id, feature=feature))
    session.flush()
    invalidate_plan(session, plan)
    logger.info(f"Plan {plan.code} features set to {sorted(codes)}")
    return plan


def set_plan_addon_access(
    session: Session,
    plan: SubscriptionPlan,
    addon_code: AddonCode,
    is_enabled: bool,
    quantity: int = 0,
    monthly_price=None,
    yearly_price=None
) -> PlanAddonAccess:
    """Create or update the access row of an addon for a plan."""
    addon = session.query(Addon).filter_by(code=addon_code.value).first()
    if not addon:
        raise NotFoundError(f'Option {addon_code.value} introuvable')

    access = session.query(PlanAddonAccess).filter_by(plan_id=plan.id, addon_id=addon.id).first()
    if access is None:
        access = PlanAddonAccess(plan_id=plan.id, addon_id=addon.id, addon=addon)
        plan.addon_access.append(access)
    access.is_enabled = is_enabled
    access.quantity = quantity or 0
    access.monthly_price = monthly_price
    access.yearly_price = yearly_price
    session.flush()
    invalidate_plan(session, plan)
    logger.info(f"Plan {plan.code} addon {addon_code.value} enabled={is_enabled} qty={quantity}")
    return access
