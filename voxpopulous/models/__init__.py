"""Models package - exports all SQLAlchemy models."""
# Tenant tree
from voxpopulous.models.tenant import Tenant, TenantType, BillingStatus, LifecycleStatus

# Catalog
from voxpopulous.models.plan import SubscriptionPlan, Feature, PlanFeatureAssignment
from voxpopulous.models.addon import Addon, AddonCode, AddonTier, PlanAddonAccess, TenantAddon
from voxpopulous.models.feature_override import TenantFeatureOverride

# Accounts
from voxpopulous.models.super_admin import SuperAdmin
from voxpopulous.models.tenant_user import TenantUser, UserRole
from voxpopulous.models.elected_official import ElectedOfficial, ElectedOfficialMenuPermission, AdminMenuCode

__all__ = [
    # Tenant tree
    'Tenant', 'TenantType', 'BillingStatus', 'LifecycleStatus',
    # Catalog
    'SubscriptionPlan', 'Feature', 'PlanFeatureAssignment',
    'Addon', 'AddonCode', 'AddonTier', 'PlanAddonAccess', 'TenantAddon',
    'TenantFeatureOverride',
    # Accounts
    'SuperAdmin', 'TenantUser', 'UserRole',
    'ElectedOfficial', 'ElectedOfficialMenuPermission', 'AdminMenuCode',
]
