"""
Admin navigation model.

Each admin route carries its menu code and, for content screens, the feature
it needs. build_navigation() returns every item the tenant type shows, marked
enabled or locked with a reason; nothing is dropped for entitlement or
permission reasons, so the shell can render the upsell.
"""
from voxpopulous.models import AdminMenuCode, TenantType
from voxpopulous.principals import has_menu_access
from voxpopulous.services.entitlement_service import FeatureCode

STATE_ENABLED = 'enabled'
STATE_LOCKED = 'locked'

LOCK_UPGRADE_REQUIRED = 'upgrade_required'
LOCK_PERMISSION_DENIED = 'permission_denied'

LOCK_MESSAGES = {
    LOCK_UPGRADE_REQUIRED: 'Disponible avec le forfait supérieur',
    LOCK_PERMISSION_DENIED: 'Accès non autorisé pour votre compte',
}


class NavItem:
    """Static definition of one admin route."""

    def __init__(self, key, label, segment, menu_code, feature=None, tenant_types=None,
                 billing_root_only=False, association_label=None):
        self.key = key
        self.label = label
        self.segment = segment
        self.menu_code = menu_code
        self.feature = feature
        self.tenant_types = tenant_types
        self.billing_root_only = billing_root_only
        self.association_label = association_label

    def is_shown_for(self, tenant):
        if self.tenant_types is not None and tenant.tenant_type not in self.tenant_types:
            return False
        if self.billing_root_only and tenant.is_child:
            return False
        return True

    def label_for(self, tenant):
        if self.association_label and tenant.is_association:
            return self.association_label
        return self.label

    def __repr__(self):
        return f"<NavItem {self.key} {self.menu_code.value}>"


NAV_ITEMS = (
    NavItem('dashboard', 'Tableau de bord', 'admin', AdminMenuCode.DASHBOARD),
    NavItem('ideas', 'Idées', 'ideas', AdminMenuCode.IDEAS, feature=FeatureCode.IDEA_BOX_CORE),
    NavItem('incidents', 'Signalements', 'incidents', AdminMenuCode.INCIDENTS, feature=FeatureCode.INCIDENTS_CORE),
    NavItem('events', 'Événements', 'events', AdminMenuCode.EVENTS, feature=FeatureCode.EVENTS_CORE),
    NavItem('associations', 'Associations', 'associations', AdminMenuCode.ASSOCIATIONS,
            tenant_types=(TenantType.MAIRIE, TenantType.EPCI)),
    NavItem('communes', 'Communes', 'communes', AdminMenuCode.ASSOCIATIONS, tenant_types=(TenantType.EPCI,)),
    NavItem('elus', 'Élus', 'elus', AdminMenuCode.ELUS, association_label='Membres Bureau'),
    NavItem('domains', 'Domaines', 'domains', AdminMenuCode.DOMAINS),
    NavItem('photos', 'Photos', 'photos', AdminMenuCode.PHOTOS),
    NavItem('admins', 'Administrateurs', 'admins', AdminMenuCode.ADMINS),
    NavItem('sharing', 'Partage', 'sharing', AdminMenuCode.SHARE),
    NavItem('settings', 'Paramètres', 'settings', AdminMenuCode.SETTINGS),
    NavItem('billing', 'Facturation', 'billing', AdminMenuCode.BILLING, billing_root_only=True),
)

MENU_CODE_BY_SEGMENT = {item.segment: item.menu_code for item in NAV_ITEMS}


def menu_code_for_path(path):
    """
    Menu code of an admin path, from its trailing segment.

    '/structures/x/admin' -> DASHBOARD, '/structures/x/admin/billing' ->
    BILLING. Unknown segments return None.
    """
    segments = [s for s in (path or '').split('/') if s]
    if not segments:
        return None
    return MENU_CODE_BY_SEGMENT.get(segments[-1])


def path_access_allowed(principal, path):
    """Whether principal may open path; unmapped paths are denied to restricted officials."""
    return has_menu_access(principal, menu_code_for_path(path))


def build_navigation(tenant, entitlements, principal, base_path='/structures'):
    """
    Build the admin navigation of a tenant for a principal.

    Args:
        tenant: Tenant being administered
        entitlements: Entitlements resolved for tenant
        principal: Principal of the request
        base_path: Front-end prefix for hrefs

    Returns:
        list of dicts: key, label, href, menuCode, state, lockReason, tooltip
    """
    root = f"{base_path.rstrip('/')}/{tenant.slug}/admin"
    items = []
    for item in NAV_ITEMS:
        if not item.is_shown_for(tenant):
            continue

        lock_reason = None
        if item.feature is not None and not entitlements.has_feature(item.feature):
            lock_reason = LOCK_UPGRADE_REQUIRED
        elif not has_menu_access(principal, item.menu_code):
            lock_reason = LOCK_PERMISSION_DENIED

        items.append({
            'key': item.key,
            'label': item.label_for(tenant),
            'href': root if item.segment == 'admin' else f"{root}/{item.segment}",
            'menuCode': item.menu_code.value,
            'feature': item.feature.value if item.feature else None,
            'state': STATE_LOCKED if lock_reason else STATE_ENABLED,
            'lockReason': lock_reason,
            'tooltip': LOCK_MESSAGES.get(lock_reason),
        })
    return items
