"""
Reference catalog: core features, plans, addons with tiers, plan addon access.

seed_catalog() is idempotent: existing rows (matched by code) are updated.
"""

import logging
from decimal import Decimal
from sqlalchemy.orm import Session

from voxpopulous.models import (
    Feature, SubscriptionPlan, PlanFeatureAssignment, Addon, AddonTier, PlanAddonAccess
)

logger = logging.getLogger(__name__)

FEATURES = [
    ('IDEA_BOX_CORE', "Boîte à idées", 1),
    ('INCIDENTS_CORE', 'Signalements', 2),
    ('EVENTS_CORE', 'Événements', 3),
]

ALL_FEATURES = ['IDEA_BOX_CORE', 'INCIDENTS_CORE', 'EVENTS_CORE']

# Prices in cents
PLANS = [
    {'code': 'ASSO', 'name': 'Association', 'monthly_price': 900, 'yearly_price': 9000,
     'max_admins': 1, 'target_tenant_types': ['ASSOCIATION'], 'features': ALL_FEATURES},
    {'code': 'ESSENTIEL', 'name': 'Essentiel', 'monthly_price': 1900, 'yearly_price': 19000,
     'max_admins': 1, 'target_tenant_types': ['MAIRIE'], 'features': ['IDEA_BOX_CORE']},
    {'code': 'STANDARD', 'name': 'Standard', 'monthly_price': 2900, 'yearly_price': 29000,
     'max_admins': 1, 'target_tenant_types': ['MAIRIE'], 'features': ['IDEA_BOX_CORE', 'INCIDENTS_CORE']},
    {'code': 'PRO', 'name': 'Pro', 'monthly_price': 3900, 'yearly_price': 39000,
     'max_admins': 2, 'target_tenant_types': ['MAIRIE'], 'features': ALL_FEATURES},
    {'code': 'PREMIUM', 'name': 'Premium', 'monthly_price': 4900, 'yearly_price': 49000,
     'max_admins': 1, 'target_tenant_types': ['MAIRIE'], 'features': ALL_FEATURES},
    {'code': 'EPCI', 'name': 'Établissement Public de Coopération Intercommunale',
     'monthly_price': 19900, 'yearly_price': 199000,
     'max_admins': 1, 'target_tenant_types': ['EPCI'], 'features': ALL_FEATURES},
]

ADDONS = [
    ('ASSOCIATIONS', 'Associations', 'Gestion des associations locales avec espace dédié'),
    ('ADMIN', 'Administrateur', 'Administrateur du site'),
    ('MAIRIES', 'Mairie', 'Mairies faisant partie de la communauté de communes'),
]

# (addon, name, min, max, monthly, yearly) in euros
TIERS = [
    ('ASSOCIATIONS', 'Moins de 5 associations', 1, 5, 15, 150),
    ('ASSOCIATIONS', 'Entre 6 et 20 associations', 6, 20, 30, 300),
    ('ASSOCIATIONS', 'Entre 21 et 50 associations', 21, 50, 60, 600),
    ('ASSOCIATIONS', 'Entre 51 et 100 associations', 51, 100, 120, 1200),
    ('ASSOCIATIONS', 'Entre 101 et 200 associations', 101, 200, 150, 1500),
    ('ASSOCIATIONS', 'Entre 201 et 500 associations', 201, 500, 300, 3000),
    ('ASSOCIATIONS', 'Plus de 500 associations', 501, None, 600, 6000),
    ('ADMIN', 'Basique', 1, 2, 0, 0),
    ('ADMIN', 'Standard', 3, 10, 5, 50),
    ('ADMIN', 'Pro', 21, 30, 15, 150),
    ('MAIRIES', 'Petite communauté de communes', 0, 20, 199, 1990),
    ('MAIRIES', 'Communauté de communes intermédiaire', 21, 40, 399, 3990),
    ('MAIRIES', 'Grande communauté de communes', 41, 100, 799, 7990),
    ('MAIRIES', 'Très grande communauté de communes', 101, None, 1599, 15990),
]

# (plan, addon, enabled, base quantity)
PLAN_ADDON_ACCESS = [
    ('ASSO', 'ADMIN', True, 0),
    ('ASSO', 'ASSOCIATIONS', False, 0),
    ('ESSENTIEL', 'ADMIN', True, 0),
    ('ESSENTIEL', 'ASSOCIATIONS', False, 0),
    ('STANDARD', 'ADMIN', True, 1),
    ('STANDARD', 'ASSOCIATIONS', True, 5),
    ('PRO', 'ADMIN', True, 3),
    ('PRO', 'ASSOCIATIONS', True, 20),
    ('PREMIUM', 'ADMIN', True, 9),
    ('PREMIUM', 'ASSOCIATIONS', True, 100),
    ('EPCI', 'ADMIN', True, 0),
    ('EPCI', 'ASSOCIATIONS', True, 20),
    ('EPCI', 'MAIRIES', True, 10),
]


def _upsert(session, model, code, **values):
    row = session.query(model).filter_by(code=code).first()
    if row is None:
        row = model(code=code)
        session.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    return row


def seed_catalog(session: Session) -> dict:
    """
    Create or update the reference catalog. The caller commits.

    Returns:
        dict: number of features, plans, addons and tiers written
    """
    features = {}
    for code, name, order in FEATURES:
        features[code] = _upsert(session, Feature, code, name=name, display_order=order)

    addons = {}
    for code, name, description in ADDONS:
        addons[code] = _upsert(session, Addon, code, name=name, description=description, is_active=True)
    session.flush()

    tier_count = 0
    for addon_code, name, min_qty, max_qty, monthly, yearly in TIERS:
        addon = addons[addon_code]
        tier = next((t for t in addon.tiers if t.min_quantity == min_qty), None)
        if tier is None:
            tier = AddonTier(min_quantity=min_qty)
            addon.tiers.append(tier)
        tier.name = name
        tier.max_quantity = max_qty
        tier.monthly_price = Decimal(monthly)
        tier.yearly_price = Decimal(yearly)
        tier.display_order = min_qty
        tier_count += 1

    plans = {}
    for order, spec in enumerate(PLANS, start=1):
        spec = dict(spec)
        feature_codes = spec.pop('features')
        plan = _upsert(session, SubscriptionPlan, spec.pop('code'), display_order=order, is_active=True, **spec)
        session.flush()
        assigned = {a.feature.code for a in plan.feature_assignments}
        for code in feature_codes:
            if code not in assigned:
                plan.feature_assignments.append(
                    PlanFeatureAssignment(feature_id=features[code].id, feature=features[code])
                )
        plans[plan.code] = plan
    session.flush()

    for plan_code, addon_code, enabled, quantity in PLAN_ADDON_ACCESS:
        plan = plans[plan_code]
        addon = addons[addon_code]
        access = session.query(PlanAddonAccess).filter_by(plan_id=plan.id, addon_id=addon.id).first()
        if access is None:
            access = PlanAddonAccess(plan_id=plan.id, addon_id=addon.id, addon=addon)
            plan.addon_access.append(access)
        access.is_enabled = enabled
        access.quantity = quantity
    session.flush()

    counts = {'features': len(features), 'plans': len(plans), 'addons': len(addons), 'tiers': tier_count}
    logger.info(f"Catalog seeded: {counts}")
    return counts
