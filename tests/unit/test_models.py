"""
Unit tests for SQLAlchemy models.
"""

import pytest
import uuid
from sqlalchemy.exc import IntegrityError
from voxpopulous.models import (
    Tenant, TenantType, LifecycleStatus, BillingStatus, TenantUser, ElectedOfficial,
    ElectedOfficialMenuPermission, AdminMenuCode, AddonTier, SubscriptionPlan
)


class TestTenantModel:
    """Tests for Tenant model."""

    def test_create_tenant_defaults(self, session):
        """A new tenant is an active MAIRIE in trial, without parent."""
        suffix = str(uuid.uuid4())[:8]
        tenant = Tenant(slug=f'test-tenant-{suffix}', name=f'Test Tenant {suffix}')
        session.add(tenant)
        session.commit()

        assert tenant.id is not None
        assert tenant.tenant_type == TenantType.MAIRIE
        assert tenant.lifecycle_status == LifecycleStatus.ACTIVE
        assert tenant.billing_status == BillingStatus.TRIAL
        assert tenant.is_child is False
        assert tenant.parent_id is None

    def test_tenant_slug_unique(self, session, mairie):
        """Tenant slug must be unique."""
        session.add(Tenant(slug=mairie.slug, name='Duplicate Tenant'))

        with pytest.raises(IntegrityError):
            session.commit()

    def test_child_links(self, epci, member_commune, make_tenant):
        """A commune hangs on parent_epci_id, an association on parent_tenant_id."""
        association = make_tenant(TenantType.ASSOCIATION, parent=member_commune)

        assert member_commune.parent_epci_id == epci.id
        assert member_commune.parent_id == epci.id
        assert member_commune.is_child is True
        assert association.parent_tenant_id == member_commune.id
        assert association.parent_epci_id is None
        assert [c.id for c in epci.member_communes] == [member_commune.id]

    def test_public_dict(self, association, mairie):
        data = association.to_public_dict()

        assert data['tenantType'] == 'ASSOCIATION'
        assert data['parentTenantId'] == mairie.id
        assert data['isChild'] is True
        assert data['lifecycleStatus'] == 'ACTIVE'


class TestAccountModels:
    """Tests for back-office account models."""

    def test_password_hashing(self, make_admin, mairie):
        """Passwords are stored hashed and checked."""
        user = make_admin(mairie)

        assert user.password_hash != 'password123'
        assert user.check_password('password123') is True
        assert user.check_password('wrong') is False

    def test_admin_email_unique(self, session, make_admin, mairie, mairie2):
        """An email identifies one account across tenants."""
        user = make_admin(mairie)
        duplicate = TenantUser(tenant_id=mairie2.id, name='Other', email=user.email, password_hash='x')
        session.add(duplicate)

        with pytest.raises(IntegrityError):
            session.commit()

    def test_official_without_password_cannot_sign_in(self, session, mairie):
        official = ElectedOfficial(tenant_id=mairie.id, first_name='Paul', last_name='Durand', function='Maire')
        session.add(official)
        session.commit()

        assert official.check_password('') is False
        assert official.full_name == 'Paul Durand'

    def test_menu_codes_in_enum_order(self, make_official, mairie):
        official = make_official(mairie, menu_codes=[AdminMenuCode.BILLING, AdminMenuCode.IDEAS])

        assert official.menu_codes == [AdminMenuCode.IDEAS, AdminMenuCode.BILLING]
        assert official.to_dict()['menuPermissions'] == ['IDEAS', 'BILLING']

    def test_menu_permission_unique_per_official(self, session, make_official, mairie):
        official = make_official(mairie, menu_codes=[AdminMenuCode.IDEAS])
        session.add(ElectedOfficialMenuPermission(elected_official_id=official.id, menu_code=AdminMenuCode.IDEAS))

        with pytest.raises(IntegrityError):
            session.commit()


class TestCatalogModels:
    """Tests for plan and addon models."""

    def test_tier_bounds_are_inclusive(self):
        tier = AddonTier(min_quantity=21, max_quantity=40)

        assert tier.contains(21)
        assert tier.contains(40)
        assert not tier.contains(20)
        assert not tier.contains(41)

    def test_open_ended_tier(self):
        tier = AddonTier(min_quantity=101, max_quantity=None)

        assert tier.contains(101)
        assert tier.contains(10_000)
        assert not tier.contains(100)

    def test_plan_target_types(self, catalog):
        assert catalog['EPCI'].is_available_for(TenantType.EPCI)
        assert not catalog['EPCI'].is_available_for(TenantType.MAIRIE)
        assert SubscriptionPlan(code='ANY', name='Any').is_available_for(TenantType.ASSOCIATION)

    def test_formatted_price(self, catalog):
        assert catalog['PRO'].formatted_monthly_price == '39.00 €'
