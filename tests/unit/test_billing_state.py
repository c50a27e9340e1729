"""
Unit tests for the billing status gate and lifecycle transitions.
"""

import pytest
from datetime import datetime, timedelta, timezone
from voxpopulous.exceptions import (
    BillingBlockedError, TenantSuspendedError, BusinessLogicError, HierarchyError
)
from voxpopulous.models import BillingStatus, LifecycleStatus, TenantType
from voxpopulous.services import lifecycle_service
from voxpopulous.services.billing_state_service import (
    CHILD_BLOCK_MESSAGE, assert_writable, is_payment_blocked, resolve_billing_state
)


class TestBillingState:
    """Tests for billing state resolution."""

    def test_active_tenant_is_writable(self, mairie):
        state = resolve_billing_state(mairie)

        assert state.is_writable
        assert state.billing_owner_id == mairie.id
        assert state.shows_billing is True
        assert 'action' not in state.to_dict()

    def test_suspended_billing_blocks_with_action(self, session, mairie):
        mairie.billing_status = BillingStatus.SUSPENDED
        session.commit()

        state = resolve_billing_state(mairie)
        data = state.to_dict()

        assert state.account_blocked is True
        assert data['accountBlocked'] is True
        assert data['action'] == {'label': 'Régulariser', 'url': f'/structures/{mairie.slug}/admin/billing'}

    def test_expired_trial_blocks(self, make_tenant, catalog):
        tenant = make_tenant(
            plan=catalog['PRO'],
            billing_status=BillingStatus.TRIAL,
            trial_ends_at=datetime.now(timezone.utc) - timedelta(days=1)
        )

        assert is_payment_blocked(tenant)
        assert resolve_billing_state(tenant).account_blocked

    def test_running_trial_does_not_block(self, make_tenant):
        tenant = make_tenant(
            billing_status=BillingStatus.TRIAL,
            trial_ends_at=datetime.now(timezone.utc) + timedelta(days=10)
        )

        assert not is_payment_blocked(tenant)

    def test_cancelled_does_not_block(self, session, mairie):
        mairie.billing_status = BillingStatus.CANCELLED
        session.commit()

        assert resolve_billing_state(mairie).is_writable

    def test_child_ignores_its_own_billing_status(self, session, epci, member_commune):
        """Only the billing root's status counts for a child."""
        member_commune.billing_status = BillingStatus.SUSPENDED
        session.commit()

        state = resolve_billing_state(member_commune)

        assert state.account_blocked is False
        assert state.billing_owner_id == epci.id
        assert state.shows_billing is False

    def test_child_blocked_through_root(self, session, epci, member_commune):
        epci.billing_status = BillingStatus.SUSPENDED
        session.commit()

        state = resolve_billing_state(member_commune)

        assert state.account_blocked is True
        assert state.block_reason == CHILD_BLOCK_MESSAGE
        assert 'action' not in state.to_dict()

    def test_child_lifecycle_read_on_child(self, session, epci, member_commune):
        """Suspending the child makes it read-only while the root stays writable."""
        lifecycle_service.suspend_tenant(session, member_commune, 'Contrôle en cours')
        session.commit()

        assert resolve_billing_state(member_commune).read_only is True
        assert resolve_billing_state(member_commune).suspended_reason == 'Contrôle en cours'
        assert resolve_billing_state(epci).is_writable

    def test_suspended_root_does_not_make_child_read_only(self, session, epci, member_commune):
        lifecycle_service.suspend_tenant(session, epci)
        session.commit()

        assert resolve_billing_state(member_commune).read_only is False

    def test_gate_disabled_skips_payment_check(self, app, session, mairie):
        mairie.billing_status = BillingStatus.SUSPENDED
        session.commit()
        app.config['BILLING_GATE_ENABLED'] = False
        try:
            assert resolve_billing_state(mairie).account_blocked is False
        finally:
            app.config['BILLING_GATE_ENABLED'] = True


class TestAssertWritable:
    """Tests for the write gate."""

    def test_suspended_lifecycle_raises(self, session, mairie):
        lifecycle_service.suspend_tenant(session, mairie)
        session.commit()

        with pytest.raises(TenantSuspendedError) as exc_info:
            assert_writable(mairie)

        assert exc_info.value.status_code == 403
        assert exc_info.value.to_dict()['reason'] == 'tenant_suspended'

    def test_blocked_payment_raises(self, session, mairie):
        mairie.billing_status = BillingStatus.SUSPENDED
        session.commit()

        with pytest.raises(BillingBlockedError) as exc_info:
            assert_writable(mairie)

        assert exc_info.value.to_dict()['action_url'].endswith('/admin/billing')


class TestLifecycleTransitions:
    """Tests for suspend / reactivate / archive."""

    def test_suspend_and_reactivate(self, session, mairie):
        lifecycle_service.suspend_tenant(session, mairie, '  ')
        assert mairie.lifecycle_status == LifecycleStatus.SUSPENDED
        assert mairie.suspended_reason is None

        lifecycle_service.reactivate_tenant(session, mairie)
        assert mairie.lifecycle_status == LifecycleStatus.ACTIVE
        assert mairie.suspended_at is None

    def test_double_suspend_rejected(self, session, mairie):
        lifecycle_service.suspend_tenant(session, mairie)

        with pytest.raises(BusinessLogicError):
            lifecycle_service.suspend_tenant(session, mairie)

    def test_reactivate_requires_suspension(self, session, mairie):
        with pytest.raises(BusinessLogicError):
            lifecycle_service.reactivate_tenant(session, mairie)

    def test_archive_with_children_rejected(self, session, mairie, association):
        with pytest.raises(HierarchyError):
            lifecycle_service.archive_tenant(session, mairie)

    def test_archive_leaf(self, session, association):
        lifecycle_service.archive_tenant(session, association, 'Dissolution')
        session.commit()

        assert association.is_archived
        assert association.archived_reason == 'Dissolution'

    def test_billing_status_rejected_on_child(self, session, member_commune):
        with pytest.raises(BusinessLogicError):
            lifecycle_service.set_billing_status(session, member_commune, BillingStatus.ACTIVE)

    def test_billing_status_on_root(self, session, make_tenant):
        tenant = make_tenant(TenantType.EPCI)

        lifecycle_service.set_billing_status(session, tenant, BillingStatus.SUSPENDED)

        assert tenant.billing_status == BillingStatus.SUSPENDED
