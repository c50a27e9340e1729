"""
Unit tests for quota computation and the quota write path.
"""

import pytest
import sqlite3
import threading
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError
from voxpopulous.database import get_session
from voxpopulous.exceptions import QuotaExceededError, QuotaRaceLostError, BusinessLogicError
from voxpopulous.models import Tenant, TenantType, TenantUser, LifecycleStatus
from voxpopulous.services import account_service, entitlement_service, hierarchy_service, quota_service
from voxpopulous.services.quota_service import Quota, QuotaResource, check_quota


def _denials(resource, reason):
    return REGISTRY.get_sample_value(
        'voxpop_quota_denials_total', {'resource': resource, 'reason': reason}
    ) or 0


class TestQuotaComputation:
    """Tests for allowed / used computation."""

    def test_admin_quota_from_plan_and_addon_access(self, session, mairie, make_admin):
        """PRO: 2 admins on the plan + 3 through ADMIN addon access."""
        make_admin(mairie)
        make_admin(mairie, active=False)

        quota = check_quota(session, mairie, QuotaResource.ADMINS)

        assert quota.plan_included == 5
        assert quota.purchased == 0
        assert quota.used == 1
        assert quota.remaining == 4
        assert quota.to_dict()['label'] == '1/5 administrateurs utilisés'

    def test_max_admins_override_replaces_plan_value(self, session, mairie):
        entitlement_service.set_feature_override(session, mairie, max_admins=1)
        session.commit()

        assert check_quota(session, mairie, QuotaResource.ADMINS).allowed == 1 + 3

    def test_backoffice_purchased_column_adds(self, session, mairie):
        mairie.purchased_admins = 2
        session.commit()

        quota = check_quota(session, mairie, QuotaResource.ADMINS)

        assert quota.purchased == 2
        assert quota.allowed == 7

    def test_no_plan_allows_nothing(self, session, make_tenant):
        quota = check_quota(session, make_tenant(), QuotaResource.ADMINS)

        assert quota.allowed == 0
        assert quota.is_exhausted

    def test_communes_quota_is_zero_outside_epci(self, session, mairie):
        quota = check_quota(session, mairie, QuotaResource.COMMUNES)

        assert (quota.allowed, quota.used) == (0, 0)

    def test_communes_quota_of_epci(self, session, make_tenant, epci, member_commune):
        make_tenant(TenantType.MAIRIE, parent=epci, lifecycle_status=LifecycleStatus.ARCHIVED)

        quota = check_quota(session, epci, QuotaResource.COMMUNES)

        assert quota.allowed == 10
        assert quota.used == 1

    def test_member_commune_associations_use_epci_pool(self, session, make_tenant, epci, member_commune):
        make_tenant(TenantType.ASSOCIATION, parent=member_commune)
        make_tenant(TenantType.ASSOCIATION, parent=epci)

        commune_quota = check_quota(session, member_commune, QuotaResource.ASSOCIATIONS)
        epci_quota = check_quota(session, epci, QuotaResource.ASSOCIATIONS)

        assert commune_quota.owner_id == epci.id
        assert commune_quota.used == epci_quota.used == 2
        assert commune_quota.allowed == 20

    def test_get_all_quotas(self, session, epci):
        quotas = quota_service.get_all_quotas(session, epci)

        assert set(quotas) == {'ADMINS', 'ASSOCIATIONS', 'COMMUNES'}
        assert quotas['COMMUNES']['allowed'] == 10
        assert quotas['ADMINS']['allowed'] == 1


class TestCreateWithQuota:
    """Tests for the quota write path."""

    def test_exhausted_quota_rejected(self, session, essentiel_mairie, make_admin):
        """ESSENTIEL includes a single admin."""
        make_admin(essentiel_mairie)
        before = _denials('ADMINS', 'quota_exceeded')

        with pytest.raises(QuotaExceededError) as exc_info:
            account_service.create_tenant_user(
                session, essentiel_mairie, 'Second', 'second@test.com', 'password123'
            )

        assert exc_info.value.status_code == 403
        assert exc_info.value.used == 1
        assert exc_info.value.allowed == 1
        assert 'Quota atteint : 1/1 administrateurs utilisés' in exc_info.value.message
        assert _denials('ADMINS', 'quota_exceeded') == before + 1

    def test_creation_within_quota(self, session, essentiel_mairie):
        user = account_service.create_tenant_user(
            session, essentiel_mairie, 'First', 'First@Test.com', 'password123'
        )
        session.commit()

        assert user.id is not None
        assert user.email == 'first@test.com'
        assert check_quota(session, essentiel_mairie, QuotaResource.ADMINS).is_exhausted

    def test_deactivated_admin_frees_slot(self, session, essentiel_mairie, make_admin):
        admin = make_admin(essentiel_mairie)
        account_service.deactivate_tenant_user(session, essentiel_mairie, admin.id)
        session.commit()

        user = account_service.create_tenant_user(session, essentiel_mairie, 'New', 'new@test.com', 'password123')

        assert user.active is True

    def test_child_tenant_creation_bounded_by_commune_quota(self, session, epci):
        for index in range(10):
            hierarchy_service.create_child_tenant(session, epci, TenantType.MAIRIE, f'Commune {index}')
        session.commit()

        with pytest.raises(QuotaExceededError) as exc_info:
            hierarchy_service.create_child_tenant(session, epci, TenantType.MAIRIE, 'Commune de trop')

        assert exc_info.value.resource == 'COMMUNES'
        assert len(hierarchy_service.get_member_communes(session, epci)) == 10

    def test_archived_child_frees_slot(self, session, make_tenant, essentiel_mairie):
        """STANDARD includes 5 associations."""
        entitlement_service.assign_plan(session, essentiel_mairie, 'STANDARD')
        children = [make_tenant(TenantType.ASSOCIATION, parent=essentiel_mairie) for _ in range(5)]

        with pytest.raises(QuotaExceededError):
            hierarchy_service.create_child_tenant(session, essentiel_mairie, TenantType.ASSOCIATION, 'Club')
        session.rollback()

        children[0].lifecycle_status = LifecycleStatus.ARCHIVED
        session.commit()
        club = hierarchy_service.create_child_tenant(session, essentiel_mairie, TenantType.ASSOCIATION, 'Club')

        assert club.parent_tenant_id == essentiel_mairie.id

    def test_recount_under_lock_reports_race_lost(self, session, monkeypatch, essentiel_mairie):
        """A slot taken between the pre-check and the lock is a 409."""
        counts = iter([0, 1])

        def fake_check(session_, tenant, resource):
            return Quota(resource, plan_included=1, purchased=0, used=next(counts), owner_id=tenant.id)

        monkeypatch.setattr(quota_service, 'check_quota', fake_check)
        created = []

        with pytest.raises(QuotaRaceLostError) as exc_info:
            quota_service.create_with_quota(
                session, essentiel_mairie, QuotaResource.ADMINS, lambda: created.append(1)
            )

        assert exc_info.value.status_code == 409
        assert exc_info.value.to_dict()['reason'] == 'quota_race_lost'
        assert created == []

    def test_lock_timeout_reports_race_lost(self, session, essentiel_mairie):
        def locked_factory():
            raise OperationalError('INSERT', {}, sqlite3.OperationalError('database is locked'))

        with pytest.raises(QuotaRaceLostError):
            quota_service.create_with_quota(session, essentiel_mairie, QuotaResource.ADMINS, locked_factory)

    def test_other_database_errors_propagate(self, session, essentiel_mairie):
        def broken_factory():
            raise OperationalError('INSERT', {}, sqlite3.OperationalError('no such table: nowhere'))

        with pytest.raises(OperationalError):
            quota_service.create_with_quota(session, essentiel_mairie, QuotaResource.ADMINS, broken_factory)
        session.rollback()


class TestConcurrentCreations:
    """N concurrent creations against K free slots yield exactly K successes."""

    def test_concurrent_admin_creations(self, app, session, monkeypatch, essentiel_mairie):
        entitlement_service.set_feature_override(session, essentiel_mairie, max_admins=3)
        session.commit()
        allowed = check_quota(session, essentiel_mairie, QuotaResource.ADMINS).allowed
        attempts = allowed + 5
        tenant_id = essentiel_mairie.id

        # Keep hashing out of the measured section
        monkeypatch.setattr(TenantUser, 'set_password', lambda self, password: setattr(
            self, 'password_hash', f'plain:{password}'
        ))

        barrier = threading.Barrier(attempts)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker(index):
            with app.app_context():
                db = get_session()
                tenant = db.query(Tenant).filter_by(id=tenant_id).first()
                barrier.wait(timeout=30)
                try:
                    account_service.create_tenant_user(
                        db, tenant, f'Admin {index}', f'race-{index}@test.com', 'password123'
                    )
                    db.commit()
                    outcome = 201
                except QuotaExceededError as e:
                    db.rollback()
                    outcome = e.status_code
                except Exception as e:
                    db.rollback()
                    outcome = repr(e)
                with outcomes_lock:
                    outcomes.append(outcome)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert len(outcomes) == attempts
        assert outcomes.count(201) == allowed
        assert all(outcome in (403, 409) for outcome in outcomes if outcome != 201), outcomes
        assert check_quota(session, essentiel_mairie, QuotaResource.ADMINS).used == allowed


class TestCommuneQuote:
    """Tests for the price quote of member communes."""

    def test_quote_uses_tier_of_total(self, session, epci):
        session.add_all([
            Tenant(slug=f'commune-{index}', name=f'Commune {index}', tenant_type=TenantType.MAIRIE,
                   parent_epci_id=epci.id)
            for index in range(41)
        ])
        session.commit()

        quote = quota_service.quote_commune_addition(session, epci, 1)

        assert quote['currentCount'] == 41
        assert quote['totalCount'] == 42
        assert quote['tier']['minQuantity'] == 41
        assert quote['tier']['maxQuantity'] == 100
        assert quote['monthlyPrice'] == 799.0
        assert quote['pricing'] == 'tier'
        assert quote['addonAvailable'] is True
        assert quote['withinQuota'] is False

    def test_quote_within_quota(self, session, epci, member_commune):
        quote = quota_service.quote_commune_addition(session, epci, 2)

        assert quote['currentCount'] == 1
        assert quote['totalCount'] == 3
        assert quote['monthlyPrice'] == 199.0
        assert quote['withinQuota'] is True

    def test_quote_reserved_to_epci(self, session, mairie):
        with pytest.raises(BusinessLogicError):
            quota_service.quote_commune_addition(session, mairie, 1)

    def test_quote_needs_positive_increment(self, session, epci):
        with pytest.raises(BusinessLogicError):
            quota_service.quote_commune_addition(session, epci, 0)
