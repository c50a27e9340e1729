"""
Integration tests for the platform operator API.
"""

import pytest
from voxpopulous.models import LifecycleStatus, Tenant, TenantType


@pytest.fixture
def operator(client, superadmin, login_as):
    """Client with a super admin session."""
    login_as(superadmin)
    return client


class TestTenantManagement:
    """Tests for tenant creation, listing and detail."""

    def test_create_tenant(self, operator, catalog):
        response = operator.post('/api/superadmin/tenants', json={
            'tenantType': 'EPCI',
            'name': 'Communauté du Lac',
            'planCode': 'EPCI',
        })

        assert response.status_code == 201
        assert response.json['slug'] == 'communaute-du-lac'
        assert response.json['planCode'] == 'EPCI'
        assert response.json['billingStatus'] == 'TRIAL'

    def test_create_tenant_with_plan_of_other_type(self, operator, catalog):
        response = operator.post('/api/superadmin/tenants', json={
            'tenantType': 'ASSOCIATION',
            'name': 'Club',
            'planCode': 'PRO',
        })

        assert response.status_code == 400

    def test_create_tenant_unknown_type(self, operator):
        response = operator.post('/api/superadmin/tenants', json={'tenantType': 'REGION', 'name': 'X'})

        assert response.status_code == 400

    def test_list_filters(self, operator, session, epci, mairie, mairie2):
        mairie2.lifecycle_status = LifecycleStatus.SUSPENDED
        session.commit()

        by_type = operator.get('/api/superadmin/tenants', query_string={'type': 'EPCI'})
        by_status = operator.get('/api/superadmin/tenants', query_string={'status': 'SUSPENDED'})
        by_search = operator.get('/api/superadmin/tenants', query_string={'q': mairie.slug})

        assert [t['id'] for t in by_type.json['tenants']] == [epci.id]
        assert [t['id'] for t in by_status.json['tenants']] == [mairie2.id]
        assert [t['id'] for t in by_search.json['tenants']] == [mairie.id]

    def test_list_rejects_unknown_status(self, operator):
        assert operator.get('/api/superadmin/tenants', query_string={'status': 'GONE'}).status_code == 400

    def test_detail(self, operator, epci, member_commune):
        response = operator.get(f'/api/superadmin/tenants/{member_commune.id}')

        assert response.status_code == 200
        assert response.json['billingRootId'] == epci.id
        assert response.json['features']['planName'] == 'Établissement Public de Coopération Intercommunale'
        assert response.json['billingState']['showsBilling'] is False
        assert response.json['featureOverrides'] is None

        parent = operator.get(f'/api/superadmin/tenants/{epci.id}')
        assert [c['id'] for c in parent.json['children']] == [member_commune.id]
        assert parent.json['quotas']['COMMUNES']['used'] == 1

    def test_detail_unknown(self, operator):
        assert operator.get('/api/superadmin/tenants/99999').status_code == 404


class TestLifecycle:
    """Tests for suspend, reactivate and archive."""

    def test_suspend_and_reactivate(self, operator, mairie):
        suspended = operator.post(f'/api/superadmin/tenants/{mairie.id}/suspend', json={'reason': 'Impayé'})

        assert suspended.status_code == 200
        assert suspended.json['lifecycleStatus'] == 'SUSPENDED'
        assert suspended.json['suspendedReason'] == 'Impayé'

        reactivated = operator.post(f'/api/superadmin/tenants/{mairie.id}/reactivate')

        assert reactivated.json['lifecycleStatus'] == 'ACTIVE'
        assert reactivated.json['suspendedReason'] is None

    def test_reactivate_active_tenant(self, operator, mairie):
        assert operator.post(f'/api/superadmin/tenants/{mairie.id}/reactivate').status_code == 400

    def test_archive_with_children_rejected(self, operator, mairie, association):
        response = operator.post(f'/api/superadmin/tenants/{mairie.id}/archive', json={})

        assert response.status_code == 400

    def test_archive_frees_slug_lookup(self, operator, client, association):
        response = operator.post(f'/api/superadmin/tenants/{association.id}/archive', json={'reason': 'Dissolution'})

        assert response.status_code == 200
        assert response.json['lifecycleStatus'] == 'ARCHIVED'
        assert client.get(f'/api/tenants/{association.slug}').status_code == 404


class TestBillingAndPlans:
    """Tests for billing status, plan and parent changes."""

    def test_billing_status(self, operator, mairie):
        response = operator.put(f'/api/superadmin/tenants/{mairie.id}/billing-status', json={
            'billingStatus': 'SUSPENDED',
        })

        assert response.status_code == 200
        assert response.json['billingStatus'] == 'SUSPENDED'

    def test_billing_status_on_child_rejected(self, operator, member_commune):
        response = operator.put(f'/api/superadmin/tenants/{member_commune.id}/billing-status', json={
            'billingStatus': 'ACTIVE',
        })

        assert response.status_code == 400

    def test_invalid_billing_status(self, operator, mairie):
        response = operator.put(f'/api/superadmin/tenants/{mairie.id}/billing-status', json={
            'billingStatus': 'PAID',
        })

        assert response.status_code == 400

    def test_change_plan(self, operator, client, essentiel_mairie, catalog):
        response = operator.put(f'/api/superadmin/tenants/{essentiel_mairie.id}/plan', json={'planCode': 'PRO'})

        assert response.status_code == 200
        assert response.json['planCode'] == 'PRO'
        assert client.get(f'/api/tenants/{essentiel_mairie.slug}/features').json['hasEvents'] is True

    def test_plan_required(self, operator, mairie):
        assert operator.put(f'/api/superadmin/tenants/{mairie.id}/plan', json={}).status_code == 400

    def test_child_cannot_get_plan(self, operator, member_commune, catalog):
        response = operator.put(f'/api/superadmin/tenants/{member_commune.id}/plan', json={'planCode': 'PRO'})

        assert response.status_code == 400

    def test_attach_and_detach(self, operator, session, epci, make_tenant):
        commune = make_tenant(TenantType.MAIRIE)

        attached = operator.put(f'/api/superadmin/tenants/{commune.id}/parent', json={'parentSlug': epci.slug})

        assert attached.status_code == 200
        assert attached.json['parentEpciId'] == epci.id
        assert attached.json['isChild'] is True

        detached = operator.put(f'/api/superadmin/tenants/{commune.id}/parent', json={'parentSlug': None})

        assert detached.json['parentEpciId'] is None
        assert session.get(Tenant, commune.id).is_child is False

    def test_epci_cannot_be_attached(self, operator, epci, mairie):
        response = operator.put(f'/api/superadmin/tenants/{epci.id}/parent', json={'parentSlug': mairie.slug})

        assert response.status_code == 400

    def test_attach_under_descendant_rejected(self, operator, mairie, association):
        response = operator.put(f'/api/superadmin/tenants/{mairie.id}/parent', json={'parentSlug': association.slug})

        assert response.status_code == 400

    def test_attach_unknown_parent(self, operator, mairie):
        response = operator.put(f'/api/superadmin/tenants/{mairie.id}/parent', json={'parentSlug': 'nowhere'})

        assert response.status_code == 404

    def test_attached_commune_follows_epci_plan(self, operator, client, epci, essentiel_mairie):
        slug = essentiel_mairie.slug
        assert client.get(f'/api/tenants/{slug}/features').json['hasIncidents'] is False

        response = operator.put(f'/api/superadmin/tenants/{essentiel_mairie.id}/parent', json={'parentSlug': epci.slug})

        assert response.status_code == 200
        assert response.json['planCode'] is None
        assert client.get(f'/api/tenants/{slug}/features').json['hasIncidents'] is True

    def test_attach_respects_commune_quota(self, operator, epci, make_tenant):
        for _ in range(10):
            make_tenant(TenantType.MAIRIE, parent=epci)
        commune = make_tenant(TenantType.MAIRIE)

        response = operator.put(f'/api/superadmin/tenants/{commune.id}/parent', json={'parentSlug': epci.slug})

        assert response.status_code == 403
        assert response.json['reason'] == 'quota_exceeded'
        assert response.json['resource'] == 'COMMUNES'


class TestFeatureOverrides:
    """Tests for per-tenant overrides."""

    def test_withdraw_feature(self, operator, client, mairie):
        response = operator.put(f'/api/superadmin/tenants/{mairie.id}/feature-overrides', json={
            'hasIncidents': False,
            'maxAdmins': 3,
            'notes': 'Convention spécifique',
        })

        assert response.status_code == 200
        assert response.json == {
            'hasIdeas': None,
            'hasIncidents': False,
            'hasMeetings': None,
            'maxAdmins': 3,
            'notes': 'Convention spécifique',
        }
        assert client.get(f'/api/tenants/{mairie.slug}/features').json['hasIncidents'] is False

    def test_invalid_flag(self, operator, mairie):
        response = operator.put(f'/api/superadmin/tenants/{mairie.id}/feature-overrides', json={'hasIdeas': 'yes'})

        assert response.status_code == 400

    def test_invalid_max_admins(self, operator, mairie):
        response = operator.put(f'/api/superadmin/tenants/{mairie.id}/feature-overrides', json={'maxAdmins': -1})

        assert response.status_code == 400


class TestPlanCatalog:
    """Tests for the plan catalog endpoints."""

    def test_list_plans(self, operator, catalog):
        response = operator.get('/api/superadmin/plans')

        codes = [p['code'] for p in response.json['plans']]
        assert codes == ['ASSO', 'ESSENTIEL', 'STANDARD', 'PRO', 'PREMIUM', 'EPCI']
        essentiel = response.json['plans'][1]
        assert essentiel['features'] == ['IDEA_BOX_CORE']

    def test_replace_plan_features(self, operator, client, essentiel_mairie):
        response = operator.put('/api/superadmin/plans/ESSENTIEL/features', json={
            'features': ['IDEA_BOX_CORE', 'EVENTS_CORE'],
        })

        assert response.status_code == 200
        assert response.json['features'] == ['EVENTS_CORE', 'IDEA_BOX_CORE']
        assert client.get(f'/api/tenants/{essentiel_mairie.slug}/features').json['hasEvents'] is True

    def test_unknown_feature_code(self, operator, catalog):
        response = operator.put('/api/superadmin/plans/ESSENTIEL/features', json={'features': ['TELEPORT']})

        assert response.status_code == 404

    def test_features_must_be_list(self, operator, catalog):
        response = operator.put('/api/superadmin/plans/ESSENTIEL/features', json={'features': 'IDEA_BOX_CORE'})

        assert response.status_code == 400

    def test_enable_addon_for_plan(self, operator, client, essentiel_mairie, make_admin, login_as):
        response = operator.put('/api/superadmin/plans/ESSENTIEL/addons/ASSOCIATIONS', json={
            'isEnabled': True,
            'quantity': 2,
        })

        assert response.status_code == 200
        access = {a['code']: a for a in response.json['addons']}['ASSOCIATIONS']
        assert access == {
            'code': 'ASSOCIATIONS', 'isEnabled': True, 'quantity': 2, 'monthlyPrice': None, 'yearlyPrice': None
        }

        login_as(make_admin(essentiel_mairie))
        quotas = client.get(f'/api/tenants/{essentiel_mairie.slug}/admin/quotas').json
        assert quotas['ASSOCIATIONS']['allowed'] == 2

    def test_unknown_plan(self, operator):
        assert operator.put('/api/superadmin/plans/GOLD/features', json={'features': []}).status_code == 404

    def test_unknown_addon(self, operator, catalog):
        assert operator.put('/api/superadmin/plans/PRO/addons/STORAGE', json={}).status_code == 400
