import pytest
import os
import shutil
import tempfile
import uuid

from config import Config
from voxpopulous import create_app
from voxpopulous.database import Base, get_engine, get_session
from voxpopulous.models import (
    Tenant, TenantType, BillingStatus, SubscriptionPlan, SuperAdmin,
    TenantUser, UserRole, ElectedOfficial, ElectedOfficialMenuPermission
)
from voxpopulous.services.catalog_seed import seed_catalog

_DB_DIR = tempfile.mkdtemp(prefix='voxpop-tests-')

WEBHOOK_SECRET = 'test-webhook-secret'
PASSWORD = 'password123'


class TestingConfig(Config):
    """File-backed SQLite so that threaded tests share the database."""
    TESTING = True
    ENV = 'testing'
    SECRET_KEY = 'test-secret-key'
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = f"sqlite:///{os.path.join(_DB_DIR, 'voxpop.db')}"
    SQLALCHEMY_ECHO = False
    CACHE_ENABLED = False
    BILLING_GATE_ENABLED = True
    BILLING_WEBHOOK_SECRET = WEBHOOK_SECRET


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app(TestingConfig)
    Base.metadata.create_all(bind=get_engine())
    yield app
    get_engine().dispose()
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def app_context(app):
    """
    Keep one app context per test so requests made by the client reuse it and
    fixture objects stay attached to the session between requests.
    """
    with app.app_context():
        yield
    with get_engine().begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def catalog(session):
    """Seeded reference catalog, plans keyed by code."""
    seed_catalog(session)
    session.commit()
    return {plan.code: plan for plan in session.query(SubscriptionPlan).all()}


@pytest.fixture(scope='function')
def make_tenant(session):
    """Factory for tenants; parent sets the link matching the tenant type."""
    def _make(tenant_type=TenantType.MAIRIE, plan=None, parent=None, **kwargs):
        suffix = str(uuid.uuid4())[:8]
        kwargs.setdefault('billing_status', BillingStatus.ACTIVE)
        tenant = Tenant(
            slug=f'{tenant_type.value.lower()}-{suffix}',
            name=f'{tenant_type.value.title()} {suffix}',
            tenant_type=tenant_type,
            subscription_plan_id=plan.id if plan else None,
            **kwargs
        )
        if parent is not None:
            if tenant_type == TenantType.MAIRIE:
                tenant.parent_epci_id = parent.id
            else:
                tenant.parent_tenant_id = parent.id
        session.add(tenant)
        session.commit()
        return tenant

    return _make


@pytest.fixture(scope='function')
def epci(make_tenant, catalog):
    """EPCI on the EPCI plan (10 communes, 20 associations included)."""
    return make_tenant(TenantType.EPCI, plan=catalog['EPCI'])


@pytest.fixture(scope='function')
def mairie(make_tenant, catalog):
    """Standalone commune on the PRO plan (every feature)."""
    return make_tenant(TenantType.MAIRIE, plan=catalog['PRO'])


@pytest.fixture(scope='function')
def mairie2(make_tenant, catalog):
    """Second standalone commune for isolation tests."""
    return make_tenant(TenantType.MAIRIE, plan=catalog['PRO'])


@pytest.fixture(scope='function')
def essentiel_mairie(make_tenant, catalog):
    """Commune on the ESSENTIEL plan (idea box only)."""
    return make_tenant(TenantType.MAIRIE, plan=catalog['ESSENTIEL'])


@pytest.fixture(scope='function')
def member_commune(make_tenant, epci):
    """Commune attached to the EPCI, without plan of its own."""
    return make_tenant(TenantType.MAIRIE, parent=epci)


@pytest.fixture(scope='function')
def association(make_tenant, mairie):
    """Association attached to the standalone commune."""
    return make_tenant(TenantType.ASSOCIATION, parent=mairie)


@pytest.fixture(scope='function')
def make_admin(session):
    """Factory for tenant admins, created outside the quota path."""
    def _make(tenant, active=True):
        suffix = str(uuid.uuid4())[:8]
        user = TenantUser(
            tenant_id=tenant.id,
            name=f'Admin {suffix}',
            email=f'admin-{suffix}@test.com',
            role=UserRole.ADMIN.value,
            active=active
        )
        user.set_password(PASSWORD)
        session.add(user)
        session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def make_official(session):
    """Factory for elected officials able to sign in."""
    def _make(tenant, has_full_access=False, menu_codes=()):
        suffix = str(uuid.uuid4())[:8]
        official = ElectedOfficial(
            tenant_id=tenant.id,
            first_name='Jeanne',
            last_name=f'Martin {suffix}',
            function='Adjointe',
            email=f'elu-{suffix}@test.com',
            has_full_access=has_full_access,
            is_active=True
        )
        official.set_password(PASSWORD)
        for code in menu_codes:
            official.menu_permissions.append(ElectedOfficialMenuPermission(menu_code=code))
        session.add(official)
        session.commit()
        return official

    return _make


@pytest.fixture(scope='function')
def superadmin(session):
    """Platform operator."""
    suffix = str(uuid.uuid4())[:8]
    superadmin = SuperAdmin(email=f'root-{suffix}@voxpopulous.test', name='Root')
    superadmin.set_password(PASSWORD)
    session.add(superadmin)
    session.commit()
    return superadmin


@pytest.fixture(scope='function')
def login_as(client):
    """Open a session for an admin, an elected official or a super admin."""
    def _login(account):
        with client.session_transaction() as sess:
            sess.clear()
            if isinstance(account, SuperAdmin):
                sess['superadmin_id'] = account.id
            elif isinstance(account, TenantUser):
                sess['admin_user_id'] = account.id
                sess['tenant_id'] = account.tenant_id
            else:
                sess['elected_official_id'] = account.id
                sess['tenant_id'] = account.tenant_id
        return client

    return _login
