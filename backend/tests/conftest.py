import os, sys, pytest
# Ensure backend directory is on path so 'washops' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from sqlalchemy import select
from washops import create_app, get_db
from washops.models.authz import Base, Role, Tenant, User
import washops.models.audit  # noqa: F401
from washops.services.overrides import OverrideStore
from washops.services.policy import SESSIONS_EXTENSION
from washops.services.roles import RoleRegistry
from washops.services.seed import seed_all, ensure_root_user
from washops.services.store import AuthzStore

ROOT_EMAIL = 'root@test.local'
PASSWORD = 'pw'


@pytest.fixture()
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-that-is-long-enough-for-hs256',
    })
    with app.app_context():
        session = get_db()
        Base.metadata.create_all(session.get_bind())
        seed_all(session)
        ensure_root_user(session, email=ROOT_EMAIL, password=PASSWORD)
        session.commit()
        yield app
        session.close()


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def db(app_instance):
    return get_db()


@pytest.fixture()
def store(db):
    return AuthzStore(db)


@pytest.fixture()
def sessions(app_instance):
    return app_instance.extensions[SESSIONS_EXTENSION]


@pytest.fixture()
def registry(app_instance, store, sessions):
    return RoleRegistry(store, sessions, app_instance.extensions['washops.role_locks'])


@pytest.fixture()
def overrides(app_instance, store, sessions):
    return OverrideStore(store, sessions, app_instance.extensions['washops.role_locks'])


@pytest.fixture()
def system_roles(db):
    rows = db.execute(select(Role).where(Role.tenant_id.is_(None))).scalars().all()
    return {r.name: r for r in rows}


@pytest.fixture()
def make_tenant(db):
    def _make(name='Acme Wash', active=True):
        tenant = Tenant(name=name, is_active=active)
        db.add(tenant); db.commit()
        return tenant
    return _make


@pytest.fixture()
def tenant(make_tenant):
    return make_tenant()


@pytest.fixture()
def make_user(db):
    def _make(email, role, tenant=None, active=True):
        user = User(name=email.split('@')[0], email=email, role_id=role.id,
                    tenant_id=tenant.id if tenant is not None else None, password_hash='', is_active=active)
        user.set_password(PASSWORD)
        db.add(user); db.commit()
        return user
    return _make


@pytest.fixture()
def make_role(db):
    """Insert a tenant role directly, bypassing the registry guards."""
    def _make(name, level, archetype='cashier', tenant=None, active=True):
        role = Role(name=name, level=level, archetype=archetype, tenant_id=tenant.id if tenant else None,
                    is_system_role=False, is_active=active)
        db.add(role); db.commit()
        return role
    return _make


@pytest.fixture()
def root_user(db):
    return db.execute(select(User).where(User.email == ROOT_EMAIL)).scalar_one()


@pytest.fixture()
def root_actor(sessions, root_user):
    return sessions.sign_in(root_user.id)


@pytest.fixture()
def admin_user(make_user, system_roles, tenant):
    return make_user('admin@acme.test', system_roles['admin'], tenant)


@pytest.fixture()
def admin_actor(sessions, admin_user):
    return sessions.sign_in(admin_user.id)


@pytest.fixture()
def cashier_user(make_user, system_roles, tenant):
    return make_user('cashier@acme.test', system_roles['cashier'], tenant)


@pytest.fixture()
def cashier_actor(sessions, cashier_user):
    return sessions.sign_in(cashier_user.id)


def login(client, email, password=PASSWORD):
    resp = client.post('/iam/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['access_token']}"}
