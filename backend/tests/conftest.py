"""
Pytest fixtures for shop console backend tests.

Provides test database setup, principal fixtures, and test client.
"""

import pytest

from shopconsole import create_app
from shopconsole.extensions import db
from shopconsole.services import auth_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-secret',
        'JWT_SECRET': 'test-jwt-secret',
        'BCRYPT_ROUNDS': 4,
        'LOGIN_MAX_FAILED_ATTEMPTS': 3,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        # Per-test config tweaks are undone here
        saved_config = dict(app.config)

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.config.clear()
        app.config.update(saved_config)


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory creating principals with the shared test password."""
    counter = {"n": 0}

    def _make(role="seller", status="active", email=None, phone_number=None, email_verified=True, full_name=None):
        counter["n"] += 1
        return auth_service.create_principal(
            email=email or f"{role}{counter['n']}@shop.test",
            password=PASSWORD,
            full_name=full_name or f"{role.title()} {counter['n']}",
            role=role,
            status=status,
            phone_number=phone_number,
            email_verified=email_verified,
        )

    return _make


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(role="admin", email="admin@shop.test", full_name="Admin A")


@pytest.fixture(scope='function')
def seller(make_user):
    return make_user(role="seller", email="seller@shop.test", phone_number="+15550001", full_name="Seller 123")


def get_auth_token(client, email_or_phone: str, password: str = PASSWORD, remember_me: bool = False) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'emailOrPhone': email_or_phone,
        'password': password,
        'rememberMe': remember_me,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.email))


@pytest.fixture(scope='function')
def seller_headers(client, seller):
    return auth_headers(get_auth_token(client, seller.email))
