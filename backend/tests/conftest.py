"""
Pytest fixtures for assetledger backend tests.

Provides test database setup, an authenticated user, test client and
small builders for registering stock.
"""

import pytest

from assetledger import create_app
from assetledger.extensions import db
from assetledger.models import User
from assetledger.services import registry_service
from assetledger.services.auth_service import hash_password


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'RETRY_ATTEMPTS': 1,
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def user(db_session):
    """Signed-up warehouse clerk."""
    user = User(
        username="clerk",
        email="clerk@example.com",
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def stock(db_session, user):
    """
    Builder: register serials as Active stock.

        stock("SN-1", "SN-2", model="X200")
    """
    def _stock(*serials, **attrs):
        return [
            registry_service.stock_in(user_id=user.id, serial_number=s, **attrs)
            for s in serials
        ]
    return _stock


@pytest.fixture(scope='function')
def token(client, user):
    return get_auth_token(client, user.username, TEST_PASSWORD)


@pytest.fixture(scope='function')
def headers(token):
    return auth_headers(token)


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
