"""
Pytest fixtures for bike shop backend tests.

Provides in-memory database setup, one user per role, engine actors and a
test client with bearer tokens.
"""

import pytest

from bikeshop import create_app
from bikeshop.extensions import db
from bikeshop.models import User
from bikeshop.permissions import ROLE_ADMIN, ROLE_EDITOR, ROLE_PENDING, ROLE_VIEWER
from bikeshop.services import session_service
from bikeshop.services.auth_service import hash_password
from bikeshop.services.permission_service import AuthContext


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'IMAGE_UPLOAD_DIR': str(tmp_path_factory.mktemp("images")),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


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


def _make_user(db_session, password_hash, username: str, role: str) -> User:
    user = User(
        username=username,
        email=f"{username}@bikeshop.test",
        password_hash=password_hash,
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session, password_hash):
    return _make_user(db_session, password_hash, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def editor_user(db_session, password_hash):
    return _make_user(db_session, password_hash, "editor", ROLE_EDITOR)


@pytest.fixture(scope='function')
def viewer_user(db_session, password_hash):
    return _make_user(db_session, password_hash, "viewer", ROLE_VIEWER)


@pytest.fixture(scope='function')
def pending_user(db_session, password_hash):
    return _make_user(db_session, password_hash, "pending", ROLE_PENDING)


@pytest.fixture(scope='function')
def admin_actor(admin_user):
    return AuthContext.for_user(admin_user)


@pytest.fixture(scope='function')
def editor_actor(editor_user):
    return AuthContext.for_user(editor_user)


@pytest.fixture(scope='function')
def viewer_actor(viewer_user):
    return AuthContext.for_user(viewer_user)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def _headers_for(user: User) -> dict:
    _, token = session_service.create_session(user_id=user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return _headers_for(admin_user)


@pytest.fixture(scope='function')
def editor_headers(editor_user):
    return _headers_for(editor_user)


@pytest.fixture(scope='function')
def viewer_headers(viewer_user):
    return _headers_for(viewer_user)


@pytest.fixture(scope='function')
def pending_headers(pending_user):
    return _headers_for(pending_user)


def bike_payload(**overrides) -> dict:
    payload = {
        "ref_number": "0001",
        "brand": "Trek",
        "model": "Marlin 7",
        "type": "Mountain",
        "size": "M",
        "purchase_price": 40000,
        "sell_price": 65000,
    }
    payload.update(overrides)
    return payload


def loaner_payload(**overrides) -> dict:
    payload = {
        "ref_number": "P-001",
        "brand": "Orbea",
        "model": "Carpe 40",
        "size": "L",
    }
    payload.update(overrides)
    return payload
