"""
Shared pytest fixtures: an app on a fresh in-memory SQLite database per test,
its test client, and helpers for registering farmers and signing in.

Requests run in their own app context but share the single in-memory
connection with the test, so anything a test writes directly must be
committed before the next request.
"""
import pytest

from app import create_app
from models import db, User
from helpers import registration_payload


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register a farmer through the API and return the response."""
    def _register(**overrides):
        return client.post('/api/auth/register', json=registration_payload(**overrides))
    return _register


@pytest.fixture
def login(client):
    """Log in and return the bearer token."""
    def _login(identifier, password):
        response = client.post('/api/auth/login', json={'identifier': identifier, 'password': password})
        assert response.status_code == 200, response.get_json()
        return response.get_json()['token']
    return _login


@pytest.fixture
def farmer_token(register, login):
    assert register().status_code == 201
    return login('juan', 'secret123')


@pytest.fixture
def make_admin(app):
    def _make_admin(username='admin', password='admin123'):
        admin = User(username=username, email=f'{username}@cropaid.local', role='admin')
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        return admin.id
    return _make_admin


@pytest.fixture
def admin_token(make_admin, login):
    make_admin()
    return login('admin', 'admin123')
