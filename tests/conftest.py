import pytest

from app import create_app
from core.database_models import db, Administrator, Brewery, User, ROLE_ADMINISTRATOR, ROLE_BREWERY, parse_uuid
from core.security_manager import get_security_manager

PASSWORD = 'birra-buona-42'

# Smallest byte strings that pass the magic-byte checks
JPEG_BYTES = b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00' + b'\x00' * 64
PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


@pytest.fixture
def app():
    app = create_app('testing')
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    """Application context for service-level tests that do not use the client"""
    with app.app_context():
        yield app


@pytest.fixture
def make_brewery(app):
    def _make(name='Birrificio Viana', **fields):
        with app.app_context():
            brewery = Brewery(name=name, **fields)
            db.session.add(brewery)
            db.session.commit()
            return str(brewery.id)
    return _make


@pytest.fixture
def make_user(app):
    """Create a user and return its id as a string"""
    def _make(username='mario', roles=('customer',), password=PASSWORD, brewery_id=None, **fields):
        with app.app_context():
            password_hash, salt = get_security_manager().hash_password(password)
            roles = list(roles)
            user = User(username=username, password_hash=password_hash, password_salt=salt, roles=roles, **fields)
            if ROLE_ADMINISTRATOR in roles:
                user.administrator = Administrator(name=username)
                user.default_role = None
            elif ROLE_BREWERY in roles:
                user.default_role = ROLE_BREWERY
            else:
                user.default_role = roles[0]
            if brewery_id:
                user.brewery = db.session.get(Brewery, parse_uuid(brewery_id))
            db.session.add(user)
            db.session.commit()
            return str(user.id)
    return _make


@pytest.fixture
def login(client):
    def _login(username, password=PASSWORD):
        return client.post('/login', data={'username': username, 'password': password})
    return _login
