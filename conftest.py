from unittest import mock

import pytest

from app import create_app
from auth import hash_password
from database import JsonStore

TEST_CONFIG = {
    'JWT_SECRET': 'test-secret-key-that-is-long-enough-for-hs256',
    'API_VERSION': 'v1',
    'JOBS_ENABLED': False,
    'CONSUMER_KEY': 'key',
    'CONSUMER_SECRET': 'secret',
    'PASS_KEY': 'passkey',
    'BASE_URL': 'https://pos.example.com',
    'MPESA_ALLOWED_IPS': [],
    'CLOUDINARY_URL': '',
    'ERROR_LOG_FILE': None,
    'DATABASE_URL': None,
    'TIMEZONE': 'Africa/Nairobi',
}

API = '/api/v1'


@pytest.fixture
def store(tmp_path):
    s = JsonStore(str(tmp_path / 'data'))
    s.init()
    return s


@pytest.fixture
def mpesa_client():
    client = mock.Mock()
    client.stk_push.return_value = {
        'MerchantRequestID': 'merchant-1',
        'CheckoutRequestID': 'ws_CO_1',
        'ResponseCode': '0',
        'ResponseDescription': 'Success. Request accepted for processing',
    }
    return client


@pytest.fixture
def app(tmp_path, store, mpesa_client):
    config = dict(TEST_CONFIG, DATA_DIR=str(tmp_path / 'data'))
    app = create_app(config, store=store, mpesa_client=mpesa_client)
    app.testing = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _create_user(store, email, role):
    return store.insert('users', {
        'email': email,
        'password': hash_password('secret123'),
        'name': role.title(),
        'role': role,
    })


def _login(client, email):
    r = client.post(f'{API}/auth/login', json={'email': email, 'password': 'secret123'})
    assert r.status_code == 200, r.get_json()
    return r.get_json()['token']


@pytest.fixture
def admin_headers(client, store):
    _create_user(store, 'admin@bakery.co.ke', 'admin')
    return {'Authorization': f"Bearer {_login(client, 'admin@bakery.co.ke')}"}


@pytest.fixture
def attendant_headers(client, store):
    _create_user(store, 'attendant@bakery.co.ke', 'attendant')
    return {'Authorization': f"Bearer {_login(client, 'attendant@bakery.co.ke')}"}


@pytest.fixture
def product(store):
    return store.insert('products', {
        'name': 'Croissant',
        'description': 'Butter croissant',
        'price': 50.0,
        'image': 'https://res.cloudinary.com/demo/croissant.jpg',
        'category': 'pastry',
        'stock': 10,
    })
