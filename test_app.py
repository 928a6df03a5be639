import logging
from unittest import mock

from conftest import API
from config import load_config, missing_required
from database import StoreError


def test_health(client):
    r = client.get('/api/health')
    assert r.status_code == 200
    assert r.get_json()['status'] == 'healthy'


def test_api_root_lists_groups(client):
    endpoints = client.get('/api/').get_json()['endpoints']
    assert f'{API}/orders' in endpoints['orders']
    assert set(endpoints) == {'auth', 'products', 'stores', 'orders', 'sales', 'notifications', 'mpesa'}


def test_unknown_endpoint_and_method(client):
    r = client.get(f'{API}/nothing-here')
    assert r.status_code == 404
    assert r.get_json() == {'success': False, 'message': 'Endpoint not found'}

    r = client.delete(f'{API}/products')
    assert r.status_code == 405


def test_store_failure_is_500(client, store):
    with mock.patch.object(store, 'all', side_effect=StoreError('Could not read products')):
        r = client.get(f'{API}/products')
    assert r.status_code == 500
    assert r.get_json()['message'] == 'Internal server error'


def test_cors_headers(client):
    r = client.get(f'{API}/products', headers={'Origin': 'https://shop.example.com'})
    assert r.headers.get('Access-Control-Allow-Origin') in ('*', 'https://shop.example.com')


def test_access_log(client, caplog):
    with caplog.at_level(logging.INFO, logger='app'):
        client.get('/api/health')
    assert any('GET /api/health 200' in record.getMessage() for record in caplog.records)


def test_missing_required_settings(monkeypatch):
    for name in ('CONSUMER_KEY', 'CONSUMER_SECRET', 'PASS_KEY', 'BASE_URL', 'JWT_SECRET'):
        monkeypatch.delenv(name, raising=False)
    with mock.patch('config.load_dotenv'):
        config = load_config()
    assert missing_required(config) == ['CONSUMER_KEY', 'CONSUMER_SECRET', 'PASS_KEY', 'BASE_URL', 'JWT_SECRET']

    config.update(CONSUMER_KEY='k', CONSUMER_SECRET='s', PASS_KEY='p', BASE_URL='https://x', JWT_SECRET='j')
    assert missing_required(config) == []


def test_config_parses_lists_and_flags(monkeypatch):
    monkeypatch.setenv('MPESA_ALLOWED_IPS', '196.201.214.200, 196.201.214.206')
    monkeypatch.setenv('JOBS_ENABLED', 'false')
    with mock.patch('config.load_dotenv'):
        config = load_config()
    assert config['MPESA_ALLOWED_IPS'] == ['196.201.214.200', '196.201.214.206']
    assert config['JOBS_ENABLED'] is False
