from datetime import datetime, timedelta, timezone

import jwt

from auth import check_password, ensure_admin, generate_token, hash_password, verify_token
from conftest import API, TEST_CONFIG


def test_password_hash_round_trip():
    hashed = hash_password('secret123')
    assert hashed != 'secret123'
    assert check_password('secret123', hashed)
    assert not check_password('wrong', hashed)
    assert not check_password('secret123', 'not-a-hash')


def test_token_carries_claims_and_expiry(app):
    with app.app_context():
        token = generate_token({'id': 'u1', 'role': 'admin'})
        claims = verify_token(token)
    assert claims['id'] == 'u1'
    assert claims['exp'] > datetime.now(timezone.utc).timestamp()


def test_verify_rejects_tampered_token(app):
    with app.app_context():
        assert verify_token('abc.def.ghi') is None


def test_register_and_login(client):
    r = client.post(f'{API}/auth/register', json={
        'email': 'Jane@Bakery.co.ke', 'password': 'secret123', 'name': 'Jane'})
    assert r.status_code == 201
    body = r.get_json()
    assert body['token']
    assert body['user']['email'] == 'jane@bakery.co.ke'
    assert body['user']['role'] == 'attendant'
    assert 'password' not in body['user']

    r = client.post(f'{API}/auth/login', json={'email': 'jane@bakery.co.ke', 'password': 'secret123'})
    assert r.status_code == 200
    assert r.get_json()['user']['name'] == 'Jane'


def test_register_duplicate_email(client):
    payload = {'email': 'jane@bakery.co.ke', 'password': 'secret123', 'name': 'Jane'}
    client.post(f'{API}/auth/register', json=payload)
    r = client.post(f'{API}/auth/register', json=payload)
    assert r.status_code == 400
    assert r.get_json()['message'] == 'User already exists'


def test_register_admin_requires_admin_caller(client, admin_headers):
    payload = {'email': 'boss@bakery.co.ke', 'password': 'secret123', 'name': 'Boss', 'role': 'admin'}
    assert client.post(f'{API}/auth/register', json=payload).status_code == 403
    r = client.post(f'{API}/auth/register', json=payload, headers=admin_headers)
    assert r.status_code == 201
    assert r.get_json()['user']['role'] == 'admin'


def test_register_validation_error(client):
    r = client.post(f'{API}/auth/register', json={'email': 'bad', 'password': '1', 'name': 'J'})
    assert r.status_code == 400
    assert r.get_json()['success'] is False


def test_login_wrong_password(client, admin_headers):
    r = client.post(f'{API}/auth/login', json={'email': 'admin@bakery.co.ke', 'password': 'wrongpass'})
    assert r.status_code == 400
    assert r.get_json()['message'] == 'Invalid credentials'


def test_profile_requires_token(client):
    r = client.get(f'{API}/auth/profile')
    assert r.status_code == 401
    assert r.get_json()['message'] == 'Token is missing'


def test_invalid_and_expired_tokens(client, store):
    r = client.get(f'{API}/auth/profile', headers={'Authorization': 'Bearer nonsense'})
    assert r.get_json()['message'] == 'Invalid token'

    expired = jwt.encode({'id': 'u1', 'exp': datetime.now(timezone.utc) - timedelta(minutes=1)},
                         TEST_CONFIG['JWT_SECRET'], algorithm='HS256')
    r = client.get(f'{API}/auth/profile', headers={'Authorization': f'Bearer {expired}'})
    assert r.status_code == 401
    assert r.get_json()['message'] == 'Token has expired'


def test_token_of_deleted_user(client, store, attendant_headers):
    user = store.find_one('users', email='attendant@bakery.co.ke')
    store.delete('users', user['id'])
    r = client.get(f'{API}/auth/profile', headers=attendant_headers)
    assert r.status_code == 401
    assert r.get_json()['message'] == 'User not found'


def test_get_profile(client, attendant_headers):
    r = client.get(f'{API}/auth/profile', headers=attendant_headers)
    assert r.status_code == 200
    data = r.get_json()['data']
    assert data['email'] == 'attendant@bakery.co.ke'
    assert 'password' not in data


def test_update_profile(client, store, attendant_headers):
    r = client.put(f'{API}/auth/profile', headers=attendant_headers,
                   json={'name': 'Renamed', 'password': 'newsecret'})
    assert r.status_code == 200
    assert r.get_json()['data']['name'] == 'Renamed'

    user = store.find_one('users', email='attendant@bakery.co.ke')
    assert check_password('newsecret', user['password'])
    assert user['updatedAt']


def test_update_profile_rejects_taken_email(client, admin_headers, attendant_headers):
    r = client.put(f'{API}/auth/profile', headers=attendant_headers, json={'email': 'admin@bakery.co.ke'})
    assert r.status_code == 400
    assert r.get_json()['message'] == 'Email already in use'


def test_update_profile_cannot_change_role(client, attendant_headers):
    r = client.put(f'{API}/auth/profile', headers=attendant_headers, json={'role': 'admin'})
    assert r.status_code == 400


def test_ensure_admin_is_idempotent(store):
    admin, created = ensure_admin(store, 'Owner@Bakery.co.ke', 'secret123')
    assert created
    assert admin['role'] == 'admin'
    again, created = ensure_admin(store, 'owner@bakery.co.ke', 'secret123')
    assert not created
    assert again['id'] == admin['id']
    assert len(store.find('users', email='owner@bakery.co.ke')) == 1
