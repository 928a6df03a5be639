import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import bcrypt
import jwt
from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10


def hash_password(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode('utf-8')


def check_password(password, hashed):
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def generate_token(payload):
    """Sign a JWT that expires after JWT_EXPIRES_MINUTES"""
    claims = dict(payload)
    claims['exp'] = datetime.now(timezone.utc) + timedelta(minutes=current_app.config['JWT_EXPIRES_MINUTES'])
    return jwt.encode(claims, current_app.config['JWT_SECRET'], algorithm='HS256')


def verify_token(token):
    """Return the token claims, or None when the token is invalid or expired"""
    try:
        return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])
    except jwt.InvalidTokenError:
        return None


def public_user(user):
    return {k: v for k, v in user.items() if k != 'password'}


def bearer_token():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:].strip()
    return auth_header.strip() or None


def token_required(f):
    """Reject requests without a valid token and attach the caller as request.user.

    Decodes the token itself instead of calling verify_token so an expired
    token gets its own 401 message.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({'success': False, 'message': 'Token is missing'}), 401

        try:
            data = jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])
        except jwt.ExpiredSignatureError:
            return jsonify({'success': False, 'message': 'Token has expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'success': False, 'message': 'Invalid token'}), 401

        store = current_app.extensions['document_store']
        user = store.get('users', data.get('id'))
        if not user:
            return jsonify({'success': False, 'message': 'User not found'}), 401

        request.user = public_user(user)
        return f(*args, **kwargs)
    return decorated


def role_required(*roles):
    """Must be applied below token_required"""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if request.user.get('role') not in roles:
                logger.warning("User %s denied access to %s", request.user.get('email'), request.path)
                return jsonify({'success': False, 'message': 'Insufficient permissions'}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


def ensure_admin(store, email, password, name='Administrator'):
    """Create the bootstrap admin account unless it already exists"""
    email = email.strip().lower()
    with store.locked('users'):
        existing = store.find_one('users', email=email)
        if existing:
            logger.info("Admin already exists: %s", email)
            return existing, False
        admin = store.insert('users', {
            'email': email,
            'password': hash_password(password),
            'name': name,
            'role': 'admin',
        })
    logger.info("Admin user created successfully: %s", email)
    return admin, True
