# Auth Endpoints
import logging

from flask import jsonify, request

from auth import bearer_token, check_password, generate_token, hash_password, public_user, token_required, verify_token
from database import utcnow
from validation import LoginRequest, ProfileUpdate, RegisterRequest, validate_body

logger = logging.getLogger(__name__)


def _token_for(user):
    return generate_token({'id': user['id'], 'email': user['email'], 'role': user['role']})


def create_auth_routes(app, store):
    prefix = app.config['API_PREFIX']

    def caller_is_admin():
        token = bearer_token()
        claims = verify_token(token) if token else None
        if not claims:
            return False
        user = store.get('users', claims.get('id'))
        return bool(user) and user.get('role') == 'admin'

    @app.route(f'{prefix}/auth/register', methods=['POST'])
    @validate_body(RegisterRequest)
    def register():
        body = request.validated
        email = body.email.lower()

        # Only an existing admin may create another admin
        if body.role == 'admin' and not caller_is_admin():
            return jsonify({'success': False, 'message': 'Insufficient permissions'}), 403

        with store.locked('users'):
            if store.find_one('users', email=email):
                return jsonify({'success': False, 'message': 'User already exists'}), 400
            user = store.insert('users', {
                'email': email,
                'password': hash_password(body.password),
                'name': body.name,
                'role': body.role,
            })

        logger.info("User registered: %s (%s)", email, user['role'])
        return jsonify({'success': True, 'token': _token_for(user), 'user': public_user(user)}), 201

    @app.route(f'{prefix}/auth/login', methods=['POST'])
    @validate_body(LoginRequest)
    def login():
        body = request.validated
        user = store.find_one('users', email=body.email.lower())
        if not user or not check_password(body.password, user.get('password')):
            logger.warning("Failed login for %s", body.email)
            return jsonify({'success': False, 'message': 'Invalid credentials'}), 400

        logger.info("User logged in: %s", user['email'])
        return jsonify({'success': True, 'token': _token_for(user), 'user': public_user(user)})

    @app.route(f'{prefix}/auth/profile', methods=['GET', 'PUT'])
    @token_required
    def profile():
        if request.method == 'GET':
            return jsonify({'success': True, 'data': request.user})
        return update_profile()

    @validate_body(ProfileUpdate)
    def update_profile():
        body = request.validated
        changes = {}
        if body.name is not None:
            changes['name'] = body.name
        if body.password is not None:
            changes['password'] = hash_password(body.password)

        with store.locked('users'):
            if body.email is not None:
                email = body.email.lower()
                other = store.find_one('users', email=email)
                if other and other['id'] != request.user['id']:
                    return jsonify({'success': False, 'message': 'Email already in use'}), 400
                changes['email'] = email

            if not changes:
                return jsonify({'success': True, 'data': request.user})
            changes['updatedAt'] = utcnow().isoformat()
            user = store.update('users', request.user['id'], changes)

        if not user:
            return jsonify({'success': False, 'message': 'User not found'}), 404
        logger.info("Profile updated: %s", user['email'])
        return jsonify({'success': True, 'data': public_user(user)})
