"""Password hashing and bearer tokens.

Passwords go through werkzeug's salted key-derivation helpers; tokens are
Flask-JWT-Extended access tokens carrying the user id as subject plus the
``role`` and ``name`` claims.
"""
import logging
from dataclasses import dataclass
from functools import wraps

from flask import current_app, has_app_context
from flask_jwt_extended import create_access_token, decode_token, get_jwt, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from werkzeug.security import check_password_hash, generate_password_hash

from errors import Forbidden, TokenRejected

logger = logging.getLogger(__name__)

DEFAULT_HASH_METHOD = 'scrypt'

_dummy_hashes = {}


@dataclass(frozen=True)
class Principal:
    id: str
    role: str
    name: str = ''

    @property
    def is_admin(self):
        return self.role == 'admin'


def _hash_method():
    if has_app_context():
        return current_app.config.get('PASSWORD_HASH_METHOD', DEFAULT_HASH_METHOD)
    return DEFAULT_HASH_METHOD


def hash_password(password):
    return generate_password_hash(password, method=_hash_method())


def verify_password(password, password_hash):
    """Check ``password`` against a stored hash.

    With no stored hash the password is still checked against a throwaway hash
    so an unknown login takes as long as a wrong password.
    """
    if not password_hash:
        method = _hash_method()
        if method not in _dummy_hashes:
            _dummy_hashes[method] = generate_password_hash('not-a-real-password', method=method)
        check_password_hash(_dummy_hashes[method], password or '')
        return False
    return check_password_hash(password_hash, password or '')


def issue_token(user_id, role, name, ttl=None):
    claims = {'role': role, 'name': name}
    if ttl is None:
        return create_access_token(identity=str(user_id), additional_claims=claims)
    return create_access_token(identity=str(user_id), additional_claims=claims, expires_delta=ttl)


def verify_token(token):
    try:
        return decode_token(token)
    except (PyJWTError, JWTExtendedException) as e:
        logger.debug("Rejected token: %s", e)
        raise TokenRejected() from e


def current_principal():
    claims = get_jwt()
    return Principal(id=get_jwt_identity(), role=claims.get('role', 'farmer'), name=claims.get('name', ''))


def role_required(*roles):
    """Require a valid bearer token, and one of ``roles`` when given."""
    def wrapper(fn):
        @wraps(fn)
        def decorator(*args, **kwargs):
            verify_jwt_in_request()
            if roles and get_jwt().get('role') not in roles:
                raise Forbidden('Insufficient role')
            return fn(*args, **kwargs)
        return decorator
    return wrapper


admin_required = role_required('admin')
