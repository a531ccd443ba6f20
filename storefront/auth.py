"""
Request authentication.

Customers sign in with the external identity provider and send its ID token
as `Authorization: Bearer <token>`. The token is checked here with PyJWT;
nothing else about identity is handled by the store.

Admin routes expect the shared secret in the `X-Admin-Key` header.
"""

import hmac
import logging
from dataclasses import dataclass
from functools import wraps

import jwt
from flask import current_app, g, request

from storefront.errors import AuthorizationError, ForbiddenError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str | None
    phone: str | None = None


class IdentityVerifier:

    def __init__(self, secret, algorithms=('HS256',), audience=None, issuer=None):
        self._secret = secret
        self._algorithms = list(algorithms)
        self._audience = audience
        self._issuer = issuer

    def verify(self, token):
        if not self._secret:
            # no key configured: nobody gets in
            raise AuthorizationError()
        options = {'require': ['sub', 'exp']}
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                audience=self._audience,
                issuer=self._issuer,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise AuthorizationError('Session expired, please sign in again')
        except jwt.InvalidTokenError:
            raise AuthorizationError('Unauthorized')
        return Identity(
            uid=str(claims['sub']),
            email=claims.get('email'),
            phone=claims.get('phone_number'),
        )


def bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def login_required(f):
    """verify the bearer token, refuse deleted accounts, expose g.identity"""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = bearer_token()
        if not token:
            raise AuthorizationError()
        services = current_app.extensions['storefront']
        identity = services.identity.verify(token)
        services.users.require_active(identity.uid)
        g.identity = identity
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get('ADMIN_SECRET') or ''
        given = request.headers.get('X-Admin-Key', '')
        if not expected or not hmac.compare_digest(given.encode(), expected.encode()):
            logger.warning('admin request refused for %s', request.path)
            raise ForbiddenError('Admin access required')
        return f(*args, **kwargs)
    return decorated
