"""
Credential signer and password hasher seams used by sessions.py.

Two TokenSigner instances are configured independently (access / refresh),
each with its own secret and lifetime. Every token carries a `type` claim so
an access token can never be presented as a refresh token or vice versa.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from django.contrib.auth.hashers import check_password, make_password

from .errors import DependencyFailure, Unauthenticated

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ['exp', 'sub', 'type']


class TokenSigner:

    def __init__(self, secret, lifetime: timedelta, token_type: str, algorithm='HS256'):
        self.secret = secret
        self.lifetime = lifetime
        self.token_type = token_type
        self.algorithm = algorithm

    def sign(self, claims: dict) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            'type': self.token_type,
            'iat': now,
            'exp': now + self.lifetime,
        }
        try:
            return jwt.encode(payload, self.secret, algorithm=self.algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            logger.error("Cannot sign %s token: %s", self.token_type, exc)
            raise DependencyFailure('Credential signer unavailable.', legs=['signer']) from exc

    def verify(self, token) -> dict:
        """Decoded claims of a valid token of this signer's type."""
        if not token:
            raise Unauthenticated(f'{self.token_type.capitalize()} token is missing.')
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={'require': REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated(f'{self.token_type.capitalize()} token has expired.') from None
        except jwt.InvalidTokenError:
            raise Unauthenticated(f'Invalid {self.token_type} token.') from None

        if claims.get('type') != self.token_type:
            raise Unauthenticated(f'Invalid {self.token_type} token.')
        return claims


class PasswordHasher:
    """Thin wrapper over Django's configured PASSWORD_HASHERS."""

    def hash(self, password) -> str:
        return make_password(password)

    def verify(self, password, digest) -> bool:
        return check_password(password, digest)
