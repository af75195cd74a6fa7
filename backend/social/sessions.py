"""
Session Lifecycle Manager
=========================

Per user: NoSession -> Active -> NoSession (logout), with Active -> Active
on every renewal.

STATE:
------
The user row holds at most one live refresh token (`User.refresh_token`).
There is no session table. Access tokens are stateless; they are only
checked for signature, expiry, type and that the user still exists.

ROTATION:
---------
    UPDATE user SET refresh_token = <new>
    WHERE id = <sub> AND refresh_token = <presented> AND is_active

One statement, so of two renewals racing on the same token exactly one
matches a row. The loser (and anyone replaying a superseded token) gets
Unauthenticated.

FAILURES:
---------
Nothing here retries. A bad credential is terminal for the request.
"""

import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from .credentials import PasswordHasher, TokenSigner
from .errors import Conflict, InvalidCredentials, InvalidOperation, Unauthenticated
from .pipeline import Match, Project
from .store import store

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ('id', 'username', 'email', 'full_name', 'avatar_url', 'cover_image_url')


@dataclass
class Identity:
    """Verified viewer. Never carries the password hash or refresh token."""
    id: int
    username: str
    email: str
    full_name: str = ''
    avatar_url: str = ''
    cover_image_url: str = ''

    # DRF permission classes read these off request.user
    is_authenticated = True
    is_anonymous = False

    @property
    def pk(self):
        return self.id

    def as_dict(self):
        return asdict(self)


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str
    user: Identity


def _subject(claims) -> int:
    try:
        return int(claims['sub'])
    except (KeyError, TypeError, ValueError):
        raise Unauthenticated('Invalid token subject.') from None


class SessionManager:

    def __init__(self, access_signer: TokenSigner, refresh_signer: TokenSigner, hasher=None):
        self.access_signer = access_signer
        self.refresh_signer = refresh_signer
        self.hasher = hasher or PasswordHasher()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def register(self, username, email, password, full_name='', avatar_url='') -> Identity:
        username = (username or '').strip().lower()
        email = (email or '').strip()
        if not username or not email or not password:
            raise InvalidOperation('username, email and password are required.')

        if store.exists('user', Q(username=username) | Q(email__iexact=email)):
            raise Conflict('User with email or username already exists.')

        user = store.create(
            'user',
            username=username,
            email=email,
            password=self.hasher.hash(password),
            full_name=(full_name or '').strip(),
            avatar_url=avatar_url or '',
        )
        logger.info("Registered user %s (%s)", user.pk, username)
        return self._identity(user.pk)

    def change_password(self, user_id, old_password, new_password):
        """Replace the password and end the current session."""
        if not new_password:
            raise InvalidOperation('New password is required.')
        user = store.get('user', user_id)
        if not self.hasher.verify(old_password, user.password):
            raise InvalidCredentials('Invalid old password.')
        store.update('user', user_id, password=self.hasher.hash(new_password), refresh_token=None)
        logger.info("Password changed for user %s; refresh token revoked", user_id)

    def update_account(self, user_id, full_name=None, email=None) -> Identity:
        if full_name is None and email is None:
            raise InvalidOperation('Nothing to update.')

        changes = {}
        if full_name is not None:
            changes['full_name'] = full_name.strip()
        if email is not None:
            email = email.strip()
            if not email:
                raise InvalidOperation('Email cannot be blank.')
            if store.exists('user', Q(email__iexact=email), ~Q(pk=user_id)):
                raise Conflict('Email is already in use.')
            changes['email'] = email

        store.update('user', user_id, **changes)
        return self._identity(user_id)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def login(self, identifier, password) -> SessionTokens:
        identifier = (identifier or '').strip()
        if not identifier or not password:
            raise InvalidCredentials()

        user = store.first('user', Q(username=identifier.lower()) | Q(email__iexact=identifier))
        if user is None or not user.is_active:
            # Run the hasher anyway so unknown accounts cost the same time
            self.hasher.hash(password)
            raise InvalidCredentials()
        if not self.hasher.verify(password, user.password):
            raise InvalidCredentials()

        identity = self._identity(user.pk)
        access_token, refresh_token = self._issue(identity)
        store.update_where('user', {'pk': user.pk}, refresh_token=refresh_token, last_login=timezone.now())
        logger.info("User %s logged in", user.pk)
        return SessionTokens(access_token, refresh_token, identity)

    def renew(self, refresh_token) -> SessionTokens:
        claims = self.refresh_signer.verify(refresh_token)
        user_id = _subject(claims)
        identity = self._find_identity(user_id)
        if identity is None:
            raise Unauthenticated('Invalid refresh token.')

        access_token, new_refresh_token = self._issue(identity)
        rotated = store.update_where(
            'user',
            {'pk': user_id, 'refresh_token': refresh_token, 'is_active': True},
            refresh_token=new_refresh_token,
        )
        if not rotated:
            logger.warning("Rejected superseded refresh token for user %s", user_id)
            raise Unauthenticated('Refresh token is expired or used.')
        return SessionTokens(access_token, new_refresh_token, identity)

    def logout(self, user_id):
        store.update_where('user', {'pk': user_id}, refresh_token=None)
        logger.info("User %s logged out", user_id)

    def verify(self, access_token) -> Identity:
        claims = self.access_signer.verify(access_token)
        identity = self._find_identity(_subject(claims))
        if identity is None:
            raise Unauthenticated('Invalid access token.')
        return identity

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, identity: Identity):
        access_token = self.access_signer.sign({
            'sub': str(identity.id),
            'username': identity.username,
            'email': identity.email,
            'full_name': identity.full_name,
        })
        refresh_token = self.refresh_signer.sign({
            'sub': str(identity.id),
            'jti': secrets.token_urlsafe(32),
        })
        return access_token, refresh_token

    def _find_identity(self, user_id) -> Optional[Identity]:
        rows = store.aggregate('user', [
            Match(pk=user_id, is_active=True),
            Project(*IDENTITY_FIELDS),
        ])
        return Identity(**rows[0]) if rows else None

    def _identity(self, user_id) -> Identity:
        identity = self._find_identity(user_id)
        if identity is None:
            raise Unauthenticated('User no longer exists.')
        return identity


@lru_cache(maxsize=None)
def get_session_manager() -> SessionManager:
    """SessionManager configured from settings (built once per process)."""
    return SessionManager(
        access_signer=TokenSigner(
            settings.ACCESS_TOKEN_SECRET,
            timedelta(minutes=settings.ACCESS_TOKEN_EXPIRY_MINUTES),
            'access',
        ),
        refresh_signer=TokenSigner(
            settings.REFRESH_TOKEN_SECRET,
            timedelta(days=settings.REFRESH_TOKEN_EXPIRY_DAYS),
            'refresh',
        ),
    )
