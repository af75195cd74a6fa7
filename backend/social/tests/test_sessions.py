"""
Tests for the session lifecycle.

CRITICAL: These tests verify that:
1. A refresh token works exactly once (rotation)
2. Logout makes every issued refresh token unusable
3. Unknown account and wrong password fail the same way
"""

from datetime import timedelta

from django.test import TestCase, override_settings

from social.credentials import PasswordHasher, TokenSigner
from social.errors import Conflict, DependencyFailure, InvalidCredentials, InvalidOperation, Unauthenticated
from social.models import User
from social.sessions import Identity, SessionManager, get_session_manager
from social.store import store

from .helpers import FAST_HASHERS, TEST_ACCESS_SECRET, TEST_REFRESH_SECRET


def build_manager(access_lifetime=timedelta(minutes=15), refresh_lifetime=timedelta(days=10)):
    return SessionManager(
        TokenSigner(TEST_ACCESS_SECRET, access_lifetime, 'access'),
        TokenSigner(TEST_REFRESH_SECRET, refresh_lifetime, 'refresh'),
        PasswordHasher(),
    )


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class SessionTestCase(TestCase):

    def setUp(self):
        self.sessions = build_manager()
        self.alice = self.sessions.register('Alice', 'alice@example.com', 'secret', full_name='Alice A')

    def stored_refresh_token(self):
        return User.objects.get(pk=self.alice.id).refresh_token


class RegisterTestCase(SessionTestCase):

    def test_register_lowercases_and_hashes(self):
        user = User.objects.get(pk=self.alice.id)
        self.assertEqual(user.username, 'alice')
        self.assertNotEqual(user.password, 'secret')
        self.assertTrue(user.check_password('secret'))
        self.assertIsInstance(self.alice, Identity)
        self.assertNotIn('password', self.alice.as_dict())

    def test_duplicate_username_or_email(self):
        with self.assertRaises(Conflict):
            self.sessions.register('ALICE', 'new@example.com', 'pw')
        with self.assertRaises(Conflict):
            self.sessions.register('alicia', 'Alice@Example.com', 'pw')

    def test_required_fields(self):
        with self.assertRaises(InvalidOperation):
            self.sessions.register('  ', 'x@example.com', 'pw')


class LoginTestCase(SessionTestCase):

    def test_login_by_username_or_email(self):
        tokens = self.sessions.login('alice', 'secret')
        self.assertEqual(tokens.user.id, self.alice.id)
        self.assertEqual(self.stored_refresh_token(), tokens.refresh_token)

        tokens = self.sessions.login('ALICE@example.com', 'secret')
        self.assertEqual(self.stored_refresh_token(), tokens.refresh_token)

    def test_login_overwrites_previous_refresh_token(self):
        first = self.sessions.login('alice', 'secret')
        second = self.sessions.login('alice', 'secret')

        self.assertNotEqual(first.refresh_token, second.refresh_token)
        with self.assertRaises(Unauthenticated):
            self.sessions.renew(first.refresh_token)

    def test_unknown_user_and_wrong_password_are_indistinguishable(self):
        with self.assertRaises(InvalidCredentials) as unknown:
            self.sessions.login('nobody', 'secret')
        with self.assertRaises(InvalidCredentials) as wrong:
            self.sessions.login('alice', 'wrong')

        self.assertEqual(unknown.exception.as_dict(), wrong.exception.as_dict())
        self.assertIsNone(self.stored_refresh_token())

    def test_inactive_user_cannot_login(self):
        User.objects.filter(pk=self.alice.id).update(is_active=False)
        with self.assertRaises(InvalidCredentials):
            self.sessions.login('alice', 'secret')


class RenewTestCase(SessionTestCase):

    def test_login_renew_then_stale_renew_fails(self):
        """login -> renew succeeds -> renewing the old token again fails."""
        tokens = self.sessions.login('alice', 'secret')

        renewed = self.sessions.renew(tokens.refresh_token)
        self.assertNotEqual(renewed.refresh_token, tokens.refresh_token)
        self.assertEqual(self.stored_refresh_token(), renewed.refresh_token)

        with self.assertRaises(Unauthenticated):
            self.sessions.renew(tokens.refresh_token)

    def test_only_one_of_two_renewals_wins(self):
        tokens = self.sessions.login('alice', 'secret')

        outcomes = []
        for _ in range(2):
            try:
                outcomes.append(self.sessions.renew(tokens.refresh_token))
            except Unauthenticated:
                outcomes.append(None)

        self.assertEqual(sum(outcome is not None for outcome in outcomes), 1)

    def test_access_token_is_not_a_refresh_token(self):
        tokens = self.sessions.login('alice', 'secret')
        with self.assertRaises(Unauthenticated):
            self.sessions.renew(tokens.access_token)

    def test_same_secret_wrong_type_rejected(self):
        signer = TokenSigner(TEST_REFRESH_SECRET, timedelta(minutes=5), 'access')
        forged = signer.sign({'sub': str(self.alice.id)})
        with self.assertRaises(Unauthenticated):
            self.sessions.renew(forged)

    def test_expired_refresh_token(self):
        expired = build_manager(refresh_lifetime=timedelta(seconds=-5))
        tokens = expired.login('alice', 'secret')
        with self.assertRaises(Unauthenticated):
            expired.renew(tokens.refresh_token)

    def test_garbage_and_missing_tokens(self):
        for token in (None, '', 'not-a-jwt'):
            with self.assertRaises(Unauthenticated):
                self.sessions.renew(token)


class LogoutAndVerifyTestCase(SessionTestCase):

    def test_logout_revokes_refresh_token(self):
        tokens = self.sessions.login('alice', 'secret')
        self.sessions.logout(self.alice.id)

        self.assertIsNone(self.stored_refresh_token())
        with self.assertRaises(Unauthenticated):
            self.sessions.renew(tokens.refresh_token)

    def test_verify_returns_identity_without_secrets(self):
        tokens = self.sessions.login('alice', 'secret')
        identity = self.sessions.verify(tokens.access_token)

        self.assertEqual(identity.id, self.alice.id)
        self.assertEqual(identity.username, 'alice')
        self.assertTrue(identity.is_authenticated)
        self.assertEqual(set(identity.as_dict()), {
            'id', 'username', 'email', 'full_name', 'avatar_url', 'cover_image_url',
        })

    def test_verify_rejects_deleted_user(self):
        tokens = self.sessions.login('alice', 'secret')
        User.objects.filter(pk=self.alice.id).delete()
        with self.assertRaises(Unauthenticated):
            self.sessions.verify(tokens.access_token)

    def test_verify_rejects_refresh_token(self):
        tokens = self.sessions.login('alice', 'secret')
        with self.assertRaises(Unauthenticated):
            self.sessions.verify(tokens.refresh_token)

    def test_expired_access_token(self):
        expired = build_manager(access_lifetime=timedelta(seconds=-5))
        tokens = expired.login('alice', 'secret')
        with self.assertRaises(Unauthenticated):
            expired.verify(tokens.access_token)


class AccountTestCase(SessionTestCase):

    def test_change_password_revokes_session(self):
        tokens = self.sessions.login('alice', 'secret')
        self.sessions.change_password(self.alice.id, 'secret', 'better-secret')

        with self.assertRaises(Unauthenticated):
            self.sessions.renew(tokens.refresh_token)
        with self.assertRaises(InvalidCredentials):
            self.sessions.login('alice', 'secret')
        self.sessions.login('alice', 'better-secret')

    def test_change_password_wrong_old_password(self):
        with self.assertRaises(InvalidCredentials):
            self.sessions.change_password(self.alice.id, 'nope', 'better-secret')

    def test_update_account(self):
        identity = self.sessions.update_account(self.alice.id, full_name='Alice B', email='ab@example.com')
        self.assertEqual((identity.full_name, identity.email), ('Alice B', 'ab@example.com'))

        self.sessions.register('bob', 'bob@example.com', 'pw')
        with self.assertRaises(Conflict):
            self.sessions.update_account(self.alice.id, email='BOB@example.com')
        with self.assertRaises(InvalidOperation):
            self.sessions.update_account(self.alice.id)


class SignerTestCase(TestCase):

    def test_unsignable_claims_surface_as_dependency_failure(self):
        signer = TokenSigner(TEST_ACCESS_SECRET, timedelta(minutes=1), 'access')
        with self.assertRaises(DependencyFailure) as raised:
            signer.sign({'sub': object()})
        self.assertEqual(raised.exception.legs, ('signer',))

    def test_configured_manager_is_cached(self):
        self.assertIs(get_session_manager(), get_session_manager())

    def test_store_never_returns_secrets_for_identity(self):
        User.objects.create(username='carol', email='carol@example.com', refresh_token='t')
        identity = build_manager()._find_identity(User.objects.get(username='carol').pk)
        self.assertFalse(hasattr(identity, 'refresh_token'))
        self.assertIsNone(build_manager()._find_identity(999999))
        self.assertTrue(store.exists('user', username='carol'))
