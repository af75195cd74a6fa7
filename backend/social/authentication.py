"""
DRF authentication backed by the session manager.

The access token is read from `Authorization: Bearer <token>` first, then
from the `accessToken` cookie. No token at all means a guest request
(DRF's AnonymousUser); a token that fails verification is a 401,
except on guest-readable endpoints (GuestFallbackAuthentication).
"""

import logging

from rest_framework import authentication, exceptions

from .errors import Unauthenticated
from .sessions import get_session_manager

ACCESS_COOKIE = 'accessToken'
REFRESH_COOKIE = 'refreshToken'

logger = logging.getLogger(__name__)


def access_token_from(request):
    header = authentication.get_authorization_header(request).decode('latin-1').split()
    if header and header[0].lower() == 'bearer':
        if len(header) != 2:
            raise exceptions.AuthenticationFailed('Invalid Authorization header.')
        return header[1]
    return request.COOKIES.get(ACCESS_COOKIE)


class AccessTokenAuthentication(authentication.BaseAuthentication):

    def authenticate(self, request):
        token = access_token_from(request)
        if not token:
            return None
        try:
            identity = get_session_manager().verify(token)
        except Unauthenticated as exc:
            raise exceptions.AuthenticationFailed(exc.message) from exc
        return identity, token

    def authenticate_header(self, request):
        return 'Bearer'


class GuestFallbackAuthentication(AccessTokenAuthentication):
    """
    For endpoints a guest may call: a token that fails verification is
    treated as no token, so an expired credential still gets the guest
    rendering instead of a 401.
    """

    def authenticate(self, request):
        try:
            return super().authenticate(request)
        except exceptions.AuthenticationFailed as exc:
            logger.debug("Ignoring rejected access token on a guest endpoint: %s", exc.detail)
            return None
