"""
Tagged error taxonomy for the core.

Every failure leaving store/queries/services/sessions is one of these.
The transport layer (exceptions.custom_exception_handler) maps `code` to an
HTTP status; nothing in the core knows about status codes.
"""


class SocialError(Exception):
    code = 'error'
    default_message = 'Request failed.'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        payload = {'error': self.code, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class NotFound(SocialError):
    code = 'not_found'
    default_message = 'Resource not found.'


class Conflict(SocialError):
    code = 'conflict'
    default_message = 'Resource already exists.'


class InvalidOperation(SocialError):
    code = 'invalid_operation'
    default_message = 'Invalid operation.'


class Unauthenticated(SocialError):
    code = 'unauthenticated'
    default_message = 'Authentication required.'


class InvalidCredentials(Unauthenticated):
    """Unknown account and wrong password are indistinguishable."""
    code = 'invalid_credentials'
    default_message = 'Invalid user credentials.'


class Forbidden(SocialError):
    code = 'forbidden'
    default_message = 'Only the owner can modify this resource.'


class DependencyFailure(SocialError):
    """
    An external collaborator (store, media, signer) failed.

    `legs` names the failed parts of a multi-part operation, e.g. the
    cascade legs of a post deletion.
    """
    code = 'dependency'
    default_message = 'A backing service failed.'

    def __init__(self, message=None, legs=(), **details):
        self.legs = tuple(legs)
        if self.legs:
            details['legs'] = list(self.legs)
        super().__init__(message, **details)
