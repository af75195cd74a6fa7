"""
Custom Exception Handler for DRF

Every error response has the same shape:

    {"error": <code>, "message": <text>, "details": {...}?}

The core raises tagged SocialErrors (errors.py); this is the one place the
tags become HTTP statuses.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

from .errors import (
    Conflict,
    DependencyFailure,
    Forbidden,
    InvalidOperation,
    NotFound,
    SocialError,
    Unauthenticated,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Conflict, status.HTTP_409_CONFLICT),
    (InvalidOperation, status.HTTP_400_BAD_REQUEST),
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (DependencyFailure, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: SocialError) -> int:
    for error_class, code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def custom_exception_handler(exc, context):
    """
    1. DRF's own exceptions (validation, auth, throttling) via DRF's handler
    2. Tagged core errors -> mapped status
    3. IntegrityError -> 409, ValueError -> 400
    4. Anything else is logged and becomes a generic 500
    """

    response = exception_handler(exc, context)

    if response is not None:
        code = getattr(exc, 'default_code', 'error')
        if isinstance(response.data, dict) and set(response.data) == {'detail'}:
            response.data = {'error': code, 'message': str(response.data['detail'])}
        else:
            response.data = {'error': code, 'message': 'Invalid request.', 'details': response.data}
        return response

    if isinstance(exc, SocialError):
        code = status_for(exc)
        if code >= 500:
            logger.error("%s: %s %s", type(exc).__name__, exc.message, exc.details)
        return Response(exc.as_dict(), status=code)

    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {'error': 'conflict', 'message': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, ValueError):
        return Response(
            {'error': 'invalid_operation', 'message': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    logger.exception(f"Unhandled exception: {exc}")

    return Response(
        {'error': 'internal', 'message': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
