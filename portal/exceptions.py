"""
API error taxonomy and the project-wide DRF exception handler.

Every error leaves the API as ``{'ok': False, 'error': {'code', 'message'}}``.
Services raise the ``APIException`` subclasses below; DRF's own exceptions
(serializer validation, authentication failures, throttling) are mapped to
the same envelope.
"""
from __future__ import annotations

import logging

from django.conf import settings
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class ValidationError(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'validation_error'


class AuthenticationError(exceptions.APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Authentication required.'
    default_code = 'authentication_error'


class AuthorizationError(exceptions.APIException):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Access denied.'
    default_code = 'authorization_error'


class InvalidTransition(AuthorizationError):
    """The caller's role may take the action, but not from the current status."""
    default_detail = 'This action is not allowed in the current status.'
    default_code = 'invalid_transition'


class NotFoundError(exceptions.APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ConflictError(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The resource was modified concurrently.'
    default_code = 'conflict'


class AccountLocked(exceptions.APIException):
    status_code = status.HTTP_423_LOCKED
    default_detail = 'Account is temporarily locked. Try again later.'
    default_code = 'account_locked'


class InternalError(exceptions.APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Internal server error.'
    default_code = 'server_error'


# DRF built-ins that share a code with our own taxonomy
_BUILTIN_CODES = (
    (exceptions.ValidationError, 'validation_error'),
    (exceptions.ParseError, 'validation_error'),
    (exceptions.NotAuthenticated, 'authentication_error'),
    (exceptions.AuthenticationFailed, 'authentication_error'),
    (exceptions.PermissionDenied, 'authorization_error'),
    (exceptions.NotFound, 'not_found'),
    (exceptions.Throttled, 'throttled'),
    (exceptions.MethodNotAllowed, 'method_not_allowed'),
)


def _error_code(exc) -> str:
    code = getattr(exc, 'default_code', None)
    if type(exc).__module__ == __name__:
        return code
    for klass, mapped in _BUILTIN_CODES:
        if isinstance(exc, klass):
            return mapped
    return code or 'api_error'


def _message(data):
    if isinstance(data, dict):
        if 'detail' in data and len(data) == 1:
            return str(data['detail'])
        return data
    if isinstance(data, list):
        return ' '.join(str(item) for item in data)
    return str(data)


def api_exception_handler(exc, context):
    if isinstance(exc, Http404):
        exc = NotFoundError()
    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.exception('Unhandled error in %s', getattr(view, '__class__', type(view)).__name__, exc_info=exc)
        message = str(exc) if settings.DEBUG else InternalError.default_detail
        return Response(
            {'ok': False, 'error': {'code': InternalError.default_code, 'message': message}},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if isinstance(exc, InternalError):
        logger.error('Internal error: %s', exc.detail)
        if not settings.DEBUG:
            resp.data = {'detail': InternalError.default_detail}
    # keep headers such as WWW-Authenticate and Retry-After set by DRF
    resp.data = {'ok': False, 'error': {'code': _error_code(exc), 'message': _message(resp.data)}}
    return resp
