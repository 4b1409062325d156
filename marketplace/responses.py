"""
Response envelope helpers.

Every API response has the shape::

    {"success": bool, "data": ..., "error": str | null}

with optional `message`, `pagination` and `details` keys.
"""

import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from django.utils.translation import gettext as _
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class Conflict(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The request conflicts with the current state of the resource.'
    default_code = 'conflict'


class BadRequest(exceptions.APIException):
    """A business rule rejected the request; the detail is the user-facing message."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be processed.'
    default_code = 'bad_request'


def success_response(data=None, message=None, status_code=status.HTTP_200_OK, pagination=None, **extra):
    body = {
        'success': True,
        'data': data,
        'error': None,
    }
    if message:
        body['message'] = str(message)
    if pagination is not None:
        body['pagination'] = pagination
    body.update(extra)
    return Response(body, status=status_code)


def error_response(error, status_code=status.HTTP_400_BAD_REQUEST, details=None):
    body = {
        'success': False,
        'data': None,
        'error': str(error),
    }
    if details:
        body['details'] = details
    return Response(body, status=status_code)


def _first_message(detail):
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
    if isinstance(detail, list) and detail:
        return _first_message(detail[0])
    return str(detail)


def envelope_exception_handler(exc, context):
    """
    DRF exception handler that wraps every error in the response envelope.

    Django's Http404/PermissionDenied/ValidationError are translated to their
    DRF counterparts first. Anything DRF does not handle is logged and turned
    into a 500 envelope.
    """
    if isinstance(exc, DjangoValidationError):
        detail = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
        exc = exceptions.ValidationError(detail=detail)
    elif isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied()

    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.error(
            f"Unhandled error in {view.__class__.__name__ if view else 'unknown view'}: {exc}",
            exc_info=exc,
        )
        return error_response(_('Internal server error.'), status.HTTP_500_INTERNAL_SERVER_ERROR)

    if isinstance(exc, exceptions.ValidationError):
        body = {
            'success': False,
            'data': None,
            'error': _('Validation failed.'),
            'details': response.data,
        }
    else:
        body = {
            'success': False,
            'data': None,
            'error': _first_message(response.data.get('detail', response.data)
                                    if isinstance(response.data, dict) else response.data),
        }

    response.data = body
    return response
