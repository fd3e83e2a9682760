"""
Error taxonomy shared by the domain core and the REST layer.

Every error carries a stable ``kind`` and maps to exactly one HTTP status.
They subclass DRF's APIException so views can let them propagate and the
exception handler below renders them as ``{"status", "kind", "message"}``.
"""
import logging

from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class RedBloodError(drf_exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = 'Error'
    default_detail = 'Something went wrong'
    default_code = 'error'

    @property
    def message(self):
        return str(self.detail)

    def as_dict(self):
        return {'kind': self.kind, 'message': self.message}


class ValidationError(RedBloodError):
    kind = 'ValidationError'
    default_detail = 'Validation error'
    default_code = 'validation_error'


class InvalidCoordinate(ValidationError):
    kind = 'InvalidCoordinate'
    default_detail = 'Coordinates are out of range'
    default_code = 'invalid_coordinate'


class InvalidBloodType(ValidationError):
    kind = 'InvalidBloodType'
    default_detail = 'Invalid blood type'
    default_code = 'invalid_blood_type'


class NotFound(RedBloodError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = 'NotFound'
    default_detail = 'Resource not found'
    default_code = 'not_found'


class Unauthorized(RedBloodError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = 'Unauthorized'
    default_detail = 'You are not authorized to perform this action'
    default_code = 'unauthorized'


class InvalidState(RedBloodError):
    status_code = status.HTTP_409_CONFLICT
    kind = 'InvalidState'
    default_detail = 'The resource is not in a state that permits this operation'
    default_code = 'invalid_state'


class InvalidTransition(InvalidState):
    kind = 'InvalidTransition'
    default_detail = 'Status transition not allowed'
    default_code = 'invalid_transition'


class RequestNotActive(InvalidState):
    kind = 'RequestNotActive'
    default_detail = 'Cannot respond to a request that is not active'
    default_code = 'request_not_active'


class IncompatibleBloodType(RedBloodError):
    status_code = status.HTTP_409_CONFLICT
    kind = 'IncompatibleBloodType'
    default_detail = 'Blood types are not compatible'
    default_code = 'incompatible_blood_type'


# DRF / Django exceptions raised outside the domain core
FRAMEWORK_KINDS = (
    (drf_exceptions.NotAuthenticated, 'Unauthorized'),
    (drf_exceptions.AuthenticationFailed, 'Unauthorized'),
    (drf_exceptions.PermissionDenied, 'Unauthorized'),
    (drf_exceptions.NotFound, 'NotFound'),
    (Http404, 'NotFound'),
    (drf_exceptions.ValidationError, 'ValidationError'),
    (drf_exceptions.ParseError, 'ValidationError'),
    (drf_exceptions.MethodNotAllowed, 'MethodNotAllowed'),
)


def error_kind(exc):
    kind = getattr(exc, 'kind', None)
    if kind:
        return kind
    for exc_class, mapped in FRAMEWORK_KINDS:
        if isinstance(exc, exc_class):
            return mapped
    return 'Error'


def exception_handler(exc, context):
    """
    DRF exception handler rendering every error as a tagged payload.

    Unknown exceptions are logged and reported as a generic 500 so no
    stack trace or store detail leaks to the client.
    """
    # rest_framework.views loads the authentication classes, which import this module
    from rest_framework.views import exception_handler as drf_exception_handler

    response = drf_exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.exception(f"Unhandled error in {view.__class__.__name__ if view else 'view'}")
        return Response(
            {'status': 'error', 'kind': 'Error', 'message': 'Something went wrong'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    payload = {'status': 'fail', 'kind': error_kind(exc)}
    if isinstance(exc, drf_exceptions.ValidationError):
        payload['message'] = 'Validation error'
        payload['errors'] = response.data
    elif isinstance(response.data, dict) and 'detail' in response.data:
        payload['message'] = str(response.data['detail'])
    else:
        payload['message'] = str(exc)

    response.data = payload
    return response
