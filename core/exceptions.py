"""
Custom exceptions for EduStream Backend
"""

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler


def custom_exception_handler(exc, context):
    """
    Custom exception handler that returns kind + message + optional details
    for every error response
    """
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        custom_response_data = {
            'success': False,
            'kind': getattr(exc, 'kind', None) or getattr(exc, 'default_code', 'error'),
        }

        if isinstance(exc, EduStreamBaseException):
            custom_response_data['message'] = str(exc.detail)
            if exc.details:
                custom_response_data['details'] = exc.details
        elif isinstance(response.data, dict):
            if 'detail' in response.data:
                custom_response_data['message'] = response.data['detail']
                if len(response.data) > 1:
                    custom_response_data['details'] = {k: v for k, v in response.data.items() if k != 'detail'}
            else:
                custom_response_data['message'] = 'Validation failed.'
                custom_response_data['details'] = response.data
        else:
            custom_response_data['message'] = 'Request failed.'
            custom_response_data['details'] = response.data

        response.data = custom_response_data

    return response


class EduStreamBaseException(APIException):
    """Base exception for all video lifecycle errors"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'An EduStream error occurred.'
    default_code = 'edustream_error'
    kind = 'edustream_error'
    retryable = False

    def __init__(self, detail=None, code=None, details=None):
        super().__init__(detail=detail, code=code)
        self.details = details

    def __str__(self):
        return str(self.detail)


class InvalidInput(EduStreamBaseException):
    """Bad size, bad container or missing required field"""
    default_detail = 'Invalid input.'
    default_code = 'invalid_input'
    kind = 'invalid_input'


class InvalidContainer(InvalidInput):
    """File bytes do not match the declared container"""
    default_detail = 'File content does not match a supported video container.'
    default_code = 'invalid_container'
    kind = 'invalid_container'


class NotFound(EduStreamBaseException):
    """Lesson, asset or upload absent"""
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'not_found'
    kind = 'not_found'


class PermissionDenied(EduStreamBaseException):
    """Access rejected"""
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Permission denied.'
    default_code = 'permission_denied'
    kind = 'permission_denied'


class ProviderUnavailable(EduStreamBaseException):
    """Transient managed video provider failure"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Video provider is temporarily unavailable.'
    default_code = 'provider_unavailable'
    kind = 'provider_unavailable'
    retryable = True


class ProviderRejected(EduStreamBaseException):
    """Non-retryable managed video provider rejection"""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Video provider rejected the request.'
    default_code = 'provider_rejected'
    kind = 'provider_rejected'


class StorageUnavailable(EduStreamBaseException):
    """Transient object storage failure"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Storage is temporarily unavailable.'
    default_code = 'storage_unavailable'
    kind = 'storage_unavailable'
    retryable = True


class StorageRejected(EduStreamBaseException):
    """Non-retryable object storage rejection"""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Storage rejected the request.'
    default_code = 'storage_rejected'
    kind = 'storage_rejected'


class TranscoderMissing(EduStreamBaseException):
    """External encoder not installed on this host"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Video encoder is not available.'
    default_code = 'transcoder_missing'
    kind = 'transcoder_missing'


class TranscoderFailed(EduStreamBaseException):
    """External encoder exited with an error"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Video transcoding failed.'
    default_code = 'transcoder_failed'
    kind = 'transcoder_failed'


class ConflictState(EduStreamBaseException):
    """Requested transition violates the video state machine"""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Operation conflicts with the current video state.'
    default_code = 'conflict_state'
    kind = 'conflict_state'
