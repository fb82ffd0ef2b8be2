"""
Error taxonomy for the access core.

Every error is a DRF APIException so views can simply let them propagate;
access.exception_handler renders them as { success, error, code }.
"""

from rest_framework import status
from rest_framework.exceptions import APIException


class AccessError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "access_error"


class RecordNotFound(AccessError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Record not found."
    default_code = "not_found"


class SessionNotFound(RecordNotFound):
    default_detail = "Session not found."


class PaymentNotFound(RecordNotFound):
    default_detail = "Payment not found."


class PackageNotFound(RecordNotFound):
    default_detail = "Package not found."


class InvalidOrUsedCode(AccessError):
    # Same message whether the code never existed or was already consumed
    default_detail = "Invalid or already used code."
    default_code = "invalid_or_used_code"


class DeviceMismatch(AccessError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "This code is not valid for your device."
    default_code = "device_mismatch"


class SessionExpired(AccessError):
    status_code = status.HTTP_410_GONE
    default_detail = "Session time has elapsed."
    default_code = "expired"


class AlreadyTerminated(AccessError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Session has already been terminated."
    default_code = "already_terminated"


class GatewayUnreachable(AccessError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Network access gateway unreachable."
    default_code = "gateway_unreachable"


class Unauthorized(AccessError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid admin credential."
    default_code = "unauthorized"


class InvalidRequest(AccessError):
    default_detail = "Invalid request."
    default_code = "invalid_request"
