"""
Custom DRF exception handler for consistent portal error responses.

Every error response will have the shape:
{
    "success": false,
    "error": "Human-readable error message",
    "code": "machine_readable_code",
    // optional field-level errors for validation
    "errors": { "field_name": ["..."] }
}
"""

from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler as drf_exception_handler


def custom_exception_handler(exc, context):
    """
    Wrap the default DRF exception handler to produce consistent
    { success, error, code?, errors? } responses for the portal.
    """
    response = drf_exception_handler(exc, context)

    if response is None:
        # DRF didn't handle it (e.g. unhandled server error)
        return response

    data = response.data
    code = getattr(exc, "default_code", None) if isinstance(exc, APIException) else None

    # DRF returns `{"detail": "..."}` for auth/permission/throttle errors
    # and for the access core's own exceptions
    if isinstance(data, dict) and "detail" in data:
        response.data = {
            "success": False,
            "error": str(data["detail"]),
        }
        if code:
            response.data["code"] = code

    # DRF validation: `{"field": ["msg", ...], ...}` (no "detail" key)
    elif isinstance(data, dict) and "success" not in data:
        error_messages = []
        for field, msgs in data.items():
            if isinstance(msgs, list):
                for msg in msgs:
                    error_messages.append(f"{field}: {msg}")
            else:
                error_messages.append(f"{field}: {msgs}")

        response.data = {
            "success": False,
            "error": (
                "; ".join(error_messages) if error_messages else "Validation error"
            ),
            "code": "invalid_request",
            "errors": data,
        }

    # DRF can also return a list of errors (rare)
    elif isinstance(data, list):
        response.data = {
            "success": False,
            "error": "; ".join(str(e) for e in data),
        }

    return response
