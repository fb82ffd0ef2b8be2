"""
Admin credential checks for the access core
"""

import hmac

from django.conf import settings
from rest_framework import permissions
from rest_framework.authtoken.models import Token

from .exceptions import Unauthorized


def is_valid_admin_key(admin_key):
    """Constant-time comparison against ACCESS_ADMIN_KEY; an unset key never matches"""
    expected = getattr(settings, "ACCESS_ADMIN_KEY", "")
    if not expected or not admin_key:
        return False
    return hmac.compare_digest(str(admin_key).encode(), str(expected).encode())


def verify_admin_key(admin_key):
    """
    Raises:
        Unauthorized: If the key does not match
    """
    if not is_valid_admin_key(admin_key):
        raise Unauthorized()


def get_admin_key(request):
    return request.META.get("HTTP_X_ADMIN_ACCESS", "")


def is_staff_request(request):
    """True for a Django staff user (session or DRF token auth)"""
    user = getattr(request, "user", None)
    if user and user.is_authenticated and user.is_staff:
        return True

    auth_header = request.META.get("HTTP_AUTHORIZATION", "")
    if auth_header.startswith("Token "):
        token_key = auth_header.split(" ", 1)[1].strip()
        token = Token.objects.select_related("user").filter(key=token_key).first()
        if token and token.user.is_staff:
            return True

    return False


class IsAdminOrHasAdminKey(permissions.BasePermission):
    """
    Allows access to Django staff or to callers presenting the shared admin
    key in the X-Admin-Access header
    """

    message = "Invalid admin credential."

    def has_permission(self, request, view):
        if is_staff_request(request):
            return True
        verify_admin_key(get_admin_key(request))
        return True
