"""
URL configuration for the captive portal project
"""

from django.contrib import admin
from django.contrib.auth import logout as auth_logout
from django.urls import path, include
from django.http import HttpResponse
from django.shortcuts import redirect


def empty_favicon(_request):
    # Return an empty response to avoid 404 noise until a real favicon is provided
    return HttpResponse(status=204)


def admin_logout_view(request):
    """
    Custom admin logout that accepts both GET and POST.
    Django 5.x restricted /admin/logout/ to POST only.
    """
    auth_logout(request)
    return redirect("/admin/login/")


urlpatterns = [
    # Override admin logout BEFORE admin/ to intercept GET requests
    path("admin/logout/", admin_logout_view, name="admin_logout_override"),
    path("admin/", admin.site.urls),
    path("api/", include("access.urls")),
    path("favicon.ico", empty_favicon),
]
