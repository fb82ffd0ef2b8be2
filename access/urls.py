"""
URL routing for the access API
"""

from django.urls import path

from . import views

urlpatterns = [
    # Portal endpoints
    path("packages/", views.list_packages, name="list_packages"),
    path("purchases/", views.purchase, name="purchase"),
    path("payments/callback/", views.payment_callback, name="payment_callback"),
    path(
        "payments/<str:payment_id>/status/",
        views.payment_status,
        name="payment_status",
    ),
    path(
        "payments/<str:payment_id>/checkout-reference/",
        views.payment_checkout_reference,
        name="payment_checkout_reference",
    ),
    path("vouchers/redeem/", views.voucher_redeem, name="voucher_redeem"),
    path("reconnect/", views.reconnect, name="reconnect"),
    # Must be before sessions/<str:session_id>/...
    path("sessions/current/", views.current_session, name="current_session"),
    path(
        "sessions/<str:session_id>/authorize/",
        views.session_authorize,
        name="session_authorize",
    ),
    path(
        "sessions/<str:session_id>/disconnect/",
        views.session_disconnect,
        name="session_disconnect",
    ),
    # Admin endpoints
    path(
        "admin/sessions/active/",
        views.admin_active_sessions,
        name="admin_active_sessions",
    ),
    path(
        "admin/sessions/sweep/",
        views.admin_sweep_sessions,
        name="admin_sweep_sessions",
    ),
    path(
        "admin/vouchers/generate/",
        views.admin_generate_vouchers,
        name="admin_generate_vouchers",
    ),
]
