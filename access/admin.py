"""
Django admin configuration for the captive portal with Jazzmin
"""

from django.contrib import admin, messages
from django.http import HttpResponse
from django.utils.html import format_html

from .control import disconnect
from .models import AccessLog, AccessPackage, Payment, PaymentCallback, Session, Voucher
from .vouchers import vouchers_to_csv

BADGE = '<span style="background: {}; color: white; padding: 2px 8px; border-radius: 4px; text-transform: uppercase;">{}</span>'


def _badge(value, colors):
    return format_html(BADGE, colors.get(value, "gray"), value)


@admin.register(AccessPackage)
class AccessPackageAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "price_formatted",
        "duration_minutes",
        "is_active",
        "display_order",
        "created_at",
    ]
    list_filter = ["is_active"]
    list_editable = ["is_active", "display_order"]
    search_fields = ["name", "description"]
    ordering = ["display_order", "price"]

    def price_formatted(self, obj):
        return f"{obj.currency} {obj.price:,}"

    price_formatted.short_description = "Price"


@admin.register(Session)
class SessionAdmin(admin.ModelAdmin):
    list_display = [
        "device_id",
        "phone_number",
        "package",
        "source",
        "status_badge",
        "activated_at",
        "expires_at",
        "end_reason",
    ]
    list_filter = ["status", "source", "package", "created_at"]
    search_fields = ["id", "device_id", "phone_number"]
    readonly_fields = [
        "id",
        "status",
        "created_at",
        "updated_at",
        "activated_at",
        "expires_at",
        "ended_at",
        "end_reason",
    ]
    ordering = ["-created_at"]

    actions = ["disconnect_sessions"]

    def status_badge(self, obj):
        """Display session status with color badges"""
        return _badge(
            obj.status,
            {
                "active": "green",
                "pending": "orange",
                "expired": "gray",
                "terminated": "red",
            },
        )

    status_badge.short_description = "Status"

    def disconnect_sessions(self, request, queryset):
        """Force disconnect the selected sessions"""
        disconnected = 0
        for session in queryset:
            result = disconnect(
                session.pk, session.device_id, "admin", admin_verified=True
            )
            if result["changed"]:
                disconnected += 1
        self.message_user(
            request, f"Disconnected {disconnected} session(s).", messages.SUCCESS
        )

    disconnect_sessions.short_description = "Disconnect selected sessions"

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("package")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = [
        "phone_number",
        "amount",
        "status_badge",
        "checkout_request_id",
        "receipt_number",
        "reconnection_code_used",
        "created_at",
    ]
    list_filter = ["status", "reconnection_code_used", "created_at"]
    search_fields = [
        "phone_number",
        "checkout_request_id",
        "receipt_number",
        "session__device_id",
    ]
    readonly_fields = [
        "id",
        "session",
        "status",
        "reconnection_code",
        "created_at",
        "completed_at",
    ]
    ordering = ["-created_at"]

    def status_badge(self, obj):
        """Display status with color badges"""
        return _badge(
            obj.status,
            {
                "completed": "green",
                "pending": "orange",
                "failed": "red",
                "expired": "gray",
            },
        )

    status_badge.short_description = "Status"

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("session")


@admin.register(Voucher)
class VoucherAdmin(admin.ModelAdmin):
    list_display = [
        "code",
        "package",
        "status_badge",
        "batch_id",
        "created_by",
        "created_at",
        "used_at",
    ]
    list_filter = ["status", "package", "created_at", "batch_id"]
    search_fields = ["code", "batch_id", "session__device_id"]
    readonly_fields = ["code", "status", "session", "created_at", "used_at"]
    ordering = ["-created_at"]

    actions = ["export_vouchers_csv"]

    def status_badge(self, obj):
        """Display voucher status with badges"""
        return _badge(obj.status, {"unused": "green", "used": "red"})

    status_badge.short_description = "Status"

    def export_vouchers_csv(self, request, queryset):  # noqa: ARG002
        """Export selected vouchers to CSV"""
        response = HttpResponse(
            vouchers_to_csv(queryset.select_related("package")),
            content_type="text/csv",
        )
        response["Content-Disposition"] = 'attachment; filename="vouchers.csv"'
        return response

    export_vouchers_csv.short_description = "Export selected vouchers to CSV"


@admin.register(AccessLog)
class AccessLogAdmin(admin.ModelAdmin):
    list_display = [
        "device_id",
        "event",
        "granted_badge",
        "reason",
        "gateway_delivered",
        "timestamp",
    ]
    list_filter = ["event", "granted", "gateway_delivered", "timestamp"]
    search_fields = ["device_id", "session__id"]
    readonly_fields = ["timestamp"]
    ordering = ["-timestamp"]

    def granted_badge(self, obj):
        """Display access decision with badges"""
        if obj.granted:
            return format_html(BADGE, "green", "granted")
        return format_html(BADGE, "red", "denied")

    granted_badge.short_description = "Access"


@admin.register(PaymentCallback)
class PaymentCallbackAdmin(admin.ModelAdmin):
    list_display = [
        "checkout_request_id",
        "result_code",
        "processing_status_badge",
        "received_at",
        "processed_at",
    ]
    list_filter = ["processing_status", "result_code", "received_at"]
    search_fields = ["checkout_request_id", "source_ip"]
    readonly_fields = ["received_at", "processed_at", "raw_payload", "source_ip"]
    ordering = ["-received_at"]

    fieldsets = (
        (
            "Callback Information",
            {
                "fields": (
                    "processing_status",
                    "processing_error",
                    "received_at",
                    "processed_at",
                )
            },
        ),
        (
            "Payment Data",
            {
                "fields": (
                    "checkout_request_id",
                    "result_code",
                    "result_description",
                    "payment",
                )
            },
        ),
        ("Request Metadata", {"fields": ("source_ip",), "classes": ("collapse",)}),
        ("Raw Data", {"fields": ("raw_payload",), "classes": ("collapse",)}),
    )

    def processing_status_badge(self, obj):
        """Display processing status with color badges"""
        return _badge(
            obj.processing_status,
            {
                "received": "blue",
                "processed": "green",
                "failed": "red",
                "ignored": "gray",
            },
        )

    processing_status_badge.short_description = "Processing Status"
