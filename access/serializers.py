"""
Serializers for API requests and responses
"""

from django.conf import settings
from rest_framework import serializers

from .models import AccessPackage, Payment, Session, Voucher
from .utils import normalize_device_id, normalize_phone_number


def validate_phone_number_field(phone_number):
    """
    Validator for phone number fields in serializers
    """
    if not phone_number:
        raise serializers.ValidationError("Phone number is required")

    try:
        return normalize_phone_number(phone_number)
    except ValueError as e:
        raise serializers.ValidationError(f"Invalid phone number format: {e}")


def validate_device_id_field(device_id):
    try:
        return normalize_device_id(device_id)
    except ValueError as e:
        raise serializers.ValidationError(str(e))


class AccessPackageSerializer(serializers.ModelSerializer):
    class Meta:
        model = AccessPackage
        fields = [
            "id",
            "name",
            "price",
            "currency",
            "duration_minutes",
            "description",
            "display_order",
        ]


class SessionSerializer(serializers.ModelSerializer):
    package = AccessPackageSerializer(read_only=True)
    remaining_seconds = serializers.SerializerMethodField()

    class Meta:
        model = Session
        fields = [
            "id",
            "device_id",
            "phone_number",
            "package",
            "source",
            "status",
            "created_at",
            "activated_at",
            "expires_at",
            "ended_at",
            "end_reason",
            "remaining_seconds",
        ]

    def get_remaining_seconds(self, obj):
        if obj.status != Session.STATUS_ACTIVE:
            return 0
        return obj.remaining_seconds()


class PaymentSerializer(serializers.ModelSerializer):
    session_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "session_id",
            "amount",
            "phone_number",
            "status",
            "checkout_request_id",
            "receipt_number",
            "result_code",
            "result_description",
            "created_at",
            "completed_at",
        ]


class PaymentStatusSerializer(PaymentSerializer):
    """
    Payment as shown to the paying device; includes the reconnection code
    once the payment is completed
    """

    session_status = serializers.CharField(source="session.status", read_only=True)

    class Meta(PaymentSerializer.Meta):
        fields = PaymentSerializer.Meta.fields + [
            "session_status",
            "reconnection_code",
            "reconnection_code_used",
        ]


class VoucherSerializer(serializers.ModelSerializer):
    package_name = serializers.CharField(source="package.name", read_only=True)
    duration_minutes = serializers.IntegerField(
        source="package.duration_minutes", read_only=True
    )

    class Meta:
        model = Voucher
        fields = [
            "id",
            "code",
            "package",
            "package_name",
            "duration_minutes",
            "status",
            "batch_id",
            "created_by",
            "created_at",
            "used_at",
        ]


class PurchaseSerializer(serializers.Serializer):
    package_id = serializers.IntegerField()
    phone_number = serializers.CharField(max_length=20)
    mac_address = serializers.CharField(max_length=64)

    def validate_phone_number(self, value):
        return validate_phone_number_field(value)

    def validate_mac_address(self, value):
        return validate_device_id_field(value)


class CheckoutReferenceSerializer(serializers.Serializer):
    checkout_request_id = serializers.CharField(max_length=100)


class VoucherRedeemSerializer(serializers.Serializer):
    voucher_code = serializers.CharField(max_length=16)
    mac_address = serializers.CharField(max_length=64)
    phone_number = serializers.CharField(max_length=20, required=False, allow_blank=True)

    def validate_voucher_code(self, value):
        return value.strip().upper()

    def validate_mac_address(self, value):
        return validate_device_id_field(value)

    def validate_phone_number(self, value):
        if not value:
            return ""
        return validate_phone_number_field(value)


class ReconnectSerializer(serializers.Serializer):
    reconnection_code = serializers.CharField(max_length=10)
    mac_address = serializers.CharField(max_length=64)

    def validate_reconnection_code(self, value):
        value = value.strip()
        if not value.isdigit():
            raise serializers.ValidationError("Reconnection code must be numeric")
        return value

    def validate_mac_address(self, value):
        return validate_device_id_field(value)


class AuthorizeSerializer(serializers.Serializer):
    mac_address = serializers.CharField(max_length=64, required=False, allow_blank=True)


class DisconnectSerializer(serializers.Serializer):
    actor = serializers.ChoiceField(
        choices=["admin", "user", "system"], default="admin"
    )
    mac_address = serializers.CharField(max_length=64, required=False, allow_blank=True)

    def validate(self, data):
        if data.get("actor") == "user" and not data.get("mac_address"):
            raise serializers.ValidationError(
                {"mac_address": "Required when the user disconnects"}
            )
        return data


class GenerateVouchersSerializer(serializers.Serializer):
    package_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)
    prefix = serializers.CharField(max_length=4, required=False, allow_blank=True, default="")
    created_by = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")

    def validate_quantity(self, value):
        max_batch = getattr(settings, "VOUCHER_MAX_BATCH", 100)
        if value > max_batch:
            raise serializers.ValidationError(
                f"Cannot generate more than {max_batch} vouchers at once"
            )
        return value
