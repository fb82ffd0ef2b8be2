"""
Database models for the captive portal access backend

Session is the root record: one device's access grant. Payment and Voucher
each activate at most one Session. Status changes that race (redemption,
expiry, disconnect) are written as conditional updates in the service
modules, never as read-modify-save on these instances.
"""

import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone


class AccessPackage(models.Model):
    """
    Purchasable access tier (catalog entry).
    Read-only for the session core.
    """

    name = models.CharField(max_length=50)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="KES")
    duration_minutes = models.PositiveIntegerField()
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    display_order = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["display_order", "price"]

    def __str__(self):
        return f"{self.name} - {self.duration_minutes}min - {self.currency} {self.price}"


class Session(models.Model):
    """
    One device's access grant.

    Lifecycle:
        pending -> active -> expired
        pending | active -> terminated
    terminated and expired are terminal.
    """

    STATUS_PENDING = "pending"
    STATUS_ACTIVE = "active"
    STATUS_TERMINATED = "terminated"
    STATUS_EXPIRED = "expired"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_ACTIVE, "Active"),
        (STATUS_TERMINATED, "Terminated"),
        (STATUS_EXPIRED, "Expired"),
    ]

    SOURCE_PAYMENT = "payment"
    SOURCE_VOUCHER = "voucher"

    SOURCE_CHOICES = [
        (SOURCE_PAYMENT, "Payment"),
        (SOURCE_VOUCHER, "Voucher"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    device_id = models.CharField(max_length=64, db_index=True)
    phone_number = models.CharField(max_length=15, blank=True)
    package = models.ForeignKey(
        AccessPackage,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sessions",
    )
    source = models.CharField(
        max_length=10, choices=SOURCE_CHOICES, default=SOURCE_PAYMENT
    )
    status = models.CharField(
        max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    activated_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    end_reason = models.CharField(max_length=32, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            # Partial unique index; ignored on backends without support (MySQL),
            # where superseding in the entitlement code carries the invariant.
            models.UniqueConstraint(
                fields=["device_id"],
                condition=Q(status="active"),
                name="one_active_session_per_device",
            ),
        ]

    def __str__(self):
        return f"{self.device_id} - {self.status} - {self.expires_at or 'no expiry'}"

    @property
    def requires_payment(self):
        return self.source == self.SOURCE_PAYMENT

    def remaining_seconds(self, now=None):
        """Whole seconds until expiry, 0 when elapsed or unset"""
        if not self.expires_at:
            return 0
        now = now or timezone.now()
        return max(int((self.expires_at - now).total_seconds()), 0)


class Payment(models.Model):
    """
    Mobile-money transaction tied to exactly one Session.
    Updated by the payment callback; immutable once terminal except for
    reconnection_code_used.
    """

    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_EXPIRED = "expired"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_EXPIRED, "Expired"),
    ]
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.OneToOneField(
        Session, on_delete=models.CASCADE, related_name="payment"
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    phone_number = models.CharField(max_length=15)
    status = models.CharField(
        max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True
    )
    checkout_request_id = models.CharField(
        max_length=100, unique=True, null=True, blank=True
    )
    receipt_number = models.CharField(max_length=50, blank=True)
    result_code = models.IntegerField(null=True, blank=True)
    result_description = models.CharField(max_length=255, blank=True)
    reconnection_code = models.CharField(
        max_length=6, unique=True, null=True, blank=True
    )
    reconnection_code_used = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.phone_number} - KSh {self.amount} - {self.status}"


class Voucher(models.Model):
    """
    Prepaid single-use code bound to a package tier
    """

    STATUS_UNUSED = "unused"
    STATUS_USED = "used"

    STATUS_CHOICES = [
        (STATUS_UNUSED, "Unused"),
        (STATUS_USED, "Used"),
    ]

    code = models.CharField(max_length=16, unique=True)
    package = models.ForeignKey(
        AccessPackage, on_delete=models.PROTECT, related_name="vouchers"
    )
    status = models.CharField(
        max_length=10, choices=STATUS_CHOICES, default=STATUS_UNUSED, db_index=True
    )
    used_at = models.DateTimeField(null=True, blank=True)
    session = models.OneToOneField(
        Session,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="voucher",
    )
    batch_id = models.CharField(max_length=50, blank=True, db_index=True)
    created_by = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.code} - {self.package.name} - {'Used' if self.status == self.STATUS_USED else 'Available'}"


class AccessLog(models.Model):
    """
    Audit trail of authorization decisions and revocations
    """

    EVENT_AUTHORIZE = "authorize"
    EVENT_DISCONNECT = "disconnect"
    EVENT_EXPIRE = "expire"

    EVENT_CHOICES = [
        (EVENT_AUTHORIZE, "Authorize"),
        (EVENT_DISCONNECT, "Disconnect"),
        (EVENT_EXPIRE, "Expire"),
    ]

    session = models.ForeignKey(
        Session,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="access_logs",
    )
    device_id = models.CharField(max_length=64, blank=True)
    event = models.CharField(max_length=12, choices=EVENT_CHOICES)
    granted = models.BooleanField(default=False)
    reason = models.CharField(max_length=32, blank=True)
    gateway_delivered = models.BooleanField(default=False)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-timestamp"]

    def __str__(self):
        outcome = "Granted" if self.granted else (self.reason or "Denied")
        return f"{self.device_id} - {self.event} - {outcome}"


class PaymentCallback(models.Model):
    """
    Log of payment callbacks received from the mobile-money gateway
    Tracks every callback for debugging and audit purposes
    """

    PROCESSING_STATUS_CHOICES = [
        ("received", "Received"),
        ("processed", "Processed Successfully"),
        ("failed", "Processing Failed"),
        ("ignored", "Ignored"),
    ]

    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    processing_status = models.CharField(
        max_length=20, choices=PROCESSING_STATUS_CHOICES, default="received"
    )
    processing_error = models.TextField(blank=True)

    checkout_request_id = models.CharField(max_length=100, db_index=True, blank=True)
    result_code = models.IntegerField(null=True, blank=True)
    result_description = models.CharField(max_length=255, blank=True)
    raw_payload = models.JSONField()

    payment = models.ForeignKey(
        Payment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="callback_logs",
    )
    source_ip = models.GenericIPAddressField(null=True, blank=True)

    class Meta:
        ordering = ["-received_at"]

    def __str__(self):
        return f"{self.checkout_request_id} - {self.result_code} - {self.processing_status}"

    def mark_processed(self, payment=None):
        """Mark callback as successfully processed"""
        self.processing_status = "processed"
        self.processed_at = timezone.now()
        if payment:
            self.payment = payment
        self.save()

    def mark_failed(self, error_message):
        """Mark callback processing as failed"""
        self.processing_status = "failed"
        self.processed_at = timezone.now()
        self.processing_error = error_message
        self.save()

    def mark_ignored(self, reason, payment=None):
        """Mark callback as ignored (e.g., duplicate, unknown reference)"""
        self.processing_status = "ignored"
        self.processed_at = timezone.now()
        self.processing_error = reason
        if payment:
            self.payment = payment
        self.save()
