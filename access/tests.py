"""
Tests for the captive portal access core
"""

import hashlib
import hmac
import io
import json
import socket
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest import mock

import requests
from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from . import gateway as gateway_module
from .authorizer import authorize, expire, revoke
from .control import current_session_for_device, disconnect, list_active_sessions
from .entitlements import (
    activate_from_payment,
    record_checkout_reference,
    redeem_reconnection_code,
    redeem_voucher,
    start_purchase,
)
from .exceptions import (
    AlreadyTerminated,
    DeviceMismatch,
    GatewayUnreachable,
    InvalidOrUsedCode,
    InvalidRequest,
    PackageNotFound,
    PaymentNotFound,
    SessionExpired,
    SessionNotFound,
    Unauthorized,
)
from .expiry_watcher import ExpiryWatcher
from .gateway import BaseGateway, LoggingGateway, MikrotikGateway, RadiusHTTPGateway
from .models import AccessLog, AccessPackage, Payment, PaymentCallback, Session, Voucher
from .tasks import sweep_expired_sessions
from .utils import normalize_device_id, normalize_phone_number
from .vouchers import (
    MAX_CODE_ATTEMPTS,
    VOUCHER_ALPHABET,
    generate_vouchers,
    new_reconnection_code,
    vouchers_to_csv,
)

ADMIN_KEY = "test-admin-key"
DEVICE = "AA:BB:CC:DD:EE:FF"
OTHER_DEVICE = "11:22:33:44:55:66"
PHONE = "254712345678"


class RecordingGateway(BaseGateway):
    """Gateway double that records every directive"""

    def __init__(self):
        self.accepts = []
        self.disconnects = []

    def send_accept(self, device_id, session_timeout_seconds):
        self.accepts.append((device_id, session_timeout_seconds))

    def send_disconnect(self, device_id):
        self.disconnects.append(device_id)


class UnreachableGateway(BaseGateway):
    def send_accept(self, device_id, session_timeout_seconds):
        raise GatewayUnreachable("timeout")

    def send_disconnect(self, device_id):
        raise GatewayUnreachable("timeout")


@override_settings(ACCESS_ADMIN_KEY=ADMIN_KEY)
class AccessTestCase(TestCase):
    """Base test case with a recording gateway and a 60 minute package"""

    gateway_class = RecordingGateway

    def setUp(self):
        self.gateway = self.gateway_class()
        patcher = mock.patch("access.authorizer.get_gateway", return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.package = AccessPackage.objects.create(
            name="1 Hour", price=Decimal("20.00"), duration_minutes=60
        )

    def make_active_session(self, device_id=DEVICE, expires_in=timedelta(minutes=60), **kwargs):
        now = timezone.now()
        kwargs.setdefault("source", Session.SOURCE_VOUCHER)
        return Session.objects.create(
            device_id=device_id,
            package=self.package,
            status=Session.STATUS_ACTIVE,
            activated_at=now,
            expires_at=now + expires_in,
            **kwargs,
        )

    def make_purchase(self, checkout_ref="ws_1", device_id=DEVICE):
        result = start_purchase(self.package.pk, device_id, "0712345678")
        record_checkout_reference(result["payment"].pk, checkout_ref)
        return result["session"], Payment.objects.get(pk=result["payment"].pk)


class UtilsTest(TestCase):
    """Test utility functions"""

    def test_normalize_phone_number(self):
        """Test phone number normalization to MSISDN"""
        self.assertEqual(normalize_phone_number("0712345678"), PHONE)
        self.assertEqual(normalize_phone_number("+254712345678"), PHONE)
        self.assertEqual(normalize_phone_number("712345678"), PHONE)
        self.assertEqual(normalize_phone_number("0712 345 678"), PHONE)

    def test_normalize_phone_number_invalid(self):
        with self.assertRaises(ValueError):
            normalize_phone_number("12345")
        with self.assertRaises(ValueError):
            normalize_phone_number("")

    def test_normalize_device_id(self):
        """MACs become upper-case colon separated; fingerprints are only stripped"""
        self.assertEqual(normalize_device_id("aa-bb-cc-dd-ee-ff"), DEVICE)
        self.assertEqual(normalize_device_id("aabbccddeeff"), DEVICE)
        self.assertEqual(normalize_device_id(" aa:bb:cc:dd:ee:ff "), DEVICE)
        self.assertEqual(normalize_device_id(" fp-3f9a "), "fp-3f9a")
        with self.assertRaises(ValueError):
            normalize_device_id("   ")


class SessionModelTest(AccessTestCase):
    """Test Session model functionality"""

    def test_remaining_seconds(self):
        now = timezone.now()
        session = Session(expires_at=now + timedelta(seconds=90))
        self.assertEqual(session.remaining_seconds(now=now), 90)
        self.assertEqual(session.remaining_seconds(now=now + timedelta(seconds=120)), 0)
        self.assertEqual(Session().remaining_seconds(), 0)

    def test_one_active_session_per_device(self):
        """The partial unique index rejects a second active session"""
        self.make_active_session()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                self.make_active_session()

        # Terminal sessions for the same device are fine
        Session.objects.create(device_id=DEVICE, status=Session.STATUS_EXPIRED)
        Session.objects.create(device_id=DEVICE, status=Session.STATUS_TERMINATED)


class AuthorizerTest(AccessTestCase):
    """Test the authorization decision and revocation paths"""

    def test_grant_active_voucher_session(self):
        session = self.make_active_session()

        result = authorize(session.pk, "aa:bb:cc:dd:ee:ff")

        self.assertTrue(result["authorized"])
        self.assertIsNone(result["reason"])
        self.assertGreater(result["remaining_seconds"], 3590)
        self.assertLessEqual(result["remaining_seconds"], 3600)
        self.assertEqual(len(self.gateway.accepts), 1)
        self.assertEqual(self.gateway.accepts[0][0], DEVICE)
        self.assertTrue(
            AccessLog.objects.filter(session=session, granted=True, gateway_delivered=True).exists()
        )

    def test_unknown_session(self):
        self.assertEqual(authorize(uuid.uuid4())["reason"], "no-such-session")
        self.assertEqual(authorize("not-a-uuid")["reason"], "no-such-session")
        self.assertEqual(self.gateway.accepts, [])

    def test_pending_session_not_completed(self):
        session = Session.objects.create(device_id=DEVICE, package=self.package)
        result = authorize(session.pk)
        self.assertFalse(result["authorized"])
        self.assertEqual(result["reason"], "not-completed")

    def test_paid_session_requires_completed_payment(self):
        session = self.make_active_session(source=Session.SOURCE_PAYMENT)
        Payment.objects.create(session=session, amount=Decimal("20.00"), phone_number=PHONE)

        result = authorize(session.pk)

        self.assertFalse(result["authorized"])
        self.assertEqual(result["reason"], "not-completed")
        self.assertEqual(self.gateway.accepts, [])

    def test_device_mismatch(self):
        session = self.make_active_session()
        result = authorize(session.pk, OTHER_DEVICE)
        self.assertFalse(result["authorized"])
        self.assertEqual(result["reason"], "device-mismatch")
        self.assertEqual(self.gateway.accepts, [])

    def test_terminal_sessions_denied(self):
        terminated = Session.objects.create(device_id=DEVICE, status=Session.STATUS_TERMINATED)
        expired = Session.objects.create(device_id=OTHER_DEVICE, status=Session.STATUS_EXPIRED)

        self.assertEqual(authorize(terminated.pk)["reason"], "already-terminated")
        self.assertEqual(authorize(expired.pk)["reason"], "expired")
        self.assertEqual(self.gateway.disconnects, [])

    def test_lazy_expiry_disconnects_once(self):
        session = self.make_active_session(expires_in=timedelta(seconds=-1))

        first = authorize(session.pk)
        second = authorize(session.pk)

        self.assertEqual(first["reason"], "expired")
        self.assertEqual(second["reason"], "expired")
        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_EXPIRED)
        self.assertEqual(session.end_reason, "expired-on-authorize")
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_authorize_after_session_elapsed(self):
        """Session expiring 5s after activation, authorized at 6s"""
        activated_at = timezone.now()
        session = Session.objects.create(
            device_id=DEVICE,
            package=self.package,
            source=Session.SOURCE_VOUCHER,
            status=Session.STATUS_ACTIVE,
            activated_at=activated_at,
            expires_at=activated_at + timedelta(seconds=5),
        )

        with mock.patch(
            "django.utils.timezone.now",
            return_value=activated_at + timedelta(seconds=6),
        ):
            result = authorize(session.pk)

        self.assertFalse(result["authorized"])
        self.assertEqual(result["reason"], "expired")
        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_EXPIRED)

    def test_sub_second_remainder_grants_one_second(self):
        now = timezone.now()
        session = self.make_active_session(expires_in=timedelta(milliseconds=900))
        Session.objects.filter(pk=session.pk).update(expires_at=now + timedelta(milliseconds=900))
        with mock.patch("django.utils.timezone.now", return_value=now):
            result = authorize(session.pk)
        self.assertTrue(result["authorized"])
        self.assertEqual(result["remaining_seconds"], 1)

    def test_revoke_is_idempotent(self):
        session = self.make_active_session()

        self.assertTrue(revoke(session.pk, reason="admin"))
        self.assertFalse(revoke(session.pk, reason="admin"))

        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_TERMINATED)
        self.assertEqual(session.end_reason, "admin")
        self.assertIsNotNone(session.ended_at)
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_revoke_unknown_session(self):
        self.assertFalse(revoke(uuid.uuid4()))

    def test_revoke_checks_device(self):
        session = self.make_active_session()

        with self.assertRaises(DeviceMismatch):
            revoke(session.pk, OTHER_DEVICE, reason="user-disconnect")
        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_ACTIVE)
        self.assertEqual(self.gateway.disconnects, [])

        self.assertTrue(revoke(session.pk, "aa-bb-cc-dd-ee-ff", reason="user-disconnect"))
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_expire_skips_unelapsed_session(self):
        session = self.make_active_session()
        self.assertFalse(expire(session.pk))
        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_ACTIVE)


class GatewayFailureTest(AccessTestCase):
    """Gateway failures are logged and never change the outcome"""

    gateway_class = UnreachableGateway

    def test_grant_survives_gateway_failure(self):
        session = self.make_active_session()
        result = authorize(session.pk)
        self.assertTrue(result["authorized"])
        self.assertTrue(
            AccessLog.objects.filter(session=session, granted=True, gateway_delivered=False).exists()
        )

    def test_revoke_survives_gateway_failure(self):
        session = self.make_active_session()
        self.assertTrue(revoke(session.pk))
        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_TERMINATED)

    def test_sweep_survives_gateway_failure(self):
        self.make_active_session(expires_in=timedelta(seconds=-5))
        result = sweep_expired_sessions()
        self.assertEqual(result["expired"], 1)
        self.assertEqual(result["failed"], 0)


class PaymentEntitlementTest(AccessTestCase):
    """Test purchase start and payment callback activation"""

    def test_start_purchase(self):
        result = start_purchase(self.package.pk, "aa-bb-cc-dd-ee-ff", "0712345678")

        session = result["session"]
        payment = result["payment"]
        self.assertEqual(session.status, Session.STATUS_PENDING)
        self.assertEqual(session.source, Session.SOURCE_PAYMENT)
        self.assertEqual(session.device_id, DEVICE)
        self.assertEqual(payment.status, Payment.STATUS_PENDING)
        self.assertEqual(payment.amount, Decimal("20.00"))
        self.assertEqual(payment.phone_number, PHONE)

    def test_start_purchase_unknown_or_inactive_package(self):
        with self.assertRaises(PackageNotFound):
            start_purchase(9999, DEVICE, PHONE)

        self.package.is_active = False
        self.package.save()
        with self.assertRaises(PackageNotFound):
            start_purchase(self.package.pk, DEVICE, PHONE)

    def test_start_purchase_invalid_phone(self):
        with self.assertRaises(InvalidRequest):
            start_purchase(self.package.pk, DEVICE, "123")

    def test_record_checkout_reference(self):
        _, payment = self.make_purchase("ws_1")
        self.assertEqual(payment.checkout_request_id, "ws_1")

        # Same reference again is accepted, a different one is not
        self.assertEqual(record_checkout_reference(payment.pk, "ws_1").pk, payment.pk)
        with self.assertRaises(InvalidRequest):
            record_checkout_reference(payment.pk, "ws_2")

    def test_checkout_reference_is_unique(self):
        self.make_purchase("ws_1")
        other = start_purchase(self.package.pk, OTHER_DEVICE, PHONE)
        with self.assertRaises(InvalidRequest):
            record_checkout_reference(other["payment"].pk, "ws_1")

    def test_successful_payment_activates_session(self):
        """Payment ws_1 completes with receipt QGR7XYZ1"""
        session, payment = self.make_purchase("ws_1")

        result = activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")

        self.assertTrue(result["changed"])
        payment.refresh_from_db()
        session.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_COMPLETED)
        self.assertEqual(payment.receipt_number, "QGR7XYZ1")
        self.assertIsNotNone(payment.completed_at)
        self.assertRegex(payment.reconnection_code, r"^\d{6}$")
        self.assertFalse(payment.reconnection_code_used)

        self.assertEqual(session.status, Session.STATUS_ACTIVE)
        self.assertAlmostEqual(
            session.expires_at,
            session.activated_at + timedelta(minutes=60),
            delta=timedelta(seconds=1),
        )
        self.assertTrue(result["authorization"]["authorized"])
        self.assertEqual(len(self.gateway.accepts), 1)

    def test_replayed_success_callback_is_noop(self):
        self.make_purchase("ws_1")
        activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")
        code = Payment.objects.get(checkout_request_id="ws_1").reconnection_code

        replay = activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")

        self.assertFalse(replay["changed"])
        self.assertIsNone(replay["authorization"])
        self.assertEqual(replay["payment"].reconnection_code, code)
        self.assertEqual(len(self.gateway.accepts), 1)

    def test_failed_payment(self):
        session, payment = self.make_purchase("ws_1")

        result = activate_from_payment("ws_1", 1032, result_description="Request cancelled by user")

        self.assertTrue(result["changed"])
        payment.refresh_from_db()
        session.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_FAILED)
        self.assertEqual(payment.result_code, 1032)
        self.assertIsNone(payment.reconnection_code)
        self.assertEqual(session.status, Session.STATUS_PENDING)
        self.assertEqual(self.gateway.accepts, [])

    def test_unreachable_user_expires_payment(self):
        _, payment = self.make_purchase("ws_1")
        activate_from_payment("ws_1", "1037")
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_EXPIRED)

    def test_terminal_payment_ignores_later_callbacks(self):
        _, payment = self.make_purchase("ws_1")
        activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")

        result = activate_from_payment("ws_1", 1032)

        self.assertFalse(result["changed"])
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_COMPLETED)

    def test_unknown_checkout_reference(self):
        with self.assertRaises(PaymentNotFound):
            activate_from_payment("ws_missing", 0)
        with self.assertRaises(PaymentNotFound):
            activate_from_payment("", 0)

    def test_payment_supersedes_active_session(self):
        old = self.make_active_session()
        session, _ = self.make_purchase("ws_1")

        activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")

        old.refresh_from_db()
        session.refresh_from_db()
        self.assertEqual(old.status, Session.STATUS_TERMINATED)
        self.assertEqual(old.end_reason, "superseded")
        self.assertEqual(session.status, Session.STATUS_ACTIVE)
        self.assertEqual(
            Session.objects.filter(device_id=DEVICE, status=Session.STATUS_ACTIVE).count(), 1
        )
        self.assertEqual(self.gateway.disconnects, [])

    def test_payment_for_terminated_session(self):
        """The payment completes but the session stays terminated"""
        session, payment = self.make_purchase("ws_1")
        revoke(session.pk, reason="admin")

        result = activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")

        payment.refresh_from_db()
        session.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_COMPLETED)
        self.assertEqual(session.status, Session.STATUS_TERMINATED)
        self.assertIsNone(result["authorization"])
        self.assertEqual(self.gateway.accepts, [])


class VoucherRedemptionTest(AccessTestCase):
    """Test voucher redemption"""

    def setUp(self):
        super().setUp()
        self.voucher = Voucher.objects.create(code="A1B2C3D4", package=self.package)

    def test_redeem_voucher(self):
        """Voucher A1B2C3D4 for 60 minutes on AA:BB:CC:DD:EE:FF"""
        result = redeem_voucher(" a1b2c3d4 ", "aa:bb:cc:dd:ee:ff")

        session = result["session"]
        self.assertEqual(session.status, Session.STATUS_ACTIVE)
        self.assertEqual(session.source, Session.SOURCE_VOUCHER)
        self.assertEqual(session.device_id, DEVICE)
        self.assertGreater(session.remaining_seconds(), 3590)
        self.assertTrue(result["authorization"]["authorized"])
        self.assertGreater(result["authorization"]["remaining_seconds"], 3590)

        self.voucher.refresh_from_db()
        self.assertEqual(self.voucher.status, Voucher.STATUS_USED)
        self.assertIsNotNone(self.voucher.used_at)
        self.assertEqual(self.voucher.session_id, session.pk)

        with self.assertRaises(InvalidOrUsedCode):
            redeem_voucher("A1B2C3D4", DEVICE)
        self.assertEqual(len(self.gateway.accepts), 1)

    def test_redeemed_voucher_on_other_device(self):
        redeem_voucher("A1B2C3D4", DEVICE)
        with self.assertRaises(InvalidOrUsedCode):
            redeem_voucher("A1B2C3D4", OTHER_DEVICE)

    def test_unknown_code(self):
        with self.assertRaises(InvalidOrUsedCode):
            redeem_voucher("ZZZZ9999", DEVICE)
        with self.assertRaises(InvalidOrUsedCode):
            redeem_voucher("", DEVICE)

    def test_invalid_device(self):
        with self.assertRaises(InvalidRequest):
            redeem_voucher("A1B2C3D4", "")
        self.voucher.refresh_from_db()
        self.assertEqual(self.voucher.status, Voucher.STATUS_UNUSED)

    def test_voucher_supersedes_active_session(self):
        old = self.make_active_session()

        result = redeem_voucher("A1B2C3D4", DEVICE)

        old.refresh_from_db()
        self.assertEqual(old.status, Session.STATUS_TERMINATED)
        self.assertEqual(old.end_reason, "superseded")
        self.assertEqual(result["session"].status, Session.STATUS_ACTIVE)

    def test_lost_race_reports_used_code(self):
        """A concurrent redeemer consumed the code between lookup and update"""
        stale = Voucher.objects.get(pk=self.voucher.pk)

        def stale_lookup(*args, **kwargs):
            Voucher.objects.filter(pk=stale.pk).update(status=Voucher.STATUS_USED)
            queryset = mock.Mock()
            queryset.filter.return_value.first.return_value = stale
            return queryset

        with mock.patch.object(Voucher.objects, "select_related", side_effect=stale_lookup):
            with self.assertRaises(InvalidOrUsedCode):
                redeem_voucher("A1B2C3D4", DEVICE)

        self.assertFalse(Session.objects.filter(device_id=DEVICE).exists())


class ReconnectionCodeTest(AccessTestCase):
    """Test reconnection-code redemption"""

    def setUp(self):
        super().setUp()
        self.session, _ = self.make_purchase("ws_1")
        activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")
        self.payment = Payment.objects.get(checkout_request_id="ws_1")
        self.code = self.payment.reconnection_code

    def test_redeem_on_same_device(self):
        result = redeem_reconnection_code(self.code, "aa-bb-cc-dd-ee-ff")

        self.assertEqual(result["session"].pk, self.session.pk)
        self.assertTrue(result["authorization"]["authorized"])
        self.payment.refresh_from_db()
        self.assertTrue(self.payment.reconnection_code_used)
        self.assertEqual(len(self.gateway.accepts), 2)

        with self.assertRaises(InvalidOrUsedCode):
            redeem_reconnection_code(self.code, DEVICE)

    def test_lost_race_reports_used_code(self):
        """A concurrent redeemer consumed the code between lookup and update"""
        stale = Payment.objects.select_related("session").get(pk=self.payment.pk)
        session_before = Session.objects.get(pk=self.session.pk)

        def stale_lookup(*args, **kwargs):
            Payment.objects.filter(pk=stale.pk).update(reconnection_code_used=True)
            queryset = mock.Mock()
            queryset.filter.return_value.first.return_value = stale
            return queryset

        with mock.patch.object(Payment.objects, "select_related", side_effect=stale_lookup):
            with self.assertRaises(InvalidOrUsedCode):
                redeem_reconnection_code(self.code, DEVICE)

        # Only the accept from the original activation
        self.assertEqual(len(self.gateway.accepts), 1)
        session = Session.objects.get(pk=self.session.pk)
        self.assertEqual(session.status, Session.STATUS_ACTIVE)
        self.assertEqual(session.expires_at, session_before.expires_at)

    def test_other_device_keeps_code_unused(self):
        with self.assertRaises(DeviceMismatch):
            redeem_reconnection_code(self.code, OTHER_DEVICE)
        self.payment.refresh_from_db()
        self.assertFalse(self.payment.reconnection_code_used)

    def test_terminated_session_keeps_code_unused(self):
        revoke(self.session.pk, reason="admin")
        with self.assertRaises(AlreadyTerminated):
            redeem_reconnection_code(self.code, DEVICE)
        self.payment.refresh_from_db()
        self.assertFalse(self.payment.reconnection_code_used)

    def test_elapsed_session_keeps_code_unused(self):
        Session.objects.filter(pk=self.session.pk).update(
            expires_at=timezone.now() - timedelta(seconds=1)
        )
        with self.assertRaises(SessionExpired):
            redeem_reconnection_code(self.code, DEVICE)
        self.payment.refresh_from_db()
        self.assertFalse(self.payment.reconnection_code_used)

    def test_expired_session(self):
        Session.objects.filter(pk=self.session.pk).update(status=Session.STATUS_EXPIRED)
        with self.assertRaises(SessionExpired):
            redeem_reconnection_code(self.code, DEVICE)

    def test_unknown_code(self):
        with self.assertRaises(InvalidOrUsedCode):
            redeem_reconnection_code("000000" if self.code != "000000" else "111111", DEVICE)

    def test_code_generation_gives_up_when_space_is_taken(self):
        """Every draw collides with an issued code: bounded attempts, then an error"""
        with mock.patch("access.vouchers._random_string", return_value=self.code) as draw:
            with self.assertRaises(InvalidRequest):
                new_reconnection_code()
        self.assertEqual(draw.call_count, MAX_CODE_ATTEMPTS)


class SweeperTest(AccessTestCase):
    """Test the expiry sweep"""

    def test_sweep_expires_elapsed_sessions(self):
        elapsed = self.make_active_session(expires_in=timedelta(seconds=-10))
        running = self.make_active_session(device_id=OTHER_DEVICE)

        result = sweep_expired_sessions()

        self.assertTrue(result["success"])
        self.assertEqual(result["expired"], 1)
        self.assertEqual(result["failed"], 0)
        self.assertEqual(result["total_checked"], 1)
        elapsed.refresh_from_db()
        running.refresh_from_db()
        self.assertEqual(elapsed.status, Session.STATUS_EXPIRED)
        self.assertEqual(elapsed.end_reason, "expired-by-sweep")
        self.assertEqual(running.status, Session.STATUS_ACTIVE)
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_authorize_and_sweep_disconnect_once(self):
        session = self.make_active_session(expires_in=timedelta(seconds=-1))

        authorize(session.pk)
        result = sweep_expired_sessions()

        self.assertEqual(result["expired"], 0)
        # The sweep lost the race for a session it had already selected
        self.assertFalse(expire(session.pk))
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_sweep_then_authorize_disconnect_once(self):
        session = self.make_active_session(expires_in=timedelta(seconds=-1))

        sweep_expired_sessions()
        result = authorize(session.pk)

        self.assertEqual(result["reason"], "expired")
        session.refresh_from_db()
        self.assertEqual(session.end_reason, "expired-by-sweep")
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_one_failure_does_not_abort_sweep(self):
        broken = self.make_active_session(expires_in=timedelta(seconds=-10))
        healthy = self.make_active_session(
            device_id=OTHER_DEVICE, expires_in=timedelta(seconds=-10)
        )

        def flaky_expire(session_id, reason):
            if session_id == broken.pk:
                raise RuntimeError("database hiccup")
            return expire(session_id, reason=reason)

        with mock.patch("access.tasks.expire", side_effect=flaky_expire):
            result = sweep_expired_sessions()

        self.assertEqual(result["expired"], 1)
        self.assertEqual(result["failed"], 1)
        self.assertEqual(result["total_checked"], 2)
        healthy.refresh_from_db()
        self.assertEqual(healthy.status, Session.STATUS_EXPIRED)

    def test_watcher_runs_sweep(self):
        self.make_active_session(expires_in=timedelta(seconds=-10))

        with mock.patch("access.expiry_watcher.connection"):
            result = ExpiryWatcher(interval=5).run_once()

        self.assertEqual(result["expired"], 1)

    def test_stop_before_loop_starts_is_honoured(self):
        """A stop() that lands before the loop's first step ends it without a sweep"""
        watcher = ExpiryWatcher(interval=5)
        self.addCleanup(watcher._stop_event.clear)

        watcher.stop()
        with mock.patch.object(watcher, "run_once") as run_once:
            watcher.run_forever()
        run_once.assert_not_called()

        # start() re-arms the watcher
        with mock.patch("access.expiry_watcher.threading.Thread") as thread_class:
            watcher.start()
        self.assertFalse(watcher._stop_event.is_set())
        thread_class.return_value.start.assert_called_once()
        watcher._thread = None

    def test_sweep_command(self):
        self.make_active_session(expires_in=timedelta(seconds=-10))
        out = io.StringIO()
        call_command("sweep_expired_sessions", stdout=out)
        self.assertIn("Expired 1 session(s)", out.getvalue())

    def test_run_expiry_watcher_once(self):
        self.make_active_session(expires_in=timedelta(seconds=-10))
        out = io.StringIO()
        with mock.patch("access.expiry_watcher.connection"):
            call_command("run_expiry_watcher", once=True, interval=5, stdout=out)
        self.assertIn("1 expired", out.getvalue())
        self.assertFalse(Session.objects.filter(status=Session.STATUS_ACTIVE).exists())


class VoucherGenerationTest(AccessTestCase):
    """Test voucher issuance"""

    def test_generate_batch(self):
        vouchers = generate_vouchers(self.package.pk, 5, admin_key=ADMIN_KEY, created_by="ops")

        self.assertEqual(len(vouchers), 5)
        self.assertEqual(len({v.code for v in vouchers}), 5)
        self.assertEqual(len({v.batch_id for v in vouchers}), 1)
        for voucher in vouchers:
            self.assertEqual(len(voucher.code), 8)
            self.assertTrue(set(voucher.code) <= set(VOUCHER_ALPHABET))
            self.assertEqual(voucher.status, Voucher.STATUS_UNUSED)
            self.assertEqual(voucher.created_by, "ops")

    def test_prefix(self):
        vouchers = generate_vouchers(self.package.pk, 3, prefix="cafe", admin_key=ADMIN_KEY)
        for voucher in vouchers:
            self.assertTrue(voucher.code.startswith("CAFE"))
            self.assertEqual(len(voucher.code), 8)

    def test_invalid_arguments(self):
        with self.assertRaises(InvalidRequest):
            generate_vouchers(self.package.pk, 0, admin_key=ADMIN_KEY)
        with self.assertRaises(InvalidRequest):
            generate_vouchers(self.package.pk, 101, admin_key=ADMIN_KEY)
        with self.assertRaises(InvalidRequest):
            generate_vouchers(self.package.pk, 1, prefix="TOOLONG", admin_key=ADMIN_KEY)
        with self.assertRaises(InvalidRequest):
            generate_vouchers(self.package.pk, 1, prefix="A-B", admin_key=ADMIN_KEY)
        with self.assertRaises(PackageNotFound):
            generate_vouchers(9999, 1, admin_key=ADMIN_KEY)
        self.assertEqual(Voucher.objects.count(), 0)

    def test_admin_key_required(self):
        with self.assertRaises(Unauthorized):
            generate_vouchers(self.package.pk, 1, admin_key="wrong")
        with self.assertRaises(Unauthorized):
            generate_vouchers(self.package.pk, 1)

    @override_settings(ACCESS_ADMIN_KEY="")
    def test_unset_admin_key_rejects_everything(self):
        with self.assertRaises(Unauthorized):
            generate_vouchers(self.package.pk, 1, admin_key="")

    def test_collision_regenerates_code(self):
        Voucher.objects.create(code="DUPL2345", package=self.package)

        with mock.patch(
            "access.vouchers.new_voucher_code", side_effect=["DUPL2345", "FRESH234"]
        ):
            vouchers = generate_vouchers(self.package.pk, 1, admin_key=ADMIN_KEY)

        self.assertEqual([v.code for v in vouchers], ["FRESH234"])

    def test_csv_export(self):
        vouchers = generate_vouchers(self.package.pk, 2, admin_key=ADMIN_KEY)
        csv_text = vouchers_to_csv(vouchers)
        lines = csv_text.strip().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith("Code,Package,Duration (Minutes)"))
        self.assertIn(vouchers[0].code, csv_text)

    def test_generate_vouchers_command(self):
        out = io.StringIO()
        call_command("generate_vouchers", package=self.package.pk, quantity=3, stdout=out)
        self.assertEqual(Voucher.objects.count(), 3)
        self.assertIn("Code,Package", out.getvalue())


class SessionControlTest(AccessTestCase):
    """Test admin and user disconnects and session listings"""

    def test_admin_disconnect_twice(self):
        session = self.make_active_session()

        first = disconnect(session.pk, None, "admin", admin_key=ADMIN_KEY)
        second = disconnect(session.pk, None, "admin", admin_key=ADMIN_KEY)

        self.assertTrue(first["changed"])
        self.assertFalse(second["changed"])
        self.assertTrue(second["success"])
        self.assertEqual(second["session"].status, Session.STATUS_TERMINATED)
        self.assertEqual(second["session"].end_reason, "admin-disconnect")
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_admin_disconnect_requires_key(self):
        session = self.make_active_session()
        with self.assertRaises(Unauthorized):
            disconnect(session.pk, None, "admin", admin_key="wrong")
        with self.assertRaises(Unauthorized):
            disconnect(session.pk, None, "system")

    def test_user_disconnect_own_device(self):
        session = self.make_active_session()
        result = disconnect(session.pk, "aa:bb:cc:dd:ee:ff", "user")
        self.assertTrue(result["changed"])
        self.assertEqual(result["session"].end_reason, "user-disconnect")

    def test_user_disconnect_other_device(self):
        session = self.make_active_session()
        with self.assertRaises(DeviceMismatch):
            disconnect(session.pk, OTHER_DEVICE, "user")
        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_ACTIVE)

    def test_unknown_session_and_actor(self):
        with self.assertRaises(SessionNotFound):
            disconnect(uuid.uuid4(), None, "admin", admin_key=ADMIN_KEY)
        session = self.make_active_session()
        with self.assertRaises(InvalidRequest):
            disconnect(session.pk, None, "robot")

    def test_list_active_sessions(self):
        active = self.make_active_session()
        self.make_active_session(device_id=OTHER_DEVICE, expires_in=timedelta(seconds=-1))
        Session.objects.create(device_id="22:22:22:22:22:22", status=Session.STATUS_TERMINATED)

        self.assertEqual([s.pk for s in list_active_sessions()], [active.pk])

    def test_current_session_for_device(self):
        active = self.make_active_session()
        self.assertEqual(current_session_for_device("aa-bb-cc-dd-ee-ff").pk, active.pk)
        self.assertIsNone(current_session_for_device(OTHER_DEVICE))


class LoggingGatewayTest(TestCase):
    def test_directives_are_logged(self):
        with self.assertLogs("access.gateway", level="INFO") as logs:
            LoggingGateway().send_accept(DEVICE, 600)
            LoggingGateway().send_disconnect(DEVICE)

        self.assertEqual(
            [record.getMessage() for record in logs.records],
            [
                f"Gateway (log only): accept {DEVICE} for 600s",
                f"Gateway (log only): disconnect {DEVICE}",
            ],
        )


class RadiusGatewayTest(TestCase):
    """Test the RADIUS HTTP bridge client"""

    def setUp(self):
        self.gateway = RadiusHTTPGateway(
            base_url="http://radius.test/", shared_secret="s3cret", timeout=2
        )

    @mock.patch("access.gateway.requests.post")
    def test_send_accept_signs_body(self, mock_post):
        mock_post.return_value = mock.Mock(status_code=200, json=lambda: {"ok": True})

        self.gateway.send_accept(DEVICE, 3600)

        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "http://radius.test/accept")
        body = kwargs["data"]
        self.assertEqual(
            json.loads(body),
            {"action": "accept", "username": DEVICE, "sessionTimeout": 3600},
        )
        expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        self.assertEqual(kwargs["headers"]["X-Radius-Signature"], expected)
        self.assertEqual(kwargs["timeout"], 2)

    @mock.patch("access.gateway.requests.post")
    def test_timeout_raises_unreachable(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout()
        with self.assertRaises(GatewayUnreachable):
            self.gateway.send_disconnect(DEVICE)

    @mock.patch("access.gateway.requests.post")
    def test_error_status_raises_unreachable(self, mock_post):
        mock_post.return_value = mock.Mock(status_code=500)
        with self.assertRaises(GatewayUnreachable):
            self.gateway.send_disconnect(DEVICE)


class MikrotikGatewayTest(TestCase):
    """Test the MikroTik hotspot backend"""

    def setUp(self):
        patcher = mock.patch("access.gateway.routeros_api.RouterOsApiPool")
        self.mock_pool_class = patcher.start()
        self.addCleanup(patcher.stop)

        self.pool = self.mock_pool_class.return_value
        self.api = self.pool.get_api.return_value
        self.bindings = mock.Mock()
        self.active = mock.Mock()
        resources = {
            "/ip/hotspot/ip-binding": self.bindings,
            "/ip/hotspot/active": self.active,
        }
        self.api.get_resource.side_effect = lambda path: resources[path]

    def test_accept_creates_bypass_binding(self):
        self.bindings.get.return_value = []

        MikrotikGateway(timeout=2).send_accept(DEVICE, 600)

        self.bindings.add.assert_called_once_with(
            type="bypassed", mac_address=DEVICE, comment="captiveportal timeout=600"
        )
        self.pool.disconnect.assert_called_once()

    def test_disconnect_removes_binding_and_active_session(self):
        self.bindings.get.return_value = [{"id": "*1"}]
        self.active.get.return_value = [
            {"id": "*A", "mac-address": "aa:bb:cc:dd:ee:ff"},
            {"id": "*B", "mac-address": OTHER_DEVICE},
        ]

        MikrotikGateway(timeout=2).send_disconnect(DEVICE)

        self.bindings.remove.assert_called_once_with(id="*1")
        self.active.remove.assert_called_once_with(id="*A")

    def test_connection_failure_raises_unreachable(self):
        self.mock_pool_class.side_effect = OSError("connection refused")
        with self.assertRaises(GatewayUnreachable):
            MikrotikGateway(timeout=2).send_accept(DEVICE, 600)

    def test_connect_bounds_and_restores_socket_timeout(self):
        """The router connection sees the gateway timeout; the default comes back after"""
        seen = []

        def get_api():
            seen.append(socket.getdefaulttimeout())
            self.assertTrue(gateway_module._socket_timeout_lock.locked())
            return self.api

        self.pool.get_api.side_effect = get_api
        self.bindings.get.return_value = []
        original = socket.getdefaulttimeout()

        MikrotikGateway(timeout=2).send_accept(DEVICE, 600)

        self.assertEqual(seen, [2])
        self.assertEqual(socket.getdefaulttimeout(), original)
        self.assertFalse(gateway_module._socket_timeout_lock.locked())

        self.mock_pool_class.side_effect = OSError("connection refused")
        with self.assertRaises(GatewayUnreachable):
            MikrotikGateway(timeout=2).send_disconnect(DEVICE)
        self.assertEqual(socket.getdefaulttimeout(), original)
        self.assertFalse(gateway_module._socket_timeout_lock.locked())


class AccessAPITest(AccessTestCase):
    """Test the HTTP endpoints and the error envelope"""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.admin_headers = {"HTTP_X_ADMIN_ACCESS": ADMIN_KEY}

    def callback_payload(self, checkout_ref, result_code, receipt=None):
        stk = {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": checkout_ref,
            "ResultCode": result_code,
            "ResultDesc": "The service request is processed successfully.",
        }
        if receipt:
            stk["CallbackMetadata"] = {
                "Item": [
                    {"Name": "Amount", "Value": 20},
                    {"Name": "MpesaReceiptNumber", "Value": receipt},
                    {"Name": "PhoneNumber", "Value": 254712345678},
                ]
            }
        return {"Body": {"stkCallback": stk}}

    def test_list_packages(self):
        AccessPackage.objects.create(
            name="Retired", price=Decimal("5.00"), duration_minutes=10, is_active=False
        )
        response = self.client.get("/api/packages/")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["success"])
        self.assertEqual([p["name"] for p in response.data["packages"]], ["1 Hour"])

    def test_purchase_and_callback_flow(self):
        response = self.client.post(
            "/api/purchases/",
            {"package_id": self.package.pk, "phone_number": "0712345678", "mac_address": "aa-bb-cc-dd-ee-ff"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        payment_id = response.data["payment"]["id"]

        response = self.client.post(
            f"/api/payments/{payment_id}/checkout-reference/",
            {"checkout_request_id": "ws_1"},
            format="json",
            **self.admin_headers,
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.post(
            "/api/payments/callback/",
            self.callback_payload("ws_1", 0, receipt="QGR7XYZ1"),
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["payment_status"], "completed")
        self.assertEqual(response.data["session_status"], "active")
        self.assertTrue(response.data["authorization"]["authorized"])

        callback = PaymentCallback.objects.get()
        self.assertEqual(callback.processing_status, "processed")
        self.assertEqual(str(callback.payment_id), payment_id)

        response = self.client.get(f"/api/payments/{payment_id}/status/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["payment"]["receipt_number"], "QGR7XYZ1")
        self.assertRegex(response.data["payment"]["reconnection_code"], r"^\d{6}$")

        # Replay
        response = self.client.post(
            "/api/payments/callback/",
            self.callback_payload("ws_1", 0, receipt="QGR7XYZ1"),
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["message"], "Duplicate callback ignored")
        self.assertEqual(
            PaymentCallback.objects.filter(processing_status="ignored").count(), 1
        )

    def test_purchase_validation_error(self):
        response = self.client.post(
            "/api/purchases/",
            {"package_id": self.package.pk, "phone_number": "123", "mac_address": DEVICE},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.data["success"])
        self.assertEqual(response.data["code"], "invalid_request")
        self.assertIn("phone_number", response.data["errors"])

    def test_checkout_reference_requires_admin(self):
        _, payment = self.make_purchase("ws_1")
        response = self.client.post(
            f"/api/payments/{payment.pk}/checkout-reference/",
            {"checkout_request_id": "ws_2"},
            format="json",
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data["code"], "unauthorized")

    def test_callback_unknown_reference(self):
        response = self.client.post(
            "/api/payments/callback/", self.callback_payload("ws_missing", 0), format="json"
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "not_found")
        self.assertEqual(PaymentCallback.objects.get().processing_status, "ignored")

    def test_callback_malformed_payload(self):
        response = self.client.post("/api/payments/callback/", {"Body": {}}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(PaymentCallback.objects.get().processing_status, "failed")

    def test_callback_wrong_shapes_are_rejected_and_logged(self):
        """Non-dict stkCallback or list CallbackMetadata give 400, not a crash"""
        session, payment = self.make_purchase("ws_1")
        payloads = [
            {"Body": {"stkCallback": "oops"}},
            {
                "Body": {
                    "stkCallback": {
                        "CheckoutRequestID": "ws_1",
                        "ResultCode": 0,
                        "CallbackMetadata": [{"Name": "MpesaReceiptNumber"}],
                    }
                }
            },
            {
                "Body": {
                    "stkCallback": {
                        "CheckoutRequestID": "ws_1",
                        "ResultCode": 0,
                        "CallbackMetadata": {"Item": ["QGR7XYZ1"]},
                    }
                }
            },
        ]

        for payload in payloads:
            response = self.client.post("/api/payments/callback/", payload, format="json")
            self.assertEqual(response.status_code, 400)
            self.assertFalse(response.data["success"])
            self.assertEqual(response.data["code"], "invalid_request")

        logs = PaymentCallback.objects.all()
        self.assertEqual(logs.count(), 3)
        self.assertTrue(all(log.processing_status == "failed" for log in logs))
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_PENDING)
        session.refresh_from_db()
        self.assertEqual(session.status, Session.STATUS_PENDING)
        self.assertEqual(self.gateway.accepts, [])

    def test_payment_status_unknown(self):
        response = self.client.get(f"/api/payments/{uuid.uuid4()}/status/")
        self.assertEqual(response.status_code, 404)
        response = self.client.get("/api/payments/not-a-uuid/status/")
        self.assertEqual(response.status_code, 404)

    def test_voucher_redeem_endpoint(self):
        Voucher.objects.create(code="A1B2C3D4", package=self.package)
        payload = {"voucher_code": "a1b2c3d4", "mac_address": DEVICE}

        response = self.client.post("/api/vouchers/redeem/", payload, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["session"]["status"], "active")
        self.assertTrue(response.data["authorization"]["authorized"])

        response = self.client.post("/api/vouchers/redeem/", payload, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_or_used_code")
        self.assertFalse(response.data["success"])

    def test_reconnect_endpoint_device_mismatch(self):
        self.make_purchase("ws_1")
        activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")
        code = Payment.objects.get(checkout_request_id="ws_1").reconnection_code

        response = self.client.post(
            "/api/reconnect/",
            {"reconnection_code": code, "mac_address": OTHER_DEVICE},
            format="json",
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "device_mismatch")

        response = self.client.post(
            "/api/reconnect/",
            {"reconnection_code": code, "mac_address": DEVICE},
            format="json",
        )
        self.assertEqual(response.status_code, 200)

    def test_reconnect_endpoint_terminated(self):
        session, _ = self.make_purchase("ws_1")
        activate_from_payment("ws_1", 0, receipt_ref="QGR7XYZ1")
        code = Payment.objects.get(checkout_request_id="ws_1").reconnection_code
        revoke(session.pk)

        response = self.client.post(
            "/api/reconnect/", {"reconnection_code": code, "mac_address": DEVICE}, format="json"
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "already_terminated")

    def test_authorize_endpoint(self):
        session = self.make_active_session()

        response = self.client.post(f"/api/sessions/{session.pk}/authorize/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["authorized"])

        response = self.client.post("/api/sessions/not-a-uuid/authorize/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["authorized"])
        self.assertEqual(response.data["reason"], "no-such-session")
        self.assertIsNone(response.data["session"])

    def test_disconnect_endpoint(self):
        session = self.make_active_session()
        url = f"/api/sessions/{session.pk}/disconnect/"

        response = self.client.post(url, {"actor": "admin"}, format="json")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data["code"], "unauthorized")

        response = self.client.post(url, {"actor": "user", "mac_address": OTHER_DEVICE}, format="json")
        self.assertEqual(response.status_code, 403)

        response = self.client.post(url, {"actor": "admin"}, format="json", **self.admin_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["session"]["status"], "terminated")

        response = self.client.post(url, {"actor": "admin"}, format="json", **self.admin_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["message"], "Session already ended")
        self.assertEqual(self.gateway.disconnects, [DEVICE])

    def test_disconnect_unknown_session(self):
        response = self.client.post(
            f"/api/sessions/{uuid.uuid4()}/disconnect/",
            {"actor": "admin"},
            format="json",
            **self.admin_headers,
        )
        self.assertEqual(response.status_code, 404)

    def test_current_session(self):
        self.make_active_session()
        response = self.client.get("/api/sessions/current/", {"mac_address": "aa-bb-cc-dd-ee-ff"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["has_active_session"])

        response = self.client.get("/api/sessions/current/", {"mac_address": OTHER_DEVICE})
        self.assertFalse(response.data["has_active_session"])

    def test_admin_active_sessions(self):
        self.make_active_session()

        response = self.client.get("/api/admin/sessions/active/")
        self.assertEqual(response.status_code, 401)

        response = self.client.get("/api/admin/sessions/active/", **self.admin_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)

    def test_admin_sweep(self):
        self.make_active_session(expires_in=timedelta(seconds=-1))
        response = self.client.post("/api/admin/sessions/sweep/", {}, format="json", **self.admin_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["expired"], 1)

    def test_admin_generate_vouchers(self):
        payload = {"package_id": self.package.pk, "quantity": 3, "prefix": "NET"}

        response = self.client.post("/api/admin/vouchers/generate/", payload, format="json")
        self.assertEqual(response.status_code, 401)

        response = self.client.post(
            "/api/admin/vouchers/generate/", payload, format="json", **self.admin_headers
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(len(response.data["vouchers"]), 3)
        self.assertTrue(all(v["code"].startswith("NET") for v in response.data["vouchers"]))

        response = self.client.post(
            "/api/admin/vouchers/generate/", {"package_id": self.package.pk, "quantity": 500},
            format="json",
            **self.admin_headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_request")

    def test_admin_generate_vouchers_csv(self):
        response = self.client.post(
            "/api/admin/vouchers/generate/?export=csv",
            {"package_id": self.package.pk, "quantity": 2},
            format="json",
            **self.admin_headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        self.assertIn("Code,Package", response.content.decode())

    def test_staff_user_needs_no_admin_key(self):
        staff = User.objects.create_user("ops", password="pw-12345", is_staff=True)
        self.client.force_authenticate(user=staff)

        response = self.client.post(
            "/api/admin/vouchers/generate/",
            {"package_id": self.package.pk, "quantity": 1},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Voucher.objects.get().created_by, "ops")


class SeedPackagesCommandTest(TestCase):
    def test_seed_packages(self):
        call_command("seed_packages", stdout=io.StringIO())
        call_command("seed_packages", stdout=io.StringIO())
        self.assertEqual(AccessPackage.objects.count(), 5)
        self.assertTrue(AccessPackage.objects.filter(duration_minutes=180).exists())
