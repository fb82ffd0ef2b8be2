"""
Entitlement sources

Three independent triggers turn into an active Session:
  - payment completion (mobile-money callback)
  - voucher redemption
  - reconnection-code redemption

Each one mutates the store inside a transaction using conditional updates
on the expected prior status, then calls authorize() once the transaction
is done. A trigger that loses a race against another writer sees 0 rows
updated and backs off without side effects.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from .authorizer import END_SUPERSEDED, authorize
from .exceptions import (
    AlreadyTerminated,
    DeviceMismatch,
    InvalidOrUsedCode,
    InvalidRequest,
    PackageNotFound,
    PaymentNotFound,
    SessionExpired,
)
from .models import AccessPackage, Payment, Session, Voucher
from .utils import normalize_device_id, normalize_phone_number
from .vouchers import new_reconnection_code, normalize_code

logger = logging.getLogger(__name__)

# M-Pesa STK result codes
RESULT_SUCCESS = 0
RESULT_USER_UNREACHABLE = 1037

MAX_ACTIVATION_ATTEMPTS = 3
MAX_CODE_ATTEMPTS = 5


def _clean_device_id(device_id):
    try:
        return normalize_device_id(device_id)
    except ValueError as exc:
        raise InvalidRequest(str(exc))


def _access_duration(package):
    if package is not None:
        return timedelta(minutes=package.duration_minutes)
    return timedelta(minutes=getattr(settings, "DEFAULT_ACCESS_MINUTES", 60))


def _supersede_other_sessions(device_id, keep_session_id, now):
    """
    Terminate every other active session on the device. No disconnect is
    sent: the accept for the new session targets the same device.
    """
    superseded = (
        Session.objects.filter(device_id=device_id, status=Session.STATUS_ACTIVE)
        .exclude(pk=keep_session_id)
        .update(
            status=Session.STATUS_TERMINATED,
            ended_at=now,
            end_reason=END_SUPERSEDED,
            updated_at=now,
        )
    )
    if superseded:
        logger.info(f"Superseded {superseded} active session(s) on {device_id}")
    return superseded


def _activate_session(session, now):
    """
    pending -> active with expires_at = now + package duration, in the
    caller's transaction.

    Returns:
        bool: True if this call activated the session
    """
    expires_at = now + _access_duration(session.package)

    for attempt in range(MAX_ACTIVATION_ATTEMPTS):
        try:
            with transaction.atomic():
                _supersede_other_sessions(session.device_id, session.pk, now)
                updated = Session.objects.filter(
                    pk=session.pk, status=Session.STATUS_PENDING
                ).update(
                    status=Session.STATUS_ACTIVE,
                    activated_at=now,
                    expires_at=expires_at,
                    updated_at=now,
                )
            break
        except IntegrityError:
            # A concurrent activation on the same device committed first
            logger.warning(
                f"Activation of session {session.pk} collided on {session.device_id} "
                f"(attempt {attempt + 1}), retrying"
            )
    else:
        raise InvalidRequest("Could not activate session; please retry")

    if updated:
        logger.info(
            f"✅ Session {session.pk} active for {session.device_id} until {expires_at}"
        )
    return updated == 1


def start_purchase(package_id, device_id, phone_number):
    """
    Create a pending Session and its pending Payment for a package.

    The push-payment collaborator initiates the STK push afterwards and
    records its checkout reference via record_checkout_reference().
    """
    try:
        package = AccessPackage.objects.get(pk=package_id, is_active=True)
    except (AccessPackage.DoesNotExist, ValueError, TypeError):
        raise PackageNotFound()

    device_id = _clean_device_id(device_id)
    try:
        phone_number = normalize_phone_number(phone_number)
    except ValueError as exc:
        raise InvalidRequest(str(exc))

    with transaction.atomic():
        session = Session.objects.create(
            device_id=device_id,
            phone_number=phone_number,
            package=package,
            source=Session.SOURCE_PAYMENT,
        )
        payment = Payment.objects.create(
            session=session,
            amount=package.price,
            phone_number=phone_number,
        )

    logger.info(
        f"💳 Purchase started: {phone_number} on {device_id} for {package.name} "
        f"(payment {payment.id})"
    )
    return {"success": True, "session": session, "payment": payment}


def record_checkout_reference(payment_id, checkout_ref):
    """Attach the push-payment checkout reference to a pending payment, once"""
    checkout_ref = str(checkout_ref or "").strip()
    if not checkout_ref:
        raise InvalidRequest("Checkout reference is required")

    try:
        payment = Payment.objects.get(pk=payment_id)
    except (Payment.DoesNotExist, ValidationError, ValueError):
        raise PaymentNotFound()

    if payment.checkout_request_id == checkout_ref:
        return payment
    if payment.checkout_request_id:
        raise InvalidRequest("Payment already has a checkout reference")

    try:
        with transaction.atomic():
            updated = Payment.objects.filter(
                pk=payment.pk,
                status=Payment.STATUS_PENDING,
                checkout_request_id__isnull=True,
            ).update(checkout_request_id=checkout_ref, updated_at=timezone.now())
    except IntegrityError:
        raise InvalidRequest("Checkout reference already in use")

    if not updated:
        raise InvalidRequest("Payment is no longer pending")

    payment.refresh_from_db()
    logger.info(f"Recorded checkout reference {checkout_ref} for payment {payment.id}")
    return payment


def activate_from_payment(checkout_ref, result_code, receipt_ref=None, result_description=""):
    """
    Apply a payment callback.

    result_code 0 completes the payment (issuing a reconnection code) and
    activates its session; 1037 expires it; anything else fails it. A replay
    against an already terminal payment changes nothing.

    Returns:
        dict: success, changed, payment, session, authorization (None unless
        this call activated the session)

    Raises:
        PaymentNotFound: Unknown checkout reference
        InvalidRequest: Non-numeric result code
    """
    checkout_ref = str(checkout_ref or "").strip()
    payment = (
        Payment.objects.select_related("session", "session__package")
        .filter(checkout_request_id=checkout_ref)
        .first()
        if checkout_ref
        else None
    )
    if payment is None:
        logger.warning(f"Payment callback for unknown checkout reference {checkout_ref!r}")
        raise PaymentNotFound()

    try:
        result_code = int(result_code)
    except (TypeError, ValueError):
        raise InvalidRequest(f"Invalid result code: {result_code!r}")

    session = payment.session
    now = timezone.now()

    if result_code != RESULT_SUCCESS:
        new_status = (
            Payment.STATUS_EXPIRED
            if result_code == RESULT_USER_UNREACHABLE
            else Payment.STATUS_FAILED
        )
        changed = Payment.objects.filter(
            pk=payment.pk, status=Payment.STATUS_PENDING
        ).update(
            status=new_status,
            result_code=result_code,
            result_description=result_description or "",
            updated_at=now,
        )
        payment.refresh_from_db()
        if changed:
            logger.info(
                f"❌ Payment {payment.id} {new_status} (code {result_code}: {result_description})"
            )
        else:
            logger.info(f"Payment {payment.id} already {payment.status}, callback ignored")
        return {
            "success": True,
            "changed": bool(changed),
            "payment": payment,
            "session": session,
            "authorization": None,
        }

    with transaction.atomic():
        changed = 0
        for _ in range(MAX_CODE_ATTEMPTS):
            code = new_reconnection_code()
            try:
                with transaction.atomic():
                    changed = Payment.objects.filter(
                        pk=payment.pk, status=Payment.STATUS_PENDING
                    ).update(
                        status=Payment.STATUS_COMPLETED,
                        receipt_number=receipt_ref or "",
                        result_code=result_code,
                        result_description=result_description or "",
                        reconnection_code=code,
                        completed_at=now,
                        updated_at=now,
                    )
                break
            except IntegrityError:
                logger.warning(f"Reconnection code collision for payment {payment.id}, regenerating")
        else:
            raise InvalidRequest("Could not issue a reconnection code; please retry")

        activated = False
        if changed:
            # A session terminated while the push was outstanding stays terminated
            activated = _activate_session(session, now)

    payment.refresh_from_db()

    if not changed:
        logger.info(f"Duplicate success callback for payment {payment.id}, no-op")
        return {
            "success": True,
            "changed": False,
            "payment": payment,
            "session": session,
            "authorization": None,
        }

    logger.info(
        f"✅ Payment {payment.id} completed (receipt {payment.receipt_number}), "
        f"reconnection code issued"
    )

    authorization = None
    if activated:
        authorization = authorize(session.pk)
    else:
        logger.warning(
            f"Payment {payment.id} completed but session {session.pk} was not pending"
        )
    session.refresh_from_db()

    return {
        "success": True,
        "changed": True,
        "payment": payment,
        "session": session,
        "authorization": authorization,
    }


def redeem_voucher(code, device_id, phone_number=""):
    """
    Consume an unused voucher and start its session on the device.

    Raises:
        InvalidOrUsedCode: Code unknown or already used (indistinguishable)
        InvalidRequest: Malformed device id or phone number
    """
    code = normalize_code(code)
    device_id = _clean_device_id(device_id)
    if phone_number:
        try:
            phone_number = normalize_phone_number(phone_number)
        except ValueError as exc:
            raise InvalidRequest(str(exc))

    if not code:
        raise InvalidOrUsedCode()

    now = timezone.now()
    with transaction.atomic():
        voucher = (
            Voucher.objects.select_related("package")
            .filter(code=code, status=Voucher.STATUS_UNUSED)
            .first()
        )
        if voucher is None:
            raise InvalidOrUsedCode()

        consumed = Voucher.objects.filter(
            pk=voucher.pk, status=Voucher.STATUS_UNUSED
        ).update(status=Voucher.STATUS_USED, used_at=now, updated_at=now)
        if consumed != 1:
            raise InvalidOrUsedCode()

        session = Session.objects.create(
            device_id=device_id,
            phone_number=phone_number or "",
            package=voucher.package,
            source=Session.SOURCE_VOUCHER,
        )
        _activate_session(session, now)
        Voucher.objects.filter(pk=voucher.pk).update(session=session)

    logger.info(f"🎟️ Voucher {code} redeemed on {device_id} (session {session.pk})")

    authorization = authorize(session.pk)
    session.refresh_from_db()

    return {
        "success": True,
        "session": session,
        "package": voucher.package,
        "authorization": authorization,
    }


def redeem_reconnection_code(code, device_id):
    """
    Re-authorize the session of a completed payment from the same device.

    The code is consumed only when the session can still grant access; on
    any error the transaction rolls back and the code stays unused.

    Raises:
        InvalidOrUsedCode: No completed payment with this unused code
        DeviceMismatch: Code belongs to another device
        AlreadyTerminated: Session was disconnected
        SessionExpired: Session time has elapsed
    """
    code = str(code or "").strip()
    device_id = _clean_device_id(device_id)
    if not code:
        raise InvalidOrUsedCode()

    payment = (
        Payment.objects.select_related("session", "session__package")
        .filter(
            reconnection_code=code,
            status=Payment.STATUS_COMPLETED,
            reconnection_code_used=False,
        )
        .first()
    )
    if payment is None:
        raise InvalidOrUsedCode()

    if payment.session.device_id != device_id:
        logger.warning(
            f"Reconnection code for session {payment.session_id} presented by "
            f"{device_id}, bound to {payment.session.device_id}"
        )
        raise DeviceMismatch()

    now = timezone.now()
    with transaction.atomic():
        consumed = Payment.objects.filter(
            pk=payment.pk, reconnection_code_used=False
        ).update(reconnection_code_used=True, updated_at=now)
        if consumed != 1:
            raise InvalidOrUsedCode()

        session = Session.objects.select_related("package").get(pk=payment.session_id)

        if session.status == Session.STATUS_TERMINATED:
            raise AlreadyTerminated()
        if session.status == Session.STATUS_EXPIRED:
            raise SessionExpired()
        if session.status == Session.STATUS_PENDING:
            if not _activate_session(session, now):
                raise AlreadyTerminated()
        elif session.expires_at is None or session.expires_at <= now:
            raise SessionExpired()

    logger.info(f"🔁 Reconnection code used for session {session.pk} on {device_id}")

    authorization = authorize(session.pk)
    session.refresh_from_db()

    return {"success": True, "session": session, "authorization": authorization}
