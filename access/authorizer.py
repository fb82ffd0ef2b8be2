"""
Session Authorizer

Single decision point for "should this device have network access right now"
and the only code that emits accept/disconnect directives to the gateway.

Status transitions are conditional updates guarded by the expected prior
status, so when authorize() lazy expiry, the sweeper and a disconnect race on
one session exactly one writer performs the transition. Only that writer
sends the gateway disconnect.
"""

import logging

from django.core.exceptions import ValidationError
from django.utils import timezone

from .exceptions import DeviceMismatch, GatewayUnreachable
from .gateway import get_gateway
from .models import AccessLog, Payment, Session
from .utils import normalize_device_id

logger = logging.getLogger(__name__)

# Deny reasons
REASON_NO_SUCH_SESSION = "no-such-session"
REASON_NOT_COMPLETED = "not-completed"
REASON_EXPIRED = "expired"
REASON_ALREADY_TERMINATED = "already-terminated"
REASON_DEVICE_MISMATCH = "device-mismatch"

# End reasons recorded on the session
END_EXPIRED_ON_AUTHORIZE = "expired-on-authorize"
END_EXPIRED_BY_SWEEP = "expired-by-sweep"
END_SUPERSEDED = "superseded"


def _deny(reason, session=None):
    return {
        "authorized": False,
        "reason": reason,
        "remaining_seconds": 0,
        "session": session,
    }


def _log_event(session, device_id, event, granted=False, reason="", delivered=False):
    AccessLog.objects.create(
        session=session,
        device_id=device_id or "",
        event=event,
        granted=granted,
        reason=reason,
        gateway_delivered=delivered,
    )


def _send_accept(device_id, remaining_seconds):
    """Best-effort accept; returns True when the gateway confirmed"""
    try:
        get_gateway().send_accept(device_id, remaining_seconds)
        return True
    except GatewayUnreachable as exc:
        logger.warning(f"Gateway accept failed for {device_id}: {exc.detail}")
        return False


def _send_disconnect(device_id):
    """Best-effort disconnect; returns True when the gateway confirmed"""
    try:
        get_gateway().send_disconnect(device_id)
        return True
    except GatewayUnreachable as exc:
        logger.warning(f"Gateway disconnect failed for {device_id}: {exc.detail}")
        return False


def find_session(session_id):
    """Look up a session by id; malformed ids are treated as missing"""
    try:
        return Session.objects.select_related("package").filter(pk=session_id).first()
    except (ValidationError, ValueError):
        return None


def _transition(session_id, from_statuses, to_status, reason, **guards):
    """
    Compare-and-set the session status. Returns True only when this call
    performed the transition.
    """
    now = timezone.now()
    updated = Session.objects.filter(
        pk=session_id, status__in=from_statuses, **guards
    ).update(status=to_status, ended_at=now, end_reason=reason, updated_at=now)
    return updated == 1


def authorize(session_id, device_id=None):
    """
    Decide whether the session currently grants access and forward the
    decision to the gateway.

    Returns:
        dict: authorized, reason (None on grant), remaining_seconds, session
    """
    session = find_session(session_id)
    if session is None:
        logger.info(f"Authorization denied: no session {session_id}")
        return _deny(REASON_NO_SUCH_SESSION)

    if device_id:
        try:
            requested_device = normalize_device_id(device_id)
        except ValueError:
            requested_device = None
        if requested_device != session.device_id:
            logger.warning(
                f"Authorization denied for session {session.id}: device {device_id} "
                f"does not match {session.device_id}"
            )
            _log_event(session, device_id, AccessLog.EVENT_AUTHORIZE, reason=REASON_DEVICE_MISMATCH)
            return _deny(REASON_DEVICE_MISMATCH, session)

    device_id = session.device_id

    if session.status == Session.STATUS_TERMINATED:
        reason = REASON_ALREADY_TERMINATED
    elif session.status == Session.STATUS_EXPIRED:
        reason = REASON_EXPIRED
    elif session.status == Session.STATUS_PENDING:
        reason = REASON_NOT_COMPLETED
    elif (
        session.requires_payment
        and not Payment.objects.filter(
            session=session, status=Payment.STATUS_COMPLETED
        ).exists()
    ):
        reason = REASON_NOT_COMPLETED
    elif session.expires_at is None or session.expires_at <= timezone.now():
        # Lazy expiry; the sweeper may win the race, in which case this is a no-op
        reason = REASON_EXPIRED
        if _transition(
            session.pk, [Session.STATUS_ACTIVE], Session.STATUS_EXPIRED, END_EXPIRED_ON_AUTHORIZE
        ):
            logger.info(f"Session {session.id} expired on authorize ({device_id})")
            delivered = _send_disconnect(device_id)
            _log_event(session, device_id, AccessLog.EVENT_EXPIRE, reason=END_EXPIRED_ON_AUTHORIZE, delivered=delivered)
        session.refresh_from_db()
    else:
        reason = None

    if reason:
        logger.info(f"Authorization denied for session {session.id}: {reason}")
        _log_event(session, device_id, AccessLog.EVENT_AUTHORIZE, reason=reason)
        return _deny(reason, session)

    # At least one second so a sub-second remainder never reads as "no limit"
    remaining = max(session.remaining_seconds(), 1)
    delivered = _send_accept(device_id, remaining)
    _log_event(session, device_id, AccessLog.EVENT_AUTHORIZE, granted=True, delivered=delivered)
    logger.info(f"Authorized session {session.id} for {device_id}: {remaining}s remaining")

    return {
        "authorized": True,
        "reason": None,
        "remaining_seconds": remaining,
        "session": session,
    }


def revoke(session_id, device_id=None, reason="admin"):
    """
    Terminate a session (admin / user / system initiated).

    Idempotent: revoking an already terminated or expired session is a no-op.
    The local record is authoritative; a gateway failure is logged only.

    Returns:
        bool: True if this call performed the transition

    Raises:
        DeviceMismatch: device_id given and not the session's device
    """
    session = find_session(session_id)
    if session is None:
        return False

    if device_id is not None:
        try:
            requested_device = normalize_device_id(device_id)
        except ValueError:
            requested_device = None
        if requested_device != session.device_id:
            logger.warning(
                f"Revoke of session {session.id} refused: device {device_id} "
                f"does not match {session.device_id}"
            )
            raise DeviceMismatch()

    changed = _transition(
        session.pk,
        [Session.STATUS_PENDING, Session.STATUS_ACTIVE],
        Session.STATUS_TERMINATED,
        reason,
    )
    if not changed:
        logger.info(f"Revoke of session {session.id} is a no-op (already {session.status})")
        return False

    delivered = _send_disconnect(session.device_id)
    _log_event(session, session.device_id, AccessLog.EVENT_DISCONNECT, reason=reason, delivered=delivered)
    logger.info(f"Session {session.id} terminated ({reason}) for {session.device_id}")
    return True


def expire(session_id, reason=END_EXPIRED_BY_SWEEP):
    """
    Time-based revocation: active -> expired.

    Returns:
        bool: True if this call performed the transition
    """
    session = find_session(session_id)
    if session is None:
        return False

    if not _transition(
        session.pk,
        [Session.STATUS_ACTIVE],
        Session.STATUS_EXPIRED,
        reason,
        expires_at__lte=timezone.now(),
    ):
        return False

    delivered = _send_disconnect(session.device_id)
    _log_event(session, session.device_id, AccessLog.EVENT_EXPIRE, reason=reason, delivered=delivered)
    logger.info(f"Session {session.id} expired ({reason}) for {session.device_id}")
    return True
