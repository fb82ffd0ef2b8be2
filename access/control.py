"""
Session control for administrators and end users
"""

import logging

from django.utils import timezone

from .authorizer import find_session, revoke
from .exceptions import DeviceMismatch, InvalidRequest, SessionNotFound
from .models import Session
from .permissions import verify_admin_key
from .utils import normalize_device_id

logger = logging.getLogger(__name__)

ACTOR_ADMIN = "admin"
ACTOR_USER = "user"
ACTOR_SYSTEM = "system"
ACTORS = (ACTOR_ADMIN, ACTOR_USER, ACTOR_SYSTEM)


def disconnect(session_id, device_id, actor, admin_key=None, admin_verified=False):
    """
    Force a session off the network.

    Admin and system actors need the admin key (or a caller that already
    verified staff credentials); a user may only disconnect a session bound
    to their own device. Disconnecting a terminal session acknowledges
    without side effects.

    Returns:
        dict: success, changed, session
    """
    if actor not in ACTORS:
        raise InvalidRequest(f"Unknown actor: {actor}")

    if actor in (ACTOR_ADMIN, ACTOR_SYSTEM) and not admin_verified:
        verify_admin_key(admin_key)

    session = find_session(session_id)
    if session is None:
        raise SessionNotFound()

    if actor == ACTOR_USER:
        try:
            requesting_device = normalize_device_id(device_id)
        except ValueError:
            raise DeviceMismatch()
        if requesting_device != session.device_id:
            raise DeviceMismatch()

    changed = revoke(session.pk, session.device_id, reason=f"{actor}-disconnect")
    session.refresh_from_db()

    if changed:
        logger.info(f"🔌 Session {session.pk} disconnected by {actor}")

    return {"success": True, "changed": changed, "session": session}


def list_active_sessions():
    """Active sessions that have not yet elapsed, soonest expiry first"""
    return (
        Session.objects.filter(
            status=Session.STATUS_ACTIVE, expires_at__gt=timezone.now()
        )
        .select_related("package")
        .order_by("expires_at")
    )


def current_session_for_device(device_id):
    """The device's active, unelapsed session, or None"""
    try:
        device_id = normalize_device_id(device_id)
    except ValueError as exc:
        raise InvalidRequest(str(exc))

    return (
        Session.objects.filter(
            device_id=device_id,
            status=Session.STATUS_ACTIVE,
            expires_at__gt=timezone.now(),
        )
        .select_related("package")
        .first()
    )
