"""
Background tasks for the captive portal access core
Handles time-based expiry of sessions
"""

import logging

from django.utils import timezone

from .authorizer import END_EXPIRED_BY_SWEEP, expire
from .models import Session

logger = logging.getLogger(__name__)


def sweep_expired_sessions():
    """
    Expire active sessions whose time has elapsed.
    Runs from cron (every minute), the run_expiry_watcher loop or the
    in-process ExpiryWatcher.

    Each session goes through the same conditional transition as lazy expiry
    in authorize(), so a session already expired elsewhere is skipped and
    gets no second gateway disconnect. One failing session never aborts the
    batch.

    Returns:
        dict: success, expired (transitions made by this run), failed,
        total_checked
    """
    try:
        now = timezone.now()
        candidates = list(
            Session.objects.filter(
                status=Session.STATUS_ACTIVE, expires_at__lte=now
            ).values_list("pk", flat=True)
        )

        if candidates:
            logger.info(f"🔍 Found {len(candidates)} elapsed session(s) to expire")

        expired_count = 0
        failed_count = 0

        for session_id in candidates:
            try:
                if expire(session_id, reason=END_EXPIRED_BY_SWEEP):
                    expired_count += 1
            except Exception as e:
                failed_count += 1
                logger.error(f"Error expiring session {session_id}: {str(e)}")

        if expired_count or failed_count:
            logger.info(
                f"✅ Expiry sweep complete: {expired_count} expired, {failed_count} failed"
            )

        return {
            "success": True,
            "expired": expired_count,
            "failed": failed_count,
            "total_checked": len(candidates),
        }

    except Exception as e:
        logger.error(f"Error in sweep_expired_sessions task: {str(e)}")
        return {
            "success": False,
            "error": str(e),
            "expired": 0,
            "failed": 0,
            "total_checked": 0,
        }
