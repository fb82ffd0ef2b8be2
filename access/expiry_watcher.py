"""
Session Expiry Watcher

Runs the expiry sweep on a fixed interval so elapsed sessions are cut off
within seconds instead of waiting for the per-minute cron job.

Usage:
    # As management command (recommended for production):
    python manage.py run_expiry_watcher

    # Or it auto-starts with Django via AppConfig.ready() when
    # EXPIRY_WATCHER_ENABLED=True
"""

import logging
import threading

from django.conf import settings
from django.db import connection

logger = logging.getLogger(__name__)


class ExpiryWatcher:
    """
    Background thread that calls sweep_expired_sessions() every interval.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        """Singleton pattern to ensure only one watcher runs per process"""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, interval=None):
        if self._initialized:
            if interval:
                self.interval = interval
            return

        self._initialized = True
        self._stop_event = threading.Event()
        self._thread = None
        self.interval = interval or getattr(
            settings, "EXPIRY_SWEEP_INTERVAL_SECONDS", 30
        )

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the watcher in a daemon thread"""
        if self.is_running:
            logger.warning("Expiry watcher is already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="expiry-watcher", daemon=True
        )
        self._thread.start()
        logger.info(f"🔍 Session Expiry Watcher started (every {self.interval}s)")

    def stop(self):
        """Stop the watcher"""
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        logger.info("Session Expiry Watcher stopped")

    def run_forever(self):
        """Sweep until stop() is called; usable directly from a foreground command"""
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval)

    def run_once(self):
        """Run a single sweep"""
        from .tasks import sweep_expired_sessions

        try:
            # Long-running threads must drop stale DB connections
            connection.close_if_unusable_or_obsolete()
            return sweep_expired_sessions()
        except Exception as e:
            logger.error(f"Error in expiry watcher loop: {e}")
            return {"success": False, "error": str(e)}


def get_watcher():
    """Get the process-wide watcher instance"""
    return ExpiryWatcher()


def start_expiry_watcher():
    """Start the expiry watcher (called from AppConfig.ready())"""
    watcher = get_watcher()
    watcher.start()
    return watcher
