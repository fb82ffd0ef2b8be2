import logging
import os
import sys

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class AccessConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "access"
    verbose_name = "Captive Portal Access"

    def ready(self):
        """
        Starts the in-process expiry watcher for server processes when
        EXPIRY_WATCHER_ENABLED is set.
        """
        if not getattr(settings, "EXPIRY_WATCHER_ENABLED", False):
            return

        argv = sys.argv or [""]
        is_main_server = (
            "runserver" in argv
            or "gunicorn" in os.path.basename(argv[0])
            or os.environ.get("RUN_MAIN") == "true"
        )

        # Skip watcher for management commands (migrations, shell, tests, etc.)
        is_management_command = any(
            cmd in argv
            for cmd in [
                "migrate",
                "makemigrations",
                "shell",
                "dbshell",
                "collectstatic",
                "createsuperuser",
                "crontab",
                "test",
                "run_expiry_watcher",  # Don't auto-start if running the dedicated command
            ]
        )

        if is_main_server and not is_management_command:
            try:
                from .expiry_watcher import start_expiry_watcher

                start_expiry_watcher()
            except Exception as e:
                logger.warning(f"Could not start expiry watcher: {e}")
