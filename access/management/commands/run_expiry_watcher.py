"""
Management command to run the Session Expiry Watcher

Usage:
    python manage.py run_expiry_watcher

    # For production (run as a service):
    python manage.py run_expiry_watcher --interval 15  # Check every 15 seconds

Options:
    --interval: Check interval in seconds (default: EXPIRY_SWEEP_INTERVAL_SECONDS)
    --once: Run once and exit (for cron-like usage)
"""

import signal

from django.conf import settings
from django.core.management.base import BaseCommand


class Command(BaseCommand):
    help = "Run the session expiry watcher to expire and disconnect elapsed sessions"

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval",
            type=int,
            default=None,
            help="Check interval in seconds (default: EXPIRY_SWEEP_INTERVAL_SECONDS)",
        )
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run once and exit (useful for cron)",
        )

    def handle(self, *args, **options):
        from access.expiry_watcher import ExpiryWatcher

        interval = options["interval"] or getattr(
            settings, "EXPIRY_SWEEP_INTERVAL_SECONDS", 30
        )
        run_once = options["once"]

        self.stdout.write(
            self.style.SUCCESS(
                f"\n🔍 Session Expiry Watcher\n"
                f"========================\n"
                f"Check interval: {interval} seconds\n"
                f'Mode: {"Single run" if run_once else "Continuous monitoring"}\n'
            )
        )

        watcher = ExpiryWatcher(interval=interval)

        if run_once:
            self.stdout.write("Running single expiry check...\n")
            result = watcher.run_once()
            if result.get("success"):
                self.stdout.write(
                    self.style.SUCCESS(
                        f'✅ Check complete: {result["expired"]} expired, '
                        f'{result["failed"]} failed, {result["total_checked"]} checked\n'
                    )
                )
            else:
                self.stdout.write(
                    self.style.ERROR(f'✗ Error: {result.get("error", "Unknown error")}\n')
                )
            return

        # Graceful shutdown on SIGTERM (service stop); Ctrl+C arrives as KeyboardInterrupt
        def signal_handler(signum, frame):
            self.stdout.write(
                self.style.WARNING("\n\n⚠️  Shutdown signal received, stopping watcher...\n")
            )
            watcher.stop()

        signal.signal(signal.SIGTERM, signal_handler)

        self.stdout.write(
            self.style.SUCCESS("🚀 Starting expiry watcher... Press Ctrl+C to stop\n\n")
        )

        try:
            watcher.run_forever()
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING("\n\n⚠️  Keyboard interrupt, stopping...\n"))
        finally:
            self.stdout.write(self.style.SUCCESS("✅ Watcher stopped\n"))
