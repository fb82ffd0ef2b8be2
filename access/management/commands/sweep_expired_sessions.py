"""
Django management command to expire elapsed sessions
Run with: python manage.py sweep_expired_sessions
"""

from django.core.management.base import BaseCommand

from access.tasks import sweep_expired_sessions


class Command(BaseCommand):
    help = "Expire sessions whose time has elapsed and disconnect them at the gateway"

    def handle(self, *args, **options):
        self.stdout.write("Checking for elapsed sessions...")

        result = sweep_expired_sessions()

        if result["success"]:
            self.stdout.write(
                self.style.SUCCESS(f'✓ Expired {result["expired"]} session(s)')
            )
            if result["failed"] > 0:
                self.stdout.write(
                    self.style.WARNING(f'⚠ Failed to process {result["failed"]} session(s)')
                )
            self.stdout.write(f'  Total sessions checked: {result["total_checked"]}')
        else:
            self.stdout.write(
                self.style.ERROR(f'✗ Error: {result.get("error", "Unknown error")}')
            )

        self.stdout.write("\nDone!")
