"""
Management command to create or update the default access packages.

Usage:
    python manage.py seed_packages          # Create/update packages
    python manage.py seed_packages --reset  # Deactivate packages not in the list
"""

from django.core.management.base import BaseCommand

from access.models import AccessPackage

PACKAGES = [
    {
        "name": "Quick Browse",
        "price": 10,
        "duration_minutes": 30,
        "description": "30 minutes of browsing",
        "display_order": 1,
    },
    {
        "name": "1 Hour",
        "price": 20,
        "duration_minutes": 60,
        "description": "One hour of unlimited access",
        "display_order": 2,
    },
    {
        "name": "3 Hours",
        "price": 50,
        "duration_minutes": 180,
        "description": "Most popular",
        "display_order": 3,
    },
    {
        "name": "Day Pass",
        "price": 100,
        "duration_minutes": 1440,
        "description": "24 hours of access",
        "display_order": 4,
    },
    {
        "name": "Week Pass",
        "price": 500,
        "duration_minutes": 10080,
        "description": "7 days of access",
        "display_order": 5,
    },
]


class Command(BaseCommand):
    help = "Create or update the default access packages"

    def add_arguments(self, parser):
        parser.add_argument(
            "--reset",
            action="store_true",
            help="Deactivate every package not in the default list.",
        )

    def handle(self, *args, **options):
        names = [package["name"] for package in PACKAGES]

        if options["reset"]:
            # Packages referenced by vouchers cannot be deleted
            retired = (
                AccessPackage.objects.exclude(name__in=names).update(is_active=False)
            )
            self.stdout.write(self.style.WARNING(f"Deactivated {retired} package(s)."))

        for package_data in PACKAGES:
            package, created = AccessPackage.objects.update_or_create(
                name=package_data["name"],
                defaults={**package_data, "is_active": True},
            )
            action = "Created" if created else "Updated"
            self.stdout.write(
                self.style.SUCCESS(
                    f"  {action}: {package.name} | {package.currency} {package.price} "
                    f"for {package.duration_minutes} min"
                )
            )

        self.stdout.write(self.style.SUCCESS("\n✅ All access packages ready."))
