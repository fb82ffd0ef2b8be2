"""
Management command to issue a batch of vouchers and print them as CSV

Usage:
    python manage.py generate_vouchers --package 2 --quantity 50
    python manage.py generate_vouchers --package 2 --quantity 10 --prefix CAFE --output cafe.csv
"""

from django.core.management.base import BaseCommand, CommandError

from access.exceptions import AccessError
from access.vouchers import generate_vouchers, vouchers_to_csv


class Command(BaseCommand):
    help = "Generate single-use vouchers for a package and export them as CSV"

    def add_arguments(self, parser):
        parser.add_argument("--package", type=int, required=True, help="AccessPackage id")
        parser.add_argument("--quantity", type=int, required=True, help="Number of vouchers")
        parser.add_argument("--prefix", default="", help="Optional 1-4 character code prefix")
        parser.add_argument("--created-by", default="manage.py", help="Issuer label")
        parser.add_argument("--output", help="Write CSV to this file instead of stdout")

    def handle(self, *args, **options):
        try:
            vouchers = generate_vouchers(
                package_id=options["package"],
                quantity=options["quantity"],
                prefix=options["prefix"],
                created_by=options["created_by"],
                admin_verified=True,
            )
        except AccessError as e:
            raise CommandError(str(e.detail))

        csv_text = vouchers_to_csv(vouchers)

        if options["output"]:
            with open(options["output"], "w", newline="") as fh:
                fh.write(csv_text)
            self.stdout.write(
                self.style.SUCCESS(
                    f'✅ Generated {len(vouchers)} vouchers (batch {vouchers[0].batch_id}) -> {options["output"]}'
                )
            )
        else:
            self.stdout.write(csv_text)
