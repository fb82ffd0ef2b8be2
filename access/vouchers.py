"""
Voucher and reconnection code registries

Voucher codes are 8 characters from an alphabet without look-alike
characters (no 0/O, 1/I). Reconnection codes are 6 digits. Both are drawn
from `secrets` and must be unique across all issued codes.
"""

import csv
import io
import logging
import secrets
import string
import uuid

from django.conf import settings
from django.db import IntegrityError, transaction

from .exceptions import InvalidRequest, PackageNotFound
from .models import AccessPackage, Payment, Voucher
from .permissions import verify_admin_key

logger = logging.getLogger(__name__)

VOUCHER_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MAX_PREFIX_LENGTH = 4
MAX_CODE_ATTEMPTS = 10


def _random_string(alphabet, length):
    return "".join(secrets.choice(alphabet) for _ in range(length))


def normalize_code(code):
    return str(code or "").strip().upper()


def new_voucher_code(prefix=""):
    """Generate a voucher code not yet present in the store"""
    length = getattr(settings, "VOUCHER_CODE_LENGTH", 8)
    for _ in range(MAX_CODE_ATTEMPTS):
        code = prefix + _random_string(VOUCHER_ALPHABET, length - len(prefix))
        if not Voucher.objects.filter(code=code).exists():
            return code
    raise InvalidRequest("Could not generate a unique voucher code; try another prefix")


def new_reconnection_code():
    """Generate a numeric reconnection code not yet present in the store"""
    length = getattr(settings, "RECONNECTION_CODE_LENGTH", 6)
    for _ in range(MAX_CODE_ATTEMPTS):
        code = _random_string(string.digits, length)
        if not Payment.objects.filter(reconnection_code=code).exists():
            return code
    logger.error(f"Reconnection code space exhausted after {MAX_CODE_ATTEMPTS} attempts")
    raise InvalidRequest("Could not generate a unique reconnection code")


def _validate_prefix(prefix):
    prefix = normalize_code(prefix)
    if len(prefix) > MAX_PREFIX_LENGTH or (prefix and not prefix.isalnum()):
        raise InvalidRequest(
            f"Prefix must be at most {MAX_PREFIX_LENGTH} letters or digits"
        )
    if not prefix.isascii():
        raise InvalidRequest("Prefix must be ASCII")
    return prefix


def generate_vouchers(
    package_id, quantity, prefix="", admin_key=None, created_by="", admin_verified=False
):
    """
    Issue a batch of unused vouchers for a package.

    Args:
        package_id: AccessPackage primary key
        quantity: Number of vouchers (1..VOUCHER_MAX_BATCH)
        prefix: Optional 0-4 alphanumeric prefix, upper-cased
        admin_key: Shared admin secret
        created_by: Free-text issuer label stored on each voucher
        admin_verified: Caller already checked staff credentials

    Returns:
        list[Voucher]: The created vouchers, all sharing one batch_id

    Raises:
        Unauthorized: Bad admin key
        InvalidRequest: Quantity or prefix out of range
        PackageNotFound: Unknown package
    """
    if not admin_verified:
        verify_admin_key(admin_key)

    max_batch = getattr(settings, "VOUCHER_MAX_BATCH", 100)
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise InvalidRequest("Quantity must be a number")
    if quantity < 1 or quantity > max_batch:
        raise InvalidRequest(f"Quantity must be between 1 and {max_batch}")

    prefix = _validate_prefix(prefix)

    try:
        package = AccessPackage.objects.get(pk=package_id)
    except (AccessPackage.DoesNotExist, ValueError, TypeError):
        raise PackageNotFound()

    batch_id = f"BATCH-{uuid.uuid4().hex[:8].upper()}"
    vouchers = []

    with transaction.atomic():
        for _ in range(quantity):
            for _ in range(MAX_CODE_ATTEMPTS):
                code = new_voucher_code(prefix)
                try:
                    # Savepoint: a duplicate code rolls back this insert only
                    with transaction.atomic():
                        voucher = Voucher.objects.create(
                            code=code,
                            package=package,
                            batch_id=batch_id,
                            created_by=created_by or "",
                        )
                    vouchers.append(voucher)
                    break
                except IntegrityError:
                    logger.warning(f"Voucher code collision on {code}, regenerating")
            else:
                raise InvalidRequest("Could not generate unique voucher codes")

    logger.info(
        f"🎟️ Generated {len(vouchers)} vouchers for {package.name} (batch {batch_id})"
    )
    return vouchers


def vouchers_to_csv(vouchers):
    """Render vouchers as CSV text"""
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(
        [
            "Code",
            "Package",
            "Duration (Minutes)",
            "Status",
            "Batch ID",
            "Created At",
            "Used At",
        ]
    )

    for voucher in vouchers:
        writer.writerow(
            [
                voucher.code,
                voucher.package.name,
                voucher.package.duration_minutes,
                "Used" if voucher.status == Voucher.STATUS_USED else "Available",
                voucher.batch_id or "-",
                voucher.created_at.strftime("%Y-%m-%d %H:%M"),
                voucher.used_at.strftime("%Y-%m-%d %H:%M") if voucher.used_at else "-",
            ]
        )

    return output.getvalue()
