"""
Utility functions for the access core
"""

import re

from django.conf import settings

MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}([:-]?)(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$")


def normalize_phone_number(phone_number):
    """
    Normalize phone number to MSISDN format (254XXXXXXXXX by default)

    Handles formats like:
    - +254712345678 -> 254712345678
    - 254712345678 -> 254712345678
    - 0712345678 -> 254712345678
    - 712345678 -> 254712345678

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone_number:
        raise ValueError("Phone number cannot be empty")

    country_code = getattr(settings, "PHONE_COUNTRY_CODE", "254")

    # Remove all non-numeric characters (spaces, dashes, leading +)
    phone = "".join(c for c in str(phone_number) if c.isdigit())

    if phone.startswith(country_code):
        if len(phone) == len(country_code) + 9:
            return phone
        raise ValueError(f"Invalid phone number format: {phone_number}")

    elif phone.startswith("0"):
        # Local format 07XXXXXXXX / 01XXXXXXXX
        if len(phone) == 10:
            return country_code + phone[1:]
        raise ValueError(f"Invalid local phone number format: {phone_number}")

    elif len(phone) == 9:
        # Local number without 0 prefix (7XXXXXXXX)
        return country_code + phone

    raise ValueError(f"Unrecognized phone number format: {phone_number}")


def normalize_device_id(device_id):
    """
    Normalize a device identifier.

    MAC addresses (with ':' / '-' / no separators) become upper-case
    colon-separated; any other fingerprint string is only stripped.

    Raises:
        ValueError: If the identifier is empty
    """
    value = str(device_id or "").strip()
    if not value:
        raise ValueError("Device identifier cannot be empty")

    if MAC_RE.match(value):
        hex_digits = re.sub(r"[^0-9A-Fa-f]", "", value).upper()
        return ":".join(hex_digits[i : i + 2] for i in range(0, 12, 2))
    return value


def get_client_ip(request):
    """Extract the client IP, honouring X-Forwarded-For from the portal proxy"""
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR")
