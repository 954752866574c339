"""Address canonicalization shared by every entry point.

Addresses arrive as bare phone numbers typed by an operator, as formatted
numbers with country codes and punctuation, or as full channel addresses
(``<digits>@s.whatsapp.net``). All of them collapse to one canonical key.
"""

import re
from typing import Any, Optional

from schedulink.config import settings

DOMAIN_MARKER = "@"


class InvalidAddress(ValueError):
    """Raised when a raw address cannot be canonicalized."""


def canonicalize_address(
    raw: Any,
    domain_suffix: Optional[str] = None,
    min_digits: Optional[int] = None,
) -> str:
    """Map any accepted address encoding to its canonical key.

    Examples:
        >>> canonicalize_address("+90 555 123 45 67")
        '905551234567@s.whatsapp.net'
        >>> canonicalize_address("905551234567@g.us")
        '905551234567@g.us'
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidAddress("Invalid address: must be a non-empty string")

    value = raw.strip()
    if DOMAIN_MARKER in value:
        return value

    suffix = domain_suffix if domain_suffix is not None else settings.address.domain_suffix
    required = min_digits if min_digits is not None else settings.address.min_digits

    digits = re.sub(r"[^\d]", "", value)
    if len(digits) < required:
        raise InvalidAddress(
            f"Invalid phone number: must be at least {required} digits"
        )
    return digits + suffix


def address_to_phone(key: str) -> str:
    """Render a canonical key as a dialable number for operator messages.

    Examples:
        >>> address_to_phone("905551234567@s.whatsapp.net")
        '+905551234567'
    """
    local = key.split(DOMAIN_MARKER, 1)[0]
    digits = re.sub(r"[^\d]", "", local)
    return f"+{digits}" if digits else local
