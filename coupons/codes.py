import re
import secrets
import string
from typing import Callable

from ledger.errors import InvalidCodeError


ALPHABET = string.ascii_uppercase + string.digits
LIFETIME_PREFIX = "LIFETIME-"

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,32}$")

CodeGenerator = Callable[[int], str]


def generate_code(length: int) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    """Codes are compared case-insensitively; the stored form is uppercase."""
    normalized = (code or "").strip().upper()
    if not CODE_PATTERN.match(normalized):
        raise InvalidCodeError(
            f"Invalid coupon code {code!r}: use 3-32 letters, digits, '-' or '_'"
        )
    return normalized
