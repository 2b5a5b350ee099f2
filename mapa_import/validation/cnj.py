from __future__ import annotations

import re

"""CNJ process-number checksum (Resolução CNJ 65/2008 layout).

Canonical form is 20 digits: NNNNNNN DD AAAA J TR OOOO
(sequential, check digits, year, justice segment, tribunal, origin).
Everything here is pure and free of I/O.
"""

__all__ = [
    "CNJ_LENGTH",
    "check_digits",
    "is_valid",
    "only_digits",
    "format_cnj",
    "body_of",
    "with_check_digits",
]

CNJ_LENGTH = 20
BODY_LENGTH = 18
WEIGHTS = (2, 3, 4, 5, 6, 7, 8, 9)

_DIGITS_RE = re.compile(r"[0-9]+")
_NON_DIGIT_RE = re.compile(r"[^0-9]")


def only_digits(value: object) -> str:
    if value is None:
        return ""
    return _NON_DIGIT_RE.sub("", str(value))


def check_digits(body: str) -> str:
    """Compute the two check digits for an 18-digit body.

    The body is sequential(7) + year(4) + segment(1) + tribunal(2) + origin(4).
    Each digit, left to right, is multiplied by the cyclic weights 2..9; the
    check pair is 98 - (sum mod 97), zero padded.
    """
    if len(body) != BODY_LENGTH or not _DIGITS_RE.fullmatch(body):
        raise ValueError(f"CNJ body must have exactly {BODY_LENGTH} digits: {body!r}")
    total = sum(int(d) * WEIGHTS[i % len(WEIGHTS)] for i, d in enumerate(body))
    return f"{98 - (total % 97):02d}"


def body_of(full: str) -> str:
    """18 non-check digits of a 20-digit CNJ, in checksum order."""
    return full[:7] + full[9:]


def with_check_digits(body: str) -> str:
    """Assemble the 20-digit CNJ for an 18-digit body."""
    return body[:7] + check_digits(body) + body[7:]


def is_valid(full: str) -> bool:
    if not isinstance(full, str) or len(full) != CNJ_LENGTH or not _DIGITS_RE.fullmatch(full):
        return False
    return full[7:9] == check_digits(body_of(full))


def format_cnj(full: str) -> str:
    """NNNNNNN-DD.AAAA.J.TR.OOOO, or the input unchanged if not 20 digits."""
    digits = only_digits(full)
    if len(digits) != CNJ_LENGTH:
        return full
    return f"{digits[0:7]}-{digits[7:9]}.{digits[9:13]}.{digits[13]}.{digits[14:16]}.{digits[16:20]}"
