"""
Mauritanian mobile number validation.

Accepted forms are "+222XXXXXXXX" and the bare 8-digit national number.
"""
import re

COUNTRY_CODE = "+222"
NATIONAL_NUMBER_LENGTH = 8

# Operator prefixes (Mauritel, Mattel, Chinguitel)
VALID_FIRST_DIGITS = frozenset("2346")
VALID_PREFIXES = frozenset({
    "22", "23", "24", "26",
    "32", "33", "36", "37", "38", "39",
    "43", "44", "46", "47", "48", "49",
})

_SEPARATORS = re.compile(r"[\s\-()]")


def normalize_phone(phone: str) -> str:
    """Strip spaces, dashes and parentheses."""
    return _SEPARATORS.sub("", phone or "")


def national_number(phone: str) -> str | None:
    """Return the 8-digit national part, or None if the shape is wrong."""
    cleaned = normalize_phone(phone)
    if cleaned.startswith(COUNTRY_CODE):
        if len(cleaned) != len(COUNTRY_CODE) + NATIONAL_NUMBER_LENGTH:
            return None
        digits = cleaned[len(COUNTRY_CODE):]
    elif len(cleaned) == NATIONAL_NUMBER_LENGTH:
        digits = cleaned
    else:
        return None

    if not digits.isdigit() or not digits.isascii():
        return None
    return digits


def validate_mauritanian_mobile(phone: str) -> bool:
    digits = national_number(phone)
    if digits is None:
        return False

    if digits[0] not in VALID_FIRST_DIGITS:
        return False
    if digits[0] == "6":
        return True
    return digits[:2] in VALID_PREFIXES
