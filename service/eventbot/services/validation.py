"""
Input validation for the linking dialog.
"""

import re

# local@domain.tld: no whitespace or extra "@", at least one dot in the domain
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(value: str) -> str:
    return (value or "").strip()


def is_valid_email(value: str) -> bool:
    """
    Check email syntax.

    >>> is_valid_email("a@b.co")
    True
    >>> is_valid_email("a@b")
    False
    """
    if not value or not isinstance(value, str):
        return False
    return EMAIL_RE.match(value) is not None
