"""Helpers for Chilean RUT numbers (``12.345.678-5``).

The SII endpoints take the number and the check digit ("DV") as separate
fields, so most callers only need :func:`split_rut`.
"""
import re
from typing import Tuple

_RUT_RE = re.compile(r"^(\d{1,9})-?([\dkK])$")


def compute_check_digit(number: int | str) -> str:
    """Modulo-11 check digit: ``"0"``-``"9"`` or ``"K"``."""
    digits = str(int(str(number).replace(".", "")))
    total = 0
    factor = 2
    for digit in reversed(digits):
        total += int(digit) * factor
        factor = 2 if factor == 7 else factor + 1
    value = 11 - (total % 11)
    if value == 11:
        return "0"
    if value == 10:
        return "K"
    return str(value)


def split_rut(rut: str) -> Tuple[str, str]:
    """Return ``(number, dv)`` after validating the check digit."""
    cleaned = rut.replace(".", "").replace(" ", "").strip()
    match = _RUT_RE.match(cleaned)
    if not match:
        raise ValueError(f"Invalid RUT format: {rut!r}")
    number, dv = match.group(1), match.group(2).upper()
    expected = compute_check_digit(number)
    if dv != expected:
        raise ValueError(f"Invalid RUT check digit for {rut!r}: expected {expected}")
    return str(int(number)), dv


def is_valid_rut(rut: str) -> bool:
    try:
        split_rut(rut)
    except ValueError:
        return False
    return True


def format_rut(number: int | str, dv: str | None = None) -> str:
    number = str(int(str(number).replace(".", "")))
    return f"{number}-{(dv or compute_check_digit(number)).upper()}"
