"""Resource quantity parsing in the cluster's notation (``500m``, ``16Gi``, ``1e3``)."""

from __future__ import annotations

import math
import re
from fractions import Fraction

_FORMAT_ERROR = (
    "quantities must match the regular expression "
    "'^([+-]?[0-9.]+)([eEinumkKMGTP]*[-+]?[0-9]*)$'"
)
_SUFFIX_ERROR = "unable to parse quantity's suffix"

_NUMBER = re.compile(r"([+-]?)([0-9]*)(?:\.([0-9]*))?(.*)", re.DOTALL)
_EXPONENT = re.compile(r"[eE]([+-]?[0-9]+)")

_MULTIPLIERS: dict[str, Fraction] = {
    "Ki": Fraction(1024),
    "Mi": Fraction(1024**2),
    "Gi": Fraction(1024**3),
    "Ti": Fraction(1024**4),
    "Pi": Fraction(1024**5),
    "Ei": Fraction(1024**6),
    "n": Fraction(1, 10**9),
    "u": Fraction(1, 10**6),
    "m": Fraction(1, 10**3),
    "": Fraction(1),
    "k": Fraction(10**3),
    "M": Fraction(10**6),
    "G": Fraction(10**9),
    "T": Fraction(10**12),
    "P": Fraction(10**15),
    "E": Fraction(10**18),
}


def parse_quantity(text: str) -> Fraction:
    """Parse a quantity string into its exact numeric value."""
    match = _NUMBER.fullmatch(text)
    if match is None:
        raise ValueError(_FORMAT_ERROR)
    sign, whole, fraction, suffix = match.groups()
    fraction = fraction or ""
    if not whole and not fraction:
        raise ValueError(_FORMAT_ERROR)

    number = Fraction(int(whole or "0"))
    if fraction:
        number += Fraction(int(fraction), 10 ** len(fraction))
    if sign == "-":
        number = -number

    if suffix in _MULTIPLIERS:
        return number * _MULTIPLIERS[suffix]
    exponent = _EXPONENT.fullmatch(suffix)
    if exponent is None:
        raise ValueError(_SUFFIX_ERROR)
    return number * Fraction(10) ** int(exponent.group(1))


def convert_to_gi(value: Fraction | int) -> str:
    """Render a byte count as whole Gi, or whole Mi when below one Gi, rounding up."""
    byte_count = math.ceil(Fraction(value))
    gi_value = byte_count / 1024**3
    if gi_value < 1:
        return f"{math.ceil(gi_value * 1024)}Mi"
    return f"{math.ceil(gi_value)}Gi"