"""Unit helpers (byte sizes for thresholds and alignment)."""

from __future__ import annotations

import re
from typing import Union

from .errors import InvalidConfigError

# Multipliers for memory sizes (value * UNIT_MULT[unit] -> bytes)

UNIT_MULT = {
    "bytes": 1,
    "B": 1,
    "KB": 10**3,
    "MB": 10**6,
    "GB": 10**9,
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$")


def parse_size(value: Union[int, str]) -> int:
    """Convert ``4096``, ``"4096"``, ``"64KiB"`` or ``"1.5 MB"`` to a byte count.

    Fractional results are rejected; a size must resolve to a whole number of bytes.
    """
    if isinstance(value, bool):
        raise InvalidConfigError(f"Not a size: {value!r}")
    if isinstance(value, int):
        return value

    m = _SIZE_RE.match(str(value))
    if not m:
        raise InvalidConfigError(f"Not a size: {value!r}")
    number, unit = m.group(1), m.group(2) or "bytes"
    if unit not in UNIT_MULT:
        raise InvalidConfigError(f"Unknown size unit {unit!r} (expected one of {sorted(UNIT_MULT)})")

    mult = UNIT_MULT[unit]
    if "." in number:
        whole, frac = number.split(".")
        scaled = int(whole) * mult + (int(frac) * mult) // (10 ** len(frac))
        if (int(frac) * mult) % (10 ** len(frac)):
            raise InvalidConfigError(f"Size {value!r} is not a whole number of bytes")
        return scaled
    return int(number) * mult


def format_bytes(n: int) -> str:
    """Human readable binary size, e.g. ``1.50 MiB``."""
    size = float(n)
    for unit in ("bytes", "KiB", "MiB", "GiB"):
        if abs(size) < 1024.0 or unit == "GiB":
            if unit == "bytes":
                return f"{int(size)} bytes"
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{n} bytes"
