"""Byte size parsing and formatting helpers."""

from __future__ import annotations

import re

__all__ = ["parse_size", "format_bytes"]

_UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
}
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?B)?\s*$", re.IGNORECASE)


def parse_size(value: str | int | float | None) -> int:
    """Convert ``"10MB"`` style values into a byte count.

    Plain numbers are taken as bytes.  ``None`` and ``"0"`` both yield ``0``,
    which callers treat as "unlimited".  Raises :class:`ValueError` for
    anything else so that bad configuration is caught at load time.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"invalid size: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"size must be non-negative: {value!r}")
        return int(value)

    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"invalid size: {value!r}")
    number = float(match.group(1))
    unit = (match.group(2) or "B").upper()
    return int(number * _UNITS[unit])


def format_bytes(size: int) -> str:
    """Render *size* as a human readable string such as ``"1.5 MB"``."""
    if size <= 0:
        return "0 B"
    names = list(_UNITS)
    index = 0
    scaled = float(size)
    while scaled >= 1024 and index < len(names) - 1:
        scaled /= 1024
        index += 1
    text = f"{scaled:.2f}".rstrip("0").rstrip(".")
    return f"{text} {names[index]}"
