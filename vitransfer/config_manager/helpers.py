"""Helpers for parsing configuration values."""

import re

_BYTE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "kib": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "mib": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "gib": 1024**3,
}

_BYTE_VALUE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-z]*)$")


def parse_bytes(value: int | str) -> int:
    """Parse a byte quantity from an integer or unit-suffixed string.

    Units are binary and case-insensitive: ``b``, ``k``/``kb``/``kib``,
    ``m``/``mb``/``mib``, ``g``/``gb``/``gib``. Fractions are allowed
    (``"1.5MiB"``) and truncated to whole bytes.

    Raises:
        ValueError: If the input cannot be parsed or contains an unknown unit.
    """
    if isinstance(value, int):
        return value

    match = _BYTE_VALUE_RE.match(str(value).strip().lower())
    if match is None:
        raise ValueError(f"Invalid byte value: {value!r}")

    number, unit = match.groups()
    if unit not in _BYTE_UNITS:
        raise ValueError(f"Unknown byte unit in value: {value!r}")
    return int(float(number) * _BYTE_UNITS[unit])


def parse_delays(value: str) -> list[float]:
    """Parse a comma-separated list of retry delays in seconds.

    Raises:
        ValueError: If any entry is not a non-negative number.
    """
    delays = [float(part) for part in value.split(",") if part.strip()]
    if any(delay < 0 for delay in delays):
        raise ValueError(f"Retry delays must be non-negative: {value!r}")
    return delays
