"""Time helpers: the service clock and relative duration parsing.

Durations use the compact ``<number><unit>`` notation accepted by the public
API, e.g. ``"300ms"``, ``"1h"``, ``"1h30m"`` or ``"-1.5h"``. Valid units are
``ns``, ``us`` (or ``µs``), ``ms``, ``s``, ``m`` and ``h``.
"""

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable

from usersegments.core.exceptions import ValidationException

Clock = Callable[[], datetime]

_NANOSECONDS_PER_UNIT = {
    "ns": Decimal(1),
    "us": Decimal(1_000),
    "µs": Decimal(1_000),  # U+00B5 micro sign
    "μs": Decimal(1_000),  # U+03BC greek mu
    "ms": Decimal(1_000_000),
    "s": Decimal(1_000_000_000),
    "m": Decimal(60_000_000_000),
    "h": Decimal(3_600_000_000_000),
}

# Durations are signed 64-bit nanosecond counts, roughly 2562047h either way
_MAX_NANOSECONDS = Decimal(2**63 - 1)
_MIN_NANOSECONDS = Decimal(-(2**63))

# "ms" must be tried before "m" and "s"
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the format stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_duration(value: str) -> timedelta:
    """Parse a relative duration string into a timedelta.

    Raises:
        ValidationException: if the string is empty or malformed, or falls
            outside the signed 64-bit nanosecond range.
    """
    if not isinstance(value, str) or not value:
        raise ValidationException(f"Invalid duration: {value!r}")

    text = value
    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise ValidationException(f"Invalid duration: {value!r}")

    total_ns = Decimal(0)
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            raise ValidationException(f"Invalid duration: {value!r}")
        number, unit = match.groups()
        try:
            total_ns += Decimal(number) * _NANOSECONDS_PER_UNIT[unit]
        except InvalidOperation:
            raise ValidationException(f"Invalid duration: {value!r}")
        pos = match.end()

    total_ns *= sign
    if not _MIN_NANOSECONDS <= total_ns <= _MAX_NANOSECONDS:
        raise ValidationException(f"Duration out of range: {value!r}")

    return timedelta(microseconds=int((total_ns / 1000).to_integral_value()))
