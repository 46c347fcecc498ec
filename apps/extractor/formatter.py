"""
Output Formatting

Turns an aggregation into CSV lines of the form ``HH:MM;<volume>``.

The first line is always labelled 23:00 of the day before the reference date
and every following line is one hour later, whatever the period numbers are.
Volumes use the shortest representation that round-trips, switching to
``<mantissa>E+NN`` notation for very large or very small magnitudes.
"""

import math
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal

TIME_FORMAT = "%H:%M"

# Decimal exponents outside [SCIENTIFIC_MIN, SCIENTIFIC_MAX) use E notation
SCIENTIFIC_MIN = -4
SCIENTIFIC_MAX = 15


def format_volume(value: float) -> str:
    """
    Format a volume for CSV output.

    Examples:
        >>> format_volume(22.0)
        '22'
        >>> format_volume(33.333)
        '33.333'
        >>> format_volume(0.00000007)
        '7E-08'
        >>> format_volume(1010000000000000.0)
        '1.01E+15'
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    # repr() yields the shortest digit string that round-trips
    sign, digits, exponent = Decimal(repr(value)).normalize().as_tuple()
    mantissa = "".join(str(d) for d in digits)
    sci_exponent = len(digits) - 1 + exponent
    prefix = "-" if sign else ""

    if SCIENTIFIC_MIN <= sci_exponent < SCIENTIFIC_MAX:
        return prefix + format(Decimal((0, digits, exponent)), "f")

    if len(mantissa) > 1:
        mantissa = mantissa[0] + "." + mantissa[1:]
    exp_sign = "+" if sci_exponent >= 0 else "-"
    return f"{prefix}{mantissa}E{exp_sign}{abs(sci_exponent):02d}"


def first_period_start(reference: date | datetime) -> datetime:
    """Return 23:00 of the calendar day before ``reference``."""
    if isinstance(reference, datetime):
        reference = reference.date()
    return datetime.combine(reference, time()) - timedelta(hours=1)


def prepare_output(aggregations: Mapping[int, float], reference: date | datetime) -> list[str]:
    """
    Prepare CSV lines for an aggregation.

    Args:
        aggregations: Period -> volume mapping
        reference: Reference date; only its calendar date is used

    Returns:
        One ``HH:MM;volume`` line per period, in ascending period order
    """
    lines = []
    ts = first_period_start(reference)
    for period in sorted(aggregations):
        lines.append(f"{ts.strftime(TIME_FORMAT)};{format_volume(aggregations[period])}")
        ts += timedelta(hours=1)
    return lines
