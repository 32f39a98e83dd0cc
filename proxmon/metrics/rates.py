"""
Instantaneous rates from cumulative upstream counters.

Proxmox reports netin/netout/diskread/diskwrite as running byte totals.
A rate is the difference between two readings divided by the time between
them; a counter that did not advance (or was reset) yields 0, never a
negative value.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

MIN_DELTA_SECONDS = 1.0


@dataclass(frozen=True)
class CounterReading:
    """One cumulative counter value and when it was read."""
    value: Any
    timestamp: datetime


def to_number(value: Any) -> float | None:
    """Coerce numbers and numeric strings to a finite float, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def compute_rate(current_value: Any, previous_value: Any, delta_seconds: float) -> float:
    """
    Rate of change of a cumulative counter, in counter units per second.

    Args:
        current_value: The newer counter reading.
        previous_value: The older counter reading.
        delta_seconds: Seconds between the two readings. Floored to 1.

    Returns:
        A rate >= 0. Missing or non-finite readings count as no observed rate.
    """
    current = to_number(current_value)
    previous = to_number(previous_value)
    if current is None or previous is None:
        return 0.0

    delta = current - previous
    if delta <= 0:
        # Counter stalled, wrapped or was reset
        return 0.0

    seconds = to_number(delta_seconds) or 0.0
    return delta / max(MIN_DELTA_SECONDS, seconds)


def round_half_up(value: float, digits: int = 2) -> float:
    """Round halves away from zero (0.125 -> 0.13), unlike the builtin round()."""
    scale = 10 ** digits
    return math.copysign(math.floor(abs(value) * scale + 0.5) / scale, value)


def counter_rate(current: CounterReading, previous: CounterReading) -> float:
    """compute_rate() with the elapsed time taken from the readings themselves."""
    delta_seconds = (current.timestamp - previous.timestamp).total_seconds()
    return compute_rate(current.value, previous.value, delta_seconds)


def bytes_to_kilobits_per_second(bytes_per_second: float) -> float:
    """Network units: bytes/s -> Kb/s, 2 decimals."""
    rate = to_number(bytes_per_second)
    if rate is None or rate <= 0:
        return 0.0
    return round_half_up(rate * 8 / 1024)


def bytes_to_megabytes_per_second(bytes_per_second: float) -> float:
    """
    Disk units: bytes/s -> MB/s, 2 decimals rounded half-up.

    131072 B/s is 0.125 MB/s before rounding and 0.13 after.
    """
    rate = to_number(bytes_per_second)
    if rate is None or rate <= 0:
        return 0.0
    return round_half_up(rate / (1024 * 1024))
