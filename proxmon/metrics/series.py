"""
Fixed-width, chart-ready series derived from a window of snapshots.

The aggregator walks snapshots oldest-first, carrying the last good CPU
value forward over gaps, tracking memory usage as a single rolling value,
and differencing consecutive cumulative counters into network and disk
rates. Every output list is padded or truncated to the window size so the
presentation layer never deals with variable-length data.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from proxmon.metrics.rates import (
    CounterReading,
    bytes_to_kilobits_per_second,
    bytes_to_megabytes_per_second,
    counter_rate,
    to_number,
)
from proxmon.models.models import DerivedSeries, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 20
TIME_PLACEHOLDER = "--"

# (output series, raw counter field, unit conversion)
COUNTER_SERIES = (
    ("net_in", "netin", bytes_to_kilobits_per_second),
    ("net_out", "netout", bytes_to_kilobits_per_second),
    ("disk_read", "diskread", bytes_to_megabytes_per_second),
    ("disk_write", "diskwrite", bytes_to_megabytes_per_second),
)


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


def pad_series(series: list, size: int, fill_value: Any) -> list:
    """
    Keep the most recent `size` entries, left-padding with `fill_value`
    when there are fewer.
    """
    if size <= 0:
        return []
    if len(series) >= size:
        return series[len(series) - size:]
    return [fill_value] * (size - len(series)) + list(series)


def format_timestamp(value: datetime) -> str:
    """Local wall-clock label, e.g. '14:05:09'."""
    return value.astimezone().strftime("%H:%M:%S")


def guest_memory_percent(snapshot: Snapshot) -> float | None:
    """
    Memory usage of a guest in percent.

    Prefers used/max, falls back to (max - free)/max. Normalized fields win
    over the raw payload (mem, freemem, maxmem). Returns None when max is
    missing or not positive.
    """
    memory = snapshot.memory
    raw = snapshot.raw or {}

    max_bytes = to_number(memory.max if memory.max is not None else raw.get("maxmem"))
    if not max_bytes or max_bytes <= 0:
        return None

    used = to_number(memory.used if memory.used is not None else raw.get("mem"))
    if used is not None:
        return clamp(used / max_bytes * 100)

    free = to_number(memory.free if memory.free is not None else raw.get("freemem"))
    if free is not None:
        return clamp((max_bytes - free) / max_bytes * 100)

    return None


def host_memory_percent(memory: Mapping[str, Any] | None) -> float | None:
    """
    Memory usage of a node in percent.

    Node status reports total/used/free/available rather than the guest
    mem/freemem/maxmem fields, so this keeps its own fallback chain:
    used/total, else (total - free)/total, with `available` standing in
    for a missing `free`.
    """
    memory = memory or {}
    total = to_number(memory.get("total") if memory.get("total") is not None else memory.get("max"))
    if not total or total <= 0:
        return None

    used = to_number(memory.get("used"))
    if used is not None:
        return clamp(used / total * 100)

    free = to_number(memory.get("free") if memory.get("free") is not None else memory.get("available"))
    if free is not None:
        return clamp((total - free) / total * 100)

    return None


def empty_series(window_size: int = DEFAULT_WINDOW_SIZE) -> DerivedSeries:
    """All-placeholder series used when there is no usable history."""
    zeros = [0.0] * max(window_size, 0)
    return DerivedSeries(
        time=[TIME_PLACEHOLDER] * max(window_size, 0),
        cpu=list(zeros),
        net_in=list(zeros),
        net_out=list(zeros),
        disk_read=list(zeros),
        disk_write=list(zeros),
        memory_percent=None,
        last_timestamp=None,
    )


class SeriesAggregator:
    """
    Turns an ordered batch of snapshots into a DerivedSeries.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        self.window_size = window_size

    def aggregate(self, snapshots: Iterable[Snapshot]) -> DerivedSeries:
        """
        Build the windowed series for a batch of snapshots.

        Args:
            snapshots: Snapshots of one guest in any order. Entries without a
                       collection timestamp are ignored.

        Returns:
            DerivedSeries with every list exactly `window_size` long.
        """
        ordered = sorted(
            (snap for snap in snapshots if snap.collected_at is not None),
            key=lambda snap: snap.collected_at,
        )
        if not ordered:
            return empty_series(self.window_size)

        time_labels: list[str] = []
        cpu: list[float] = []
        rates: dict[str, list[float]] = {name: [] for name, _, _ in COUNTER_SERIES}
        memory_percent: float | None = None
        previous: Snapshot | None = None

        for snapshot in ordered:
            time_labels.append(format_timestamp(snapshot.collected_at))

            cpu_value = to_number(snapshot.cpu_percent)
            if cpu_value is not None:
                cpu.append(clamp(cpu_value))
            else:
                cpu.append(cpu[-1] if cpu else 0.0)

            resolved = guest_memory_percent(snapshot)
            if resolved is not None:
                memory_percent = resolved

            if previous is not None:
                for name, field, convert in COUNTER_SERIES:
                    rate = counter_rate(
                        CounterReading(snapshot.raw.get(field), snapshot.collected_at),
                        CounterReading(previous.raw.get(field), previous.collected_at),
                    )
                    rates[name].append(convert(rate))
            else:
                for name in rates:
                    rates[name].append(0.0)

            previous = snapshot

        logger.debug("Aggregated %d snapshots into a window of %d", len(ordered), self.window_size)

        return DerivedSeries(
            time=pad_series(time_labels, self.window_size, TIME_PLACEHOLDER),
            cpu=pad_series(cpu, self.window_size, 0.0),
            net_in=pad_series(rates["net_in"], self.window_size, 0.0),
            net_out=pad_series(rates["net_out"], self.window_size, 0.0),
            disk_read=pad_series(rates["disk_read"], self.window_size, 0.0),
            disk_write=pad_series(rates["disk_write"], self.window_size, 0.0),
            memory_percent=memory_percent,
            last_timestamp=ordered[-1].collected_at,
        )


def aggregate(snapshots: Iterable[Snapshot], window_size: int = DEFAULT_WINDOW_SIZE) -> DerivedSeries:
    """Shorthand for SeriesAggregator(window_size).aggregate(snapshots)."""
    return SeriesAggregator(window_size).aggregate(snapshots)
