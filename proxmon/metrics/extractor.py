"""
Normalization of a raw Proxmox guest status payload.

Extraction never fails: fields that are missing or of the wrong type are
simply left unset on the resulting record.
"""

import math
from typing import Any

from proxmon.metrics.rates import round_half_up
from proxmon.models.models import MemoryUsage, MetricRecord

# Checked in order, first present value wins
STATUS_FIELDS = ("status", "qmpstatus", "running", "running-machine")


def unwrap_payload(payload: Any) -> dict[str, Any]:
    """Return the status object whether or not it is wrapped in {"data": ...}."""
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data", payload)
    return data if isinstance(data, dict) else {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number_or_none(value: Any) -> int | float | None:
    if _is_number(value) and math.isfinite(value):
        return value
    return None


def _resolve_status(data: dict[str, Any]) -> str | None:
    for field in STATUS_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        if isinstance(value, bool):
            return str(value).lower()
        return str(value)
    return None


def extract_metrics(payload: Any) -> MetricRecord:
    """
    Map one upstream status payload to a MetricRecord.

    Args:
        payload: The JSON body of /nodes/{node}/qemu/{vmid}/status/current,
                 wrapped or bare.

    Returns:
        MetricRecord with whatever could be resolved.
    """
    data = unwrap_payload(payload)
    if not data:
        return MetricRecord()

    cpu = data.get("cpu")
    cpu_percent = None
    if _is_number(cpu) and math.isfinite(cpu):
        cpu_percent = round_half_up(cpu * 100)

    uptime = _number_or_none(data.get("uptime"))

    return MetricRecord(
        status=_resolve_status(data),
        cpu_percent=cpu_percent,
        memory=MemoryUsage(
            used=_number_or_none(data.get("mem")),
            free=_number_or_none(data.get("freemem")),
            max=_number_or_none(data.get("maxmem")),
        ),
        uptime_seconds=int(uptime) if uptime is not None else None,
    )


def numeric_fields(payload: Any) -> dict[str, float]:
    """Keep only the numeric top-level fields of a payload (the raw counters)."""
    data = unwrap_payload(payload)
    return {
        key: float(value)
        for key, value in data.items()
        if _is_number(value) and math.isfinite(value)
    }
