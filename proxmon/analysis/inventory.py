"""
Live inventory views: the node's guest list joined against stored history,
and the host-level node summary.
"""

import logging
from typing import Any

from proxmon.metrics.rates import round_half_up, to_number
from proxmon.metrics.series import host_memory_percent
from proxmon.models.models import (
    NodeMemory,
    NodeSummary,
    Snapshot,
    SnapshotSummary,
    VmListItem,
)

logger = logging.getLogger(__name__)


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def summarize_snapshot(snapshot: Snapshot | None) -> SnapshotSummary | None:
    """
    Compact summary of a stored snapshot for list views.
    Memory percent is used/max only, rounded to 2 decimals.
    """
    if snapshot is None:
        return None
    used = snapshot.memory.used
    max_bytes = snapshot.memory.max
    percent = None
    if to_number(used) is not None and to_number(max_bytes) is not None and max_bytes > 0:
        percent = round_half_up(used / max_bytes * 100)
    return SnapshotSummary(
        collected_at=snapshot.collected_at,
        cpu_percent=snapshot.cpu_percent,
        memory_used=used,
        memory_max=max_bytes,
        memory_percent=percent,
    )


def map_vm_list(payload: Any) -> list[VmListItem]:
    """
    Normalize the /nodes/{node}/qemu listing.
    """
    items = payload.get("data", payload) if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        return []

    vms = []
    for item in items:
        if not isinstance(item, dict):
            continue
        vmid = _first(item.get("vmid"), item.get("id"))
        vms.append(VmListItem(
            id=str(vmid) if vmid is not None else None,
            name=_first(item.get("name"), str(vmid) if vmid is not None else None),
            status=item.get("status"),
            cpu=item.get("cpu"),
            max_cpu=item.get("maxcpu"),
            mem=item.get("mem"),
            max_mem=item.get("maxmem"),
            uptime_seconds=item.get("uptime"),
            pid=item.get("pid"),
            node=item.get("node"),
            template=bool(item.get("template")),
        ))
    return vms


def enrich_vm_list(vms: list[VmListItem], store, node: str | None = None) -> list[VmListItem]:
    """
    Attach each guest's latest stored snapshot to the live listing.

    One store query covers the whole list regardless of its length.
    """
    vmids = [vm.id for vm in vms if vm.id]
    if not vmids:
        return vms

    latest = store.latest_for_many(vmids, node=node)
    logger.debug("Enriching %d guests, %d with history", len(vmids), len(latest))

    return [
        vm.model_copy(update={"snapshot": summarize_snapshot(latest[vm.id])})
        if vm.id in latest else vm
        for vm in vms
    ]


def _unwrap(value: Any) -> dict:
    # Node detail may arrive as {"data": {"data": {...}}}, {"data": {...}} or bare
    while isinstance(value, dict) and isinstance(value.get("data"), dict):
        value = value["data"]
    return value if isinstance(value, dict) else {}


def map_node_summary(payload: dict[str, Any] | None) -> NodeSummary | None:
    """
    Host-level summary from fetch_node_status() output.
    """
    if not payload:
        return None
    detail = _unwrap(payload.get("detail"))
    node_entry = payload.get("node_entry") or {}

    memory = detail.get("memory") or {}
    rootfs = detail.get("rootfs") or {}

    node_memory = NodeMemory(
        used=_first(memory.get("used"), node_entry.get("mem")),
        free=_first(memory.get("free"), memory.get("available")),
        max=_first(memory.get("total"), node_entry.get("maxmem")),
        available=memory.get("available"),
        fs_used=_first(rootfs.get("used"), node_entry.get("disk")),
        fs_total=_first(rootfs.get("total"), node_entry.get("maxdisk")),
    )

    load_avg = _first(detail.get("loadavg"), node_entry.get("loadavg"))
    if isinstance(load_avg, list):
        load_avg = [value for value in (to_number(v) for v in load_avg) if value is not None]
    else:
        load_avg = None

    return NodeSummary(
        node=_first(node_entry.get("node"), detail.get("node"), payload.get("node")),
        status=_first(node_entry.get("status"), detail.get("status"), "unknown"),
        cpu=_first(node_entry.get("cpu"), detail.get("cpu")),
        max_cpu=_first(node_entry.get("maxcpu"), detail.get("maxcpu")),
        memory=node_memory,
        memory_percent=host_memory_percent({
            "total": node_memory.max,
            "used": node_memory.used,
            "free": memory.get("free"),
            "available": node_memory.available,
        }),
        uptime_seconds=_first(node_entry.get("uptime"), detail.get("uptime")),
        load_avg=load_avg,
        version=_first(detail.get("pveversion"), node_entry.get("pveversion"), detail.get("version")),
    )
