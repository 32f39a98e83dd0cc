import threading
from datetime import UTC, datetime, timedelta

from proxmon.models.models import MemoryUsage, Snapshot

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


def make_snapshot(seconds: float = 0, node: str = "pve", vmid: str = "102", **fields) -> Snapshot:
    """Snapshot collected `seconds` after BASE_TIME."""
    fields.setdefault("collected_at", BASE_TIME + timedelta(seconds=seconds))
    if isinstance(fields.get("memory"), dict):
        fields["memory"] = MemoryUsage(**fields["memory"])
    return Snapshot(node=node, vmid=vmid, **fields)


class FakeProxmoxClient:
    """Stands in for ProxmoxClient; records calls and replays canned payloads."""

    def __init__(self, payload=None, error: Exception | None = None, delay: float = 0.0):
        self.payload = payload if payload is not None else {
            "data": {
                "status": "running",
                "cpu": 0.2534,
                "mem": 512,
                "freemem": 1536,
                "maxmem": 2048,
                "uptime": 3600,
                "netin": 1000,
                "netout": 2000,
                "diskread": 3000,
                "diskwrite": 4000,
            }
        }
        self.error = error
        self.delay = delay
        self.calls = []
        self.default_node = "pve"
        self.default_vmid = "102"
        self.vms_payload = {"data": []}
        self.node_payload = None
        self._lock = threading.Lock()

    def fetch_vm_status(self, node=None, vmid=None):
        with self._lock:
            self.calls.append((node, vmid))
        if self.delay:
            threading.Event().wait(self.delay)
        if self.error:
            raise self.error
        return self.payload

    def fetch_node_vms(self, node=None):
        return self.vms_payload

    def fetch_node_status(self, node=None):
        if self.error:
            raise self.error
        return self.node_payload

    def fetch_raw(self, path):
        if self.error:
            raise self.error
        return {"data": {"path": path}}


