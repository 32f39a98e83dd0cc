# proxmon/models/models.py

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Collection Models ---

class MemoryUsage(BaseModel):
    """
    Guest memory counters in bytes, exactly as reported upstream.
    Any of them may be missing.
    """
    model_config = ConfigDict(frozen=True)

    used: int | float | None = None
    free: int | float | None = None
    max: int | float | None = None


class MetricRecord(BaseModel):
    """
    Normalized metrics extracted from one upstream status payload.
    Every field is optional: extraction narrows, it never fails.
    """
    status: str | None = None
    cpu_percent: float | None = None
    memory: MemoryUsage = Field(default_factory=MemoryUsage)
    uptime_seconds: int | None = None


class Snapshot(BaseModel):
    """
    One immutable record of a guest's state at one instant.

    `raw` keeps the numeric upstream fields (netin, netout, diskread,
    diskwrite, ...) so cumulative counters can be differenced later.
    A naive `collected_at` is taken as UTC.
    """
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    node: str
    vmid: str
    collected_at: datetime | None = Field(default_factory=lambda: datetime.now(UTC))
    status: str | None = None
    cpu_percent: float | None = None
    memory: MemoryUsage = Field(default_factory=MemoryUsage)
    uptime_seconds: int | None = None
    raw: dict[str, float] = Field(default_factory=dict)

    @field_validator("collected_at")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class PollTarget(BaseModel):
    """
    What a Collector polls. Fixed for the lifetime of a running Collector.
    """
    model_config = ConfigDict(frozen=True)

    node: str | None = None
    vmid: str | None = None
    interval_seconds: float = 15.0

    @property
    def is_complete(self) -> bool:
        return bool(self.node) and bool(self.vmid)


# --- Presentation Models ---

class DerivedSeries(BaseModel):
    """
    Fixed-width, chart-ready arrays computed from a window of snapshots.
    Every list has exactly `window_size` entries.
    """
    time: list[str]
    cpu: list[float]
    net_in: list[float]
    net_out: list[float]
    disk_read: list[float]
    disk_write: list[float]
    memory_percent: float | None = None
    last_timestamp: datetime | None = None


class SnapshotSummary(BaseModel):
    """Compact view of a guest's latest snapshot, attached to VM listings."""
    collected_at: datetime | None = None
    cpu_percent: float | None = None
    memory_used: int | float | None = None
    memory_max: int | float | None = None
    memory_percent: float | None = None


class VmListItem(BaseModel):
    """One guest from the live node listing, optionally enriched."""
    id: str | None = None
    name: str | None = None
    status: str | None = None
    cpu: float | None = None
    max_cpu: float | None = None
    mem: int | None = None
    max_mem: int | None = None
    uptime_seconds: int | None = None
    pid: int | None = None
    node: str | None = None
    template: bool = False
    snapshot: SnapshotSummary | None = None


class NodeMemory(BaseModel):
    used: int | None = None
    free: int | None = None
    max: int | None = None
    available: int | None = None
    fs_used: int | None = None
    fs_total: int | None = None


class NodeSummary(BaseModel):
    """Host-level view of one Proxmox node."""
    node: str | None = None
    status: str = "unknown"
    cpu: float | None = None
    max_cpu: float | None = None
    memory: NodeMemory = Field(default_factory=NodeMemory)
    memory_percent: float | None = None
    uptime_seconds: int | None = None
    load_avg: list[float] | None = None
    version: str | None = None
