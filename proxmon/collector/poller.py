"""
Periodic Proxmox guest poller.

A Collector polls one guest on a fixed cadence: fetch the status payload,
extract metrics, append a snapshot. The schedule runs on a daemon thread
and each tick is dispatched on its own daemon thread, so a slow upstream
call never delays the next tick and never keeps the process alive.
"""

import logging
import threading
import time
from datetime import UTC, datetime
from enum import Enum

from proxmon.errors import ConfigurationError
from proxmon.metrics.extractor import extract_metrics, numeric_fields, unwrap_payload
from proxmon.models.models import MetricRecord, PollTarget, Snapshot

logger = logging.getLogger(__name__)


class CollectorState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class Collector:
    def __init__(self, client, store, allow_overlap: bool = True):
        """
        Initialize the collector.

        Args:
            client: ProxmoxClient (anything with fetch_vm_status(node, vmid))
            store: SnapshotStore the snapshots are appended to
            allow_overlap: When False, a tick is skipped while the previous
                           one is still running.
        """
        self.client = client
        self.store = store
        self.allow_overlap = allow_overlap
        self.state = CollectorState.STOPPED
        self.target: PollTarget | None = None
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._scheduler_thread: threading.Thread | None = None
        self._in_flight = threading.Semaphore(1)

    @property
    def is_running(self) -> bool:
        return self.state is CollectorState.RUNNING

    def collect_once(self, target: PollTarget) -> MetricRecord:
        """
        Poll, extract and persist once.

        Errors propagate to the caller: ConfigurationError for an incomplete
        target, UpstreamError / PersistenceError from the client and store.
        """
        if not target.is_complete:
            raise ConfigurationError("collect_once requires node and vmid to be configured.")

        payload = self.client.fetch_vm_status(node=target.node, vmid=target.vmid)
        data = unwrap_payload(payload)
        metrics = extract_metrics(data)

        self.store.append(Snapshot(
            node=target.node,
            vmid=str(target.vmid),
            collected_at=datetime.now(UTC),
            status=metrics.status,
            cpu_percent=metrics.cpu_percent,
            memory=metrics.memory,
            uptime_seconds=metrics.uptime_seconds,
            raw=numeric_fields(data),
        ))
        return metrics

    def _tick(self, target: PollTarget):
        """One scheduled poll. Never raises."""
        try:
            metrics = self.collect_once(target)
            logger.debug(
                "Collected %s/%s: status=%s cpu=%s%%",
                target.node, target.vmid, metrics.status, metrics.cpu_percent,
            )
        except Exception:
            # The next scheduled tick is the retry
            logger.exception("Proxmox polling error (node=%s, vmid=%s)", target.node, target.vmid)

    def _guarded_tick(self, target: PollTarget):
        try:
            self._tick(target)
        finally:
            self._in_flight.release()

    def _dispatch(self, target: PollTarget):
        """Fire a tick without waiting for it."""
        if self.allow_overlap:
            worker = threading.Thread(target=self._tick, args=(target,), daemon=True)
            worker.start()
            return

        if not self._in_flight.acquire(blocking=False):
            logger.warning(
                "Skipping tick for %s/%s: previous poll still in flight",
                target.node, target.vmid,
            )
            return
        worker = threading.Thread(target=self._guarded_tick, args=(target,), daemon=True)
        try:
            worker.start()
        except Exception:
            self._in_flight.release()
            raise

    def _run(self, target: PollTarget, interval: float, stop_event: threading.Event):
        """Scheduler loop: fire immediately, then every `interval` seconds."""
        next_fire = time.monotonic()
        while not stop_event.is_set():
            # stop() sets the event under the same lock, so no tick fires after it returns
            with self._state_lock:
                if stop_event.is_set():
                    break
                try:
                    self._dispatch(target)
                except Exception:
                    # The schedule outlives a tick that could not be started
                    logger.exception("Failed to dispatch tick for %s/%s", target.node, target.vmid)
            next_fire += interval
            stop_event.wait(max(0.0, next_fire - time.monotonic()))
        logger.debug("Scheduler for %s/%s finished.", target.node, target.vmid)

    def start(self, target: PollTarget, interval: float | None = None) -> bool:
        """
        Start polling `target` in the background.

        Returns:
            True when polling was started; False when already running or the
            target is incomplete (logged, not raised).
        """
        with self._state_lock:
            if self.state is CollectorState.RUNNING:
                logger.info("Collector already running (node=%s, vmid=%s)", self.target.node, self.target.vmid)
                return False
            if not target.is_complete:
                logger.warning("Proxmox polling skipped: node/vmid not configured.")
                return False

            interval = interval if interval is not None else target.interval_seconds
            if interval <= 0:
                raise ValueError("Poll interval must be positive")

            self.target = target
            self._stop_event = threading.Event()
            self._scheduler_thread = threading.Thread(
                target=self._run,
                args=(target, interval, self._stop_event),
                name=f"proxmon-poller-{target.node}-{target.vmid}",
                daemon=True,
            )
            self.state = CollectorState.RUNNING
            self._scheduler_thread.start()

        logger.info(
            "Proxmox polling started (node=%s, vmid=%s, interval=%ss)",
            target.node, target.vmid, interval,
        )
        return True

    def stop(self):
        """
        Cancel the schedule. In-flight ticks are allowed to finish.
        """
        with self._state_lock:
            if self.state is CollectorState.STOPPED:
                return
            self._stop_event.set()
            self.state = CollectorState.STOPPED
            self._scheduler_thread = None
        logger.info("Proxmox polling stopped.")
