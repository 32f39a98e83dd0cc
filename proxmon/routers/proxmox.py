# proxmon/routers/proxmox.py

"""
Router for Proxmox telemetry endpoints.
Serves live upstream views, stored snapshots and derived chart series.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from proxmon.analysis.inventory import enrich_vm_list, map_node_summary, map_vm_list
from proxmon.collector.poller import Collector
from proxmon.config.config import get_settings
from proxmon.errors import ConfigurationError, PersistenceError, UpstreamError
from proxmon.metrics.series import SeriesAggregator
from proxmon.models.models import PollTarget
from proxmon.proxmox.client import ProxmoxClient, get_client
from proxmon.storage.sqlite import SnapshotStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/proxmox")


def require_store() -> SnapshotStore:
    store = get_store()
    if not store:
        raise HTTPException(status_code=503, detail="Snapshot store not available")
    return store


def require_client() -> ProxmoxClient:
    client = get_client()
    if not client:
        raise HTTPException(status_code=503, detail="Proxmox client not available")
    return client


def _http_error(err: Exception, context: str) -> HTTPException:
    """
    Map pipeline errors to HTTP responses.
    """
    logger.error("%s error: %s", context, err)
    if isinstance(err, UpstreamError):
        status = err.status if err.status and err.status >= 400 else 502
        detail = {"error": str(err)}
        if err.body:
            detail["details"] = err.body
        return HTTPException(status_code=status, detail=detail)
    if isinstance(err, ConfigurationError):
        return HTTPException(status_code=400, detail={"error": str(err)})
    if isinstance(err, PersistenceError):
        return HTTPException(status_code=500, detail={"error": str(err)})
    return HTTPException(status_code=500, detail={"error": f"{context} failed: {err}"})


def _require_entity(node: str | None, vmid: str | None):
    if not node or not vmid:
        raise HTTPException(
            status_code=400,
            detail={"error": "Query parameters 'node' and 'vmid' are required."},
        )


@router.get("/vm-status")
def get_vm_status(
    node: str | None = None,
    vmid: str | None = None,
    client: ProxmoxClient = Depends(require_client),
):
    """
    Live status of one guest straight from the Proxmox API.
    """
    try:
        data = client.fetch_vm_status(node=node, vmid=vmid)
    except Exception as e:
        raise _http_error(e, "getVmStatus")
    return {"result": 200, "data": data}


@router.get("/proxy")
def proxy_proxmox_path(
    path: str | None = None,
    client: ProxmoxClient = Depends(require_client),
):
    """
    Pass-through GET for an arbitrary API path.
    """
    if not path:
        raise HTTPException(status_code=400, detail={"error": "Query parameter 'path' is required."})
    try:
        data = client.fetch_raw(path)
    except Exception as e:
        raise _http_error(e, "proxyProxmoxPath")
    return {"result": 200, "data": data}


@router.get("/snapshots/latest")
def get_latest_snapshot(
    node: str | None = None,
    vmid: str | None = None,
    store: SnapshotStore = Depends(require_store),
):
    """
    Most recent stored snapshot of one guest.
    """
    _require_entity(node, vmid)
    try:
        snapshot = store.latest(node, vmid)
    except PersistenceError as e:
        raise _http_error(e, "getLatestSnapshot")
    if not snapshot:
        raise HTTPException(
            status_code=404,
            detail={"error": "No snapshots found for the specified node/vmid."},
        )
    return {"result": 200, "data": snapshot}


@router.get("/snapshots")
def list_snapshots(
    node: str | None = None,
    vmid: str | None = None,
    limit: int | None = None,
    store: SnapshotStore = Depends(require_store),
):
    """
    Stored snapshots of one guest, most recent first (default 50, max 500).
    """
    _require_entity(node, vmid)
    try:
        snapshots = store.list_snapshots(node, vmid, limit)
    except PersistenceError as e:
        raise _http_error(e, "listSnapshots")
    return {"result": 200, "data": snapshots}


@router.get("/series")
def get_series(
    node: str | None = None,
    vmid: str | None = None,
    window: int | None = Query(default=None, ge=1, le=500),
    store: SnapshotStore = Depends(require_store),
):
    """
    Chart-ready series over the most recent `window` snapshots.
    """
    _require_entity(node, vmid)
    window_size = window or get_settings().series.window_size
    try:
        snapshots = store.list_snapshots(node, vmid, window_size)
    except PersistenceError as e:
        raise _http_error(e, "getSeries")
    return {"result": 200, "data": SeriesAggregator(window_size).aggregate(snapshots)}


@router.get("/node-summary")
def get_node_summary(
    node: str | None = None,
    client: ProxmoxClient = Depends(require_client),
):
    """
    Host-level summary of a node, including host memory percent.
    """
    try:
        payload = client.fetch_node_status(node=node)
    except Exception as e:
        raise _http_error(e, "getNodeSummary")
    return {"result": 200, "data": map_node_summary(payload)}


@router.get("/vms")
def list_node_vms(
    node: str | None = None,
    client: ProxmoxClient = Depends(require_client),
    store: SnapshotStore = Depends(require_store),
):
    """
    Live guest list of a node, each guest enriched with its latest snapshot.
    """
    try:
        payload = client.fetch_node_vms(node=node)
        node_name = node or client.default_node
        vms = enrich_vm_list(map_vm_list(payload), store, node=node_name)
    except Exception as e:
        raise _http_error(e, "listNodeVms")
    return {"result": 200, "data": vms}


@router.post("/collect")
def collect_now(
    node: str | None = None,
    vmid: str | None = None,
    client: ProxmoxClient = Depends(require_client),
    store: SnapshotStore = Depends(require_store),
):
    """
    Run one poll-extract-persist cycle on demand.
    """
    target = PollTarget(node=node or client.default_node, vmid=vmid or client.default_vmid)
    try:
        metrics = Collector(client, store).collect_once(target)
    except Exception as e:
        raise _http_error(e, "collectSnapshot")
    return {"result": 200, "data": metrics}
