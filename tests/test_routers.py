import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from proxmon.errors import UpstreamError
from proxmon.routers import proxmox
from tests.helpers import FakeProxmoxClient, make_snapshot


@pytest.fixture
def upstream():
    return FakeProxmoxClient()


@pytest.fixture
def api(store, upstream):
    app = FastAPI()
    app.include_router(proxmox.router, prefix="/api")
    app.dependency_overrides[proxmox.require_store] = lambda: store
    app.dependency_overrides[proxmox.require_client] = lambda: upstream
    return TestClient(app)


def test_vm_status_envelope(api, upstream):
    response = api.get("/api/proxmox/vm-status", params={"node": "pve", "vmid": "102"})
    assert response.status_code == 200
    body = response.json()
    assert body["result"] == 200
    assert body["data"]["data"]["status"] == "running"
    assert upstream.calls == [("pve", "102")]


def test_upstream_error_status_is_forwarded(api, upstream):
    upstream.error = UpstreamError("denied", status=401, body="authentication failure")
    response = api.get("/api/proxmox/vm-status")
    assert response.status_code == 401
    assert response.json()["detail"] == {"error": "denied", "details": "authentication failure"}


def test_network_error_is_bad_gateway(api, upstream):
    upstream.error = UpstreamError("connection refused")
    assert api.get("/api/proxmox/node-summary").status_code == 502


def test_proxy_requires_path(api):
    assert api.get("/api/proxmox/proxy").status_code == 400
    response = api.get("/api/proxmox/proxy", params={"path": "/version"})
    assert response.json()["data"] == {"data": {"path": "/version"}}


def test_snapshot_queries_require_node_and_vmid(api):
    assert api.get("/api/proxmox/snapshots", params={"node": "pve"}).status_code == 400
    assert api.get("/api/proxmox/snapshots/latest", params={"vmid": "102"}).status_code == 400
    assert api.get("/api/proxmox/series").status_code == 400


def test_latest_snapshot_not_found(api):
    response = api.get("/api/proxmox/snapshots/latest", params={"node": "pve", "vmid": "102"})
    assert response.status_code == 404


def test_latest_and_list_snapshots(api, store):
    for i in range(3):
        store.append(make_snapshot(i * 10, cpu_percent=float(i)))

    latest = api.get("/api/proxmox/snapshots/latest", params={"node": "pve", "vmid": "102"})
    assert latest.json()["data"]["cpu_percent"] == 2.0

    listed = api.get("/api/proxmox/snapshots", params={"node": "pve", "vmid": "102", "limit": 2})
    assert [s["cpu_percent"] for s in listed.json()["data"]] == [2.0, 1.0]


def test_series_endpoint(api, store):
    store.append(make_snapshot(0, cpu_percent=10.0, raw={"netin": 0.0}))
    store.append(make_snapshot(10, cpu_percent=20.0, raw={"netin": 1310720.0}))

    response = api.get("/api/proxmox/series", params={"node": "pve", "vmid": "102", "window": 4})
    data = response.json()["data"]
    assert data["cpu"] == [0, 0, 10.0, 20.0]
    assert data["net_in"] == [0, 0, 0, 1024.0]
    assert data["time"][:2] == ["--", "--"]


def test_series_window_is_validated(api):
    params = {"node": "pve", "vmid": "102", "window": 0}
    assert api.get("/api/proxmox/series", params=params).status_code == 422


def test_vms_are_enriched(api, store, upstream):
    upstream.vms_payload = {"data": [{"vmid": 102, "name": "web"}, {"vmid": 103}]}
    store.append(make_snapshot(0, vmid="102", cpu_percent=7.0))

    response = api.get("/api/proxmox/vms", params={"node": "pve"})
    vms = {vm["id"]: vm for vm in response.json()["data"]}
    assert vms["102"]["snapshot"]["cpu_percent"] == 7.0
    assert vms["103"]["snapshot"] is None


def test_node_summary(api, upstream):
    upstream.node_payload = {
        "node": "pve",
        "detail": {"data": {"memory": {"used": 1, "total": 4}}},
        "node_entry": {"node": "pve", "status": "online"},
    }
    data = api.get("/api/proxmox/node-summary").json()["data"]
    assert data["status"] == "online"
    assert data["memory_percent"] == 25.0


def test_collect_persists_snapshot(api, store):
    response = api.post("/api/proxmox/collect", params={"node": "pve", "vmid": "102"})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "running"
    assert store.latest("pve", "102").cpu_percent == 25.34


def test_collect_upstream_failure(api, store, upstream):
    upstream.error = UpstreamError("boom", status=500, body="internal")
    response = api.post("/api/proxmox/collect")
    assert response.status_code == 500
    assert store.latest("pve", "102") is None


def test_missing_store_is_service_unavailable(monkeypatch):
    monkeypatch.setattr(proxmox, "get_store", lambda: None)
    app = FastAPI()
    app.include_router(proxmox.router, prefix="/api")
    response = TestClient(app).get("/api/proxmox/snapshots", params={"node": "pve", "vmid": "102"})
    assert response.status_code == 503
