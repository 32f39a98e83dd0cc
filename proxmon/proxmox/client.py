# proxmon/proxmox/client.py

"""
Thin client for the Proxmox VE HTTP API.

Only GET calls are made. Every method returns the decoded JSON body and
raises UpstreamError on network failures or non-success responses.
"""

import logging
import warnings
from typing import Any
from urllib.parse import quote

import requests
from urllib3.exceptions import InsecureRequestWarning

from proxmon.config.config import ProxmoxSettings
from proxmon.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class ProxmoxClient:
    """
    Authenticates with an API token and issues GET requests against the API.
    """

    def __init__(self, settings: ProxmoxSettings, session: requests.Session | None = None):
        """
        Args:
            settings (ProxmoxSettings): Base URL, token and TLS settings.
            session (requests.Session): Optional pre-built session (keep-alive).
        """
        self.base_url = (settings.base_url or "").strip().rstrip("/")
        self.token_id = (settings.token_id or "").strip()
        self.token_secret = (settings.token_secret or "").strip()
        self.default_node = settings.default_node or None
        self.default_vmid = settings.default_vmid or None
        self.timeout = settings.timeout_seconds
        self.session = session or requests.Session()
        self.session.verify = settings.verify_ssl

        if not settings.verify_ssl:
            # Self-signed certificates are the norm on Proxmox hosts
            warnings.filterwarnings("ignore", category=InsecureRequestWarning)

    def _assert_configured(self):
        if not self.base_url:
            raise ConfigurationError("Proxmox base URL is not configured (set proxmox.base_url).")
        if not self.token_id or not self.token_secret:
            raise ConfigurationError(
                "Proxmox API token is not configured "
                "(set proxmox.token_id and proxmox.token_secret)."
            )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"PVEAPIToken={self.token_id}={self.token_secret}",
        }

    def get(self, path: str) -> Any:
        """
        GET an API path (relative to the base URL) and return the JSON body.
        """
        self._assert_configured()
        target = path if path.startswith("/") else f"/{path}"
        url = f"{self.base_url}{target}"

        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("Network error calling %s: %s", target, e)
            raise UpstreamError(f"Proxmox request failed: {e}") from e

        if not response.ok:
            raise UpstreamError(
                f"Proxmox request failed with status {response.status_code} {response.reason}",
                status=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                "Proxmox returned a non-JSON response",
                status=response.status_code,
                body=response.text,
            ) from e

    def _resolve_node(self, node: str | None) -> str:
        resolved = node or self.default_node
        if not resolved:
            raise ConfigurationError("Node is required. Pass node or set proxmox.default_node.")
        return resolved

    def fetch_vm_status(self, node: str | None = None, vmid: str | None = None) -> Any:
        """
        Current status of one QEMU guest.
        """
        resolved_node = node or self.default_node
        resolved_vmid = vmid or self.default_vmid
        if not resolved_node or not resolved_vmid:
            raise ConfigurationError(
                "Node and VMID are required. Pass them or set "
                "proxmox.default_node and proxmox.default_vmid."
            )
        return self.get(
            f"/nodes/{quote(str(resolved_node), safe='')}/qemu/"
            f"{quote(str(resolved_vmid), safe='')}/status/current"
        )

    def fetch_node_status(self, node: str | None = None) -> dict[str, Any]:
        """
        Node status detail plus the node's entry from the cluster node list.
        """
        resolved = self._resolve_node(node)
        detail = self.get(f"/nodes/{quote(resolved, safe='')}/status")
        nodes = self.get("/nodes")

        node_entry = None
        for item in (nodes or {}).get("data") or []:
            if isinstance(item, dict) and item.get("node") == resolved:
                node_entry = item
                break

        return {"node": resolved, "detail": detail, "node_entry": node_entry}

    def fetch_node_vms(self, node: str | None = None) -> Any:
        """
        QEMU guests on one node.
        """
        resolved = self._resolve_node(node)
        return self.get(f"/nodes/{quote(resolved, safe='')}/qemu")

    def fetch_raw(self, path: str) -> Any:
        """
        Pass-through GET for arbitrary API paths.
        """
        return self.get(path)

    def close(self):
        self.session.close()


# Process-wide client used by the HTTP layer
proxmox_client: ProxmoxClient | None = None

def init_client(settings: ProxmoxSettings) -> ProxmoxClient:
    global proxmox_client
    proxmox_client = ProxmoxClient(settings)
    return proxmox_client

def close_client():
    global proxmox_client
    if proxmox_client:
        proxmox_client.close()
        proxmox_client = None

def get_client() -> ProxmoxClient | None:
    """
    Dependency function to get the client.
    """
    return proxmox_client
