"""Exception types shared across the collector, store and HTTP layer."""


class ProxmonError(Exception):
    """Base class for all proxmon errors."""


class ConfigurationError(ProxmonError):
    """A poll target or the upstream client is not fully configured."""


class UpstreamError(ProxmonError):
    """The Proxmox API call failed (network error or non-success status)."""

    def __init__(self, message: str, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class PersistenceError(ProxmonError):
    """A read or write against the snapshot store failed."""
