import pytest

from proxmon.errors import UpstreamError
from proxmon.storage.sqlite import SnapshotStore
from tests.helpers import FakeProxmoxClient


@pytest.fixture
def store():
    snapshot_store = SnapshotStore(":memory:")
    yield snapshot_store
    snapshot_store.close()


@pytest.fixture
def fake_client():
    return FakeProxmoxClient()


@pytest.fixture
def failing_client():
    return FakeProxmoxClient(error=UpstreamError("boom", status=500, body="internal"))
