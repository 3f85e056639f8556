import httpx
import pytest
import pytest_asyncio

from wgsync.api.deps import get_reconciler
from wgsync.api.main import app
from wgsync.services.errors import ProvisionError


@pytest_asyncio.fixture
async def client(reconciler):
    # ASGITransport does not run the lifespan: no migrations, no poller.
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
            yield http
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_create_returns_private_key_once_and_read_hides_it(client) -> None:
    created = await client.post("/peers", json={"name": "alice", "notes": "laptop"})
    assert created.status_code == 201
    body = created.json()
    assert body["warnings"] == []
    assert body["peer"]["address"] == "10.0.0.6/32"
    assert body["peer"]["private_key"] == "priv-1="

    read = await client.get("/peers/alice")
    assert read.status_code == 200
    assert "private_key" not in read.json()
    assert read.json()["notes"] == "laptop"

    listed = await client.get("/peers")
    assert ["private_key" in row for row in listed.json()] == [False]

    revealed = await client.get("/peers/alice/reveal")
    assert revealed.json()["private_key"] == "priv-1="


@pytest.mark.asyncio
async def test_error_status_codes(client, keygen) -> None:
    await client.post("/peers", json={"name": "alice"})

    assert (await client.post("/peers", json={"name": "alice"})).status_code == 409
    assert (await client.post("/peers", json={"name": "bad name"})).status_code == 400
    assert (await client.get("/peers/nobody")).status_code == 404
    assert (await client.patch("/peers/alice", json={"public_key": "x"})).status_code == 422

    keygen.error = ProvisionError("wg binary not found")
    failed = await client.post("/peers", json={"name": "bob"})
    assert failed.status_code == 502
    assert failed.json()["detail"] == "wg binary not found"


@pytest.mark.asyncio
async def test_lifecycle_endpoints(client, iface) -> None:
    await client.post("/peers", json={"name": "alice"})

    disabled = await client.post("/peers/alice/disable")
    assert disabled.json()["peer"]["enabled"] is False
    assert iface.live == {}

    enabled = await client.post("/peers/alice/enable")
    assert enabled.json()["peer"]["enabled"] is True

    regenerated = await client.post("/peers/alice/regenerate")
    assert regenerated.json()["peer"]["public_key"] == "pub-2="
    assert set(iface.live) == {"pub-2="}

    patched = await client.patch("/peers/alice", json={"keepalive_seconds": 15})
    assert patched.json()["peer"]["keepalive_seconds"] == 15

    deleted = await client.delete("/peers/alice")
    assert deleted.status_code == 200
    assert (await client.get("/peers/alice")).status_code == 404


@pytest.mark.asyncio
async def test_bulk_delete_is_partial(client) -> None:
    await client.post("/peers", json={"name": "alice"})

    response = await client.post("/peers/bulk-delete", json={"names": ["alice", "ghost"]})

    body = response.json()
    assert body["deleted_count"] == 1
    assert body["failed"] == [{"name": "ghost", "error": "peer 'ghost' not found"}]


@pytest.mark.asyncio
async def test_health_interface_and_stats(client, iface) -> None:
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json() == {"status": "ok", "store": "ready"}

    interface = await client.get("/interface")
    assert interface.json()["available"] is True

    stats = await client.post("/stats/run")
    assert stats.json()["interface_available"] is True

    iface.failing.add("*")
    created = await client.post("/peers", json={"name": "carol"})
    assert created.json()["warnings"]
    resync = await client.post("/resync")
    assert resync.json()["pushed"] == 0
    assert len(resync.json()["warnings"]) == 1


@pytest.mark.asyncio
async def test_metrics_exposition(client) -> None:
    await client.post("/peers", json={"name": "alice"})

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "wgsync_lifecycle_operations_total" in response.text
