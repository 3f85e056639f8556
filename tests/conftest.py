from __future__ import annotations

from collections.abc import Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from wgsync.db import PeerStore
from wgsync.services.errors import InterfaceUnavailable
from wgsync.services.interface import PeerSnapshot
from wgsync.services.reconciler import Reconciler
from wgsync.services.wireguard import Keypair
from wgsync.settings import Settings


class FakeInterface:
    """In-memory stand-in for the live interface; `failing` holds op names that raise."""

    def __init__(self) -> None:
        self.live: dict[str, tuple[list[str], int | None]] = {}
        self.counters: dict[str, dict[str, str]] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, ...]] = []
        self.local_key = "server-public-key="

    def _check(self, op: str) -> None:
        if op in self.failing or "*" in self.failing:
            raise InterfaceUnavailable(f"Unable to access interface: No such device ({op})")

    def upsert_peer(self, public_key: str, allowed_addresses: Sequence[str], keepalive: int | None) -> None:
        self.calls.append(("upsert", public_key))
        self._check("upsert")
        self.live[public_key] = (list(allowed_addresses), keepalive)

    def remove_peer(self, public_key: str) -> None:
        self.calls.append(("remove", public_key))
        self._check("remove")
        self.live.pop(public_key, None)

    def dump_peers(self) -> list[PeerSnapshot]:
        self.calls.append(("dump",))
        self._check("dump")
        out = []
        for public_key, (addresses, keepalive) in self.live.items():
            stats = self.counters.get(public_key, {})
            out.append(
                PeerSnapshot(
                    public_key=public_key,
                    endpoint=stats.get("endpoint"),
                    allowed_routes_raw=",".join(addresses),
                    last_handshake_epoch=stats.get("handshake", "0"),
                    rx_bytes=stats.get("rx", "0"),
                    tx_bytes=stats.get("tx", "0"),
                    keepalive_seconds=keepalive,
                )
            )
        return out

    def get_local_public_key(self) -> str:
        self._check("pubkey")
        return self.local_key


class FakeKeygen:
    def __init__(self) -> None:
        self.count = 0
        self.error: Exception | None = None

    def __call__(self) -> Keypair:
        if self.error is not None:
            raise self.error
        self.count += 1
        return Keypair(private_key=f"priv-{self.count}=", public_key=f"pub-{self.count}=")


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, database_url="", stats_enabled=False, resync_on_startup=False)


@pytest.fixture
def iface() -> FakeInterface:
    return FakeInterface()


@pytest.fixture
def keygen() -> FakeKeygen:
    return FakeKeygen()


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wgsync.db'}")
    peer_store = PeerStore(engine)
    await peer_store.create_all()
    yield peer_store
    await peer_store.dispose()


@pytest.fixture
def reconciler(store, iface, settings, keygen) -> Reconciler:
    return Reconciler(store, iface, settings, keygen=keygen)
