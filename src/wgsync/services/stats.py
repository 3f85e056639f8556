from __future__ import annotations

import asyncio
import ipaddress
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import anyio
from prometheus_client import Counter

from wgsync.db import PeerStore
from wgsync.services.directory import clear_disabled_stats, key_index, merge_live_stats
from wgsync.services.errors import InterfaceUnavailable
from wgsync.services.interface import NO_ENDPOINT, InterfaceController, PeerSnapshot
from wgsync.settings import Settings

logger = logging.getLogger("wgsync.stats")

# Anything older is garbage from a freshly reset interface (or a clock that never synced).
HANDSHAKE_FLOOR = datetime(2020, 1, 1, tzinfo=timezone.utc)

_STATS_CYCLES_TOTAL = Counter(
    "wgsync_stats_cycles_total",
    "Statistics reconciliation cycles",
    labelnames=["result"],
)
_STATS_PEERS_UPDATED_TOTAL = Counter(
    "wgsync_stats_peers_updated_total",
    "Peer records refreshed from live interface counters",
)
_GHOST_PEERS_REMOVED_TOTAL = Counter(
    "wgsync_ghost_peers_removed_total",
    "Live interface peers removed because their record is disabled or missing",
    labelnames=["kind"],
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_handshake(raw: str | None, now: datetime) -> datetime | None:
    value = str(raw or "").strip()
    # str.isdigit() also accepts non-ASCII digits such as "²", which int() rejects.
    if not (value.isascii() and value.isdigit()):
        return None
    epoch = int(value)
    if epoch <= 0:
        return None
    try:
        ts = datetime.fromtimestamp(epoch, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    if ts < HANDSHAKE_FLOOR or ts > now:
        return None
    return ts


def parse_counter(raw: str | None) -> int:
    try:
        value = int(str(raw or "").strip())
    except ValueError:
        return 0
    return value if value >= 0 else 0


def endpoint_host(endpoint: str | None) -> str | None:
    """`203.0.113.7:51820` -> `203.0.113.7`, `[2001:db8::1]:51820` -> `2001:db8::1`."""
    value = str(endpoint or "").strip()
    if not value or value == NO_ENDPOINT:
        return None
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        host = value
    host = host.strip("[]")
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        return None


def merge_values(snapshot: PeerSnapshot, now: datetime, connected_window_seconds: int) -> dict[str, object]:
    """Only the fields that parsed; an invalid handshake still refreshes the counters."""
    values: dict[str, object] = {
        "rx_bytes": parse_counter(snapshot.rx_bytes),
        "tx_bytes": parse_counter(snapshot.tx_bytes),
    }
    handshake = parse_handshake(snapshot.last_handshake_epoch, now)
    if handshake is not None:
        values["last_handshake_at"] = handshake
        if now - handshake <= timedelta(seconds=max(0, connected_window_seconds)):
            values["last_connection_at"] = now
    host = endpoint_host(snapshot.endpoint)
    if host is not None:
        values["last_seen_addr"] = host
    return values


@dataclass(frozen=True)
class StatsCycleResult:
    interface_available: bool
    snapshots: int = 0
    updated: int = 0
    ghosts_removed: int = 0
    unknown_removed: int = 0


class StatsReconciler:
    """Pulls live interface counters into the directory and evicts ghost peers."""

    def __init__(self, store: PeerStore, interface: InterfaceController, settings: Settings) -> None:
        self.store = store
        self.interface = interface
        self.settings = settings

    async def _remove_live(self, public_key: str, *, kind: str) -> bool:
        try:
            await anyio.to_thread.run_sync(self.interface.remove_peer, public_key)
        except InterfaceUnavailable as exc:
            logger.warning("ghost_peer_remove_failed kind=%s error=%s", kind, exc)
            return False
        _GHOST_PEERS_REMOVED_TOTAL.labels(kind).inc()
        return True

    async def run_once(self, now: datetime | None = None) -> StatsCycleResult:
        now = now or _utcnow()
        try:
            snapshots = await anyio.to_thread.run_sync(self.interface.dump_peers)
        except InterfaceUnavailable as exc:
            # The interface commonly does not exist until the first peer is pushed.
            logger.debug("stats_cycle_skipped reason=%s", exc)
            _STATS_CYCLES_TOTAL.labels("interface_unavailable").inc()
            return StatsCycleResult(interface_available=False)

        updated = 0
        ghosts: list[tuple[str, str]] = []
        unknown: list[str] = []
        async with self.store.session() as session:
            index = await key_index(session)
            for snapshot in snapshots:
                row = index.get(snapshot.public_key)
                if row is None:
                    if self.settings.prune_unknown_peers:
                        unknown.append(snapshot.public_key)
                    continue
                if not row.enabled:
                    ghosts.append((snapshot.public_key, row.name))
                    continue
                values = merge_values(snapshot, now, self.settings.connected_window_seconds)
                if await merge_live_stats(session, snapshot.public_key, values):
                    updated += 1
            for public_key, _ in ghosts:
                await clear_disabled_stats(session, public_key)
            await session.commit()

        ghosts_removed = 0
        for public_key, name in ghosts:
            logger.info("ghost_peer_detected name=%s", name)
            if await self._remove_live(public_key, kind="disabled"):
                ghosts_removed += 1

        unknown_removed = 0
        for public_key in unknown:
            if await self._remove_live(public_key, kind="unknown"):
                unknown_removed += 1

        _STATS_CYCLES_TOTAL.labels("ok").inc()
        _STATS_PEERS_UPDATED_TOTAL.inc(updated)
        result = StatsCycleResult(
            interface_available=True,
            snapshots=len(snapshots),
            updated=updated,
            ghosts_removed=ghosts_removed,
            unknown_removed=unknown_removed,
        )
        logger.debug(
            "stats_cycle_done snapshots=%s updated=%s ghosts_removed=%s unknown_removed=%s",
            result.snapshots,
            result.updated,
            result.ghosts_removed,
            result.unknown_removed,
        )
        return result


async def stats_loop(stats: StatsReconciler, *, interval_seconds: int = 30) -> None:
    while True:
        try:
            await stats.run_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            _STATS_CYCLES_TOTAL.labels("error").inc()
            logger.exception("stats_cycle_failed")
        await asyncio.sleep(max(1, int(interval_seconds)))


class StatsPoller:
    """Owns the background task running `stats_loop`; stopped at shutdown."""

    def __init__(self, stats: StatsReconciler, *, interval_seconds: int = 30) -> None:
        self.stats = stats
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            stats_loop(self.stats, interval_seconds=self.interval_seconds), name="wgsync-stats"
        )
        logger.info("stats_poller_started interval_s=%s", self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("stats_poller_stopped")
