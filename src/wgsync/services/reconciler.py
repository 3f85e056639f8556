from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Iterable, Iterator, Mapping
from contextlib import asynccontextmanager, contextmanager, nullcontext
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import anyio
from prometheus_client import Counter
from sqlalchemy import select

from wgsync.db import PeerStore
from wgsync.enums import InterfaceOp, LifecycleOp
from wgsync.models import Peer
from wgsync.services.directory import (
    commit_or_conflict,
    find_collision,
    list_peers,
    lookup_name,
    normalize_name,
    require_peer,
    used_addresses,
)
from wgsync.services.errors import Conflict, InterfaceUnavailable, PeerDirectoryError, ValidationError
from wgsync.services.interface import InterfaceController
from wgsync.services.ipam import AddressPool, allocate_next, validate_address
from wgsync.services.stats import StatsCycleResult, StatsReconciler
from wgsync.services.wireguard import Keypair, generate_keypair
from wgsync.settings import Settings

logger = logging.getLogger("wgsync.reconciler")

_LIFECYCLE_OPERATIONS = Counter(
    "wgsync_lifecycle_operations_total",
    "Peer lifecycle operations by outcome",
    labelnames=["op", "result"],
)
_CONVERGENCE_FAILURES = Counter(
    "wgsync_interface_convergence_failures_total",
    "Interface calls that failed after a committed directory write",
    labelnames=["op"],
)

KeyProvisioner = Callable[[], Keypair]

# Plain column writes accepted by update(); `enabled` and `address` go through convergence.
UPDATABLE_FIELDS = frozenset(
    {"notes", "allowed_routes", "endpoint_override", "dns_hint", "keepalive_seconds", "interface_name"}
)
CONVERGING_FIELDS = frozenset({"enabled", "address"})


@dataclass
class PeerOutcome:
    peer: Peer | None
    warnings: list[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return not self.warnings


@dataclass(frozen=True)
class DeletedPeer:
    name: str
    address: str
    public_key: str
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FailedDelete:
    name: str
    error: str


@dataclass
class BulkDeleteResult:
    deleted: list[DeletedPeer] = field(default_factory=list)
    failed: list[FailedDelete] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


@dataclass
class ResyncResult:
    pushed: int = 0
    removed: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class InterfaceInfo:
    interface: str
    public_key: str | None
    details: str | None = None

    @property
    def available(self) -> bool:
        return self.public_key is not None


class NameLocks:
    """One asyncio.Lock per peer name, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._holders[name] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[name] -= 1
            if self._holders[name] <= 0:
                del self._holders[name]
                self._locks.pop(name, None)

    def __len__(self) -> int:
        return len(self._locks)


@contextmanager
def _track(op: LifecycleOp) -> Iterator[None]:
    try:
        yield
    except PeerDirectoryError as exc:
        _LIFECYCLE_OPERATIONS.labels(op.value, type(exc).__name__).inc()
        raise
    _LIFECYCLE_OPERATIONS.labels(op.value, "ok").inc()


def _validate_routes(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("allowed_routes must be a list of CIDR strings")
    routes: list[str] = []
    for item in raw:
        try:
            routes.append(str(ipaddress.ip_network(str(item).strip(), strict=False)))
        except ValueError as exc:
            raise ValidationError(f"invalid route {item!r}") from exc
    return routes


def _validate_keepalive(raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("keepalive_seconds must be an integer") from exc
    if value < 0 or value > 65535:
        raise ValidationError("keepalive_seconds must be within 0..65535")
    return value


def _optional_text(raw: Any) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


class Reconciler:
    """
    Lifecycle operations over the peer directory.

    Directory first, interface best-effort: every mutation commits to the store and
    only then converges the live interface. Interface failures never roll back the
    store; they come back as `PeerOutcome.warnings`.
    """

    def __init__(
        self,
        store: PeerStore,
        interface: InterfaceController,
        settings: Settings,
        *,
        keygen: KeyProvisioner | None = None,
    ) -> None:
        self.store = store
        self.interface = interface
        self.settings = settings
        self.pool = AddressPool.from_settings(settings)
        self.stats = StatsReconciler(store, interface, settings)
        self._keygen = keygen or partial(
            generate_keypair, settings.wg_executable, settings.command_timeout_seconds
        )
        self._locks = NameLocks()
        # Creates (and address changes) pick a slot from the same snapshot of used addresses.
        self._allocation_lock = asyncio.Lock()

    async def _provision(self) -> Keypair:
        return await anyio.to_thread.run_sync(self._keygen)

    async def _call_interface(self, op: InterfaceOp, func: Callable[..., Any], *args: Any) -> str | None:
        try:
            await anyio.to_thread.run_sync(func, *args)
        except InterfaceUnavailable as exc:
            _CONVERGENCE_FAILURES.labels(op.value).inc()
            logger.warning("interface_call_failed op=%s error=%s", op.value, exc)
            return f"{op.value}: {exc}"
        return None

    async def _push(self, peer: Peer) -> str | None:
        return await self._call_interface(
            InterfaceOp.UPSERT_PEER,
            self.interface.upsert_peer,
            peer.public_key,
            [peer.address],
            peer.keepalive_seconds,
        )

    async def _pull(self, public_key: str) -> str | None:
        return await self._call_interface(InterfaceOp.REMOVE_PEER, self.interface.remove_peer, public_key)

    async def create(
        self,
        name: str,
        *,
        address: str | None = None,
        enabled: bool = True,
        allowed_routes: Iterable[str] | None = None,
        endpoint_override: str | None = None,
        dns_hint: str | None = None,
        keepalive_seconds: int | None = None,
        notes: str | None = None,
        interface_name: str | None = None,
        created_by: str | None = None,
    ) -> PeerOutcome:
        with _track(LifecycleOp.CREATE):
            peer_name = normalize_name(name)
            explicit = validate_address(self.pool, address) if address else None
            routes = _validate_routes(
                list(allowed_routes) if allowed_routes is not None else self.settings.default_allowed_routes
            )
            keepalive = _validate_keepalive(
                self.settings.default_keepalive_seconds if keepalive_seconds is None else keepalive_seconds
            )

            async with self._locks.hold(peer_name):
                async with self.store.session() as session:
                    collision = await find_collision(session, name=peer_name, address=explicit)
                if collision:
                    raise Conflict(f"peer {collision} already exists")

                keys = await self._provision()

                async with self._allocation_lock:
                    async with self.store.session() as session:
                        assigned = explicit or allocate_next(self.pool, await used_addresses(session))
                        peer = Peer(
                            name=peer_name,
                            address=assigned,
                            public_key=keys.public_key,
                            private_key=keys.private_key,
                            enabled=bool(enabled),
                            allowed_routes=routes,
                            endpoint_override=_optional_text(endpoint_override),
                            dns_hint=_optional_text(dns_hint) or self.settings.default_dns_hint,
                            keepalive_seconds=keepalive,
                            notes=_optional_text(notes),
                            interface_name=_optional_text(interface_name) or self.settings.wg_interface,
                            created_by=_optional_text(created_by) or "system",
                        )
                        peer.clear_stats()
                        session.add(peer)
                        await commit_or_conflict(session)

                logger.info("peer_created name=%s address=%s enabled=%s", peer.name, peer.address, peer.enabled)
                warnings: list[str] = []
                if peer.enabled:
                    warning = await self._push(peer)
                    if warning:
                        warnings.append(warning)
                return PeerOutcome(peer=peer, warnings=warnings)

    async def enable(self, name: str) -> PeerOutcome:
        with _track(LifecycleOp.ENABLE):
            peer_name = lookup_name(name)
            async with self._locks.hold(peer_name):
                async with self.store.session() as session:
                    peer = await require_peer(session, peer_name)
                    peer.enabled = True
                    await commit_or_conflict(session)
                logger.info("peer_enabled name=%s", peer_name)
                warning = await self._push(peer)
                return PeerOutcome(peer=peer, warnings=[warning] if warning else [])

    async def disable(self, name: str) -> PeerOutcome:
        with _track(LifecycleOp.DISABLE):
            peer_name = lookup_name(name)
            async with self._locks.hold(peer_name):
                async with self.store.session() as session:
                    peer = await require_peer(session, peer_name)
                    # Same write as the flag flip: a disabled peer never shows stale traffic.
                    peer.enabled = False
                    peer.clear_stats()
                    await commit_or_conflict(session)
                logger.info("peer_disabled name=%s", peer_name)
                warning = await self._pull(peer.public_key)
                return PeerOutcome(peer=peer, warnings=[warning] if warning else [])

    async def delete(self, name: str) -> PeerOutcome:
        with _track(LifecycleOp.DELETE):
            peer_name = lookup_name(name)
            async with self._locks.hold(peer_name):
                async with self.store.session() as session:
                    public_key = (await require_peer(session, peer_name)).public_key
                # Interface first, but its failure must never block the delete.
                warning = await self._pull(public_key)
                async with self.store.session() as session:
                    peer = await require_peer(session, peer_name)
                    await session.delete(peer)
                    await session.commit()
                logger.info("peer_deleted name=%s address=%s", peer.name, peer.address)
                return PeerOutcome(peer=peer, warnings=[warning] if warning else [])

    async def regenerate(self, name: str) -> PeerOutcome:
        with _track(LifecycleOp.REGENERATE):
            peer_name = lookup_name(name)
            async with self._locks.hold(peer_name):
                async with self.store.session() as session:
                    old_public_key = (await require_peer(session, peer_name)).public_key
                # A keygen failure or a key collision leaves both the record and the live key untouched.
                keys = await self._provision()
                async with self.store.session() as session:
                    peer = await require_peer(session, peer_name)
                    peer.public_key = keys.public_key
                    peer.private_key = keys.private_key
                    # Counters belonged to the old key.
                    peer.clear_stats()
                    await commit_or_conflict(session)

                logger.info("peer_keys_regenerated name=%s", peer_name)
                warnings: list[str] = []
                removal_warning = await self._pull(old_public_key)
                if removal_warning:
                    warnings.append(removal_warning)
                if peer.enabled:
                    if removal_warning:
                        # Adding now could leave both keys live for one peer.
                        warnings.append("upsert_peer: skipped while the old key is still live")
                    else:
                        warning = await self._push(peer)
                        if warning:
                            warnings.append(warning)
                return PeerOutcome(peer=peer, warnings=warnings)

    async def update(self, name: str, patch: Mapping[str, Any]) -> PeerOutcome:
        with _track(LifecycleOp.UPDATE):
            unknown = set(patch) - UPDATABLE_FIELDS - CONVERGING_FIELDS
            if unknown:
                raise ValidationError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

            peer_name = lookup_name(name)
            changes: dict[str, Any] = {}
            for key in UPDATABLE_FIELDS & set(patch):
                value = patch[key]
                if key == "allowed_routes":
                    changes[key] = _validate_routes(value if value is not None else self.settings.default_allowed_routes)
                elif key == "keepalive_seconds":
                    changes[key] = _validate_keepalive(
                        value if value is not None else self.settings.default_keepalive_seconds
                    )
                else:
                    changes[key] = _optional_text(value)
            new_address = validate_address(self.pool, patch["address"]) if patch.get("address") else None
            want_enabled = patch.get("enabled")

            allocation = self._allocation_lock if new_address else nullcontext()
            async with self._locks.hold(peer_name), allocation:
                async with self.store.session() as session:
                    peer = await require_peer(session, peer_name)
                    was_enabled = peer.enabled
                    repush = False

                    for key, value in changes.items():
                        if key == "keepalive_seconds" and value != peer.keepalive_seconds:
                            repush = True
                        setattr(peer, key, value)

                    if new_address and new_address != peer.address:
                        owner = await session.scalar(
                            select(Peer.name).where(Peer.address == new_address, Peer.id != peer.id)
                        )
                        if owner is not None:
                            raise Conflict(f"address {new_address} already belongs to {owner}")
                        peer.address = new_address
                        repush = True

                    if want_enabled is not None:
                        peer.enabled = bool(want_enabled)
                        if not peer.enabled:
                            peer.clear_stats()

                    await commit_or_conflict(session)

                logger.info("peer_updated name=%s fields=%s", peer_name, ",".join(sorted(patch)))
                warning: str | None = None
                if not peer.enabled:
                    if was_enabled or want_enabled is not None:
                        warning = await self._pull(peer.public_key)
                elif repush or not was_enabled or want_enabled is not None:
                    warning = await self._push(peer)
                return PeerOutcome(peer=peer, warnings=[warning] if warning else [])

    async def bulk_delete(self, names: Iterable[str]) -> BulkDeleteResult:
        """Single-delete sequence per name; not transactional across the batch."""
        result = BulkDeleteResult()
        for raw in names:
            try:
                outcome = await self.delete(raw)
            except PeerDirectoryError as exc:
                result.failed.append(FailedDelete(name=str(raw), error=str(exc)))
                continue
            peer = outcome.peer
            result.deleted.append(
                DeletedPeer(
                    name=peer.name,
                    address=peer.address,
                    public_key=peer.public_key,
                    warnings=list(outcome.warnings),
                )
            )
        logger.info("peers_bulk_deleted deleted=%s failed=%s", result.deleted_count, len(result.failed))
        return result

    async def get(self, name: str) -> Peer:
        async with self.store.session() as session:
            return await require_peer(session, lookup_name(name))

    async def reveal(self, name: str) -> Peer:
        peer = await self.get(name)
        logger.info("peer_private_key_revealed name=%s", peer.name)
        return peer

    async def list_peers(self, *, enabled: bool | None = None) -> list[Peer]:
        async with self.store.session() as session:
            return await list_peers(session, enabled=enabled)

    async def resync(self) -> ResyncResult:
        """
        Converge the whole interface to the directory.

        Stops at the first interface failure: the interface is most likely down and
        every further call would only wait for its timeout.
        """
        result = ResyncResult()
        async with self.store.session() as session:
            names = [peer.name for peer in await list_peers(session)]

        for peer_name in names:
            async with self._locks.hold(peer_name):
                async with self.store.session() as session:
                    peer = await session.scalar(select(Peer).where(Peer.name == peer_name))
                if peer is None:
                    continue
                if peer.enabled:
                    warning = await self._push(peer)
                    if warning is None:
                        result.pushed += 1
                else:
                    warning = await self._pull(peer.public_key)
                    if warning is None:
                        result.removed += 1
            if warning:
                result.warnings.append(warning)
                break

        _LIFECYCLE_OPERATIONS.labels(LifecycleOp.RESYNC.value, "partial" if result.warnings else "ok").inc()
        logger.info("interface_resynced pushed=%s removed=%s warnings=%s", result.pushed, result.removed, len(result.warnings))
        return result

    async def run_stats_once(self) -> StatsCycleResult:
        return await self.stats.run_once()

    async def interface_info(self) -> InterfaceInfo:
        try:
            key = await anyio.to_thread.run_sync(self.interface.get_local_public_key)
        except InterfaceUnavailable as exc:
            return InterfaceInfo(interface=self.settings.wg_interface, public_key=None, details=str(exc))
        return InterfaceInfo(interface=self.settings.wg_interface, public_key=key)
