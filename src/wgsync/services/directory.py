from __future__ import annotations

import re
from dataclasses import dataclass

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wgsync.models import Peer, cleared_stats
from wgsync.services.errors import Conflict, NotFound, ValidationError

_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]{0,63}$")


@dataclass(frozen=True)
class KeyIndexRow:
    name: str
    enabled: bool


def normalize_name(raw: str | None) -> str:
    name = str(raw or "").strip().lower()
    if not name:
        raise ValidationError("name is required")
    if not _NAME_RE.match(name):
        raise ValidationError(f"invalid peer name {raw!r} (allowed: a-z 0-9 . _ -, max 64 chars)")
    return name


def lookup_name(raw: str | None) -> str:
    # Lookups only need the stored form; a malformed name simply matches nothing.
    name = str(raw or "").strip().lower()
    if not name:
        raise ValidationError("name is required")
    return name


async def get_peer(session: AsyncSession, name: str) -> Peer | None:
    return await session.scalar(select(Peer).where(Peer.name == name))


async def require_peer(session: AsyncSession, name: str) -> Peer:
    peer = await get_peer(session, name)
    if peer is None:
        raise NotFound(f"peer {name!r} not found")
    return peer


async def list_peers(session: AsyncSession, *, enabled: bool | None = None) -> list[Peer]:
    q = select(Peer).order_by(Peer.created_at.desc(), Peer.name.asc())
    if enabled is not None:
        q = q.where(Peer.enabled.is_(enabled))
    return list((await session.execute(q)).scalars().all())


async def used_addresses(session: AsyncSession) -> set[str]:
    return set((await session.execute(select(Peer.address))).scalars().all())


async def find_collision(
    session: AsyncSession,
    *,
    name: str,
    address: str | None = None,
    public_key: str | None = None,
) -> str | None:
    """Field name that already exists in the directory, if any."""
    clauses = [Peer.name == name]
    if address:
        clauses.append(Peer.address == address)
    if public_key:
        clauses.append(Peer.public_key == public_key)
    row = await session.scalar(select(Peer).where(or_(*clauses)).limit(1))
    if row is None:
        return None
    if row.name == name:
        return "name"
    if address and row.address == address:
        return "address"
    return "public_key"


async def commit_or_conflict(session: AsyncSession) -> None:
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict("peer name, address or public key already exists") from exc


async def key_index(session: AsyncSession) -> dict[str, KeyIndexRow]:
    rows = (await session.execute(select(Peer.public_key, Peer.name, Peer.enabled))).all()
    return {public_key: KeyIndexRow(name=name, enabled=bool(enabled)) for public_key, name, enabled in rows}


async def merge_live_stats(session: AsyncSession, public_key: str, values: dict[str, object]) -> bool:
    """
    Write statistics for an enabled peer.

    The `enabled` predicate makes a concurrent disable win: once the flag is
    committed as false, late stats writes match no row.
    """
    if not values:
        return False
    result = await session.execute(
        update(Peer)
        .where(Peer.public_key == public_key, Peer.enabled.is_(True))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def clear_disabled_stats(session: AsyncSession, public_key: str) -> bool:
    result = await session.execute(
        update(Peer)
        .where(Peer.public_key == public_key, Peer.enabled.is_(False))
        .values(**cleared_stats())
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
