from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wgsync.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Live statistics columns; all of them are reset together when a peer stops being enabled.
def cleared_stats() -> dict[str, object]:
    return {
        "last_handshake_at": None,
        "last_seen_addr": None,
        "rx_bytes": 0,
        "tx_bytes": 0,
        "last_connection_at": None,
    }


class Peer(Base):
    __tablename__ = "wg_peer"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    public_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    private_key: Mapped[str] = mapped_column(String(64), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    allowed_routes: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    endpoint_override: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dns_hint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    keepalive_seconds: Mapped[int] = mapped_column(Integer, default=25, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    interface_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), default="system", nullable=False)

    last_handshake_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_addr: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rx_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    tx_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    last_connection_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_wg_peer_enabled_name", "enabled", "name"),
        Index("ix_wg_peer_created_at", "created_at"),
    )

    def clear_stats(self) -> None:
        for key, value in cleared_stats().items():
            setattr(self, key, value)
