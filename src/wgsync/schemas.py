from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from wgsync.enums import StoreState


class HealthResponse(BaseModel):
    status: str
    store: StoreState


class InterfaceRead(BaseModel):
    interface: str
    public_key: str | None = None
    available: bool
    details: str | None = None


class PeerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    address: str | None = Field(default=None, description="Explicit x.x.x.x/32 (auto-assigned if omitted)")
    enabled: bool = True
    allowed_routes: list[str] | None = None
    endpoint_override: str | None = Field(default=None, max_length=255)
    dns_hint: str | None = Field(default=None, max_length=255)
    keepalive_seconds: int | None = Field(default=None, ge=0, le=65535)
    notes: str | None = None
    interface_name: str | None = Field(default=None, max_length=32)
    created_by: str | None = Field(default=None, max_length=64)


class PeerUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    address: str | None = None
    allowed_routes: list[str] | None = None
    endpoint_override: str | None = Field(default=None, max_length=255)
    dns_hint: str | None = Field(default=None, max_length=255)
    keepalive_seconds: int | None = Field(default=None, ge=0, le=65535)
    notes: str | None = None
    interface_name: str | None = Field(default=None, max_length=32)


class PeerRead(BaseModel):
    id: UUID
    name: str
    address: str
    public_key: str
    enabled: bool
    allowed_routes: list[str]
    endpoint_override: str | None
    dns_hint: str | None
    keepalive_seconds: int
    notes: str | None
    interface_name: str | None
    created_by: str
    last_handshake_at: datetime | None
    last_seen_addr: str | None
    rx_bytes: int
    tx_bytes: int
    last_connection_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PeerSecretRead(PeerRead):
    private_key: str


class PeerOutcomeRead(BaseModel):
    peer: PeerRead | None = None
    warnings: list[str] = Field(default_factory=list)


class PeerSecretOutcomeRead(BaseModel):
    peer: PeerSecretRead
    warnings: list[str] = Field(default_factory=list)


class BulkDeleteRequest(BaseModel):
    names: list[str] = Field(min_length=1, max_length=1000)


class DeletedPeerRead(BaseModel):
    name: str
    address: str
    public_key: str
    warnings: list[str] = Field(default_factory=list)


class FailedDeleteRead(BaseModel):
    name: str
    error: str


class BulkDeleteRead(BaseModel):
    deleted_count: int
    deleted: list[DeletedPeerRead]
    failed: list[FailedDeleteRead]


class StatsCycleRead(BaseModel):
    interface_available: bool
    snapshots: int
    updated: int
    ghosts_removed: int
    unknown_removed: int


class ResyncRead(BaseModel):
    pushed: int
    removed: int
    warnings: list[str] = Field(default_factory=list)
