from __future__ import annotations

import ipaddress
from collections.abc import Iterable
from dataclasses import dataclass

from wgsync.services.errors import PoolExhausted, ValidationError
from wgsync.settings import Settings

LAST_HOST_OFFSET = 254


@dataclass(frozen=True)
class AddressPool:
    cidr: str
    start_offset: int = 6

    @classmethod
    def from_settings(cls, settings: Settings) -> AddressPool:
        return cls(cidr=settings.pool_cidr, start_offset=settings.pool_start_offset)

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.cidr, strict=False)


def _host(raw: str) -> ipaddress.IPv4Address | None:
    value = str(raw or "").strip()
    if not value:
        return None
    try:
        iface = ipaddress.IPv4Interface(value)
    except ValueError:
        return None
    if iface.network.prefixlen != 32:
        return None
    return iface.ip


def format_address(ip: ipaddress.IPv4Address) -> str:
    return f"{ip}/32"


def iter_candidate_addresses(pool: AddressPool) -> list[str]:
    network = pool.network
    base = int(network.network_address)
    out: list[str] = []
    for offset in range(max(1, pool.start_offset), LAST_HOST_OFFSET + 1):
        ip = ipaddress.IPv4Address(base + offset)
        if ip not in network or ip == network.broadcast_address:
            break
        out.append(format_address(ip))
    return out


def allocate_next(pool: AddressPool, used_addresses: Iterable[str]) -> str:
    """
    Lowest free slot of the pool.

    `used_addresses` comes from the directory (not the live interface): a record that
    has not converged yet still holds its address.
    """
    used = {ip for ip in (_host(raw) for raw in used_addresses) if ip is not None}
    for candidate in iter_candidate_addresses(pool):
        if _host(candidate) not in used:
            return candidate
    raise PoolExhausted(f"address pool {pool.cidr} exhausted")


def validate_address(pool: AddressPool, raw: str) -> str:
    """Normalize an explicitly requested address to `a.b.c.d/32` or raise ValidationError."""
    ip = _host(raw)
    if ip is None:
        raise ValidationError(f"address must be a single IPv4 host (x.x.x.x/32): {raw!r}")
    if format_address(ip) not in iter_candidate_addresses(pool):
        raise ValidationError(f"address {ip} is outside of pool {pool.cidr} (from offset {pool.start_offset})")
    return format_address(ip)
