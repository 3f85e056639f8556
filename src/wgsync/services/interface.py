from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from wgsync.services.errors import InterfaceUnavailable
from wgsync.settings import Settings

logger = logging.getLogger("wgsync.interface")

# `wg show dump` prints this for peers that never connected.
NO_ENDPOINT = "(none)"


@dataclass(frozen=True)
class PeerSnapshot:
    """
    One peer row of the live interface.

    Counters are kept as the raw strings reported by the interface; they are
    validated by the statistics merge, not here.
    """

    public_key: str
    endpoint: str | None
    allowed_routes_raw: str
    last_handshake_epoch: str
    rx_bytes: str
    tx_bytes: str
    keepalive_seconds: int | None


class InterfaceController(Protocol):
    def upsert_peer(self, public_key: str, allowed_addresses: Sequence[str], keepalive: int | None) -> None: ...

    def remove_peer(self, public_key: str) -> None: ...

    def dump_peers(self) -> list[PeerSnapshot]: ...

    def get_local_public_key(self) -> str: ...


def _parse_keepalive(raw: str) -> int | None:
    value = (raw or "").strip()
    if not value or value == "off":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_wg_dump(text: str) -> list[PeerSnapshot]:
    """
    Parse `wg show <iface> dump`.

    First line is the interface (private key, public key, listen port, fwmark);
    every following line is a peer:
      public_key, preshared_key, endpoint, allowed_ips, latest_handshake,
      transfer_rx, transfer_tx, persistent_keepalive
    """
    rows = [line.split("\t") for line in text.splitlines() if line.strip()]
    snapshots: list[PeerSnapshot] = []
    for row in rows[1:]:
        if len(row) < 8:
            continue
        public_key = row[0].strip()
        if not public_key:
            continue
        endpoint = row[2].strip()
        snapshots.append(
            PeerSnapshot(
                public_key=public_key,
                endpoint=None if endpoint in {"", NO_ENDPOINT} else endpoint,
                allowed_routes_raw=row[3].strip(),
                last_handshake_epoch=row[4].strip(),
                rx_bytes=row[5].strip(),
                tx_bytes=row[6].strip(),
                keepalive_seconds=_parse_keepalive(row[7]),
            )
        )
    return snapshots


# One kernel interface per process: never interleave two `wg set` calls.
_WG_LOCK = threading.Lock()


class WgInterfaceController:
    """InterfaceController backed by the `wg(8)` command line."""

    def __init__(self, interface: str = "wg0", wg_executable: str = "wg", timeout: float = 10.0) -> None:
        self.interface = interface
        self.wg_executable = wg_executable
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> WgInterfaceController:
        return cls(
            interface=settings.wg_interface,
            wg_executable=settings.wg_executable,
            timeout=settings.command_timeout_seconds,
        )

    def _run(self, *args: str) -> str:
        cmd = [self.wg_executable, *args]
        with _WG_LOCK:
            try:
                proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except FileNotFoundError as exc:
                raise InterfaceUnavailable("wg binary not found") from exc
            except subprocess.TimeoutExpired as exc:
                raise InterfaceUnavailable(f"{' '.join(args[:2])} timed out after {self.timeout}s") from exc
        if proc.returncode != 0:
            details = proc.stderr.strip() or f"wg exited with {proc.returncode}"
            raise InterfaceUnavailable(details)
        logger.debug("wg_command args=%s", " ".join(args[:3]))
        return proc.stdout

    def upsert_peer(self, public_key: str, allowed_addresses: Sequence[str], keepalive: int | None) -> None:
        # `wg set ... peer` is add-or-replace: repeating it converges to the same state.
        args = ["set", self.interface, "peer", public_key, "allowed-ips", ",".join(allowed_addresses)]
        if keepalive:
            args += ["persistent-keepalive", str(int(keepalive))]
        self._run(*args)

    def remove_peer(self, public_key: str) -> None:
        # Removing a key the interface does not hold is a no-op for wg.
        self._run("set", self.interface, "peer", public_key, "remove")

    def dump_peers(self) -> list[PeerSnapshot]:
        return parse_wg_dump(self._run("show", self.interface, "dump"))

    def get_local_public_key(self) -> str:
        key = self._run("show", self.interface, "public-key").strip()
        if not key:
            raise InterfaceUnavailable(f"{self.interface} has no public key")
        return key
