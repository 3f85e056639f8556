from __future__ import annotations

import subprocess
from dataclasses import dataclass

from wgsync.services.errors import ProvisionError


@dataclass(frozen=True)
class Keypair:
    private_key: str
    public_key: str


def generate_keypair(wg_executable: str = "wg", timeout: float = 10.0) -> Keypair:
    """
    Fresh WireGuard keypair in base64 format.
    Requires the `wg` binary in the runtime image.
    """
    try:
        priv = subprocess.run(
            [wg_executable, "genkey"], capture_output=True, text=True, check=True, timeout=timeout
        ).stdout.strip()
    except FileNotFoundError as exc:
        raise ProvisionError("wg binary not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProvisionError(f"wg genkey timed out after {timeout}s") from exc
    except subprocess.CalledProcessError as exc:
        raise ProvisionError(exc.stderr.strip() or "wg genkey failed") from exc

    try:
        pub = subprocess.run(
            [wg_executable, "pubkey"], input=priv + "\n", capture_output=True, text=True, check=True, timeout=timeout
        ).stdout.strip()
    except subprocess.TimeoutExpired as exc:
        raise ProvisionError(f"wg pubkey timed out after {timeout}s") from exc
    except subprocess.CalledProcessError as exc:
        raise ProvisionError(exc.stderr.strip() or "wg pubkey failed") from exc

    if not priv or not pub:
        raise ProvisionError("wireguard keygen returned empty output")
    return Keypair(private_key=priv, public_key=pub)
