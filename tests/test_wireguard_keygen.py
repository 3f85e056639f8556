import subprocess
from types import SimpleNamespace

import pytest

from wgsync.services import wireguard
from wgsync.services.errors import ProvisionError


def test_generate_keypair_pipes_private_key_into_pubkey(monkeypatch) -> None:
    calls = []

    def _run(cmd, **kwargs):
        calls.append((cmd, kwargs.get("input")))
        if cmd[1] == "genkey":
            return SimpleNamespace(stdout="cHJpdg==\n")
        return SimpleNamespace(stdout="cHVi\n")

    monkeypatch.setattr(wireguard.subprocess, "run", _run)

    keys = wireguard.generate_keypair()

    assert keys.private_key == "cHJpdg=="
    assert keys.public_key == "cHVi"
    assert calls == [(["wg", "genkey"], None), (["wg", "pubkey"], "cHJpdg==\n")]


def test_generate_keypair_without_binary(monkeypatch) -> None:
    def _run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(wireguard.subprocess, "run", _run)

    with pytest.raises(ProvisionError, match="not found"):
        wireguard.generate_keypair("/usr/bin/wg")


def test_generate_keypair_reports_stderr(monkeypatch) -> None:
    def _run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, output="", stderr="Operation not permitted\n")

    monkeypatch.setattr(wireguard.subprocess, "run", _run)

    with pytest.raises(ProvisionError, match="Operation not permitted"):
        wireguard.generate_keypair()


def test_generate_keypair_rejects_empty_output(monkeypatch) -> None:
    monkeypatch.setattr(wireguard.subprocess, "run", lambda cmd, **kwargs: SimpleNamespace(stdout=""))

    with pytest.raises(ProvisionError):
        wireguard.generate_keypair()
