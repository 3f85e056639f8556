from datetime import datetime, timedelta, timezone

import pytest

from wgsync.services.interface import PeerSnapshot
from wgsync.services.stats import endpoint_host, merge_values, parse_counter, parse_handshake

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _epoch(ts: datetime) -> str:
    return str(int(ts.timestamp()))


def _snapshot(**overrides) -> PeerSnapshot:
    values = dict(
        public_key="pk=",
        endpoint="198.51.100.4:40000",
        allowed_routes_raw="10.0.0.6/32",
        last_handshake_epoch=_epoch(NOW - timedelta(seconds=30)),
        rx_bytes="2048",
        tx_bytes="4096",
        keepalive_seconds=25,
    )
    values.update(overrides)
    return PeerSnapshot(**values)


@pytest.mark.parametrize(
    "raw",
    [
        "0",
        "",
        None,
        "abc",
        "-5",
        "17e8",
        "\u00b2",
        "\u0661\u0662",
        _epoch(datetime(2019, 12, 31, tzinfo=timezone.utc)),
        _epoch(NOW + timedelta(hours=1)),
    ],
)
def test_parse_handshake_rejects_invalid_values(raw) -> None:
    assert parse_handshake(raw, NOW) is None


def test_parse_handshake_accepts_recent_epoch() -> None:
    ts = NOW - timedelta(minutes=5)
    assert parse_handshake(_epoch(ts), NOW) == ts


def test_parse_counter() -> None:
    assert parse_counter("42") == 42
    assert parse_counter("") == 0
    assert parse_counter("-1") == 0
    assert parse_counter("x") == 0


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("203.0.113.7:51820", "203.0.113.7"),
        ("[2001:db8::1]:51820", "2001:db8::1"),
        ("(none)", None),
        ("", None),
        (None, None),
        ("not-an-ip:51820", None),
    ],
)
def test_endpoint_host(raw, expected) -> None:
    assert endpoint_host(raw) == expected


def test_merge_values_for_connected_peer() -> None:
    values = merge_values(_snapshot(), NOW, 180)

    assert values == {
        "rx_bytes": 2048,
        "tx_bytes": 4096,
        "last_handshake_at": NOW - timedelta(seconds=30),
        "last_connection_at": NOW,
        "last_seen_addr": "198.51.100.4",
    }


def test_merge_values_keeps_counters_when_handshake_is_invalid() -> None:
    values = merge_values(_snapshot(last_handshake_epoch="0", endpoint=None), NOW, 180)

    assert values == {"rx_bytes": 2048, "tx_bytes": 4096}


def test_merge_values_old_handshake_is_not_a_connection() -> None:
    values = merge_values(_snapshot(last_handshake_epoch=_epoch(NOW - timedelta(hours=2))), NOW, 180)

    assert "last_connection_at" not in values
    assert values["last_handshake_at"] == NOW - timedelta(hours=2)


def test_merge_values_with_superscript_handshake_keeps_counters() -> None:
    values = merge_values(_snapshot(last_handshake_epoch="\u00b2"), NOW, 180)

    assert values == {"rx_bytes": 2048, "tx_bytes": 4096, "last_seen_addr": "198.51.100.4"}
