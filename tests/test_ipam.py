import pytest

from wgsync.services.errors import PoolExhausted, ValidationError
from wgsync.services.ipam import AddressPool, allocate_next, iter_candidate_addresses, validate_address

POOL = AddressPool(cidr="10.0.0.0/24", start_offset=6)


def test_candidates_start_at_offset_and_stop_before_broadcast() -> None:
    candidates = iter_candidate_addresses(POOL)
    assert candidates[0] == "10.0.0.6/32"
    assert candidates[-1] == "10.0.0.254/32"
    assert "10.0.0.255/32" not in candidates
    assert len(candidates) == 249


def test_allocate_next_takes_the_lowest_gap() -> None:
    assert allocate_next(POOL, []) == "10.0.0.6/32"
    assert allocate_next(POOL, ["10.0.0.6/32", "10.0.0.8/32"]) == "10.0.0.7/32"
    assert allocate_next(POOL, ["10.0.0.6/32", "10.0.0.7/32", "10.0.0.8/32"]) == "10.0.0.9/32"


def test_allocate_next_ignores_malformed_used_entries() -> None:
    assert allocate_next(POOL, ["garbage", "", "10.0.0.6/24"]) == "10.0.0.6/32"


def test_allocate_next_raises_when_pool_is_full() -> None:
    used = iter_candidate_addresses(POOL)
    with pytest.raises(PoolExhausted):
        allocate_next(POOL, used)


def test_small_pool_has_a_single_slot() -> None:
    pool = AddressPool(cidr="10.0.0.0/29", start_offset=6)
    assert iter_candidate_addresses(pool) == ["10.0.0.6/32"]
    with pytest.raises(PoolExhausted):
        allocate_next(pool, ["10.0.0.6/32"])


def test_validate_address_normalizes_bare_host() -> None:
    assert validate_address(POOL, "10.0.0.9") == "10.0.0.9/32"
    assert validate_address(POOL, " 10.0.0.9/32 ") == "10.0.0.9/32"


@pytest.mark.parametrize("raw", ["10.0.0.9/24", "10.0.0.5/32", "10.0.1.9/32", "10.0.0.255/32", "nope", ""])
def test_validate_address_rejects_outside_or_malformed(raw: str) -> None:
    with pytest.raises(ValidationError):
        validate_address(POOL, raw)
