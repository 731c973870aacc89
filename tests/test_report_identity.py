"""
Tests for local identifier allocation
"""
from unittest.mock import patch

from report_identity import IdentityAllocator, is_local_id, LOCAL_ID_PREFIX


def test_ids_are_unique_and_prefixed():
    allocator = IdentityAllocator()
    ids = [allocator.allocate() for _ in range(1000)]
    assert len(set(ids)) == 1000
    assert all(i.startswith(LOCAL_ID_PREFIX) for i in ids)


def test_same_tick_still_distinct():
    allocator = IdentityAllocator()
    with patch("report_identity.time.time_ns", return_value=1_700_000_000_000_000_000):
        first = allocator.allocate()
        second = allocator.allocate()
    assert first != second
    assert first.split("-")[1] != second.split("-")[1]


def test_clock_going_backwards_stays_monotonic():
    allocator = IdentityAllocator()
    with patch("report_identity.time.time_ns", side_effect=[2000, 1000]):
        first = allocator.allocate()
        second = allocator.allocate()
    assert int(second.split("-")[1], 16) > int(first.split("-")[1], 16)


def test_is_local_id():
    assert is_local_id(IdentityAllocator().allocate())
    assert not is_local_id(12)
    assert not is_local_id("12")
    assert not is_local_id(None)
