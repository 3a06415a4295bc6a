"""
Tests for the slot advisory lock.

Run with: pytest tests/test_slot_lock.py -v
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from app.booking.errors import TransientStorageError
from app.booking.slot_lock import acquire_slot_lock, bucket_start, slot_lock_key
from tests.factories import OTHER_PROVIDER_ID, PROVIDER_ID, at, seeded_store

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1


class TestBucketStart:
    def test_floors_to_the_minute(self):
        assert bucket_start(datetime(2026, 3, 2, 10, 7, 42, 500, tzinfo=timezone.utc)) == at(10, 7)

    def test_non_utc_input_is_the_same_instant(self):
        phoenix = timezone(timedelta(hours=-7))
        local = datetime(2026, 3, 2, 3, 7, 42, tzinfo=phoenix)
        assert bucket_start(local) == at(10, 7)

    def test_wider_buckets(self):
        assert bucket_start(at(10, 14), bucket_seconds=15 * 60) == at(10, 0)
        assert bucket_start(at(10, 15), bucket_seconds=15 * 60) == at(10, 15)


class TestSlotLockKey:
    def test_provider_half_matches_md5_prefix(self):
        """md5('1') starts with c4ca4238, read as a signed int32."""
        provider_half, _ = slot_lock_key(1, at(10))
        assert provider_half == -993377736

    def test_bucket_half_is_minutes_since_epoch(self):
        _, bucket_half = slot_lock_key(PROVIDER_ID, at(10))
        assert bucket_half == int(at(10).timestamp()) // 60

    def test_deterministic(self):
        assert slot_lock_key(PROVIDER_ID, at(10)) == slot_lock_key(PROVIDER_ID, at(10))

    def test_halves_fit_int32(self):
        for provider_id in range(50):
            for bucket in (at(0), datetime(2100, 1, 1, tzinfo=timezone.utc)):
                for half in slot_lock_key(provider_id, bucket):
                    assert INT32_MIN <= half <= INT32_MAX

    def test_different_minute_different_key(self):
        assert slot_lock_key(PROVIDER_ID, at(10)) != slot_lock_key(PROVIDER_ID, at(10, 1))

    def test_different_provider_different_key(self):
        assert slot_lock_key(PROVIDER_ID, at(10)) != slot_lock_key(OTHER_PROVIDER_ID, at(10))

    def test_uuid_provider_ids_are_supported(self):
        key = slot_lock_key("7d0c1f1e-4a3b-4c55-9a31-6d2a1f0b9e10", at(10))
        assert all(INT32_MIN <= half <= INT32_MAX for half in key)


class _FailingAdvisoryTx:
    async def acquire_advisory_lock(self, key):
        raise TransientStorageError("Advisory lock unavailable: lock not available")


class TestAcquireSlotLock:
    @pytest.mark.asyncio
    async def test_records_key_for_the_bucket(self):
        store = seeded_store()
        async with store.transaction() as tx:
            assert await acquire_slot_lock(tx, PROVIDER_ID, at(10, 0)) is True
        assert store.advisory_keys_acquired == [slot_lock_key(PROVIDER_ID, at(10))]

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        with caplog.at_level(logging.WARNING, logger="app.booking.slot_lock"):
            assert await acquire_slot_lock(_FailingAdvisoryTx(), PROVIDER_ID, at(10)) is False
        assert "Advisory lock error (non-fatal)" in caplog.text

    @pytest.mark.asyncio
    async def test_same_slot_serializes_until_commit(self):
        store = seeded_store()
        order = []

        async def second():
            async with store.transaction() as tx:
                await acquire_slot_lock(tx, PROVIDER_ID, at(10, 0))
                order.append("second")

        async with store.transaction() as tx:
            await acquire_slot_lock(tx, PROVIDER_ID, at(10, 0))
            waiter = asyncio.create_task(second())
            await asyncio.sleep(0.01)
            assert not waiter.done()
            order.append("first")

        await asyncio.wait_for(waiter, timeout=1)
        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_different_slots_do_not_wait(self):
        store = seeded_store()
        async with store.transaction() as tx:
            await acquire_slot_lock(tx, PROVIDER_ID, at(10, 0))

            async def other_slot():
                async with store.transaction() as other:
                    return await acquire_slot_lock(other, PROVIDER_ID, at(11, 0))

            assert await asyncio.wait_for(other_slot(), timeout=1) is True
