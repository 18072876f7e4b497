"""Tests for the reservation repository."""

import asyncio

import pytest

from tablecall.models.reservation import ReservationStatus, StatusUpdate
from tablecall.services.locks import KeyedLock
from tablecall.services.reservation_store import ReservationStore


class TestReservationStore:
    """Tests for ReservationStore."""

    @pytest.mark.asyncio
    async def test_create_stores_pending(self, store, reservation_fields):
        """Test that a new reservation is pending and retrievable."""
        reservation = await store.create(reservation_fields)

        assert reservation.id
        assert reservation.status == ReservationStatus.PENDING
        assert reservation.name == "Jane Smith"
        assert await store.get(reservation.id) == reservation
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, store, reservation_fields):
        """Test that every reservation gets its own ID."""
        ids = {(await store.create(reservation_fields)).id for _ in range(20)}

        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_get_not_found(self, store):
        """Test getting an unknown reservation."""
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_merge_status(self, store, reservation_fields):
        """Test that a status event is stored."""
        reservation = await store.create(reservation_fields)

        merged = await store.merge_status(
            StatusUpdate(
                id=reservation.id,
                status=ReservationStatus.SUCCESS,
                status_message="Reservation confirmed",
            )
        )

        assert merged.status == ReservationStatus.SUCCESS
        stored = await store.get(reservation.id)
        assert stored.status == ReservationStatus.SUCCESS
        assert stored.status_message == "Reservation confirmed"

    @pytest.mark.asyncio
    async def test_merge_status_unknown(self, store):
        """Test that events for unknown reservations are ignored."""
        result = await store.merge_status(
            StatusUpdate(id="missing", status=ReservationStatus.ERROR)
        )

        assert result is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_concurrent_merges_keep_all_fields(self, store, reservation_fields):
        """Test that interleaved events for one reservation lose nothing."""
        reservation = await store.create(reservation_fields)

        await asyncio.gather(
            store.merge_status(
                StatusUpdate(
                    id=reservation.id,
                    status=ReservationStatus.SUCCESS,
                    person_name="Jane",
                )
            ),
            store.merge_status(
                StatusUpdate(
                    id=reservation.id,
                    status=ReservationStatus.SUCCESS,
                    confirmed_party_size=5,
                )
            ),
            store.merge_status(
                StatusUpdate(
                    id=reservation.id,
                    status=ReservationStatus.SUCCESS,
                    special_instructions="Patio",
                )
            ),
        )

        stored = await store.get(reservation.id)
        assert stored.person_name == "Jane"
        assert stored.confirmed_party_size == 5
        assert stored.special_instructions == "Patio"

    @pytest.mark.asyncio
    async def test_list_recent_newest_first(self, store, reservation_fields):
        """Test that listing returns the newest reservations first."""
        first = await store.create(reservation_fields)
        second = await store.create(reservation_fields)
        third = await store.create(reservation_fields)

        recent = await store.list_recent(2)

        assert [r.id for r in recent] == [third.id, second.id]
        assert first.id not in {r.id for r in recent}

    @pytest.mark.asyncio
    async def test_list_recent_default_limit(self, store, reservation_fields):
        """Test the default of ten reservations."""
        for _ in range(12):
            await store.create(reservation_fields)

        assert len(await store.list_recent()) == 10

    @pytest.mark.asyncio
    async def test_list_recent_edge_limits(self, store, reservation_fields):
        """Test zero and oversized limits."""
        await store.create(reservation_fields)

        assert await store.list_recent(0) == []
        assert len(await store.list_recent(50)) == 1

    @pytest.mark.asyncio
    async def test_list_recent_empty(self):
        """Test listing an empty store."""
        assert await ReservationStore().list_recent() == []


class TestKeyedLock:
    """Tests for KeyedLock."""

    @pytest.mark.asyncio
    async def test_serializes_same_key(self):
        """Test that holders of one key never overlap."""
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold("r-1"):
                events.append(f"{name}-start")
                await asyncio.sleep(0)
                events.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_wait(self):
        """Test that one key being held does not block another."""
        locks = KeyedLock()

        async with locks.hold("r-1"):
            async with locks.hold("r-2"):
                assert len(locks) == 2

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self):
        """Test that idle keys do not accumulate."""
        locks = KeyedLock()

        async with locks.hold("r-1"):
            pass

        assert len(locks) == 0
