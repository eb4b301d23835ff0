"""Tests for BookingCache — optimistic updates and reconciliation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from studio_booking.cache import PENDING_PREFIX, BookingCache, CacheState
from studio_booking.errors import (
    BookingValidationError,
    ConflictError,
    NotFoundError,
    OverlapError,
    RemoteUnavailableError,
    StoreNotConfiguredError,
)
from studio_booking.events import EventType
from studio_booking.models.booking import Booking, NewBooking, RecordingPurpose
from studio_booking.store_providers.memory import InMemoryBookingStore
from studio_booking.store_providers.sheet import SheetBookingStore
from studio_booking.timegrid import OperatingWindow

DAY = "2024-01-10"
WINDOW = OperatingWindow(8, 23, 30)


def new(start="10:00", end="11:00", studio="A", user="Jane"):
    return NewBooking(
        studio=studio,
        date=DAY,
        start_time=start,
        end_time=end,
        user_name=user,
        purpose=RecordingPurpose.YOUTUBE,
        subject="Physics",
    )


class FlakyStore(InMemoryBookingStore):
    """In-memory store whose calls can be made to fail or to block."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_list = False
        self.fail_create: Exception | None = None
        self.fail_delete: Exception | None = None
        self.create_gate: asyncio.Event | None = None
        self.list_gate: asyncio.Event | None = None
        self.create_entered = asyncio.Event()
        self.list_calls = 0

    async def list_all(self):
        self.list_calls += 1
        if self.list_gate is not None:
            gate, self.list_gate = self.list_gate, None
            snapshot = await super().list_all()
            await gate.wait()
            return snapshot
        if self.fail_list:
            raise RemoteUnavailableError("network down")
        return await super().list_all()

    async def create(self, new_booking):
        self.create_entered.set()
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_create is not None:
            raise self.fail_create
        return await super().create(new_booking)

    async def delete_by_id(self, booking_id):
        if self.fail_delete is not None:
            raise self.fail_delete
        await super().delete_by_id(booking_id)


def make_cache(store, **kwargs):
    kwargs.setdefault("poll_interval", 3600)
    kwargs.setdefault("timezone", "UTC")
    return BookingCache(store, WINDOW, **kwargs)


@pytest.fixture
def store():
    return FlakyStore(window=WINDOW)


# ── Loading ─────────────────────────────────────────────────────────


class TestLoad:
    async def test_initial_state(self, store):
        cache = make_cache(store)
        assert cache.state is CacheState.UNINITIALIZED
        assert cache.bookings == []

    async def test_foreground_load_goes_through_loading(self, store):
        await store.create(new())
        cache = make_cache(store)

        assert await cache.load(foreground=True) is True

        assert cache.state is CacheState.READY
        assert len(cache.bookings) == 1
        transitions = [e.data["to"] for e in cache.events.history() if e.type is EventType.STATE]
        assert transitions == ["loading", "ready"]

    async def test_foreground_failure_is_error(self, store):
        store.fail_list = True
        cache = make_cache(store)

        assert await cache.load(foreground=True) is False

        assert cache.state is CacheState.ERROR
        assert cache.error == "Failed to fetch bookings. Reason: network down"

    async def test_background_failure_keeps_data(self, store):
        await store.create(new())
        cache = make_cache(store)
        await cache.load()
        store.fail_list = True

        assert await cache.load(foreground=False) is False

        assert cache.state is CacheState.READY
        assert len(cache.bookings) == 1
        assert cache.error is None

    async def test_background_load_never_shows_loading(self, store):
        cache = make_cache(store)
        await cache.load()
        seq = cache.events.last_seq

        await cache.load(foreground=False)

        assert [e.type for e in cache.events.history(since=seq)] == [EventType.LOADED]

    async def test_full_replace_not_merge(self, store):
        booking = await store.create(new())
        cache = make_cache(store)
        await cache.load()
        await store.delete_by_id(booking.id)

        await cache.load(foreground=False)

        assert cache.bookings == []

    async def test_background_success_recovers_from_error(self, store):
        store.fail_list = True
        cache = make_cache(store)
        await cache.load()
        store.fail_list = False

        await cache.load(foreground=False)

        assert cache.state is CacheState.READY
        assert cache.error is None

    async def test_unconfigured_store_loads_empty(self):
        cache = make_cache(SheetBookingStore("", timezone="UTC"))
        assert await cache.load() is True
        assert cache.state is CacheState.READY
        assert cache.bookings == []


# ── Create ──────────────────────────────────────────────────────────


class TestCreate:
    async def test_create_persists_and_reloads(self, store):
        cache = make_cache(store)
        await cache.load()
        calls_before = store.list_calls

        created = await cache.create(new())

        assert created.id and not cache.is_pending(created)
        assert cache.bookings == [created]
        assert store.rows == [created]
        assert store.list_calls == calls_before + 1

    async def test_overlap_rejected_without_io(self):
        store = AsyncMock()
        store.is_configured = True
        store.list_all.return_value = [new().with_id("b1")]
        cache = make_cache(store)
        await cache.load()

        with pytest.raises(OverlapError):
            await cache.create(new("10:30", "11:30", user="Sam"))

        store.create.assert_not_awaited()
        assert store.list_all.await_count == 1

    async def test_validation_rejected_without_io(self):
        store = AsyncMock()
        store.is_configured = True
        store.list_all.return_value = []
        cache = make_cache(store)

        with pytest.raises(BookingValidationError):
            await cache.create(new("11:00", "11:00"))
        store.create.assert_not_awaited()

    async def test_unknown_studio_rejected(self, store):
        cache = make_cache(store, studios=["B"])
        with pytest.raises(BookingValidationError, match="Unknown studio"):
            await cache.create(new())

    async def test_optimistic_entry_visible_while_in_flight(self, store):
        cache = make_cache(store)
        await cache.load()
        store.create_gate = asyncio.Event()

        task = asyncio.create_task(cache.create(new()))
        await store.create_entered.wait()

        assert cache.is_mutating
        assert len(cache.bookings) == 1
        assert cache.bookings[0].id.startswith(PENDING_PREFIX)
        assert "10:00" not in cache.available_start_times("A", DAY)

        store.create_gate.set()
        created = await task
        assert cache.bookings == [created]
        assert not cache.is_mutating

    async def test_remote_failure_rolls_back_and_reloads(self, store):
        cache = make_cache(store)
        await cache.load()
        store.fail_create = RemoteUnavailableError("network down")
        calls_before = store.list_calls

        with pytest.raises(RemoteUnavailableError):
            await cache.create(new())

        assert cache.bookings == []
        assert store.list_calls == calls_before + 1

    async def test_unconfigured_store_fails_fast(self):
        cache = make_cache(SheetBookingStore("", timezone="UTC"))
        await cache.load()
        with pytest.raises(StoreNotConfiguredError):
            await cache.create(new())
        assert cache.bookings == []

    async def test_mutations_are_serialized(self, store):
        cache = make_cache(store)
        await cache.load()
        store.create_gate = asyncio.Event()

        first = asyncio.create_task(cache.create(new("10:00", "11:00")))
        await store.create_entered.wait()
        # Same slot: must be judged after the first create has reconciled
        second = asyncio.create_task(cache.create(new("10:00", "11:00", user="Sam")))
        await asyncio.sleep(0)
        assert not second.done()

        store.create_gate.set()
        await first
        with pytest.raises(OverlapError):
            await second


class TestConcurrentClients:
    async def test_second_client_gets_conflict_then_converges(self, store):
        """Two clients book the same slot; the stale one is rejected remotely."""
        alice = make_cache(store)
        bob = make_cache(store)
        await alice.load()
        await bob.load()

        await alice.create(new("10:00", "11:00", user="Alice"))
        # Bob's cache is stale: the local pre-check passes
        assert "10:00" in bob.available_start_times("A", DAY)

        with pytest.raises(ConflictError):
            await bob.create(new("10:00", "11:00", user="Bob"))

        assert "10:00" not in bob.available_start_times("A", DAY)
        assert [b.user_name for b in bob.bookings] == ["Alice"]


# ── Cancel ──────────────────────────────────────────────────────────


class TestCancel:
    async def test_cancel_removes_and_reloads(self, store):
        booking = await store.create(new())
        cache = make_cache(store)
        await cache.load()

        await cache.cancel(booking.id)

        assert cache.bookings == []
        assert store.rows == []

    async def test_cancel_already_deleted_is_not_found(self, store):
        booking = await store.create(new())
        cache = make_cache(store)
        await cache.load()
        # Another client wins the race
        await store.delete_by_id(booking.id)
        calls_before = store.list_calls

        with pytest.raises(NotFoundError):
            await cache.cancel(booking.id)

        assert store.list_calls == calls_before + 1
        assert cache.bookings == []
        assert cache.state is CacheState.READY

    async def test_failed_cancel_restores_booking(self, store):
        booking = await store.create(new())
        cache = make_cache(store)
        await cache.load()
        store.fail_delete = RemoteUnavailableError("network down")
        store.fail_list = True

        with pytest.raises(RemoteUnavailableError):
            await cache.cancel(booking.id)

        # Reload failed too; the rollback keeps the booking visible
        assert cache.bookings == [booking]

    async def test_empty_id(self, store):
        cache = make_cache(store)
        with pytest.raises(BookingValidationError):
            await cache.cancel("  ")


# ── Snapshots and polling ───────────────────────────────────────────


class TestReconciliation:
    async def test_snapshot_older_than_local_change_is_discarded(self, store):
        cache = make_cache(store)
        await cache.load()
        gate = asyncio.Event()
        store.list_gate = gate

        # A poll takes its snapshot (empty) and then stalls
        poll = asyncio.create_task(cache.load(foreground=False))
        await asyncio.sleep(0)
        assert store.list_gate is None
        created = await cache.create(new())

        gate.set()
        assert await poll is True

        assert cache.bookings == [created]
        assert cache.state is CacheState.READY

    async def test_discarded_first_load_does_not_report_ready(self, store):
        cache = make_cache(store)
        gate = asyncio.Event()
        store.list_gate = gate

        first = asyncio.create_task(cache.load())
        await asyncio.sleep(0)
        assert cache.state is CacheState.LOADING

        # The create's reconciling load fails, so nothing is ever applied
        store.fail_list = True
        created = await cache.create(new())
        gate.set()
        assert await first is True

        assert cache.state is CacheState.LOADING
        assert cache.bookings == [created]

        store.fail_list = False
        await cache.load(foreground=False)
        assert cache.state is CacheState.READY

    async def test_polling_picks_up_other_clients(self, store):
        cache = make_cache(store, poll_interval=0.01)
        await cache.start()
        assert cache.is_polling

        other = await store.create(new(user="Other"))
        for _ in range(100):
            if cache.bookings:
                break
            await asyncio.sleep(0.01)

        assert cache.bookings == [other]
        await cache.close()
        assert not cache.is_polling

    async def test_context_manager(self, store):
        async with make_cache(store) as cache:
            assert cache.state is CacheState.READY
            assert cache.is_polling
        assert not cache.is_polling

    async def test_events_for_mutations(self, store):
        cache = make_cache(store)
        await cache.load()
        booking = await cache.create(new())
        await cache.cancel(booking.id)

        events = cache.events.history()
        types = [e.type for e in events]
        assert EventType.CREATED in types
        assert EventType.CANCELLED in types
        created = events[types.index(EventType.CREATED)]
        assert Booking(**created.data["booking"]) == booking
        assert [e.seq for e in events] == list(range(1, len(events) + 1))

    async def test_events_carry_cache_state(self, store):
        store.fail_list = True
        cache = make_cache(store)
        await cache.load()

        failed = cache.events.history()[-1]
        assert failed.type is EventType.LOAD_FAILED
        assert failed.state == "error"

    async def test_subscriber_starts_from_current_schedule(self, store):
        cache = make_cache(store)
        await cache.load()
        store.create_gate = asyncio.Event()
        task = asyncio.create_task(cache.create(new()))
        await store.create_entered.wait()

        queue = cache.events.subscribe()
        snapshot = queue.get_nowait()

        assert snapshot.type is EventType.SNAPSHOT
        assert snapshot.seq == cache.events.last_seq
        assert snapshot.state == "ready"
        [row] = snapshot.data["bookings"]
        assert row["pending"] is True
        assert row["startTime"] == "10:00"

        store.create_gate.set()
        await task
        assert queue.get_nowait().type is EventType.CREATED
        cache.events.unsubscribe(queue)
