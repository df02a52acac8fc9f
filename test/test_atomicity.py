"""
Order write and ledger append commit together, and concurrent writers on one order serialize.
"""
import asyncio

import pytest

from orderdesk.errors import ConcurrencyConflictError, InvalidTransitionError, NotFoundError
from orderdesk.ledger import TrackingLedger
from orderdesk.lifecycle import OrderLifecycleEngine
from orderdesk.memory_store import InMemoryStore
from orderdesk.order_state import OrderStatus

from _helper import order_payload


class BrokenLedger(TrackingLedger):
    """Fails every append made inside a unit of work."""

    async def append(self, order_id, status, description, location=None, *, tx=None):
        if tx is not None:
            raise RuntimeError("ledger unavailable")
        return await super().append(order_id, status, description, location, tx=tx)


class SlowLedger(TrackingLedger):
    """Holds the unit of work open long enough for a second writer to queue behind it."""

    def __init__(self, store, delay=0.05):
        super().__init__(store)
        self.delay = delay

    async def append(self, order_id, status, description, location=None, *, tx=None):
        await asyncio.sleep(self.delay)
        return await super().append(order_id, status, description, location, tx=tx)


class TestRollback:
    @pytest.mark.asyncio
    async def test_failed_append_leaves_order_unchanged(self, store, engine, order_input):
        order = await engine.create_order(order_input)
        broken = OrderLifecycleEngine(store, ledger=BrokenLedger(store))

        with pytest.raises(RuntimeError):
            await broken.transition_status(order.id, "processing")
        with pytest.raises(RuntimeError):
            await broken.update_notes(order.id, "never stored")

        current = await store.get_order(order.id)
        assert current.order_status == OrderStatus.pending
        assert current.notes is None
        assert current.updated_at == order.updated_at
        assert len(await engine.ledger.history(order.id)) == 1

    @pytest.mark.asyncio
    async def test_failed_append_on_create_stores_nothing(self, store, order_input):
        broken = OrderLifecycleEngine(store, ledger=BrokenLedger(store))
        with pytest.raises(RuntimeError):
            await broken.create_order(order_input)
        assert await store.count_orders() == 0

    @pytest.mark.asyncio
    async def test_lock_released_after_rollback(self, store, engine, order_input):
        order = await engine.create_order(order_input)
        broken = OrderLifecycleEngine(store, ledger=BrokenLedger(store))
        with pytest.raises(RuntimeError):
            await broken.transition_status(order.id, "processing")

        updated = await engine.transition_status(order.id, "processing")
        assert updated.order_status == OrderStatus.processing


class TestConcurrentWriters:
    @pytest.mark.asyncio
    async def test_same_transition_twice_one_wins(self, store, order_input):
        engine = OrderLifecycleEngine(store, ledger=SlowLedger(store))
        order = await engine.create_order(order_input)

        results = await asyncio.gather(
            engine.transition_status(order.id, "processing"),
            engine.transition_status(order.id, "processing"),
            return_exceptions=True,
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
        history = await engine.ledger.history(order.id)
        assert [e.status for e in history] == ["processing", "pending"]

    @pytest.mark.asyncio
    async def test_competing_targets_end_consistent(self, store, order_input):
        engine = OrderLifecycleEngine(store, ledger=SlowLedger(store))
        order = await engine.create_order(order_input)

        results = await asyncio.gather(
            engine.transition_status(order.id, "processing"),
            engine.transition_status(order.id, "cancelled"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert all(isinstance(r, InvalidTransitionError) for r in results if isinstance(r, Exception))
        final = await store.get_order(order.id)
        history = await engine.ledger.history(order.id)
        assert len(history) == 1 + len(successes)
        assert history[0].status == final.order_status.value

    @pytest.mark.asyncio
    async def test_different_fields_are_not_lost(self, store, order_input):
        engine = OrderLifecycleEngine(store, ledger=SlowLedger(store))
        order = await engine.create_order(order_input)

        await asyncio.gather(
            engine.update_payment_status(order.id, "paid"),
            engine.update_notes(order.id, "liftgate required"),
            engine.transition_status(order.id, "processing"),
        )

        final = await store.get_order(order.id)
        assert final.payment_status.value == "paid"
        assert final.notes == "liftgate required"
        assert final.order_status == OrderStatus.processing
        assert len(await engine.ledger.history(order.id)) == 4

    @pytest.mark.asyncio
    async def test_lock_timeout_raises_conflict(self):
        store = InMemoryStore(lock_timeout=0.05)
        engine = OrderLifecycleEngine(store, ledger=SlowLedger(store, delay=0.3))
        order = await OrderLifecycleEngine(store).create_order(order_payload("customer-1"))

        results = await asyncio.gather(
            engine.update_notes(order.id, "first"),
            engine.update_notes(order.id, "second"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConcurrencyConflictError) for r in results) == 1
        assert (await store.get_order(order.id)).notes in {"first", "second"}
        assert len(await engine.ledger.history(order.id)) == 2


class TestLockTable:
    @pytest.mark.asyncio
    async def test_missing_orders_leave_no_locks(self, store, engine):
        for i in range(200):
            with pytest.raises(NotFoundError):
                await engine.transition_status(f"missing-{i}", "processing")
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_deleted_orders_leave_no_locks(self, store, engine, order_input):
        for _ in range(20):
            order = await engine.create_order(order_input)
            await engine.transition_status(order.id, "processing")
            await engine.delete_order(order.id)
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_lock_kept_while_writers_queue(self, store, order_input):
        engine = OrderLifecycleEngine(store, ledger=SlowLedger(store))
        order = await engine.create_order(order_input)

        await asyncio.gather(*[engine.update_notes(order.id, f"note {i}") for i in range(5)])

        assert len(await engine.ledger.history(order.id)) == 6
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_timed_out_waiter_returns_its_lock(self):
        store = InMemoryStore(lock_timeout=0.05)
        engine = OrderLifecycleEngine(store, ledger=SlowLedger(store, delay=0.2))
        order = await OrderLifecycleEngine(store).create_order(order_payload("customer-1"))

        await asyncio.gather(
            engine.update_notes(order.id, "first"),
            engine.update_notes(order.id, "second"),
            return_exceptions=True,
        )

        assert store._locks == {}
