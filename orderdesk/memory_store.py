"""
In-process OrderStore: per-order asyncio.Lock held for the whole unit of work, writes staged
until commit. Used by the test suite and by STORE_BACKEND=memory for local runs.
"""
import asyncio
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator

from orderdesk.errors import ConcurrencyConflictError
from orderdesk.models import Carrier, Customer, Driver, Order, TrackingEvent
from orderdesk.order_state import OrderStatus
from orderdesk.store import OrderStore, StoreTransaction


class _MemoryTransaction(StoreTransaction):
    def __init__(self, store: "InMemoryStore"):
        self._store = store
        self._orders: dict[str, Order | None] = {}  # staged; None = deleted
        self._events: list[TrackingEvent] = []
        self._held: list[str] = []  # order ids whose lock this transaction holds

    async def lock_order(self, order_id: str) -> Order | None:
        if order_id not in self._held:
            lock = self._store._checkout_lock(order_id)
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._store.lock_timeout)
            except asyncio.TimeoutError:
                self._store._return_lock(order_id)
                raise ConcurrencyConflictError(f"order {order_id} is locked by another writer")
            except BaseException:
                self._store._return_lock(order_id)
                raise
            self._held.append(order_id)
        return self._current(order_id)

    async def insert_order(self, order: Order) -> Order:
        numbers = {o.order_number for o in self._store._orders.values()}
        numbers.update(o.order_number for o in self._orders.values() if o is not None)
        if order.order_number in numbers or order.id in self._store._orders:
            raise ValueError(f"duplicate order {order.id} / {order.order_number}")
        self._orders[order.id] = order
        return order

    async def update_order(self, order_id: str, fields: dict[str, Any]) -> Order:
        current = self._current(order_id)
        if current is None:
            raise KeyError(order_id)
        updated = current.model_copy(update=fields)
        self._orders[order_id] = updated
        return updated

    async def delete_order(self, order_id: str) -> int:
        self._orders[order_id] = None
        staged = [e for e in self._events if e.order_id == order_id]
        self._events = [e for e in self._events if e.order_id != order_id]
        committed = sum(1 for e in self._store._events if e.order_id == order_id)
        return committed + len(staged)

    async def insert_event(self, event: TrackingEvent) -> TrackingEvent:
        self._events.append(event)
        return event

    def _current(self, order_id: str) -> Order | None:
        if order_id in self._orders:
            return self._orders[order_id]
        return self._store._orders.get(order_id)

    def commit(self) -> None:
        deleted = set()
        for order_id, order in self._orders.items():
            if order is None:
                self._store._orders.pop(order_id, None)
                deleted.add(order_id)
            else:
                self._store._orders[order_id] = order
        if deleted:
            self._store._events = [e for e in self._store._events if e.order_id not in deleted]
        self._store._events.extend(self._events)

    def release(self) -> None:
        for order_id in reversed(self._held):
            self._store._locks[order_id].release()
            self._store._return_lock(order_id)
        self._held.clear()


class InMemoryStore(OrderStore):
    def __init__(self, lock_timeout: float | None = 5.0):
        self.lock_timeout = lock_timeout
        self._orders: dict[str, Order] = {}
        self._events: list[TrackingEvent] = []  # commit order
        self._customers: dict[str, Customer] = {}
        self._carriers: dict[str, Carrier] = {}
        self._drivers: dict[str, Driver] = {}
        # A lock lives only while some transaction holds or waits for it.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    def _checkout_lock(self, order_id: str) -> asyncio.Lock:
        self._lock_users[order_id] += 1
        return self._locks.setdefault(order_id, asyncio.Lock())

    def _return_lock(self, order_id: str) -> None:
        self._lock_users[order_id] -= 1
        if self._lock_users[order_id] <= 0:
            del self._lock_users[order_id]
            del self._locks[order_id]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        tx = _MemoryTransaction(self)
        try:
            yield tx
            tx.commit()
        finally:
            tx.release()

    # --- orders ---

    async def get_order(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    async def list_orders(
        self,
        limit: int | None = None,
        offset: int = 0,
        status: OrderStatus | None = None,
        search: str | None = None,
    ) -> list[Order]:
        orders = sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)
        if status is not None:
            orders = [o for o in orders if o.order_status == status]
        if search:
            orders = [o for o in orders if self._matches(o, search.lower())]
        orders = orders[offset:]
        return orders if limit is None else orders[:limit]

    def _matches(self, order: Order, term: str) -> bool:
        customer = self._customers.get(order.customer_id)
        haystack = [
            order.order_number,
            order.pickup_address,
            order.delivery_address,
            order.pickup_po_number or "",
            order.delivery_po_number or "",
            customer.name if customer else "",
        ]
        return any(term in value.lower() for value in haystack)

    async def count_orders(self, status: OrderStatus | None = None) -> int:
        return sum(1 for o in self._orders.values() if status is None or o.order_status == status)

    async def sum_order_amounts(self) -> Decimal:
        return sum((o.amount for o in self._orders.values()), Decimal("0"))

    # --- ledger ---

    async def list_events(self, order_id: str) -> list[TrackingEvent]:
        return [e for e in reversed(self._events) if e.order_id == order_id]

    # --- reference data ---

    async def get_customer(self, customer_id: str) -> Customer | None:
        return self._customers.get(customer_id)

    async def list_customers(self, search: str | None = None) -> list[Customer]:
        customers = sorted(self._customers.values(), key=lambda c: c.created_at, reverse=True)
        if search:
            term = search.lower()
            customers = [
                c for c in customers
                if term in c.name.lower() or term in c.email.lower() or term in c.phone.lower()
            ]
        return customers

    async def get_carrier(self, carrier_id: str) -> Carrier | None:
        return self._carriers.get(carrier_id)

    async def list_carriers(self) -> list[Carrier]:
        return sorted(self._carriers.values(), key=lambda c: c.created_at, reverse=True)

    async def get_driver(self, driver_id: str) -> Driver | None:
        return self._drivers.get(driver_id)

    async def list_drivers(self, carrier_id: str | None = None) -> list[Driver]:
        drivers = sorted(self._drivers.values(), key=lambda d: d.created_at, reverse=True)
        if carrier_id is not None:
            drivers = [d for d in drivers if d.carrier_id == carrier_id]
        return drivers

    # Reference data is maintained outside the core; these seed the in-process store.

    def add_customer(self, **fields) -> Customer:
        customer = Customer(**_with_identity(fields))
        self._customers[customer.id] = customer
        return customer

    def add_carrier(self, **fields) -> Carrier:
        carrier = Carrier(**_with_identity(fields))
        self._carriers[carrier.id] = carrier
        return carrier

    def add_driver(self, **fields) -> Driver:
        driver = Driver(**_with_identity(fields))
        self._drivers[driver.id] = driver
        return driver


def _with_identity(fields: dict) -> dict:
    fields.setdefault("id", str(uuid.uuid4()))
    fields.setdefault("created_at", datetime.now(timezone.utc))
    return fields
