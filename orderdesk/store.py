"""
Entity store contract used by the lifecycle engine, ledger and aggregator.

Writes to orders and tracking events only happen inside a StoreTransaction (one unit of work):
lock_order() holds the order exclusively until the transaction ends, and nothing staged in a
transaction becomes visible unless the whole block exits without an exception.
The contract has no way to update or delete a single tracking event.
"""
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import Any

from orderdesk.models import Carrier, Customer, Driver, Order, TrackingEvent
from orderdesk.order_state import OrderStatus


class StoreTransaction(ABC):
    @abstractmethod
    async def lock_order(self, order_id: str) -> Order | None:
        """Read the order and hold it exclusively until the transaction ends. None if missing."""

    @abstractmethod
    async def insert_order(self, order: Order) -> Order: ...

    @abstractmethod
    async def update_order(self, order_id: str, fields: dict[str, Any]) -> Order:
        """Apply fields to an order previously returned by lock_order()."""

    @abstractmethod
    async def delete_order(self, order_id: str) -> int:
        """Delete a locked order together with its tracking events. Returns events removed."""

    @abstractmethod
    async def insert_event(self, event: TrackingEvent) -> TrackingEvent: ...


class OrderStore(ABC):
    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]: ...

    # orders
    @abstractmethod
    async def get_order(self, order_id: str) -> Order | None: ...

    @abstractmethod
    async def list_orders(
        self,
        limit: int | None = None,
        offset: int = 0,
        status: OrderStatus | None = None,
        search: str | None = None,
    ) -> list[Order]:
        """Newest first."""

    @abstractmethod
    async def count_orders(self, status: OrderStatus | None = None) -> int: ...

    @abstractmethod
    async def sum_order_amounts(self) -> Decimal: ...

    # ledger
    @abstractmethod
    async def list_events(self, order_id: str) -> list[TrackingEvent]:
        """Most recent first, in commit order."""

    # reference data (read-only for the core)
    @abstractmethod
    async def get_customer(self, customer_id: str) -> Customer | None: ...

    @abstractmethod
    async def list_customers(self, search: str | None = None) -> list[Customer]: ...

    @abstractmethod
    async def get_carrier(self, carrier_id: str) -> Carrier | None: ...

    @abstractmethod
    async def list_carriers(self) -> list[Carrier]: ...

    @abstractmethod
    async def get_driver(self, driver_id: str) -> Driver | None: ...

    @abstractmethod
    async def list_drivers(self, carrier_id: str | None = None) -> list[Driver]: ...
