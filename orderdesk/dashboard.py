"""
Dashboard metrics and per-customer / per-carrier statistics, derived from the live order
population on every call. Nothing here is cached or persisted.

Note: the dashboard's "in transit" counter counts orders in the `shipped` status, not
`in_transit`. The dashboard client has always shown it that way; kept as-is.
"""
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable

from orderdesk.config import settings
from orderdesk.models import (
    Carrier,
    CarrierWithStats,
    Customer,
    CustomerWithStats,
    DashboardMetrics,
    Driver,
    Order,
)
from orderdesk.order_state import OrderStatus
from orderdesk.store import OrderStore

DASHBOARD_IN_TRANSIT_STATUS = OrderStatus.shipped


def customer_stats(
    customers: Iterable[Customer],
    orders: Iterable[Order],
    now: datetime | None = None,
    active_days: int | None = None,
) -> list[CustomerWithStats]:
    """Order count, total spend and active/inactive per customer.

    A customer is active when any of their orders was created after now - active_days
    (90 by default). now defaults to the call time, so the window moves between calls.
    """
    now = now or datetime.now(timezone.utc)
    threshold = now - timedelta(days=settings.customer_active_days if active_days is None else active_days)

    by_customer: defaultdict[str, list[Order]] = defaultdict(list)
    for order in orders:
        by_customer[order.customer_id].append(order)

    result = []
    for customer in customers:
        customer_orders = by_customer.get(customer.id, [])
        active = any(o.created_at > threshold for o in customer_orders)
        result.append(
            CustomerWithStats(
                **customer.model_dump(),
                total_orders=len(customer_orders),
                total_spend=sum((o.amount for o in customer_orders), Decimal("0")),
                status="active" if active else "inactive",
            )
        )
    return result


def carrier_stats(
    carriers: Iterable[Carrier],
    drivers: Iterable[Driver],
    orders: Iterable[Order],
) -> list[CarrierWithStats]:
    drivers_per_carrier = Counter(d.carrier_id for d in drivers if d.carrier_id)
    orders_per_carrier = Counter(o.carrier_id for o in orders if o.carrier_id)
    return [
        CarrierWithStats(
            **carrier.model_dump(),
            total_drivers=drivers_per_carrier.get(carrier.id, 0),
            total_orders=orders_per_carrier.get(carrier.id, 0),
        )
        for carrier in carriers
    ]


class MetricsAggregator:
    def __init__(self, store: OrderStore):
        self.store = store

    async def dashboard_metrics(self) -> DashboardMetrics:
        return DashboardMetrics(
            total_orders=await self.store.count_orders(),
            pending_orders=await self.store.count_orders(OrderStatus.pending),
            total_in_transit=await self.store.count_orders(DASHBOARD_IN_TRANSIT_STATUS),
            total_revenue=await self.store.sum_order_amounts(),
        )

    async def customers_with_stats(self, search: str | None = None) -> list[CustomerWithStats]:
        customers = await self.store.list_customers(search)
        orders = await self.store.list_orders()
        return customer_stats(customers, orders)

    async def carriers_with_stats(self) -> list[CarrierWithStats]:
        carriers = await self.store.list_carriers()
        drivers = await self.store.list_drivers()
        orders = await self.store.list_orders()
        return carrier_stats(carriers, drivers, orders)
