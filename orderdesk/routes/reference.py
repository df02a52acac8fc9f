"""
Read-only reference data (customers, carriers, drivers) and their derived statistics.
Creating and editing reference data is handled by the back-office service, not here.
"""
from fastapi import APIRouter, Depends, Query

from orderdesk.auth import RequestContext, get_request_context
from orderdesk.dashboard import MetricsAggregator
from orderdesk.deps import get_aggregator, get_store
from orderdesk.errors import NotFoundError
from orderdesk.models import Carrier, CarrierWithStats, Customer, CustomerWithStats, Driver
from orderdesk.store import OrderStore

router = APIRouter(prefix="/api", tags=["reference"], dependencies=[Depends(get_request_context)])


@router.get("/customers", response_model=list[Customer])
async def list_customers(search: str | None = None, store: OrderStore = Depends(get_store)) -> list[Customer]:
    return await store.list_customers(search)


@router.get("/customers/stats", response_model=list[CustomerWithStats])
async def customers_with_stats(
    search: str | None = None,
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> list[CustomerWithStats]:
    return await aggregator.customers_with_stats(search)


@router.get("/customers/{customer_id}", response_model=Customer)
async def get_customer(customer_id: str, store: OrderStore = Depends(get_store)) -> Customer:
    customer = await store.get_customer(customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    return customer


@router.get("/carriers", response_model=list[Carrier])
async def list_carriers(store: OrderStore = Depends(get_store)) -> list[Carrier]:
    return await store.list_carriers()


@router.get("/carriers/stats", response_model=list[CarrierWithStats])
async def carriers_with_stats(aggregator: MetricsAggregator = Depends(get_aggregator)) -> list[CarrierWithStats]:
    return await aggregator.carriers_with_stats()


@router.get("/carriers/{carrier_id}", response_model=Carrier)
async def get_carrier(carrier_id: str, store: OrderStore = Depends(get_store)) -> Carrier:
    carrier = await store.get_carrier(carrier_id)
    if carrier is None:
        raise NotFoundError("Carrier", carrier_id)
    return carrier


@router.get("/drivers", response_model=list[Driver])
async def list_drivers(
    carrier_id: str | None = Query(default=None, alias="carrierId"),
    store: OrderStore = Depends(get_store),
) -> list[Driver]:
    return await store.list_drivers(carrier_id)
