from fastapi import Depends, Request

from orderdesk.dashboard import MetricsAggregator
from orderdesk.ledger import TrackingLedger
from orderdesk.lifecycle import OrderLifecycleEngine
from orderdesk.store import OrderStore


def get_store(request: Request) -> OrderStore:
    return request.app.state.store


def get_ledger(store: OrderStore = Depends(get_store)) -> TrackingLedger:
    return TrackingLedger(store)


def get_engine(
    store: OrderStore = Depends(get_store),
    ledger: TrackingLedger = Depends(get_ledger),
) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(store, ledger)


def get_aggregator(store: OrderStore = Depends(get_store)) -> MetricsAggregator:
    return MetricsAggregator(store)
