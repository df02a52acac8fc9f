"""
Shared helpers for the test modules (imported as a plain module; test/ is not a package).
"""
from datetime import datetime, timedelta, timezone

import httpx

from orderdesk.order_state import OrderStatus

# Shortest legal path from a freshly created (pending) order to each status
PATH_TO: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.pending: [],
    OrderStatus.processing: [OrderStatus.processing],
    OrderStatus.shipped: [OrderStatus.processing, OrderStatus.shipped],
    OrderStatus.in_transit: [OrderStatus.processing, OrderStatus.shipped, OrderStatus.in_transit],
    OrderStatus.delivered: [
        OrderStatus.processing,
        OrderStatus.shipped,
        OrderStatus.in_transit,
        OrderStatus.delivered,
    ],
    OrderStatus.cancelled: [OrderStatus.cancelled],
}


def order_payload(customer_id: str, **overrides) -> dict:
    """Create-order body as the dashboard client sends it (camelCase)."""
    pickup = datetime(2026, 11, 2, 8, 30, tzinfo=timezone.utc)
    body = {
        "customerId": customer_id,
        "pickupAddress": "400 Industrial Way, Surrey BC",
        "pickupDate": pickup.isoformat(),
        "deliveryAddress": "88 Depot St, Calgary AB",
        "deliveryDate": (pickup + timedelta(days=3)).isoformat(),
        "numberOfPallets": 6,
        "weight": "1840.50",
        "amount": "1250.00",
        "gstPercentage": "5",
    }
    body.update(overrides)
    return body


async def order_in_status(engine, order_input: dict, status: OrderStatus):
    """Create an order and walk it along the legal path to status."""
    order = await engine.create_order(order_input)
    for step in PATH_TO[status]:
        order = await engine.transition_status(order.id, step)
    return order


def api_client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def create_order(client: httpx.AsyncClient, headers: dict, payload: dict) -> tuple[int, dict]:
    """POST /api/orders. Returns (status_code, response_body)."""
    resp = await client.post("/api/orders", json=payload, headers=headers)
    return resp.status_code, resp.json()


async def fetch_tracking_statuses(client: httpx.AsyncClient, headers: dict, order_id: str) -> list[str]:
    """Return tracking event statuses for order_id, oldest first."""
    resp = await client.get(f"/api/orders/{order_id}/tracking", headers=headers)
    resp.raise_for_status()
    return [e["status"] for e in reversed(resp.json())]
