"""
Scenario: normal flow through the HTTP API.

Create order -> processing -> assign carrier and driver -> shipped -> in_transit -> paid -> delivered.

Expect:
- Every step returns 200 (create returns 201)
- Tracking shows one event per step, oldest first, starting with the creation event
- Dashboard counters follow the order along the way
"""
from decimal import Decimal

import pytest

from orderdesk.main import create_app

from _helper import api_client, create_order, fetch_tracking_statuses


@pytest.mark.asyncio
async def test_normal_flow(store, auth_headers, order_input, carrier, driver):
    app = create_app(store=store)
    async with api_client(app) as client:
        status, order = await create_order(client, auth_headers, order_input)
        assert status == 201
        url = f"/api/orders/{order['id']}"

        steps = [
            ("status", {"orderStatus": "processing"}),
            ("carrier", {"carrierId": carrier.id}),
            ("driver", {"driverId": driver.id}),
            ("status", {"orderStatus": "shipped"}),
            ("eta", {"deliveryDate": "2026-11-06T15:30:00Z"}),
        ]
        for path, body in steps:
            resp = await client.patch(f"{url}/{path}", json=body, headers=auth_headers)
            assert resp.status_code == 200, (path, resp.json())

        metrics = (await client.get("/api/dashboard/metrics", headers=auth_headers)).json()
        assert (metrics["pendingOrders"], metrics["totalInTransit"]) == (0, 1)

        for path, body in [
            ("status", {"orderStatus": "in_transit"}),
            ("payment", {"paymentStatus": "paid"}),
            ("status", {"orderStatus": "delivered"}),
        ]:
            resp = await client.patch(f"{url}/{path}", json=body, headers=auth_headers)
            assert resp.status_code == 200, (path, resp.json())

        final = (await client.get(url, headers=auth_headers)).json()
        statuses = await fetch_tracking_statuses(client, auth_headers, order["id"])
        metrics = (await client.get("/api/dashboard/metrics", headers=auth_headers)).json()

    assert final["orderStatus"] == "delivered"
    assert final["paymentStatus"] == "paid"
    assert final["carrierId"] == carrier.id
    assert final["driverId"] == driver.id
    assert statuses == [
        "pending",
        "processing",
        "carrier_updated",
        "driver_updated",
        "shipped",
        "eta_updated",
        "in_transit",
        "payment_updated",
        "delivered",
    ]
    assert metrics["totalInTransit"] == 0
    assert Decimal(metrics["totalRevenue"]) == Decimal("1250.00")
