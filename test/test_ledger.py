import pytest
from pydantic import ValidationError as PydanticValidationError

from orderdesk.errors import NotFoundError, ValidationError
from orderdesk.ledger import RESERVED_STATUSES, TrackingLedger


@pytest.fixture
def ledger(store):
    return TrackingLedger(store)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "order_id,status,description,field",
    [
        ("", "processing", "x", "orderId"),
        ("order-1", "", "x", "status"),
        ("order-1", "processing", "", "description"),
    ],
)
async def test_append_rejects_empty_values(ledger, order_id, status, description, field):
    with pytest.raises(ValidationError) as exc:
        await ledger.append(order_id, status, description)
    assert exc.value.details[0]["loc"] == [field]
    assert await ledger.history("order-1") == []


@pytest.mark.asyncio
async def test_history_newest_first_with_increasing_timestamps(ledger):
    for i in range(20):
        await ledger.append("order-1", "checkpoint", f"ping {i}")

    history = await ledger.history("order-1")

    assert [e.description for e in history] == [f"ping {i}" for i in reversed(range(20))]
    stamps = [e.created_at for e in reversed(history)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


@pytest.mark.asyncio
async def test_history_only_contains_requested_order(ledger):
    await ledger.append("order-1", "checkpoint", "a")
    await ledger.append("order-2", "checkpoint", "b")
    assert [e.order_id for e in await ledger.history("order-1")] == ["order-1"]


@pytest.mark.asyncio
async def test_history_is_a_snapshot(ledger):
    await ledger.append("order-1", "checkpoint", "first")
    snapshot = await ledger.history("order-1")
    await ledger.append("order-1", "checkpoint", "second")
    assert len(snapshot) == 1


@pytest.mark.asyncio
async def test_events_are_immutable(ledger):
    event = await ledger.append("order-1", "checkpoint", "at dock 4", "Surrey BC")
    with pytest.raises(PydanticValidationError):
        event.description = "rewritten"
    assert (await ledger.history("order-1"))[0].description == "at dock 4"


@pytest.mark.asyncio
async def test_append_keeps_location(ledger):
    event = await ledger.append("order-1", "checkpoint", "at dock 4", "Surrey BC")
    assert event.location == "Surrey BC"
    assert event.model_dump(by_alias=True)["orderId"] == "order-1"


class TestCheckpoint:
    @pytest.mark.asyncio
    async def test_records_on_existing_order(self, engine, order_input):
        order = await engine.create_order(order_input)

        event = await engine.ledger.record_checkpoint(order.id, "location_ping", "Passed Kamloops", "Kamloops BC")

        history = await engine.ledger.history(order.id)
        assert history[0] == event
        assert len(history) == 2
        assert (await engine.get_order(order.id)).order_status.value == "pending"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", sorted(RESERVED_STATUSES))
    async def test_reserved_status_rejected(self, engine, order_input, status):
        order = await engine.create_order(order_input)
        with pytest.raises(ValidationError):
            await engine.ledger.record_checkpoint(order.id, status, "forged")
        assert len(await engine.ledger.history(order.id)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["Delivered", " pending ", "IN_TRANSIT", "Payment_Updated\n"])
    async def test_reserved_status_rejected_in_any_case(self, engine, order_input, status):
        order = await engine.create_order(order_input)
        with pytest.raises(ValidationError) as exc:
            await engine.ledger.record_checkpoint(order.id, status, "Order status updated to delivered")
        assert exc.value.details[0]["type"] == "reserved_status"
        assert len(await engine.ledger.history(order.id)) == 1

    @pytest.mark.asyncio
    async def test_missing_order(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.record_checkpoint("missing-order", "location_ping", "nowhere")
        assert await ledger.history("missing-order") == []
