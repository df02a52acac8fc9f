import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response

from orderdesk import redis_client
from orderdesk.auth import RequestContext, get_request_context
from orderdesk.deps import get_engine, get_ledger, get_store
from orderdesk.errors import ConcurrencyConflictError, InvalidTransitionError, NotFoundError
from orderdesk.ledger import TrackingLedger
from orderdesk.lifecycle import OrderLifecycleEngine
from orderdesk.models import (
    BulkAction,
    BulkActionResult,
    BulkFailure,
    CarrierUpdate,
    CheckpointCreate,
    DriverUpdate,
    EtaUpdate,
    NotesUpdate,
    Order,
    OrderCreate,
    OrderDetailsUpdate,
    PaymentUpdate,
    StatusUpdate,
    TrackingEvent,
)
from orderdesk.order_state import OrderStatus
from orderdesk.store import OrderStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


async def _retry_on_conflict(op, *args):
    """Run a lifecycle operation; after a lock conflict re-run it once from a fresh read."""
    try:
        return await op(*args)
    except ConcurrencyConflictError:
        logger.info("Retrying %s%r after lock conflict", op.__name__, args)
        return await op(*args)


@router.get("", response_model=list[Order])
async def list_orders(
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    search: str | None = None,
    status: OrderStatus | None = None,
    _: RequestContext = Depends(get_request_context),
    store: OrderStore = Depends(get_store),
) -> list[Order]:
    return await store.list_orders(limit=limit, offset=offset, status=status, search=search)


@router.post("", status_code=201, response_model=Order)
async def create_order(
    body: OrderCreate,
    response: Response,
    idempotency_key: str | None = Header(default=None),
    ctx: RequestContext = Depends(get_request_context),
    store: OrderStore = Depends(get_store),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    """
    Create an order (201). With an Idempotency-Key header a repeated request returns the order
    created by the first one (200) instead of creating a duplicate.
    """
    if await store.get_customer(body.customer_id) is None:
        raise NotFoundError("Customer", body.customer_id)

    if not idempotency_key:
        order = await engine.create_order(body)
        logger.info("Order %s created by user=%s", order.order_number, ctx.user_id)
        return order

    r = await redis_client.get_redis()
    key = redis_client.idempotency_key(idempotency_key)
    existing = await redis_client.claim_idempotency_key(r, key)
    if existing == redis_client.IN_PROGRESS:
        raise HTTPException(status_code=409, detail="A request with this Idempotency-Key is in progress")
    if existing is not None:
        response.status_code = 200
        return await engine.get_order(existing)

    try:
        order = await engine.create_order(body)
    except BaseException:
        # includes cancellation (client disconnect)
        await redis_client.release_idempotency_key(r, key)
        raise
    await redis_client.remember_order(r, key, order.id)
    logger.info("Order %s created by user=%s (idempotency key)", order.order_number, ctx.user_id)
    return order


@router.post("/bulk-actions", response_model=BulkActionResult)
async def bulk_actions(
    body: BulkAction,
    ctx: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> BulkActionResult:
    """Apply a status update to many orders. Each order goes through the transition matrix on its own."""
    updated: list[str] = []
    failed: list[BulkFailure] = []
    for order_id in body.order_ids:
        try:
            await _retry_on_conflict(engine.transition_status, order_id, body.status)
            updated.append(order_id)
        except InvalidTransitionError as e:
            failed.append(BulkFailure(order_id=order_id, error=str(e), valid_transitions=e.valid_transitions))
        except (NotFoundError, ConcurrencyConflictError) as e:
            failed.append(BulkFailure(order_id=order_id, error=str(e)))
    logger.info(
        "Bulk %s to %s by user=%s: %d updated, %d failed",
        body.action, body.status.value, ctx.user_id, len(updated), len(failed),
    )
    return BulkActionResult(updated=updated, failed=failed)


@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: str,
    _: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    return await engine.get_order(order_id)


@router.put("/{order_id}", response_model=Order)
async def update_order_details(
    order_id: str,
    body: OrderDetailsUpdate,
    _: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    return await _retry_on_conflict(engine.update_details, order_id, body)


@router.delete("/{order_id}")
async def delete_order(
    order_id: str,
    ctx: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> dict:
    if not await _retry_on_conflict(engine.delete_order, order_id):
        raise NotFoundError("Order", order_id)
    logger.info("Order %s deleted by user=%s", order_id, ctx.user_id)
    return {"success": True}


@router.patch("/{order_id}/status", response_model=Order)
async def update_status(
    order_id: str,
    body: StatusUpdate,
    _: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    return await _retry_on_conflict(engine.transition_status, order_id, body.order_status)


@router.patch("/{order_id}/payment", response_model=Order)
async def update_payment(
    order_id: str,
    body: PaymentUpdate,
    _: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    return await _retry_on_conflict(engine.update_payment_status, order_id, body.payment_status)


@router.patch("/{order_id}/carrier", response_model=Order)
async def update_carrier(
    order_id: str,
    body: CarrierUpdate,
    _: RequestContext = Depends(get_request_context),
    store: OrderStore = Depends(get_store),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    if body.carrier_id and await store.get_carrier(body.carrier_id) is None:
        raise NotFoundError("Carrier", body.carrier_id)
    return await _retry_on_conflict(engine.assign_carrier, order_id, body.carrier_id)


@router.patch("/{order_id}/driver", response_model=Order)
async def update_driver(
    order_id: str,
    body: DriverUpdate,
    _: RequestContext = Depends(get_request_context),
    store: OrderStore = Depends(get_store),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    if body.driver_id and await store.get_driver(body.driver_id) is None:
        raise NotFoundError("Driver", body.driver_id)
    return await _retry_on_conflict(engine.assign_driver, order_id, body.driver_id)


@router.patch("/{order_id}/eta", response_model=Order)
async def update_eta(
    order_id: str,
    body: EtaUpdate,
    _: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    return await _retry_on_conflict(engine.update_eta, order_id, body.delivery_date)


@router.patch("/{order_id}/notes", response_model=Order)
async def update_notes(
    order_id: str,
    body: NotesUpdate,
    _: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
) -> Order:
    return await _retry_on_conflict(engine.update_notes, order_id, body.notes)


@router.get("/{order_id}/tracking", response_model=list[TrackingEvent])
async def get_tracking(
    order_id: str,
    _: RequestContext = Depends(get_request_context),
    engine: OrderLifecycleEngine = Depends(get_engine),
    ledger: TrackingLedger = Depends(get_ledger),
) -> list[TrackingEvent]:
    """Tracking history, most recent first."""
    await engine.get_order(order_id)
    return await ledger.history(order_id)


@router.post("/{order_id}/tracking", status_code=201, response_model=TrackingEvent)
async def add_checkpoint(
    order_id: str,
    body: CheckpointCreate,
    _: RequestContext = Depends(get_request_context),
    ledger: TrackingLedger = Depends(get_ledger),
) -> TrackingEvent:
    return await _retry_on_conflict(
        ledger.record_checkpoint, order_id, body.status, body.description, body.location
    )
