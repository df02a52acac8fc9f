"""
Order lifecycle engine. The only writer of order status, payment status, assignments, ETA and notes.

Every mutation is one unit of work: lock the order, validate against its current state, write,
append exactly one tracking event, commit. Any exception (including from the ledger) rolls back
both writes. The engine holds no state of its own; all of it lives in the store.
"""
import itertools
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from orderdesk.config import settings
from orderdesk.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    field_errors,
)
from orderdesk.ledger import (
    CARRIER_UPDATED,
    DETAILS_UPDATED,
    DRIVER_UPDATED,
    ETA_UPDATED,
    NOTES_UPDATED,
    PAYMENT_UPDATED,
    TrackingLedger,
)
from orderdesk.metrics import (
    concurrency_conflicts_total,
    order_transitions_rejected_total,
    order_transitions_total,
    order_updates_total,
    orders_created_total,
    orders_deleted_total,
    tracking_events_appended_total,
)
from orderdesk.models import EtaUpdate, Order, OrderCreate, OrderDetailsUpdate
from orderdesk.order_state import OrderStatus, PaymentStatus, is_valid_transition, valid_next_states
from orderdesk.store import OrderStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# (fields to write, event status, event description, event location)
Change = tuple[dict[str, Any], str, str, str | None]

# Detail fields that map to NOT NULL columns
_REQUIRED_DETAILS = frozenset(
    {"pickup_address", "pickup_date", "delivery_address", "number_of_pallets", "amount", "gst_percentage"}
)

_order_seq = itertools.count(1)


def next_order_number(now: datetime | None = None) -> str:
    """ORD-<epoch ms>-<4 digit sequence><6 hex>.

    The sequence separates orders created in the same millisecond by this process; the random
    suffix separates processes (several uvicorn workers) that share a database.
    """
    now = now or datetime.now(timezone.utc)
    return f"ORD-{int(now.timestamp() * 1000)}-{next(_order_seq) % 10000:04d}{uuid.uuid4().hex[:6].upper()}"


def _validated(model: type[M], data: M | dict) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(details=field_errors(e.errors())) from e


def _coerce_status(enum_type, value, field: str):
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(s.value for s in enum_type)
        raise ValidationError.for_field(field, f"must be one of: {allowed}", "enum") from None


class OrderLifecycleEngine:
    def __init__(
        self,
        store: OrderStore,
        ledger: TrackingLedger | None = None,
        notes_max_bytes: int | None = None,
    ):
        self.store = store
        self.ledger = ledger or TrackingLedger(store)
        self.notes_max_bytes = settings.notes_max_bytes if notes_max_bytes is None else notes_max_bytes

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def create_order(self, data: OrderCreate | dict) -> Order:
        payload = _validated(OrderCreate, data)
        if payload.notes is not None:
            self._check_notes(payload.notes)

        now = datetime.now(timezone.utc)
        order = Order(
            id=str(uuid.uuid4()),
            order_number=next_order_number(now),
            order_status=OrderStatus.pending,
            payment_status=PaymentStatus.pending,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )
        async with self.store.transaction() as tx:
            created = await tx.insert_order(order)
            await self.ledger.append(
                created.id, OrderStatus.pending.value, "Order created", created.pickup_address, tx=tx
            )
        orders_created_total.inc()
        tracking_events_appended_total.inc()
        logger.info("Created order %s id=%s customer_id=%s", created.order_number, created.id, created.customer_id)
        return created

    async def transition_status(self, order_id: str, target: OrderStatus | str) -> Order:
        target = _coerce_status(OrderStatus, target, "orderStatus")

        def change(order: Order) -> Change:
            current = order.order_status
            if not is_valid_transition(current, target):
                order_transitions_rejected_total.labels(current.value, target.value).inc()
                logger.info(
                    "Rejected transition order_id=%s %s -> %s", order_id, current.value, target.value
                )
                raise InvalidTransitionError(
                    current.value, target.value, [s.value for s in valid_next_states(current)]
                )
            return {"order_status": target}, target.value, f"Order status updated to {target.value}", None

        before, after = await self._mutate(order_id, change)
        order_transitions_total.labels(before.order_status.value, after.order_status.value).inc()
        logger.info(
            "Order %s status %s -> %s", order_id, before.order_status.value, after.order_status.value
        )
        return after

    async def update_payment_status(self, order_id: str, status: PaymentStatus | str) -> Order:
        status = _coerce_status(PaymentStatus, status, "paymentStatus")
        _, after = await self._mutate(
            order_id,
            lambda order: (
                {"payment_status": status},
                PAYMENT_UPDATED,
                f"Payment status updated to {status.value}",
                None,
            ),
        )
        order_updates_total.labels("payment").inc()
        return after

    async def assign_carrier(self, order_id: str, carrier_id: str | None) -> Order:
        """Set or clear (None) the carrier. The caller has already checked the carrier exists."""
        description = "Carrier assigned to order" if carrier_id else "Carrier removed from order"
        _, after = await self._mutate(
            order_id,
            lambda order: ({"carrier_id": carrier_id or None}, CARRIER_UPDATED, description, None),
        )
        order_updates_total.labels("carrier").inc()
        return after

    async def assign_driver(self, order_id: str, driver_id: str | None) -> Order:
        """Set or clear (None) the driver. The caller has already checked the driver exists."""
        description = "Driver assigned to order" if driver_id else "Driver removed from order"
        _, after = await self._mutate(
            order_id,
            lambda order: ({"driver_id": driver_id or None}, DRIVER_UPDATED, description, None),
        )
        order_updates_total.labels("driver").inc()
        return after

    async def update_eta(self, order_id: str, delivery_date: datetime | str) -> Order:
        delivery_date = _validated(EtaUpdate, {"delivery_date": delivery_date}).delivery_date
        # stored with full precision; the event text only carries the day
        description = f"Estimated delivery date updated to {delivery_date.date().isoformat()}"
        _, after = await self._mutate(
            order_id,
            lambda order: ({"delivery_date": delivery_date}, ETA_UPDATED, description, None),
        )
        order_updates_total.labels("eta").inc()
        return after

    async def update_notes(self, order_id: str, notes: str) -> Order:
        if not isinstance(notes, str):
            raise ValidationError.for_field("notes", "notes must be a string", "string_type")
        self._check_notes(notes)
        _, after = await self._mutate(
            order_id,
            lambda order: ({"notes": notes}, NOTES_UPDATED, "Shipment notes updated", None),
        )
        order_updates_total.labels("notes").inc()
        return after

    async def update_details(self, order_id: str, changes: OrderDetailsUpdate | dict) -> Order:
        """Edit descriptive fields. Status, payment, assignment, ETA and notes are not accepted here."""
        payload = _validated(OrderDetailsUpdate, changes)
        fields = payload.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No fields to update")
        cleared = sorted(f for f in _REQUIRED_DETAILS if f in fields and fields[f] is None)
        if cleared:
            raise ValidationError(details=[
                {"loc": [OrderDetailsUpdate.model_fields[f].alias], "msg": "may not be null", "type": "missing"}
                for f in cleared
            ])
        names = ", ".join(sorted(OrderDetailsUpdate.model_fields[f].alias for f in fields))
        _, after = await self._mutate(
            order_id,
            lambda order: (dict(fields), DETAILS_UPDATED, f"Order details updated: {names}", None),
        )
        order_updates_total.labels("details").inc()
        return after

    async def delete_order(self, order_id: str) -> bool:
        """Hard delete. The order's tracking history goes with it in the same transaction."""
        async with self.store.transaction() as tx:
            order = await tx.lock_order(order_id)
            if order is None:
                return False
            removed = await tx.delete_order(order_id)
        orders_deleted_total.inc()
        logger.warning(
            "Deleted order %s id=%s status=%s with %d tracking event(s)",
            order.order_number,
            order_id,
            order.order_status.value,
            removed,
        )
        return True

    async def _mutate(self, order_id: str, change: Callable[[Order], Change]) -> tuple[Order, Order]:
        """Lock, validate + compute (change), write, append event, commit. Returns (before, after)."""
        try:
            async with self.store.transaction() as tx:
                before = await tx.lock_order(order_id)
                if before is None:
                    raise NotFoundError("Order", order_id)
                fields, status, description, location = change(before)
                fields["updated_at"] = datetime.now(timezone.utc)
                after = await tx.update_order(order_id, fields)
                await self.ledger.append(order_id, status, description, location, tx=tx)
        except ConcurrencyConflictError:
            concurrency_conflicts_total.inc()
            logger.warning("Lock conflict on order_id=%s", order_id)
            raise
        tracking_events_appended_total.inc()
        return before, after

    def _check_notes(self, notes: str) -> None:
        size = len(notes.encode("utf-8"))
        if size > self.notes_max_bytes:
            raise ValidationError.for_field(
                "notes",
                f"notes exceed {self.notes_max_bytes} bytes ({size})",
                "string_too_long",
            )
