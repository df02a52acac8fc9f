"""
Tracking ledger: append-only history of everything done to an order.

Entries are frozen TrackingEvent models and the store contract offers no update or delete for a
single entry, so the only way to add history is append(). Lifecycle mutations pass their open
transaction (tx) so the order write and its event commit or roll back together.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone

from orderdesk.errors import NotFoundError, ValidationError
from orderdesk.metrics import tracking_events_appended_total
from orderdesk.models import TrackingEvent
from orderdesk.order_state import OrderStatus
from orderdesk.store import OrderStore, StoreTransaction

logger = logging.getLogger(__name__)

# Status tags written by the lifecycle engine besides the OrderStatus values.
PAYMENT_UPDATED = "payment_updated"
CARRIER_UPDATED = "carrier_updated"
DRIVER_UPDATED = "driver_updated"
ETA_UPDATED = "eta_updated"
NOTES_UPDATED = "notes_updated"
DETAILS_UPDATED = "details_updated"

RESERVED_STATUSES = frozenset(
    [s.value for s in OrderStatus]
    + [PAYMENT_UPDATED, CARRIER_UPDATED, DRIVER_UPDATED, ETA_UPDATED, NOTES_UPDATED, DETAILS_UPDATED]
)

_clock_lock = threading.Lock()
_last_ts: datetime | None = None


def _next_timestamp() -> datetime:
    """UTC now, nudged forward so timestamps handed out by this process strictly increase."""
    global _last_ts
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_ts is not None and now <= _last_ts:
            now = _last_ts + timedelta(microseconds=1)
        _last_ts = now
        return now


class TrackingLedger:
    def __init__(self, store: OrderStore):
        self.store = store

    async def append(
        self,
        order_id: str,
        status: str,
        description: str,
        location: str | None = None,
        *,
        tx: StoreTransaction | None = None,
    ) -> TrackingEvent:
        if not order_id:
            raise ValidationError.for_field("orderId", "orderId is required", "missing")
        if not status:
            raise ValidationError.for_field("status", "status is required", "missing")
        if not description:
            raise ValidationError.for_field("description", "description is required", "missing")

        event = TrackingEvent(
            id=str(uuid.uuid4()),
            order_id=order_id,
            status=status,
            description=description,
            location=location,
            created_at=_next_timestamp(),
        )
        if tx is not None:
            # counted by the caller once its unit of work commits
            return await tx.insert_event(event)
        async with self.store.transaction() as own_tx:
            stored = await own_tx.insert_event(event)
        tracking_events_appended_total.inc()
        logger.debug("Appended tracking event order_id=%s status=%s", order_id, status)
        return stored

    async def history(self, order_id: str) -> list[TrackingEvent]:
        """All events for the order, most recent first. A snapshot taken at call time."""
        return list(await self.store.list_events(order_id))

    async def record_checkpoint(
        self,
        order_id: str,
        status: str,
        description: str,
        location: str | None = None,
    ) -> TrackingEvent:
        """Informational event (location ping, dock note). Cannot carry a lifecycle status tag."""
        if status.strip().lower() in RESERVED_STATUSES:
            raise ValidationError.for_field(
                "status", f"'{status}' is reserved for lifecycle updates", "reserved_status"
            )
        async with self.store.transaction() as tx:
            order = await tx.lock_order(order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            event = await self.append(order_id, status, description, location, tx=tx)
        tracking_events_appended_total.inc()
        logger.info("Checkpoint recorded order_id=%s status=%s", order_id, status)
        return event
