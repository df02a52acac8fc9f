"""
Pydantic models for orders, tracking events, reference data and derived statistics.
JSON field names are camelCase (dashboard client contract); Python attributes are snake_case.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from orderdesk.order_state import OrderStatus, PaymentStatus


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
Money = Annotated[Decimal, Field(max_digits=12, decimal_places=2)]
Percentage = Annotated[Decimal, Field(ge=0, le=100, max_digits=5, decimal_places=2)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Persisted entities ---

class Customer(CamelModel):
    id: str
    name: str
    email: str
    phone: str
    address: str
    city: str
    country: str
    created_at: UtcDatetime


class Carrier(CamelModel):
    id: str
    name: str
    code: str
    contact_person: str
    contact_email: str
    contact_phone: str
    mobile: str
    rate_per_mile: Decimal | None = None
    rate_per_km: Decimal | None = None
    default_currency: str = "USD"
    is_active: bool = True
    created_at: UtcDatetime


class Driver(CamelModel):
    id: str
    name: str
    phone: str
    license_number: str
    carrier_id: str | None = None
    vehicle_type: str
    current_status: str = "available"
    is_active: bool = True
    created_at: UtcDatetime


class Order(CamelModel):
    id: str
    order_number: str
    customer_id: str
    carrier_id: str | None = None
    driver_id: str | None = None

    pickup_address: str
    pickup_date: UtcDatetime
    pickup_time: str | None = None
    pickup_po_number: str | None = Field(default=None, alias="pickupPONumber")

    delivery_address: str
    delivery_date: UtcDatetime
    delivery_time: str | None = None
    delivery_po_number: str | None = Field(default=None, alias="deliveryPONumber")

    number_of_pallets: int = 0
    weight: Decimal | None = None
    dimensions: str | None = None

    amount: Decimal
    gst_percentage: Decimal = Decimal("0")

    order_status: OrderStatus = OrderStatus.pending
    payment_status: PaymentStatus = PaymentStatus.pending

    notes: str | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class TrackingEvent(CamelModel):
    """Ledger entry. Frozen: once appended it is never changed."""
    model_config = ConfigDict(frozen=True)

    id: str
    order_id: str
    status: str
    description: str
    location: str | None = None
    created_at: UtcDatetime


# --- Operation inputs ---

class OrderCreate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    customer_id: str = Field(min_length=1)
    pickup_address: str = Field(min_length=1)
    pickup_date: UtcDatetime
    pickup_time: str | None = None
    pickup_po_number: str | None = Field(default=None, alias="pickupPONumber")
    delivery_address: str = Field(min_length=1)
    delivery_date: UtcDatetime
    delivery_time: str | None = None
    delivery_po_number: str | None = Field(default=None, alias="deliveryPONumber")
    number_of_pallets: int = Field(ge=0)
    weight: Decimal | None = Field(default=None, ge=0)
    dimensions: str | None = None
    amount: Money = Field(gt=0)
    gst_percentage: Percentage = Decimal("0")
    notes: str | None = None


class OrderDetailsUpdate(CamelModel):
    """Descriptive fields editable through the generic edit form. Status, payment,
    assignment, ETA and notes have dedicated operations and are rejected here."""
    model_config = ConfigDict(extra="forbid")

    pickup_address: str | None = Field(default=None, min_length=1)
    pickup_date: UtcDatetime | None = None
    pickup_time: str | None = None
    pickup_po_number: str | None = Field(default=None, alias="pickupPONumber")
    delivery_address: str | None = Field(default=None, min_length=1)
    delivery_time: str | None = None
    delivery_po_number: str | None = Field(default=None, alias="deliveryPONumber")
    number_of_pallets: int | None = Field(default=None, ge=0)
    weight: Decimal | None = Field(default=None, ge=0)
    dimensions: str | None = None
    amount: Money | None = Field(default=None, gt=0)
    gst_percentage: Percentage | None = None


class StatusUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")
    order_status: OrderStatus


class PaymentUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")
    payment_status: PaymentStatus


class CarrierUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")
    carrier_id: str | None

    @field_validator("carrier_id")
    @classmethod
    def _blank_is_none(cls, v: str | None) -> str | None:
        return v or None


class DriverUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")
    driver_id: str | None

    @field_validator("driver_id")
    @classmethod
    def _blank_is_none(cls, v: str | None) -> str | None:
        return v or None


class EtaUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")
    delivery_date: UtcDatetime


class NotesUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")
    notes: str


class CheckpointCreate(CamelModel):
    model_config = ConfigDict(extra="forbid")
    status: str = Field(min_length=1, max_length=64)
    description: str = Field(min_length=1)
    location: str | None = None


class BulkAction(CamelModel):
    model_config = ConfigDict(extra="forbid")
    order_ids: list[str] = Field(min_length=1)
    action: Literal["update_status"]
    status: OrderStatus


class BulkFailure(CamelModel):
    order_id: str
    error: str
    valid_transitions: list[OrderStatus] | None = None


class BulkActionResult(CamelModel):
    updated: list[str]
    failed: list[BulkFailure]


# --- Derived, never persisted ---

class DashboardMetrics(CamelModel):
    total_orders: int
    pending_orders: int
    total_in_transit: int
    total_revenue: Decimal


class CustomerWithStats(Customer):
    total_orders: int
    total_spend: Decimal
    status: Literal["active", "inactive"]


class CarrierWithStats(Carrier):
    total_drivers: int
    total_orders: int
