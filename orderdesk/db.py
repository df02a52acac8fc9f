"""
Async Postgres: orders (current state) + order_tracking_events (append-only ledger) + reference tables.
Each lifecycle mutation runs in a single transaction: lock order row FOR UPDATE, validate, update, insert event.
"""
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator

import asyncpg
from asyncpg.exceptions import DeadlockDetectedError, LockNotAvailableError, SerializationError

from orderdesk.config import settings
from orderdesk.errors import ConcurrencyConflictError
from orderdesk.models import Carrier, Customer, Driver, Order, TrackingEvent
from orderdesk.order_state import OrderStatus
from orderdesk.store import OrderStore, StoreTransaction

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

# Columns update_order() may write; also guards the dynamic SET clause.
ORDER_COLUMNS = frozenset(Order.model_fields) - {"id", "order_number", "created_at"}


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            DO $$ BEGIN
                CREATE TYPE order_status AS ENUM
                    ('pending', 'processing', 'shipped', 'in_transit', 'delivered', 'cancelled');
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$;
        """)
        await conn.execute("""
            DO $$ BEGIN
                CREATE TYPE payment_status AS ENUM ('pending', 'paid', 'processing', 'failed');
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$;
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS customers (
                id VARCHAR(64) PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                phone TEXT NOT NULL,
                address TEXT NOT NULL,
                city TEXT NOT NULL,
                country TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS carriers (
                id VARCHAR(64) PRIMARY KEY,
                name TEXT NOT NULL,
                code TEXT NOT NULL UNIQUE,
                contact_person TEXT NOT NULL,
                contact_email TEXT NOT NULL,
                contact_phone TEXT NOT NULL,
                mobile TEXT NOT NULL,
                rate_per_mile NUMERIC(10, 2),
                rate_per_km NUMERIC(10, 2),
                default_currency VARCHAR(3) NOT NULL DEFAULT 'USD',
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS drivers (
                id VARCHAR(64) PRIMARY KEY,
                name TEXT NOT NULL,
                phone TEXT NOT NULL,
                license_number TEXT NOT NULL UNIQUE,
                carrier_id VARCHAR(64) REFERENCES carriers(id),
                vehicle_type TEXT NOT NULL,
                current_status VARCHAR(20) NOT NULL DEFAULT 'available',
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(64) PRIMARY KEY,
                order_number VARCHAR(64) NOT NULL UNIQUE,
                customer_id VARCHAR(64) NOT NULL REFERENCES customers(id),
                carrier_id VARCHAR(64) REFERENCES carriers(id),
                driver_id VARCHAR(64) REFERENCES drivers(id),
                pickup_address TEXT NOT NULL,
                pickup_date TIMESTAMPTZ NOT NULL,
                pickup_time TEXT,
                pickup_po_number TEXT,
                delivery_address TEXT NOT NULL,
                delivery_date TIMESTAMPTZ NOT NULL,
                delivery_time TEXT,
                delivery_po_number TEXT,
                number_of_pallets INT NOT NULL DEFAULT 0,
                weight NUMERIC(10, 2),
                dimensions TEXT,
                amount NUMERIC(12, 2) NOT NULL CHECK (amount > 0),
                gst_percentage NUMERIC(5, 2) NOT NULL DEFAULT 0 CHECK (gst_percentage BETWEEN 0 AND 100),
                order_status order_status NOT NULL DEFAULT 'pending',
                payment_status payment_status NOT NULL DEFAULT 'pending',
                notes TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_order_status ON orders(order_status);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_customer_id ON orders(customer_id);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_tracking_events (
                seq BIGSERIAL UNIQUE,
                id VARCHAR(64) PRIMARY KEY,
                order_id VARCHAR(64) NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                status VARCHAR(64) NOT NULL,
                description TEXT NOT NULL,
                location TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_tracking_events_order_id
            ON order_tracking_events(order_id, seq);
        """)
        # Ledger rows are write-once. The only delete allowed is the cascade from deleting the
        # order itself (fired from the FK trigger, so trigger depth > 1).
        await conn.execute("""
            CREATE OR REPLACE FUNCTION reject_tracking_event_mutation() RETURNS trigger AS $$
            BEGIN
                IF TG_OP = 'DELETE' AND pg_trigger_depth() > 1 THEN
                    RETURN OLD;
                END IF;
                RAISE EXCEPTION 'order_tracking_events is append-only (% rejected)', TG_OP;
            END;
            $$ LANGUAGE plpgsql;
        """)
        await conn.execute("""
            DROP TRIGGER IF EXISTS order_tracking_events_append_only ON order_tracking_events;
        """)
        await conn.execute("""
            CREATE TRIGGER order_tracking_events_append_only
            BEFORE UPDATE OR DELETE ON order_tracking_events
            FOR EACH ROW EXECUTE FUNCTION reject_tracking_event_mutation();
        """)
    logger.info("Schema ready")


def _order(row: asyncpg.Record) -> Order:
    return Order.model_validate(dict(row))


def _event(row: asyncpg.Record) -> TrackingEvent:
    data = dict(row)
    data.pop("seq", None)
    return TrackingEvent.model_validate(data)


class _PostgresTransaction(StoreTransaction):
    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def lock_order(self, order_id: str) -> Order | None:
        try:
            row = await self._conn.fetchrow(
                "SELECT * FROM orders WHERE id = $1 FOR UPDATE;",
                order_id,
            )
        except (LockNotAvailableError, DeadlockDetectedError, SerializationError) as e:
            raise ConcurrencyConflictError(f"order {order_id}: {e}") from e
        return _order(row) if row is not None else None

    async def insert_order(self, order: Order) -> Order:
        data = order.model_dump()
        columns = list(data)
        row = await self._conn.fetchrow(
            f"INSERT INTO orders ({', '.join(columns)}) VALUES ({_placeholders(len(columns))}) RETURNING *;",
            *[_db_value(data[c]) for c in columns],
        )
        return _order(row)

    async def update_order(self, order_id: str, fields: dict[str, Any]) -> Order:
        unknown = set(fields) - ORDER_COLUMNS
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        columns = list(fields)
        assignments = ", ".join(f"{c} = ${i}" for i, c in enumerate(columns, start=1))
        row = await self._conn.fetchrow(
            f"UPDATE orders SET {assignments} WHERE id = ${len(columns) + 1} RETURNING *;",
            *[_db_value(fields[c]) for c in columns],
            order_id,
        )
        if row is None:
            raise KeyError(order_id)
        return _order(row)

    async def delete_order(self, order_id: str) -> int:
        removed = await self._conn.fetchval(
            "SELECT COUNT(*) FROM order_tracking_events WHERE order_id = $1;",
            order_id,
        )
        await self._conn.execute("DELETE FROM orders WHERE id = $1;", order_id)
        return removed

    async def insert_event(self, event: TrackingEvent) -> TrackingEvent:
        row = await self._conn.fetchrow(
            """
            INSERT INTO order_tracking_events (id, order_id, status, description, location, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING *;
            """,
            event.id,
            event.order_id,
            event.status,
            event.description,
            event.location,
            event.created_at,
        )
        return _event(row)


def _db_value(value: Any) -> Any:
    # asyncpg encodes the enum columns from their text value
    if isinstance(value, Enum):
        return value.value
    return value


class PostgresStore(OrderStore):
    def __init__(self, pool: asyncpg.Pool, lock_timeout_ms: int | None = None):
        self.pool = pool
        self.lock_timeout_ms = lock_timeout_ms

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.lock_timeout_ms:
                    await conn.execute(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)};")
                yield _PostgresTransaction(conn)

    # --- orders ---

    async def get_order(self, order_id: str) -> Order | None:
        row = await self.pool.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        return _order(row) if row is not None else None

    async def list_orders(
        self,
        limit: int | None = None,
        offset: int = 0,
        status: OrderStatus | None = None,
        search: str | None = None,
    ) -> list[Order]:
        clauses: list[str] = []
        args: list[Any] = []
        if status is not None:
            args.append(status.value)
            clauses.append(f"o.order_status = ${len(args)}")
        if search:
            args.append(f"%{search}%")
            n = len(args)
            clauses.append(
                f"(o.order_number ILIKE ${n} OR c.name ILIKE ${n} OR o.pickup_po_number ILIKE ${n}"
                f" OR o.delivery_po_number ILIKE ${n} OR o.pickup_address ILIKE ${n}"
                f" OR o.delivery_address ILIKE ${n})"
            )
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        args.append(offset)
        query = f"""
            SELECT o.* FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            {where}
            ORDER BY o.created_at DESC
            OFFSET ${len(args)}
        """
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"
        rows = await self.pool.fetch(query + ";", *args)
        return [_order(r) for r in rows]

    async def count_orders(self, status: OrderStatus | None = None) -> int:
        if status is None:
            return await self.pool.fetchval("SELECT COUNT(*) FROM orders;")
        return await self.pool.fetchval(
            "SELECT COUNT(*) FROM orders WHERE order_status = $1;",
            status.value,
        )

    async def sum_order_amounts(self) -> Decimal:
        total = await self.pool.fetchval("SELECT COALESCE(SUM(amount), 0) FROM orders;")
        return Decimal(total)

    # --- ledger ---

    async def list_events(self, order_id: str) -> list[TrackingEvent]:
        rows = await self.pool.fetch(
            """
            SELECT * FROM order_tracking_events
            WHERE order_id = $1
            ORDER BY seq DESC;
            """,
            order_id,
        )
        return [_event(r) for r in rows]

    # --- reference data ---

    async def get_customer(self, customer_id: str) -> Customer | None:
        row = await self.pool.fetchrow("SELECT * FROM customers WHERE id = $1;", customer_id)
        return Customer.model_validate(dict(row)) if row is not None else None

    async def list_customers(self, search: str | None = None) -> list[Customer]:
        if search:
            rows = await self.pool.fetch(
                """
                SELECT * FROM customers
                WHERE name ILIKE $1 OR email ILIKE $1 OR phone ILIKE $1
                ORDER BY created_at DESC;
                """,
                f"%{search}%",
            )
        else:
            rows = await self.pool.fetch("SELECT * FROM customers ORDER BY created_at DESC;")
        return [Customer.model_validate(dict(r)) for r in rows]

    async def get_carrier(self, carrier_id: str) -> Carrier | None:
        row = await self.pool.fetchrow("SELECT * FROM carriers WHERE id = $1;", carrier_id)
        return Carrier.model_validate(dict(row)) if row is not None else None

    async def list_carriers(self) -> list[Carrier]:
        rows = await self.pool.fetch("SELECT * FROM carriers ORDER BY created_at DESC;")
        return [Carrier.model_validate(dict(r)) for r in rows]

    async def get_driver(self, driver_id: str) -> Driver | None:
        row = await self.pool.fetchrow("SELECT * FROM drivers WHERE id = $1;", driver_id)
        return Driver.model_validate(dict(row)) if row is not None else None

    async def list_drivers(self, carrier_id: str | None = None) -> list[Driver]:
        if carrier_id is None:
            rows = await self.pool.fetch("SELECT * FROM drivers ORDER BY created_at DESC;")
        else:
            rows = await self.pool.fetch(
                "SELECT * FROM drivers WHERE carrier_id = $1 ORDER BY created_at DESC;",
                carrier_id,
            )
        return [Driver.model_validate(dict(r)) for r in rows]

    async def add_customer(self, customer: Customer) -> Customer:
        data = customer.model_dump()
        await self.pool.execute(
            f"INSERT INTO customers ({', '.join(data)}) VALUES ({_placeholders(len(data))});",
            *data.values(),
        )
        return customer

    async def add_carrier(self, carrier: Carrier) -> Carrier:
        data = carrier.model_dump()
        await self.pool.execute(
            f"INSERT INTO carriers ({', '.join(data)}) VALUES ({_placeholders(len(data))});",
            *data.values(),
        )
        return carrier

    async def add_driver(self, driver: Driver) -> Driver:
        data = driver.model_dump()
        await self.pool.execute(
            f"INSERT INTO drivers ({', '.join(data)}) VALUES ({_placeholders(len(data))});",
            *data.values(),
        )
        return driver


def _placeholders(n: int) -> str:
    return ", ".join(f"${i}" for i in range(1, n + 1))
