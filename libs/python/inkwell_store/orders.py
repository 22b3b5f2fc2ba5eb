"""Order persistence, including the row-locked claim used by fulfillment."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional
from uuid import UUID, uuid4

from psycopg import AsyncCursor
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from inkwell_schemas import NewOrder, Order, OrderStatus, PriceBreakdown


class OrderClaim(ABC):
    """A pending order locked for the duration of one fulfillment transaction."""

    order: Order

    @abstractmethod
    async def mark_processing(
        self, vendor_job_id: str, vendor_job_status: str, customer_email: Optional[str]
    ) -> None:
        ...

    @abstractmethod
    async def mark_fulfillment_failed(self, message: str, customer_email: Optional[str] = None) -> None:
        ...


class OrderRepository(ABC):
    @abstractmethod
    async def create_pending(self, new_order: NewOrder) -> Order:
        """Insert a ``pending`` order in its own transaction."""

    @abstractmethod
    async def attach_session(self, order_id: UUID, session_id: str) -> None:
        ...

    @abstractmethod
    async def discard_pending(self, order_id: UUID) -> bool:
        """Delete an order still ``pending`` without a payment session."""

    @abstractmethod
    def claim_pending(self, order_id: UUID) -> Any:
        """Async context manager yielding an :class:`OrderClaim`, or ``None`` when not pending."""

    @abstractmethod
    async def get(self, order_id: UUID) -> Optional[Order]:
        ...

    @abstractmethod
    async def mark_failed_by_session(self, session_id: str, message: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def record_vendor_status(
        self, order_id: UUID, vendor_job_status: str, status: Optional[OrderStatus] = None
    ) -> Optional[Order]:
        ...


class _PostgresOrderClaim(OrderClaim):
    def __init__(self, cursor: AsyncCursor, order: Order) -> None:
        self._cursor = cursor
        self.order = order

    async def mark_processing(
        self, vendor_job_id: str, vendor_job_status: str, customer_email: Optional[str]
    ) -> None:
        await self._cursor.execute(
            """
            UPDATE orders
            SET status = %s, vendor_job_id = %s, vendor_job_status = %s,
                customer_email = COALESCE(%s, customer_email), error_message = NULL,
                updated_at = NOW()
            WHERE id = %s
            """,
            (
                OrderStatus.PROCESSING.value,
                vendor_job_id,
                vendor_job_status,
                customer_email,
                self.order.id,
            ),
        )

    async def mark_fulfillment_failed(self, message: str, customer_email: Optional[str] = None) -> None:
        await self._cursor.execute(
            """
            UPDATE orders
            SET status = %s, error_message = %s,
                customer_email = COALESCE(%s, customer_email), updated_at = NOW()
            WHERE id = %s
            """,
            (OrderStatus.FULFILLMENT_FAILED.value, message[:2000], customer_email, self.order.id),
        )


class PostgresOrderRepository(OrderRepository):
    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def create_pending(self, new_order: NewOrder) -> Order:
        price = new_order.price
        address = (
            Jsonb(new_order.shipping_address.model_dump(mode="json"))
            if new_order.shipping_address
            else None
        )
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        INSERT INTO orders (
                            id, project_id, owner_id, book_type, status,
                            print_cost, shipping_cost, margin, total, currency,
                            interior_url, cover_url, actual_page_count, is_fallback,
                            product_sku, shipping_level, shipping_address
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING *
                        """,
                        (
                            uuid4(),
                            new_order.project_id,
                            new_order.owner_id,
                            new_order.book_type.value,
                            OrderStatus.PENDING.value,
                            price.print_cost,
                            price.shipping_cost,
                            price.margin,
                            price.total,
                            price.currency,
                            new_order.interior_url,
                            new_order.cover_url,
                            new_order.actual_page_count,
                            new_order.is_fallback,
                            new_order.product_sku,
                            new_order.shipping_level.value,
                            address,
                        ),
                    )
                    row = await cur.fetchone()
        return _order_from_row(row)

    async def attach_session(self, order_id: UUID, session_id: str) -> None:
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(
                "UPDATE orders SET payment_session_id = %s, updated_at = NOW() WHERE id = %s",
                (session_id, order_id),
            )

    async def discard_pending(self, order_id: UUID) -> bool:
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        DELETE FROM orders
                        WHERE id = %s AND status = %s AND payment_session_id IS NULL
                        """,
                        (order_id, OrderStatus.PENDING.value),
                    )
                    return cur.rowcount == 1

    @asynccontextmanager
    async def claim_pending(self, order_id: UUID) -> AsyncIterator[Optional[OrderClaim]]:
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        "SELECT * FROM orders WHERE id = %s AND status = %s FOR UPDATE",
                        (order_id, OrderStatus.PENDING.value),
                    )
                    row = await cur.fetchone()
                    if row is None:
                        yield None
                        return
                    yield _PostgresOrderClaim(cur, _order_from_row(row))

    async def get(self, order_id: UUID) -> Optional[Order]:
        async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            await cur.execute("SELECT * FROM orders WHERE id = %s", (order_id,))
            row = await cur.fetchone()
        return _order_from_row(row) if row else None

    async def mark_failed_by_session(self, session_id: str, message: str) -> Optional[Order]:
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        UPDATE orders
                        SET status = %s, error_message = %s, updated_at = NOW()
                        WHERE payment_session_id = %s AND status = %s
                        RETURNING *
                        """,
                        (
                            OrderStatus.FAILED.value,
                            message,
                            session_id,
                            OrderStatus.PENDING.value,
                        ),
                    )
                    row = await cur.fetchone()
        return _order_from_row(row) if row else None

    async def record_vendor_status(
        self, order_id: UUID, vendor_job_status: str, status: Optional[OrderStatus] = None
    ) -> Optional[Order]:
        async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                UPDATE orders
                SET vendor_job_status = %s, status = COALESCE(%s, status), updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (vendor_job_status, status.value if status else None, order_id),
            )
            row = await cur.fetchone()
        return _order_from_row(row) if row else None


def _order_from_row(row: Mapping[str, Any]) -> Order:
    data = dict(row)
    data["price"] = PriceBreakdown(
        print_cost=data.pop("print_cost"),
        shipping_cost=data.pop("shipping_cost"),
        margin=data.pop("margin"),
        total=data.pop("total"),
        currency=data.pop("currency"),
    )
    return Order.model_validate(data)
