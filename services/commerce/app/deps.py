"""Process-wide wiring of the commerce service's collaborators."""

from __future__ import annotations

import os
from functools import lru_cache

from psycopg_pool import AsyncConnectionPool

from inkwell_store import (
    ArtifactStorage,
    PostgresOrderRepository,
    build_project_repositories,
    create_pool,
    ensure_schema,
)

from .checkout import CheckoutCoordinator
from .fulfillment import FulfillmentHandler
from .payments import PaymentGateway, PaymentSettings
from .vendor import PrintVendorClient, TokenCache, VendorSettings


class Runtime:
    def __init__(
        self,
        pool: AsyncConnectionPool,
        vendor: PrintVendorClient,
        payments: PaymentGateway,
        storage: ArtifactStorage,
    ) -> None:
        self.pool = pool
        self.vendor = vendor
        self.payments = payments
        self.storage = storage
        self.projects = build_project_repositories(pool)
        self.orders = PostgresOrderRepository(pool)
        self.checkout = CheckoutCoordinator(self.projects, self.orders, vendor, payments, storage)
        self.fulfillment = FulfillmentHandler(self.orders, vendor, payments)
        self._opened = False

    async def open(self) -> None:
        if self._opened:
            return
        await self.pool.open()
        if os.getenv("INKWELL_BOOTSTRAP_SCHEMA", "true").lower() in {"1", "true", "yes"}:
            await ensure_schema(self.pool)
        self._opened = True

    async def close(self) -> None:
        if not self._opened:
            return
        await self.vendor.aclose()
        await self.pool.close()
        self._opened = False


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return Runtime(
        create_pool(),
        # One token cache per process, shared by every vendor request.
        PrintVendorClient(VendorSettings.from_env(), token_cache=TokenCache()),
        PaymentGateway(PaymentSettings.from_env()),
        ArtifactStorage.from_env(),
    )
