"""Checkout: render print artifacts, price the book and open a payment session."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping, Optional, Union
from uuid import UUID, uuid4

import httpx
from pydantic import ValidationError as PydanticValidationError

from inkwell_observability import log_context, observe_checkout
from inkwell_schemas import (
    BookType,
    CheckoutResult,
    CoverDimensions,
    NewOrder,
    PaymentSession,
    ProductProfile,
    Project,
    ProjectStatus,
    ShippingAddress,
    ShippingLevel,
    Unit,
    get_product_profile,
)
from inkwell_schemas.exceptions import (
    ConflictError,
    NotFoundError,
    PipelineError,
    ValidationError,
)
from inkwell_schemas.utils.validators import AddressError, normalise_shipping_address
from inkwell_store import ArtifactStorage, OrderRepository, ProjectRepository

from .payments import PaymentGateway
from .pricing import price_order
from .printing import finalize_interior, size_cover_spread
from .printing.reconciliation import Reconciliation
from .printing.render import (
    IllustratedPage,
    render_cover,
    render_picture_interior,
    render_text_interior,
)
from .retry import DEFAULT_BASE_DELAY_SECONDS, retry_with_backoff
from .vendor import PrintVendorClient

logger = logging.getLogger(__name__)

QUOTE_COUNTRY = os.getenv("VENDOR_QUOTE_COUNTRY", "US")
IMAGE_TIMEOUT_SECONDS = 30.0

AddressInput = Union[ShippingAddress, Mapping[str, Any], None]


class CheckoutCoordinator:
    def __init__(
        self,
        projects: Mapping[BookType, ProjectRepository],
        orders: OrderRepository,
        vendor: PrintVendorClient,
        payments: PaymentGateway,
        storage: ArtifactStorage,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    ) -> None:
        self._projects = projects
        self._orders = orders
        self._vendor = vendor
        self._payments = payments
        self._storage = storage
        self._http = http_client
        self._retry_delay = retry_delay

    async def checkout(
        self,
        book_type: BookType,
        project_id: UUID,
        owner_id: str,
        shipping_address: AddressInput = None,
        shipping_level: ShippingLevel = ShippingLevel.MAIL,
    ) -> CheckoutResult:
        with log_context(project_id=str(project_id), book_type=book_type.value):
            try:
                result = await self._checkout(
                    book_type, project_id, owner_id, shipping_address, shipping_level
                )
            except PipelineError as exc:
                observe_checkout(book_type.value, "failed")
                logger.warning(
                    "Checkout failed",
                    extra={"error": exc.message, "status_code": exc.status_code},
                )
                raise
            observe_checkout(book_type.value, "success")
            return result

    async def _checkout(
        self,
        book_type: BookType,
        project_id: UUID,
        owner_id: str,
        raw_address: AddressInput,
        shipping_level: ShippingLevel,
    ) -> CheckoutResult:
        repo = self._projects[book_type]
        project = await repo.get(project_id)
        if project is None or project.owner_id != owner_id:
            raise NotFoundError(f"Project {project_id} not found")
        if project.status is not ProjectStatus.COMPLETE:
            raise ConflictError(f"Project must be complete to order, it is {project.status.value}")
        address = _resolve_address(book_type, raw_address)
        units = await repo.list_units(project_id)
        if not units:
            raise ValidationError("Project has no generated content")
        profile = get_product_profile(project.product_id, book_type)

        checkout_id = uuid4()
        with tempfile.TemporaryDirectory(prefix="inkwell-checkout-") as workdir:
            interior_path = Path(workdir) / "interior.pdf"
            content_pages = await self._render_interior(project, units, profile, interior_path)
            reconciliation, interior_path = await asyncio.to_thread(
                finalize_interior, interior_path, profile, content_pages
            )
            interior_url = await asyncio.to_thread(
                self._storage.save_file, f"orders/{checkout_id}/interior.pdf", interior_path
            )

            cover_path = Path(workdir) / "cover.pdf"
            await self._render_cover(project, units, profile, reconciliation, cover_path)
            cover_url = await asyncio.to_thread(
                self._storage.save_file, f"orders/{checkout_id}/cover.pdf", cover_path
            )

        quote = await retry_with_backoff(
            lambda: self._vendor.quote_cost(
                sku=profile.sku,
                page_count=reconciliation.page_count,
                country_code=address.country_code if address else QUOTE_COUNTRY,
                shipping_level=shipping_level,
                shipping_address=address,
            ),
            description="vendor cost quote",
            base_delay=self._retry_delay,
        )
        price = price_order(
            book_type, quote, country_code=address.country_code if address else None
        )

        order = await self._orders.create_pending(
            NewOrder(
                project_id=project.id,
                owner_id=owner_id,
                book_type=book_type,
                price=price,
                interior_url=interior_url,
                cover_url=cover_url,
                actual_page_count=reconciliation.page_count,
                is_fallback=reconciliation.fallback,
                product_sku=profile.sku,
                shipping_level=shipping_level,
                shipping_address=address,
            )
        )
        with log_context(order_id=str(order.id)):
            session: Optional[PaymentSession] = None
            try:
                session = await retry_with_backoff(
                    lambda: self._payments.create_session(
                        title=project.title,
                        description=f"Inkwell {profile.name}",
                        price=price,
                        metadata={
                            "ownerId": owner_id,
                            "orderId": str(order.id),
                            "projectId": str(project.id),
                            "projectType": book_type.value,
                        },
                        collect_shipping=address is None,
                        customer_email=address.email if address else None,
                    ),
                    description="payment session",
                    base_delay=self._retry_delay,
                )
                await retry_with_backoff(
                    lambda: self._orders.attach_session(order.id, session.session_id),
                    description="attach payment session",
                    base_delay=self._retry_delay,
                )
            except BaseException:
                # No pending order or open payment session may outlive a failed checkout.
                if session is not None:
                    await self._expire_session(session.session_id)
                discarded = await self._orders.discard_pending(order.id)
                logger.warning("Pending order discarded", extra={"discarded": discarded})
                raise
            logger.info(
                "Checkout session opened",
                extra={
                    "session_id": session.session_id,
                    "total": str(price.total),
                    "page_count": reconciliation.page_count,
                },
            )

        return CheckoutResult(
            order_id=order.id,
            session_id=session.session_id,
            redirect_url=session.redirect_url,
            price=price,
            page_count=reconciliation.page_count,
            is_fallback=reconciliation.fallback,
        )

    async def _expire_session(self, session_id: str) -> None:
        try:
            await retry_with_backoff(
                lambda: self._payments.expire_session(session_id),
                description="expire payment session",
                base_delay=self._retry_delay,
            )
        except PipelineError as exc:
            logger.error(
                "Payment session left open after a failed checkout",
                extra={"session_id": session_id, "error": exc.message},
            )

    async def _render_interior(
        self, project: Project, units: list[Unit], profile: ProductProfile, path: Path
    ) -> Optional[int]:
        if project.book_type is BookType.TEXT_BOOK:
            chapters = [unit.content for unit in units]
            return await asyncio.to_thread(
                render_text_interior, path, project.title, chapters, profile
            )
        if project.book_type is BookType.PICTURE_BOOK:
            pages = [
                IllustratedPage(text=unit.content, image=await self._load_image(unit.image_url))
                for unit in units
            ]
            return await asyncio.to_thread(
                render_picture_interior, path, project.title, pages, profile
            )
        raise ValidationError(f"Unsupported book type {project.book_type}")  # pragma: no cover

    async def _render_cover(
        self,
        project: Project,
        units: list[Unit],
        profile: ProductProfile,
        interior: Reconciliation,
        path: Path,
    ) -> None:
        vendor_dimensions: Optional[CoverDimensions]
        try:
            vendor_dimensions = await retry_with_backoff(
                lambda: self._vendor.cover_dimensions(sku=profile.sku, page_count=interior.page_count),
                description="vendor cover dimensions",
                base_delay=self._retry_delay,
            )
        except PipelineError as exc:
            logger.warning(
                "Vendor cover dimensions unavailable, using spine table",
                extra={"error": exc.message},
            )
            vendor_dimensions = None
        spread = size_cover_spread(profile, interior, vendor_dimensions)
        image_url = None
        if project.character_reference and project.character_reference.image_url:
            image_url = project.character_reference.image_url
        elif units and units[0].image_url:
            image_url = units[0].image_url
        image = await self._load_image(image_url)
        await asyncio.to_thread(render_cover, path, spread, project.title, profile, image)

    async def _load_image(self, url: Optional[str]) -> Optional[bytes]:
        if not url:
            return None
        if url.startswith(self._storage.base_url + "/"):
            key = url[len(self._storage.base_url) + 1 :]
            return await asyncio.to_thread(self._storage.path_for(key).read_bytes)
        try:
            if self._http is not None:
                response = await self._http.get(url)
            else:
                async with httpx.AsyncClient(timeout=IMAGE_TIMEOUT_SECONDS) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            # The page still prints, with a placeholder where the image would be.
            logger.warning("Illustration download failed", extra={"url": url, "error": str(exc)})
            return None
        return response.content


def _resolve_address(book_type: BookType, raw: AddressInput) -> Optional[ShippingAddress]:
    if raw is None or (isinstance(raw, Mapping) and not raw):
        if book_type is BookType.TEXT_BOOK:
            raise ValidationError("A shipping address is required for text book orders")
        return None
    if isinstance(raw, ShippingAddress):
        return raw
    try:
        return ShippingAddress.model_validate(normalise_shipping_address(raw))
    except (AddressError, PydanticValidationError) as exc:
        raise ValidationError(f"Invalid shipping address: {exc}") from exc
