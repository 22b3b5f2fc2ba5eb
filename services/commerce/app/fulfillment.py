"""Payment webhook handling and print-job submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from uuid import UUID

from inkwell_observability import log_context, observe_fulfillment
from inkwell_schemas import (
    Order,
    OrderStatus,
    PrintJobLineItem,
    PrintJobRequest,
    ShippingAddress,
)
from inkwell_schemas.exceptions import (
    DataIntegrityError,
    NotFoundError,
    PermanentExternalError,
    PipelineError,
)
from inkwell_schemas.utils.validators import AddressError, normalise_shipping_address
from inkwell_store import OrderRepository

from .payments import PaymentGateway
from .retry import DEFAULT_BASE_DELAY_SECONDS, retry_with_backoff
from .vendor import PrintVendorClient

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"
SHIPPED_STATUS = "SHIPPED"


@dataclass(frozen=True, slots=True)
class WebhookOutcome:
    event_type: str
    outcome: str
    order_id: Optional[UUID] = None
    vendor_job_id: Optional[str] = None


class FulfillmentHandler:
    """Turns verified payment events into vendor print jobs.

    Once the signature checks out every event is acknowledged, whatever
    happens to the order, so the payment processor never redelivers an event
    that has already been recorded. Duplicate deliveries are absorbed by the
    row lock taken on the still-``pending`` order.
    """

    def __init__(
        self,
        orders: OrderRepository,
        vendor: PrintVendorClient,
        payments: PaymentGateway,
        *,
        retry_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    ) -> None:
        self._orders = orders
        self._vendor = vendor
        self._payments = payments
        self._retry_delay = retry_delay

    async def handle_event(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        try:
            event = self._payments.parse_event(payload, signature)
        except PermanentExternalError:
            observe_fulfillment("rejected")
            raise
        event_type = str(_field(event, "type") or "")
        data_object = _field(_field(event, "data"), "object") or {}
        with log_context(event_id=_field(event, "id"), event_type=event_type):
            if event_type == CHECKOUT_COMPLETED:
                outcome = await self._session_completed(data_object)
            elif event_type == PAYMENT_FAILED:
                outcome = await self._payment_failed(data_object)
            else:
                logger.info("Ignoring payment event")
                outcome = WebhookOutcome(event_type=event_type, outcome="ignored")
        observe_fulfillment(outcome.outcome)
        return outcome

    async def refresh_print_job_status(self, order_id: UUID) -> Order:
        order = await self._orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not order.vendor_job_id:
            return order
        job = await retry_with_backoff(
            lambda: self._vendor.get_print_job(order.vendor_job_id),
            description="vendor print job status",
            base_delay=self._retry_delay,
        )
        status = OrderStatus.COMPLETED if job.status.upper() == SHIPPED_STATUS else None
        updated = await self._orders.record_vendor_status(order_id, job.status, status)
        logger.info(
            "Print job status refreshed",
            extra={"order_id": str(order_id), "vendor_job_status": job.status},
        )
        return updated or order

    async def _session_completed(self, session: Any) -> WebhookOutcome:
        try:
            order_id = _order_id(session)
        except DataIntegrityError as exc:
            logger.error("Payment event without a usable order id", extra={"error": exc.message})
            return WebhookOutcome(event_type=CHECKOUT_COMPLETED, outcome="missing_order")

        with log_context(order_id=str(order_id)):
            async with self._orders.claim_pending(order_id) as claim:
                if claim is None:
                    logger.info("Order is not pending, treating event as a duplicate")
                    return WebhookOutcome(
                        event_type=CHECKOUT_COMPLETED, outcome="duplicate", order_id=order_id
                    )
                order = claim.order
                email = _customer_email(session)
                try:
                    address = _shipping_address(session, order, email)
                    request = PrintJobRequest(
                        # Stable per order, so a resubmitted job is deduplicated by the vendor.
                        external_id=f"inkwell-order-{order.id}",
                        shipping_address=address,
                        shipping_level=order.shipping_level,
                        contact_email=email or address.email,
                        line_items=[
                            PrintJobLineItem(
                                sku=order.product_sku,
                                page_count=order.actual_page_count,
                                cover_url=order.cover_url,
                                interior_url=order.interior_url,
                                title=f"Inkwell order {order.id}",
                            )
                        ],
                    )
                    job = await retry_with_backoff(
                        lambda: self._vendor.create_print_job(request),
                        description="vendor print job",
                        base_delay=self._retry_delay,
                    )
                except Exception as exc:
                    message = exc.message if isinstance(exc, PipelineError) else str(exc)
                    await claim.mark_fulfillment_failed(message, email)
                    logger.exception("Print job submission failed", extra={"error": message})
                    return WebhookOutcome(
                        event_type=CHECKOUT_COMPLETED,
                        outcome="fulfillment_failed",
                        order_id=order_id,
                    )
                await claim.mark_processing(job.job_id, job.status, email)
        logger.info(
            "Print job submitted",
            extra={"order_id": str(order_id), "vendor_job_id": job.job_id},
        )
        return WebhookOutcome(
            event_type=CHECKOUT_COMPLETED,
            outcome="processing",
            order_id=order_id,
            vendor_job_id=job.job_id,
        )

    async def _payment_failed(self, intent: Any) -> WebhookOutcome:
        session_id = await self._session_for_intent(intent)
        if not session_id:
            logger.warning("Payment failure without a checkout session")
            return WebhookOutcome(event_type=PAYMENT_FAILED, outcome="ignored")
        error = _field(intent, "last_payment_error") or {}
        message = str(_field(error, "message") or "Payment failed")
        order = await self._orders.mark_failed_by_session(str(session_id), message)
        if order is None:
            return WebhookOutcome(event_type=PAYMENT_FAILED, outcome="ignored")
        logger.info("Order marked failed after payment failure", extra={"order_id": str(order.id)})
        return WebhookOutcome(event_type=PAYMENT_FAILED, outcome="payment_failed", order_id=order.id)

    async def _session_for_intent(self, intent: Any) -> Optional[str]:
        try:
            order_id = _order_id(intent)
        except DataIntegrityError:
            return None
        order = await self._orders.get(order_id)
        return order.payment_session_id if order else None


def _field(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    try:
        return source[key]
    except (KeyError, TypeError):
        return getattr(source, key, None)


def _order_id(session: Any) -> UUID:
    raw = _field(_field(session, "metadata") or {}, "orderId")
    if not raw:
        raise DataIntegrityError("Checkout session metadata has no orderId")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise DataIntegrityError(f"Checkout session orderId is not a UUID: {raw!r}") from exc


def _customer_email(session: Any) -> Optional[str]:
    details = _field(session, "customer_details") or {}
    return _field(details, "email") or _field(session, "customer_email")


def _shipping_address(session: Any, order: Order, email: Optional[str]) -> ShippingAddress:
    """Prefer the address collected by the payment page, else the one given at checkout."""

    shipping = _field(session, "shipping_details") or _field(
        _field(session, "collected_information"), "shipping_details"
    )
    if shipping:
        raw: dict[str, Any] = {
            "name": _field(shipping, "name"),
            "address": dict(_field(shipping, "address") or {}),
            "email": email,
            "phone_number": _field(_field(session, "customer_details"), "phone"),
        }
        try:
            return ShippingAddress.model_validate(normalise_shipping_address(raw))
        except AddressError as exc:
            raise DataIntegrityError(f"Collected shipping details are incomplete: {exc}") from exc
    if order.shipping_address is not None:
        if email and not order.shipping_address.email:
            return order.shipping_address.model_copy(update={"email": email})
        return order.shipping_address
    raise DataIntegrityError("Payment session carries no shipping details")
