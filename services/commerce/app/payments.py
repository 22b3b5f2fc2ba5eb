"""Payment processor gateway (Stripe Checkout)."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import stripe

from inkwell_schemas import PaymentSession, PriceBreakdown
from inkwell_schemas.exceptions import PermanentExternalError, TransientExternalError

from .pricing import to_minor_units

logger = logging.getLogger(__name__)

_TRANSIENT_STRIPE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


@dataclass(slots=True)
class PaymentSettings:
    secret_key: str
    webhook_secret: str
    client_url: str

    @classmethod
    def from_env(cls) -> "PaymentSettings":
        secret_key = os.getenv("STRIPE_SECRET_KEY")
        webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        if not secret_key or not webhook_secret:
            raise RuntimeError("STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET are required")
        return cls(
            secret_key=secret_key,
            webhook_secret=webhook_secret,
            client_url=os.getenv("CLIENT_URL", "http://localhost:5173").rstrip("/"),
        )


class PaymentGateway:
    def __init__(self, settings: PaymentSettings) -> None:
        self._settings = settings
        stripe.api_key = settings.secret_key

    async def create_session(
        self,
        *,
        title: str,
        description: str,
        price: PriceBreakdown,
        metadata: Mapping[str, str],
        collect_shipping: bool,
        customer_email: Optional[str] = None,
    ) -> PaymentSession:
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": price.currency.lower(),
                        "product_data": {"name": title, "description": description},
                        "unit_amount": to_minor_units(price.total),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{self._settings.client_url}/checkout-success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self._settings.client_url}/checkout-cancel",
            "metadata": dict(metadata),
            "payment_intent_data": {"metadata": dict(metadata)},
            # Order ids are unique per checkout attempt.
            "idempotency_key": f"checkout-{metadata['orderId']}",
        }
        if customer_email:
            params["customer_email"] = customer_email
        if collect_shipping:
            params["shipping_address_collection"] = {"allowed_countries": ["US", "CA", "GB", "AU", "NZ"]}
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except _TRANSIENT_STRIPE_ERRORS as exc:
            raise TransientExternalError(f"Payment processor unavailable: {exc}") from exc
        except stripe.StripeError as exc:
            raise PermanentExternalError(f"Payment session rejected: {exc}") from exc
        logger.info("Payment session created", extra={"session_id": session.id})
        return PaymentSession(session_id=session.id, redirect_url=session.url)

    async def expire_session(self, session_id: str) -> None:
        """Close a session nobody can pay any more."""

        try:
            await asyncio.to_thread(stripe.checkout.Session.expire, session_id)
        except _TRANSIENT_STRIPE_ERRORS as exc:
            raise TransientExternalError(f"Payment processor unavailable: {exc}") from exc
        except stripe.StripeError as exc:
            raise PermanentExternalError(f"Payment session could not be expired: {exc}") from exc
        logger.info("Payment session expired", extra={"session_id": session_id})

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify the webhook signature and return the event."""

        if not signature:
            raise PermanentExternalError("Missing payment webhook signature")
        try:
            return stripe.Webhook.construct_event(payload, signature, self._settings.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise PermanentExternalError("Invalid payment webhook signature") from exc
        except ValueError as exc:
            raise PermanentExternalError("Malformed payment webhook payload") from exc
