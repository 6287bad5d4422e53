import asyncio
import functools
import logging
from dataclasses import dataclass

import stripe

from shopbot.config import get_settings
from shopbot.errors import PaymentProviderError, WebhookVerificationError

logger = logging.getLogger(__name__)

settings = get_settings()
stripe.api_key = settings.stripe_secret_key
stripe.max_network_retries = 2

TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


@dataclass(frozen=True)
class CheckoutSession:
    url: str
    session_id: str


async def _call(func, *args, **kwargs):
    """Run a blocking Stripe call off the event loop with a bounded timeout."""
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(functools.partial(func, *args, **kwargs)),
            timeout=get_settings().stripe_timeout,
        )
    except asyncio.TimeoutError:
        raise PaymentProviderError("Stripe request timed out", transient=True)
    except stripe.StripeError as error:
        raise PaymentProviderError(
            error.user_message or str(error),
            code=error.code,
            transient=isinstance(error, TRANSIENT_ERRORS),
        ) from error


async def create_checkout_session(
    amount: int, currency: str, product_name: str, metadata: dict | None = None
) -> CheckoutSession:
    base_url = get_settings().server_url
    session = await _call(
        stripe.checkout.Session.create,
        payment_method_types=["card"],
        line_items=[{
            "price_data": {
                "currency": currency,
                "unit_amount": amount,
                "product_data": {"name": product_name},
            },
            "quantity": 1,
        }],
        mode="payment",
        success_url=f"{base_url}/success",
        cancel_url=f"{base_url}/cancel",
        metadata=metadata or {},
    )
    return CheckoutSession(url=session.url, session_id=session.id)


async def create_refund(payment_intent_id: str) -> str:
    """Refund the full charge behind a payment intent and return the refund id."""
    refund = await _call(stripe.Refund.create, payment_intent=payment_intent_id)
    return refund.id


def construct_event(payload: bytes, signature: str | None, secret: str):
    if not signature:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError:
        raise WebhookVerificationError("Invalid payload")
    except stripe.SignatureVerificationError:
        raise WebhookVerificationError("Invalid signature")


async def check_connection() -> None:
    await _call(stripe.Balance.retrieve)
