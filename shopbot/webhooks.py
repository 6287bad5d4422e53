"""Stripe event classification and dispatch.

Each supported event type maps to exactly one handler; anything else is
acknowledged without action. ``WebhookRouter.dispatch`` never raises: once a
delivery is authenticated, whatever happens locally is reported back as a
``WebhookOutcome`` and the HTTP layer acknowledges it.
"""

import enum
import logging
from dataclasses import dataclass

from shopbot.errors import ErrorKind, is_transient
from shopbot.lifecycle import IdentifierKind, OrderLifecycle, Outcome, TransitionResult
from shopbot.refunds import RefundOrchestrator

logger = logging.getLogger(__name__)

SESSION_EXPIRED_REASON = "Payment session expired"
DEFAULT_FAILURE_REASON = "Payment processing error"


class EventKind(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_EXPIRED = "checkout.session.expired"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    OTHER = "other"


def classify(event_type: str | None) -> EventKind:
    try:
        kind = EventKind(event_type)
    except ValueError:
        return EventKind.OTHER
    return kind


def _field(obj, key: str, default=None):
    """Read a key from a Stripe object or a plain dict, treating null as missing."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


@dataclass
class WebhookOutcome:
    kind: EventKind
    result: TransitionResult | None = None

    @property
    def transient_failure(self) -> bool:
        return self.result is not None and self.result.outcome is Outcome.ERROR and self.result.transient


class WebhookRouter:
    def __init__(self, lifecycle: OrderLifecycle, refunds: RefundOrchestrator):
        self.lifecycle = lifecycle
        self.refunds = refunds
        self.handlers = {
            EventKind.CHECKOUT_COMPLETED: self.on_checkout_completed,
            EventKind.CHECKOUT_EXPIRED: self.on_checkout_expired,
            EventKind.PAYMENT_FAILED: self.on_payment_failed,
            EventKind.CHARGE_REFUNDED: self.on_charge_refunded,
            EventKind.OTHER: self.on_other,
        }
        missing = set(EventKind) - set(self.handlers)
        if missing:
            raise RuntimeError(f"No webhook handler for {sorted(k.value for k in missing)}")

    async def dispatch(self, event) -> WebhookOutcome:
        event_type = _field(event, "type")
        kind = classify(event_type)
        obj = _field(_field(event, "data"), "object", {})
        try:
            result = await self.handlers[kind](obj)
        except Exception as error:
            logger.exception("Error processing %s webhook %s", event_type, _field(event, "id"))
            result = TransitionResult(
                Outcome.ERROR,
                error_kind=ErrorKind.INTERNAL_ERROR,
                error=str(error),
                transient=is_transient(error),
            )

        if result is not None and result.outcome is Outcome.ERROR:
            logger.error("Webhook %s (%s) failed: %s", _field(event, "id"), event_type, result.error)
        return WebhookOutcome(kind=kind, result=result)

    async def on_checkout_completed(self, session) -> TransitionResult:
        return await self.lifecycle.apply_payment_success(
            _field(session, "id"), _field(session, "payment_intent")
        )

    async def on_checkout_expired(self, session) -> TransitionResult:
        return await self.lifecycle.apply_payment_failure(
            _field(session, "id"), SESSION_EXPIRED_REASON, IdentifierKind.CHECKOUT_SESSION
        )

    async def on_payment_failed(self, intent) -> TransitionResult:
        reason = _field(_field(intent, "last_payment_error"), "message", DEFAULT_FAILURE_REASON)
        return await self.lifecycle.apply_payment_failure(
            _field(intent, "id"), reason, IdentifierKind.PAYMENT_INTENT
        )

    async def on_charge_refunded(self, charge) -> TransitionResult | None:
        payment_intent_id = _field(charge, "payment_intent")
        refunds = _field(_field(charge, "refunds"), "data", [])
        refund_id = _field(refunds[0], "id") if refunds else None
        if not refund_id:
            logger.warning("No refund ID in charge.refunded event for payment intent %s", payment_intent_id)
            return None
        result = await self.refunds.process_refund_webhook(payment_intent_id, refund_id)
        logger.info("Refund webhook processed for payment intent %s: %s", payment_intent_id, result.outcome.value)
        return result

    async def on_other(self, obj) -> None:
        return None
