import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from shopbot import stripe_service
from shopbot.errors import ErrorKind, PaymentProviderError, RefundResult, is_transient
from shopbot.lifecycle import OrderLifecycle, Outcome, TransitionResult
from shopbot.models import OrderStatus
from shopbot.orders import get_order_by_id, get_order_by_payment_intent

logger = logging.getLogger(__name__)

ORDER_NOT_FOUND = "Order not found"
ALREADY_REFUNDED = "Order already refunded"
PAYMENT_INTENT_NOT_FOUND = "Payment intent not found"

# Stripe error codes with a local meaning
STRIPE_ERROR_KINDS = {
    "resource_missing": (ErrorKind.MISSING_PRECONDITION, PAYMENT_INTENT_NOT_FOUND),
    "charge_already_refunded": (ErrorKind.ALREADY_TERMINAL, ALREADY_REFUNDED),
}


class RefundOrchestrator:
    """Issues refunds on demand and reconciles refunds reported by Stripe."""

    def __init__(self, session_factory: async_sessionmaker, lifecycle: OrderLifecycle, refund_api=None):
        self.session_factory = session_factory
        self.lifecycle = lifecycle
        self.refund_api = refund_api or stripe_service.create_refund

    async def create_refund(self, order_id: int) -> RefundResult:
        """Refund an order through Stripe and mark it refunded.

        Never raises: every failure comes back as a ``RefundResult`` with
        ``success=False`` and an ``error_kind``.
        """
        try:
            async with self.session_factory() as session:
                order = await get_order_by_id(session, order_id)
        except Exception as error:
            logger.exception("Failed to load order %s for refund", order_id)
            return RefundResult.fail(ErrorKind.INTERNAL_ERROR, str(error), transient=is_transient(error))

        if order is None:
            logger.error("Order not found: %s", order_id)
            return RefundResult.fail(ErrorKind.NOT_FOUND, ORDER_NOT_FOUND)

        if order.status == OrderStatus.REFUNDED.value:
            logger.warning("Order %s already refunded (refund %s)", order_id, order.refund_id)
            return RefundResult.fail(ErrorKind.ALREADY_TERMINAL, ALREADY_REFUNDED)

        if not order.payment_intent_id:
            logger.error("Payment intent ID missing for order %s", order_id)
            return RefundResult.fail(ErrorKind.MISSING_PRECONDITION, PAYMENT_INTENT_NOT_FOUND)

        if order.status != OrderStatus.PAID.value:
            logger.error("Order %s is %s, only paid orders can be refunded", order_id, order.status)
            return RefundResult.fail(ErrorKind.MISSING_PRECONDITION, f"Order is {order.status}, not paid")

        try:
            refund_id = await self.refund_api(order.payment_intent_id)
        except PaymentProviderError as error:
            logger.error(
                "Stripe refund creation failed: order=%s payment_intent=%s code=%s error=%s",
                order_id, order.payment_intent_id, error.code, error.message,
            )
            if error.code in STRIPE_ERROR_KINDS:
                kind, message = STRIPE_ERROR_KINDS[error.code]
                return RefundResult.fail(kind, message)
            return RefundResult.fail(ErrorKind.UPSTREAM_FAILURE, error.message, transient=error.transient)
        except Exception as error:
            logger.exception("Unexpected error creating refund for order %s", order_id)
            return RefundResult.fail(ErrorKind.INTERNAL_ERROR, str(error), transient=is_transient(error))

        logger.info(
            "Stripe refund created: order=%s refund=%s payment_intent=%s",
            order_id, refund_id, order.payment_intent_id,
        )

        result = await self.lifecycle.apply_refund(order.id, refund_id)
        if result.outcome is Outcome.ERROR:
            # Money is back with the customer; the charge.refunded webhook will
            # record it when it arrives.
            logger.error(
                "Refund %s issued but order %s not updated: %s", refund_id, order_id, result.error
            )
            return RefundResult(
                success=False,
                refund_id=refund_id,
                error=result.error,
                error_kind=ErrorKind.INTERNAL_ERROR,
                transient=result.transient,
            )
        return RefundResult.ok(refund_id)

    async def process_refund_webhook(self, payment_intent_id: str, refund_id: str) -> TransitionResult:
        """Record a refund that Stripe reports, e.g. one issued from the dashboard."""
        try:
            async with self.session_factory() as session:
                order = await get_order_by_payment_intent(session, payment_intent_id)
        except Exception as error:
            logger.exception("Failed to look up order for refunded payment intent %s", payment_intent_id)
            return TransitionResult(
                Outcome.ERROR,
                error_kind=ErrorKind.INTERNAL_ERROR,
                error=str(error),
                transient=is_transient(error),
            )

        if order is None:
            logger.warning(
                "Order not found for refund webhook: payment_intent=%s refund=%s", payment_intent_id, refund_id
            )
            return TransitionResult(Outcome.NOT_FOUND, error_kind=ErrorKind.NOT_FOUND, error=ORDER_NOT_FOUND)

        if order.status == OrderStatus.REFUNDED.value:
            logger.info(
                "Order %s already refunded (refund %s), skipping webhook refund %s",
                order.id, order.refund_id, refund_id,
            )
            return TransitionResult(Outcome.ALREADY_APPLIED, order=order)

        return await self.lifecycle.apply_refund(order.id, refund_id)
