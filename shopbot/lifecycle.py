"""Order payment state machine.

Statuses only move along ``pending -> paid``, ``pending -> failed`` and
``paid -> refunded``. Every transition is a conditional UPDATE, so when two
deliveries of the same event race, exactly one of them applies the change and
sends the user notification; the other reports ``already_applied``.
"""

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopbot.errors import ErrorKind, is_transient
from shopbot.models import Order, OrderStatus
from shopbot.notifications import NotificationDispatcher
from shopbot.orders import (
    get_order_by_checkout_session,
    get_order_by_id,
    get_order_by_payment_intent,
    transition_status,
)

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    ERROR = "error"


class IdentifierKind(str, enum.Enum):
    CHECKOUT_SESSION = "checkout_session"
    PAYMENT_INTENT = "payment_intent"


@dataclass
class TransitionResult:
    outcome: Outcome
    order: Order | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    transient: bool = False
    notified: bool | None = None

    @property
    def ok(self) -> bool:
        """False only when processing failed; skips and unknown orders count as handled."""
        return self.outcome is not Outcome.ERROR


def _not_found(what: str) -> TransitionResult:
    return TransitionResult(Outcome.NOT_FOUND, error_kind=ErrorKind.NOT_FOUND, error=f"Order not found for {what}")


def _failed(error: Exception) -> TransitionResult:
    return TransitionResult(
        Outcome.ERROR,
        error_kind=ErrorKind.INTERNAL_ERROR,
        error=str(error) or error.__class__.__name__,
        transient=is_transient(error),
    )


class OrderLifecycle:
    def __init__(self, session_factory: async_sessionmaker, notifier: NotificationDispatcher):
        self.session_factory = session_factory
        self.notifier = notifier

    async def _transition(
        self,
        session: AsyncSession,
        order: Order,
        target: OrderStatus,
        **fields,
    ) -> TransitionResult:
        """Apply ``target`` to ``order`` unless it is already there or cannot get there."""
        current = OrderStatus(order.status)
        if current is target:
            logger.info("Order %s already %s, skipping", order.id, target.value)
            return TransitionResult(Outcome.ALREADY_APPLIED, order=order)
        if current is not _SOURCE[target]:
            logger.warning(
                "Ignoring %s -> %s for order %s", current.value, target.value, order.id
            )
            return TransitionResult(
                Outcome.IGNORED,
                order=order,
                error_kind=ErrorKind.ALREADY_TERMINAL,
                error=f"Order is {current.value}",
            )

        won = await transition_status(session, order.id, current, target, **fields)
        order = await get_order_by_id(session, order.id)
        if not won:
            # Another writer moved the order between our read and our update
            logger.info(
                "Order %s changed concurrently (now %s), not applying %s",
                order.id, order.status, target.value,
            )
            if order.status == target.value:
                return TransitionResult(Outcome.ALREADY_APPLIED, order=order)
            return TransitionResult(
                Outcome.IGNORED,
                order=order,
                error_kind=ErrorKind.ALREADY_TERMINAL,
                error=f"Order is {order.status}",
            )

        logger.info("Order %s (%s) moved %s -> %s", order.id, order.external_id, current.value, target.value)
        return TransitionResult(Outcome.APPLIED, order=order)

    async def apply_payment_success(
        self, checkout_session_id: str, payment_intent_id: str | None
    ) -> TransitionResult:
        try:
            async with self.session_factory() as session:
                order = await get_order_by_checkout_session(session, checkout_session_id)
                if order is None:
                    logger.warning("Order not found for checkout session: %s", checkout_session_id)
                    return _not_found(f"checkout session {checkout_session_id}")

                fields = {}
                if payment_intent_id and not order.payment_intent_id:
                    fields["payment_intent_id"] = payment_intent_id
                result = await self._transition(session, order, OrderStatus.PAID, **fields)
        except Exception as error:
            logger.exception("Failed to apply payment success for session %s", checkout_session_id)
            return _failed(error)

        if result.outcome is Outcome.APPLIED:
            result.notified = await self.notifier.send_payment_success(result.order)
            if not result.notified:
                logger.warning("Payment notification delivery failed but order %s processed", result.order.id)
        return result

    async def apply_payment_failure(
        self,
        identifier: str,
        reason: str,
        kind: IdentifierKind = IdentifierKind.CHECKOUT_SESSION,
    ) -> TransitionResult:
        lookup = (
            get_order_by_checkout_session
            if kind is IdentifierKind.CHECKOUT_SESSION
            else get_order_by_payment_intent
        )
        try:
            async with self.session_factory() as session:
                order = await lookup(session, identifier)
                if order is None:
                    logger.warning("Order not found for %s: %s", kind.value, identifier)
                    return _not_found(f"{kind.value} {identifier}")
                result = await self._transition(session, order, OrderStatus.FAILED)
        except Exception as error:
            logger.exception("Failed to apply payment failure for %s %s", kind.value, identifier)
            return _failed(error)

        if result.outcome is Outcome.APPLIED:
            result.notified = await self.notifier.send_payment_failed(result.order, reason)
            if not result.notified:
                logger.warning(
                    "Failed-payment notification delivery failed for order %s (reason: %s)",
                    result.order.id, reason,
                )
        return result

    async def apply_refund(self, order_id: int, refund_id: str) -> TransitionResult:
        """Record a refund Stripe has already made: ``paid -> refunded`` plus notification."""
        try:
            async with self.session_factory() as session:
                order = await get_order_by_id(session, order_id)
                if order is None:
                    return _not_found(f"id {order_id}")
                result = await self._transition(session, order, OrderStatus.REFUNDED, refund_id=refund_id)
        except Exception as error:
            logger.exception("Failed to record refund %s for order %s", refund_id, order_id)
            return _failed(error)

        if result.outcome is Outcome.APPLIED:
            result.notified = await self.notifier.send_refund(result.order)
            if not result.notified:
                logger.warning("Refund notification delivery failed, but order %s is refunded", order_id)
        return result


# Status a target must be reached from
_SOURCE = {
    OrderStatus.PAID: OrderStatus.PENDING,
    OrderStatus.FAILED: OrderStatus.PENDING,
    OrderStatus.REFUNDED: OrderStatus.PAID,
}
