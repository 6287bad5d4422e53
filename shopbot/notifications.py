import asyncio
import logging
from typing import Any, Protocol

from shopbot.models import Order

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {
    "usd": "$",
    "eur": "€",
    "rub": "₽",
}


class ChatTransport(Protocol):
    """Anything that can deliver a text message to a chat, e.g. ``aiogram.Bot``."""

    async def send_message(self, chat_id: int, text: str) -> Any: ...


class LoggingTransport:
    """Stand-in transport used when no bot token is configured."""

    async def send_message(self, chat_id: int, text: str) -> None:
        logger.info("Bot disabled, message to chat %s not sent: %r", chat_id, text)


def format_amount(amount: int, currency: str) -> str:
    """Format minor units for display: ``format_amount(5000, "usd") == "$50.00"``."""
    symbol = CURRENCY_SYMBOLS.get(currency.lower(), currency.upper())
    return f"{symbol}{amount / 100:.2f}"


class NotificationDispatcher:
    """Sends order status messages to users.

    Delivery is best effort: every ``send_*`` method returns False on failure
    or timeout instead of raising, so callers never roll back a status change
    because a message could not be delivered.
    """

    def __init__(self, transport: ChatTransport, timeout: float = 10.0):
        self.transport = transport
        self.timeout = timeout

    async def _send(self, chat_id: int, text: str, kind: str, external_id: str | None) -> bool:
        try:
            await asyncio.wait_for(self.transport.send_message(chat_id, text), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out sending %s notification: chat_id=%s order=%s", kind, chat_id, external_id
            )
            return False
        except Exception as error:
            logger.warning(
                "Failed to send %s notification: chat_id=%s order=%s error=%s",
                kind, chat_id, external_id, error,
            )
            return False

        logger.info("Sent %s notification: chat_id=%s order=%s", kind, chat_id, external_id)
        return True

    async def send_payment_success(self, order: Order) -> bool:
        text = (
            "✅ Payment received!\n\n"
            f"Product: {order.product_name}\n"
            f"Amount: {format_amount(order.amount, order.currency)}\n"
            f"Order number: {order.external_id}\n\n"
            "Thank you for your purchase!"
        )
        return await self._send(order.chat_id, text, "payment success", order.external_id)

    async def send_payment_failed(self, order: Order, reason: str) -> bool:
        text = (
            "❌ Payment failed\n\n"
            f"Reason: {reason}\n\n"
            "Try again with /shop"
        )
        return await self._send(order.chat_id, text, "payment failed", order.external_id)

    async def send_refund(self, order: Order) -> bool:
        text = (
            "💰 Refund issued\n\n"
            f"Amount: {format_amount(order.amount, order.currency)}\n"
            f"Order number: {order.external_id}\n\n"
            "The money will be back on your card within 5-10 business days."
        )
        return await self._send(order.chat_id, text, "refund", order.external_id)
