from dataclasses import dataclass

from sqlalchemy.ext.asyncio import async_sessionmaker

from shopbot.checkout import CheckoutInitiator
from shopbot.config import Settings
from shopbot.lifecycle import OrderLifecycle
from shopbot.notifications import ChatTransport, NotificationDispatcher
from shopbot.refunds import RefundOrchestrator
from shopbot.webhooks import WebhookRouter


@dataclass
class Services:
    settings: Settings
    session_factory: async_sessionmaker
    notifier: NotificationDispatcher
    lifecycle: OrderLifecycle
    refunds: RefundOrchestrator
    webhooks: WebhookRouter
    checkout: CheckoutInitiator


def build_services(settings: Settings, session_factory: async_sessionmaker, transport: ChatTransport) -> Services:
    """Wire the order components around one session factory and one chat transport."""
    notifier = NotificationDispatcher(transport, timeout=settings.notification_timeout)
    lifecycle = OrderLifecycle(session_factory, notifier)
    refunds = RefundOrchestrator(session_factory, lifecycle)
    return Services(
        settings=settings,
        session_factory=session_factory,
        notifier=notifier,
        lifecycle=lifecycle,
        refunds=refunds,
        webhooks=WebhookRouter(lifecycle, refunds),
        checkout=CheckoutInitiator(session_factory),
    )
