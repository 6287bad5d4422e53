import asyncio

import pytest
from sqlalchemy.pool import NullPool

from shopbot.config import Settings
from shopbot.database import init_db, make_engine, make_sessionmaker
from shopbot.models import OrderStatus
from shopbot.orders import create_order, get_order_by_id, transition_status
from shopbot.services import build_services


class FakeTransport:
    """Records messages instead of talking to Telegram."""

    def __init__(self, fail=False, delay=0.0):
        self.sent = []
        self.fail = fail
        self.delay = delay

    async def send_message(self, chat_id, text):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("Telegram is down")
        self.sent.append((chat_id, text))
        return len(self.sent)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
        server_url="http://testserver",
        bot_token=None,
        jwt_secret="operator-secret",
    )


@pytest.fixture
def session_factory(settings):
    # NullPool: every session opens its own connection, so the database can be
    # used from asyncio.run() here and from TestClient's event loop.
    engine = make_engine(settings.database_url, poolclass=NullPool)
    asyncio.run(init_db(engine))
    yield make_sessionmaker(engine)
    asyncio.run(engine.dispose())


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def services(settings, session_factory, transport):
    return build_services(settings, session_factory, transport)


@pytest.fixture
def make_order(session_factory):
    """Insert an order, optionally moved to paid/failed/refunded."""

    def _make(status=OrderStatus.PENDING, session_id="cs_test_1", payment_intent_id=None,
              amount=5000, currency="usd", refund_id=None):
        async def _create():
            async with session_factory() as db:
                order = await create_order(
                    db,
                    user_id=42,
                    chat_id=4242,
                    product_id=2,
                    product_name="Video course",
                    amount=amount,
                    currency=currency,
                    checkout_session_id=session_id,
                )
                fields = {"payment_intent_id": payment_intent_id} if payment_intent_id else {}
                if status is OrderStatus.FAILED:
                    await transition_status(db, order.id, OrderStatus.PENDING, OrderStatus.FAILED, **fields)
                elif status in (OrderStatus.PAID, OrderStatus.REFUNDED):
                    await transition_status(db, order.id, OrderStatus.PENDING, OrderStatus.PAID, **fields)
                    if status is OrderStatus.REFUNDED:
                        await transition_status(
                            db, order.id, OrderStatus.PAID, OrderStatus.REFUNDED,
                            refund_id=refund_id or "re_existing",
                        )
                elif fields:
                    order.payment_intent_id = payment_intent_id
                    await db.commit()
                return await get_order_by_id(db, order.id)

        return asyncio.run(_create())

    return _make


@pytest.fixture
def load_order(session_factory):
    def _load(order_id):
        async def _get():
            async with session_factory() as db:
                return await get_order_by_id(db, order_id)

        return asyncio.run(_get())

    return _load
