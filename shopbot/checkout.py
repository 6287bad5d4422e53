import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import async_sessionmaker

from shopbot import stripe_service
from shopbot.orders import create_order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    price: int  # minor units
    currency: str = "usd"


CATALOG = (
    Product(1, "E-book: Async Python", 1500),
    Product(2, "Video course: FastAPI in Production", 5000),
    Product(3, "One hour consultation", 12000),
)


def get_product(product_id: int) -> Product:
    for product in CATALOG:
        if product.id == product_id:
            return product
    raise LookupError(f"Unknown product: {product_id}")


@dataclass(frozen=True)
class CheckoutResult:
    url: str
    order_id: int
    external_id: str


class CheckoutInitiator:
    def __init__(self, session_factory: async_sessionmaker, checkout_api=None):
        self.session_factory = session_factory
        self.checkout_api = checkout_api or stripe_service.create_checkout_session

    async def start_checkout(self, user_id: int, chat_id: int, product_id: int) -> CheckoutResult:
        """Open a Stripe checkout session for a product and record a pending order.

        The external id is generated up front so the same value goes into the
        session metadata and the order row.
        """
        product = get_product(product_id)
        external_id = str(uuid.uuid4())

        session = await self.checkout_api(
            product.price,
            product.currency,
            product.name,
            {"external_id": external_id},
        )

        async with self.session_factory() as db:
            order = await create_order(
                db,
                user_id=user_id,
                chat_id=chat_id,
                product_id=product.id,
                product_name=product.name,
                amount=product.price,
                currency=product.currency,
                checkout_session_id=session.session_id,
                external_id=external_id,
            )

        logger.info(
            "Order %s (%s) created for user %s, checkout session %s",
            order.id, external_id, user_id, session.session_id,
        )
        return CheckoutResult(url=session.url, order_id=order.id, external_id=external_id)
