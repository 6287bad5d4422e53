import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shopbot.models import ALLOWED_TRANSITIONS, Order, OrderStatus, utcnow

# Largest value a 64-bit INTEGER primary key can hold
MAX_ORDER_ID = 2**63 - 1


async def create_order(
    session: AsyncSession,
    *,
    user_id: int,
    chat_id: int,
    product_id: int,
    product_name: str,
    amount: int,
    currency: str,
    checkout_session_id: str,
    external_id: str | None = None,
) -> Order:
    """Persist a new order in ``pending`` status and return it."""
    order = Order(
        external_id=external_id or str(uuid.uuid4()),
        user_id=user_id,
        chat_id=chat_id,
        product_id=product_id,
        product_name=product_name,
        amount=amount,
        currency=currency.lower(),
        status=OrderStatus.PENDING.value,
        checkout_session_id=checkout_session_id,
    )
    session.add(order)
    await session.commit()
    await session.refresh(order)
    return order


async def _first(session: AsyncSession, *criteria) -> Order | None:
    result = await session.execute(select(Order).where(*criteria))
    return result.scalars().first()


async def get_order_by_id(session: AsyncSession, order_id: int) -> Order | None:
    return await session.get(Order, order_id, populate_existing=True)


async def get_order_by_external_id(session: AsyncSession, external_id: str) -> Order | None:
    return await _first(session, Order.external_id == external_id)


async def get_order_by_checkout_session(session: AsyncSession, session_id: str) -> Order | None:
    return await _first(session, Order.checkout_session_id == session_id)


async def get_order_by_payment_intent(session: AsyncSession, payment_intent_id: str) -> Order | None:
    return await _first(session, Order.payment_intent_id == payment_intent_id)


async def find_order(session: AsyncSession, identifier: str) -> Order | None:
    """Look an order up by numeric id first, then by external id."""
    identifier = identifier.strip()
    if identifier.isascii() and identifier.isdigit() and int(identifier) <= MAX_ORDER_ID:
        order = await get_order_by_id(session, int(identifier))
        if order:
            return order
    return await get_order_by_external_id(session, identifier)


async def transition_status(
    session: AsyncSession,
    order_id: int,
    expected: OrderStatus,
    new: OrderStatus,
    **fields,
) -> bool:
    """Move an order from ``expected`` to ``new`` in a single conditional UPDATE.

    Returns True only for the writer whose UPDATE matched; a concurrent writer
    that got there first leaves this one with zero affected rows.
    """
    if new not in ALLOWED_TRANSITIONS[expected]:
        raise ValueError(f"transition {expected.value} -> {new.value} is not allowed")

    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == expected.value)
        .values(status=new.value, updated_at=utcnow(), **fields)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1
