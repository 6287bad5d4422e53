import enum
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, String

from shopbot.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Edges a status may move along; anything else is a no-op
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.FAILED},
    OrderStatus.PAID: {OrderStatus.REFUNDED},
    OrderStatus.FAILED: set(),
    OrderStatus.REFUNDED: set(),
}


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(36), unique=True, index=True, nullable=False)  # UUID shown to the user
    user_id = Column(BigInteger, nullable=False)                              # Telegram user ID
    chat_id = Column(BigInteger, nullable=False)                              # Telegram chat ID
    product_id = Column(Integer, nullable=False)
    product_name = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)                                  # minor units (cents)
    currency = Column(String(3), nullable=False)
    status = Column(String(16), nullable=False, default=OrderStatus.PENDING.value)  # pending | paid | failed | refunded
    checkout_session_id = Column(String(255), unique=True, index=True, nullable=False)
    payment_intent_id = Column(String(255), index=True, nullable=True)
    refund_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Order id={self.id} external_id={self.external_id} status={self.status}>"
