from sqlalchemy import JSON, Boolean, Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from storefront.db.base_class import Base


class CheckoutState(str, enum.Enum):
    INTENT_CREATED = "intent_created"
    CONFIRMED = "confirmed"
    ORDER_CREATED = "order_created"
    FAILED = "failed"


class CheckoutAttempt(Base):
    """One payment intent and how far its checkout got.

    ``payment_captured`` together with ``FAILED`` marks money that was taken
    without an order being recorded; support reconciles those by hand.
    """

    __tablename__ = "checkout_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    intent_reference = Column(String(255), unique=True, nullable=False, index=True)
    is_development = Column(Boolean, default=False, nullable=False)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    cart_snapshot = Column(JSON, default=list, nullable=False)

    state = Column(Enum(CheckoutState), default=CheckoutState.INTENT_CREATED, nullable=False, index=True)
    payment_captured = Column(Boolean, default=False, nullable=False)
    failure_reason = Column(Text, nullable=True)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User")
    order = relationship("Order")
