import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, JSON, Numeric, String, Text
from campus_eats.infrastructure.database import Base
from campus_eats.domain.order_status import OrderStatus, PaymentStatus, PaymentMethod


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)

    # Parties
    buyer_id = Column(String(36), index=True, nullable=False)
    vendor_id = Column(String(36), index=True, nullable=False)
    runner_id = Column(String(36), index=True, nullable=True)

    # Line items are a price snapshot, not a join against the live menu:
    # [{"menu_item_id", "name", "unit_price": "8.99", "quantity"}]
    items = Column(JSON, nullable=False)

    # Money is fixed at creation and never recomputed from items
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)

    status = Column(String(16), default=OrderStatus.PENDING.value, index=True, nullable=False)
    payment_status = Column(String(16), default=PaymentStatus.PENDING.value, nullable=False)
    payment_method = Column(String(8), default=PaymentMethod.CASH.value, nullable=False)

    # Delivery target
    delivery_address = Column(Text, nullable=False)
    delivery_notes = Column(Text, nullable=True)
    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)

    # Live tracking, written only while delivering
    runner_lat = Column(Float, nullable=True)
    runner_lng = Column(Float, nullable=True)
    last_location_update = Column(DateTime(timezone=True), nullable=True)

    estimated_delivery_at = Column(DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status} buyer={self.buyer_id} runner={self.runner_id}>"


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), unique=True, index=True, nullable=False)
    name = Column(String(120), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    title = Column(String(120), nullable=False)
    message = Column(Text, nullable=False)
    severity = Column(String(8), default="info", nullable=False)  # info, success, warning, error
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
    order_id = Column(String(36), index=True, nullable=True)

    # One notification per (recipient, order, status); makes emission safe to repeat
    dedup_key = Column(String(120), unique=True, nullable=True)

    def to_dict(self) -> dict:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}
