"""
SQLAlchemy Database Models

Table-side ordering:
- Restaurant settings singleton (currency, rates, hashed PINs)
- Menu categories and dishes (prices stored in EUR)
- Orders and their line items
- Staff sessions
"""

from datetime import datetime, timezone
import enum
import uuid

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Text,
    Enum,
    Boolean,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from app.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"


class CurrencyCode(str, enum.Enum):
    """Display currencies. EUR is the canonical storage currency."""
    EUR = "EUR"
    DJF = "DJF"
    USD = "USD"


class SessionScope(str, enum.Enum):
    """What a staff session was opened for."""
    ADMIN = "admin"
    SECURITY = "security"


class RestaurantSettings(Base):
    """
    Single-row restaurant configuration.

    PIN columns hold passlib hashes, never the PIN itself.
    """
    __tablename__ = "restaurant_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, default="Mon Restaurant")
    currency = Column(Enum(CurrencyCode), nullable=False, default=CurrencyCode.EUR)
    eur_to_djf = Column(Float, nullable=False, default=200.0)
    eur_to_usd = Column(Float, nullable=False, default=1.10)
    admin_pin_hash = Column(String(255), nullable=False)
    security_pin_hash = Column(String(255), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<RestaurantSettings {self.name} - {self.currency.value}>"


class Category(Base):
    """Menu section; display_order drives the guest-facing sort."""
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)

    dishes = relationship("Dish", back_populates="category", passive_deletes=True)

    def __repr__(self):
        return f"<Category {self.name} ({self.display_order})>"


class Dish(Base):
    """A menu entry. price_eur is canonical; display prices are derived."""
    __tablename__ = "dishes"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price_eur = Column(Float, nullable=False)
    category_id = Column(
        String(36),
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    image_url = Column(String(500), nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)

    category = relationship("Category", back_populates="dishes")

    def __repr__(self):
        return f"<Dish {self.name} - {self.price_eur:.2f} EUR>"


class Order(Base):
    """
    A guest order for one table.

    total_price is the EUR snapshot taken at creation and never recomputed.
    is_paid and is_archived are independent of status.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    table_number = Column(String(20), nullable=False, index=True)

    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    total_price = Column(Float, nullable=False)

    customer_message = Column(Text, nullable=True)
    additional_message = Column(Text, nullable=True)

    is_paid = Column(Boolean, nullable=False, default=False, index=True)
    is_archived = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def __repr__(self):
        return f"<Order #{self.short_id} - table {self.table_number} - {self.status.value}>"


class OrderItem(Base):
    """One line of an order. Written once with its order, never edited."""
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    dish_id = Column(
        String(36),
        ForeignKey("dishes.id", ondelete="SET NULL"),
        nullable=True,
    )
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")
    dish = relationship("Dish")

    def __repr__(self):
        return f"<OrderItem {self.dish_id} x{self.quantity}>"


class StaffSession(Base):
    """An authenticated staff session, presented as X-Staff-Token."""
    __tablename__ = "staff_sessions"

    token = Column(String(64), primary_key=True)
    scope = Column(Enum(SessionScope), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def is_expired(self, now: datetime = None) -> bool:
        now = now or utcnow()
        expires_at = self.expires_at
        # SQLite hands back naive datetimes; they are stored as UTC.
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def __repr__(self):
        return f"<StaffSession {self.scope.value} until {self.expires_at}>"
