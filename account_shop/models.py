# models.py
"""
Data models for the account shop (dashboard + Telegram storefront).
- Uses SQLAlchemy ORM
- Self-contained Base definition to prevent circular imports
- Timestamps and flags use Python-side defaults so they are populated on
  flush without an extra round trip (async sessions cannot lazy-load).
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================
# ENUMS
# =========================

class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class BotStatus(str, enum.Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


# =========================
# MODELS
# =========================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False)
    # Hashed for dashboard users, empty for Telegram users
    password = Column(String(255), nullable=False, default="")
    is_admin = Column(Boolean, nullable=False, default=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, nullable=False, default=True)
    email = Column(String(255), nullable=True)

    # Telegram identity
    telegram_id = Column(String(32), unique=True, nullable=True, index=True)
    telegram_username = Column(String(64), nullable=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<User id={self.id} username={self.username} tg_id={self.telegram_id}>"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), unique=True, nullable=False)

    def __repr__(self):
        return f"<Category id={self.id} name={self.name}>"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Integer, nullable=False)  # minor currency units (cents)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    # Advisory only: availability is governed by undelivered Account rows
    stock = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Product id={self.id} name={self.name} price={self.price} stock={self.stock}>"


class Account(Base):
    """
    A single sellable credential unit of a product.
    Spent permanently once delivered.
    """
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    credentials = Column(Text, nullable=False)

    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    delivered_to_user_id = Column(Integer, nullable=True)
    delivered_to_order_id = Column(Integer, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # "First undelivered account of product X" is the hot lookup
    __table_args__ = (
        Index("idx_account_product_delivered", "product_id", "is_delivered"),
    )

    def __repr__(self):
        return f"<Account id={self.id} product={self.product_id} delivered={self.is_delivered}>"


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    telegram_chat_id = Column(String(32), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Cart id={self.id} user={self.user_id} chat={self.telegram_chat_id}>"


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False, index=True)
    # No FK: lines outlive deleted products and are skipped at checkout
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<CartItem id={self.id} cart={self.cart_id} product={self.product_id} qty={self.quantity}>"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    total_amount = Column(Integer, nullable=False)  # cents
    telegram_chat_id = Column(String(32), nullable=True)
    payment_method = Column(String(64), nullable=True)
    # Copy of the delivered credentials, written once at checkout
    account_credentials = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Order id={self.id} user={self.user_id} status={self.status} total={self.total_amount}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    # Snapshot of price at time of sale
    price = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<OrderItem id={self.id} order={self.order_id} product={self.product_id}>"


class BotSettings(Base):
    """Singleton row (id=1)."""
    __tablename__ = "bot_settings"

    id = Column(Integer, primary_key=True)
    token = Column(String(255), nullable=False, default="")
    status = Column(SQLEnum(BotStatus), nullable=False, default=BotStatus.ACTIVE)
    welcome_message = Column(Text, nullable=False)
    payment_methods = Column(JSON, nullable=False, default=list)

    def __repr__(self):
        return f"<BotSettings status={self.status} methods={self.payment_methods}>"


class BotCommand(Base):
    __tablename__ = "bot_commands"

    id = Column(Integer, primary_key=True, autoincrement=True)
    command = Column(String(64), unique=True, nullable=False)  # e.g. "/start"
    description = Column(String(255), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    response_message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<BotCommand {self.command} active={self.active}>"
