# store.py
"""
Entity Store.

Keyed collections per entity type over an AsyncSession: create (assigns the
next id), read by id, read by alternate key, partial update, delete and list.

Conventions:
- Misses are results, not errors: lookups and updates of an absent id return
  None, deletes return False. Callers must null-check.
- Functions flush but never commit; Database.session() owns the transaction.
- Updates take pydantic patch models and apply only the fields the caller set.
  An explicit null for a NOT NULL column is a ValidationError.
"""

import logging
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from account_shop.exceptions import ValidationError
from account_shop.models import (
    Base,
    BotCommand,
    BotSettings,
    Cart,
    CartItem,
    Category,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    User,
)
from account_shop.schemas import (
    BotCommandCreate,
    BotCommandUpdate,
    BotSettingsUpdate,
    CategoryCreate,
    OrderCreate,
    OrderItemCreate,
    ProductCreate,
    ProductUpdate,
    UserCreate,
    UserUpdate,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)

BOT_SETTINGS_ID = 1


# ==============================================================================
# 1. GENERIC HELPERS
# ==============================================================================

async def _create(db: AsyncSession, model: Type[ModelT], data: BaseModel) -> ModelT:
    obj = model(**data.model_dump())
    db.add(obj)
    await db.flush()
    return obj


async def _update(
    db: AsyncSession,
    model: Type[ModelT],
    obj_id: int,
    patch: BaseModel,
) -> Optional[ModelT]:
    obj = await db.get(model, obj_id)
    if obj is None:
        return None

    changes = patch.model_dump(exclude_unset=True)
    columns = model.__table__.columns
    for key, value in changes.items():
        if value is None and key in columns and not columns[key].nullable:
            raise ValidationError(f"'{key}' must not be null")

    for key, value in changes.items():
        setattr(obj, key, value)

    await db.flush()
    return obj


async def _delete(db: AsyncSession, model: Type[ModelT], obj_id: int) -> bool:
    obj = await db.get(model, obj_id)
    if obj is None:
        return False

    await db.delete(obj)
    await db.flush()
    return True


async def _first(db: AsyncSession, stmt) -> Optional[ModelT]:
    result = await db.execute(stmt.limit(1))
    return result.scalars().first()


async def _all(db: AsyncSession, stmt) -> List[ModelT]:
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ==============================================================================
# 2. USERS
# ==============================================================================

async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    return await db.get(User, user_id)


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    return await _first(db, select(User).where(User.username == username))


async def get_user_by_telegram_id(db: AsyncSession, telegram_id: str) -> Optional[User]:
    return await _first(db, select(User).where(User.telegram_id == str(telegram_id)))


async def create_user(db: AsyncSession, data: UserCreate) -> User:
    return await _create(db, User, data)


async def update_user(db: AsyncSession, user_id: int, patch: UserUpdate) -> Optional[User]:
    return await _update(db, User, user_id, patch)


async def list_users(db: AsyncSession) -> List[User]:
    return await _all(db, select(User).order_by(User.id))


# ==============================================================================
# 3. PRODUCTS
# ==============================================================================

async def get_product(db: AsyncSession, product_id: int) -> Optional[Product]:
    return await db.get(Product, product_id)


async def create_product(db: AsyncSession, data: ProductCreate) -> Product:
    return await _create(db, Product, data)


async def update_product(db: AsyncSession, product_id: int, patch: ProductUpdate) -> Optional[Product]:
    return await _update(db, Product, product_id, patch)


async def delete_product(db: AsyncSession, product_id: int) -> bool:
    return await _delete(db, Product, product_id)


async def list_products(db: AsyncSession, only_active: bool = False) -> List[Product]:
    stmt = select(Product).order_by(Product.id)
    if only_active:
        stmt = stmt.where(Product.active.is_(True))
    return await _all(db, stmt)


# ==============================================================================
# 4. CATEGORIES
# ==============================================================================

async def get_category(db: AsyncSession, category_id: int) -> Optional[Category]:
    return await db.get(Category, category_id)


async def get_category_by_name(db: AsyncSession, name: str) -> Optional[Category]:
    return await _first(db, select(Category).where(Category.name == name))


async def create_category(db: AsyncSession, data: CategoryCreate) -> Category:
    return await _create(db, Category, data)


async def list_categories(db: AsyncSession) -> List[Category]:
    return await _all(db, select(Category).order_by(Category.id))


# ==============================================================================
# 5. ORDERS & ORDER ITEMS
# ==============================================================================

async def get_order(db: AsyncSession, order_id: int) -> Optional[Order]:
    return await db.get(Order, order_id)


async def create_order(db: AsyncSession, data: OrderCreate) -> Order:
    return await _create(db, Order, data)


async def update_order_status(db: AsyncSession, order_id: int, status: OrderStatus) -> Optional[Order]:
    """Any status may overwrite any other; transitions are caller-driven."""
    order = await db.get(Order, order_id)
    if order is None:
        return None

    order.status = status
    await db.flush()
    return order


async def list_orders(db: AsyncSession) -> List[Order]:
    return await _all(db, select(Order).order_by(Order.id))


async def list_user_orders(db: AsyncSession, user_id: int) -> List[Order]:
    return await _all(db, select(Order).where(Order.user_id == user_id).order_by(Order.id))


async def get_order_items(db: AsyncSession, order_id: int) -> List[OrderItem]:
    return await _all(db, select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id))


async def create_order_item(db: AsyncSession, data: OrderItemCreate) -> OrderItem:
    return await _create(db, OrderItem, data)


# ==============================================================================
# 6. CARTS & CART ITEMS
# ==============================================================================

async def get_cart(db: AsyncSession, cart_id: int) -> Optional[Cart]:
    return await db.get(Cart, cart_id)


async def get_cart_by_user_id(db: AsyncSession, user_id: int) -> Optional[Cart]:
    return await _first(db, select(Cart).where(Cart.user_id == user_id))


async def get_cart_by_telegram_chat_id(db: AsyncSession, telegram_chat_id: str) -> Optional[Cart]:
    return await _first(db, select(Cart).where(Cart.telegram_chat_id == str(telegram_chat_id)))


async def create_cart(db: AsyncSession, user_id: int, telegram_chat_id: str) -> Cart:
    cart = Cart(user_id=user_id, telegram_chat_id=str(telegram_chat_id))
    db.add(cart)
    await db.flush()
    return cart


async def delete_cart(db: AsyncSession, cart_id: int) -> bool:
    """Deletes the cart together with all of its items."""
    cart = await db.get(Cart, cart_id)
    if cart is None:
        return False

    await db.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
    await db.delete(cart)
    await db.flush()
    return True


async def get_cart_items(db: AsyncSession, cart_id: int) -> List[CartItem]:
    return await _all(db, select(CartItem).where(CartItem.cart_id == cart_id).order_by(CartItem.id))


async def get_cart_item(db: AsyncSession, item_id: int) -> Optional[CartItem]:
    return await db.get(CartItem, item_id)


async def add_cart_item(db: AsyncSession, cart_id: int, product_id: int, quantity: int = 1) -> CartItem:
    """
    Adds a line to the cart. A product already in the cart has its
    quantity increased instead of getting a second line.
    """
    existing = await _first(
        db,
        select(CartItem).where(CartItem.cart_id == cart_id, CartItem.product_id == product_id),
    )
    if existing is not None:
        existing.quantity += quantity
        await db.flush()
        return existing

    item = CartItem(cart_id=cart_id, product_id=product_id, quantity=quantity)
    db.add(item)
    await db.flush()
    return item


async def update_cart_item_quantity(db: AsyncSession, item_id: int, quantity: int) -> Optional[CartItem]:
    item = await db.get(CartItem, item_id)
    if item is None:
        return None

    item.quantity = quantity
    await db.flush()
    return item


async def remove_cart_item(db: AsyncSession, item_id: int) -> bool:
    return await _delete(db, CartItem, item_id)


# ==============================================================================
# 7. BOT SETTINGS (singleton)
# ==============================================================================

async def get_bot_settings(db: AsyncSession) -> Optional[BotSettings]:
    return await db.get(BotSettings, BOT_SETTINGS_ID)


async def update_bot_settings(db: AsyncSession, patch: BotSettingsUpdate) -> Optional[BotSettings]:
    return await _update(db, BotSettings, BOT_SETTINGS_ID, patch)


# ==============================================================================
# 8. BOT COMMANDS
# ==============================================================================

async def get_bot_command(db: AsyncSession, command: str) -> Optional[BotCommand]:
    """Looks a command up by its literal text, e.g. '/start'."""
    return await _first(db, select(BotCommand).where(BotCommand.command == command))


async def create_bot_command(db: AsyncSession, data: BotCommandCreate) -> BotCommand:
    return await _create(db, BotCommand, data)


async def update_bot_command(db: AsyncSession, command_id: int, patch: BotCommandUpdate) -> Optional[BotCommand]:
    return await _update(db, BotCommand, command_id, patch)


async def list_bot_commands(db: AsyncSession, only_active: bool = False) -> List[BotCommand]:
    stmt = select(BotCommand).order_by(BotCommand.id)
    if only_active:
        stmt = stmt.where(BotCommand.active.is_(True))
    return await _all(db, stmt)
