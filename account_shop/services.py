# services.py
"""
Shop Service Layer.

Business rules on top of the entity store, shared by the Telegram dispatcher
and the dashboard routes:

- customer auto-registration from a chat identity
- cart building with quantity coalescing
- checkout: totals, account allocation, order + order items, stock decrement
- delivery compensation when credentials could not be sent
- dashboard-side validation (unique names, bot token format)

Every function takes an AsyncSession and runs inside the caller's unit of
work, so a raised error rolls back everything the function wrote.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from account_shop import inventory, store
from account_shop.config import is_valid_token_format
from account_shop.exceptions import (
    EmptyCartError,
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from account_shop.models import (
    Account,
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
    BotSettingsUpdate,
    CategoryCreate,
    OrderCreate,
    OrderItemCreate,
    ProductUpdate,
    UserCreate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatIdentity:
    """The sender of an inbound chat event, as supplied by the transport."""
    telegram_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass
class CartLine:
    item: CartItem
    product: Product

    @property
    def subtotal(self) -> int:
        return self.product.price * self.item.quantity


@dataclass
class CartSummary:
    cart: Cart
    lines: List[CartLine] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(line.subtotal for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass
class CheckoutResult:
    order: Order
    items: List[OrderItem]
    accounts: List[Account]


# ==============================================================================
# 1. CUSTOMERS
# ==============================================================================

async def register_telegram_user(db: AsyncSession, identity: ChatIdentity) -> Tuple[User, bool]:
    """
    Finds the user for a chat identity, creating it on first contact.
    Returns (user, created).
    """
    user = await store.get_user_by_telegram_id(db, identity.telegram_id)
    if user is not None:
        return user, False

    username = identity.username or f"user_{identity.telegram_id}"
    # Telegram handles may collide with dashboard usernames
    if await store.get_user_by_username(db, username) is not None:
        username = f"user_{identity.telegram_id}"

    user = await store.create_user(db, UserCreate(
        username=username,
        password="",
        telegram_id=identity.telegram_id,
        telegram_username=identity.username,
        first_name=identity.first_name,
        last_name=identity.last_name,
        is_admin=False,
    ))
    logger.info(f"👤 Registered Telegram customer {identity.telegram_id} as '{username}'")
    return user, True


# ==============================================================================
# 2. CART
# ==============================================================================

async def get_or_create_cart(db: AsyncSession, user: User, chat_id: str) -> Cart:
    """At most one open cart per chat (and per user); created lazily."""
    cart = await store.get_cart_by_telegram_chat_id(db, chat_id)
    if cart is not None:
        return cart

    cart = await store.get_cart_by_user_id(db, user.id)
    if cart is not None:
        return cart

    return await store.create_cart(db, user.id, chat_id)


async def add_product_to_cart(
    db: AsyncSession,
    user: User,
    chat_id: str,
    product_id: int,
    quantity: int = 1,
) -> Tuple[Product, CartItem]:
    product = await store.get_product(db, product_id)
    if product is None or not product.active:
        raise NotFoundError(f"Product {product_id} not found")

    cart = await get_or_create_cart(db, user, chat_id)
    item = await store.add_cart_item(db, cart.id, product.id, quantity)
    return product, item


async def remove_item_from_cart(db: AsyncSession, chat_id: str, item_id: int) -> bool:
    """Removes a line, but only from the cart that belongs to this chat."""
    cart = await store.get_cart_by_telegram_chat_id(db, chat_id)
    if cart is None:
        return False

    item = await store.get_cart_item(db, item_id)
    if item is None or item.cart_id != cart.id:
        return False

    return await store.remove_cart_item(db, item_id)


async def summarize_cart(db: AsyncSession, cart: Cart) -> CartSummary:
    """Resolves cart lines to products; lines of deleted products are dropped."""
    summary = CartSummary(cart=cart)
    for item in await store.get_cart_items(db, cart.id):
        product = await store.get_product(db, item.product_id)
        if product is None:
            continue
        summary.lines.append(CartLine(item=item, product=product))
    return summary


async def get_cart_summary(db: AsyncSession, chat_id: str) -> Optional[CartSummary]:
    cart = await store.get_cart_by_telegram_chat_id(db, chat_id)
    if cart is None:
        return None
    return await summarize_cart(db, cart)


async def compute_cart_total(db: AsyncSession, cart_id: int) -> int:
    """Sum of price * quantity over lines whose product still exists."""
    cart = await store.get_cart(db, cart_id)
    if cart is None:
        return 0
    return (await summarize_cart(db, cart)).total


# ==============================================================================
# 3. PAYMENT METHODS
# ==============================================================================

def payment_method_slug(method: str) -> str:
    """'Bank Transfer' -> 'bank_transfer' (used in callback data)."""
    return "_".join(method.split()).lower()


def resolve_payment_method(settings: Optional[BotSettings], slug: str) -> Optional[str]:
    """Maps a callback slug back to the configured display name."""
    if settings is None:
        return None
    for method in settings.payment_methods or []:
        if payment_method_slug(method) == slug.lower():
            return method
    return None


# ==============================================================================
# 4. CHECKOUT
# ==============================================================================

async def checkout(
    db: AsyncSession,
    user: User,
    chat_id: str,
    payment_method: str,
) -> CheckoutResult:
    """
    Fulfils the chat's cart with a simulated payment.

    Every line is fulfilled with one Account per unit. If any product lacks
    enough undelivered accounts, OutOfStockError is raised before anything
    is kept: no order, cart untouched. On success the order is created as
    'completed', accounts are claimed for it, one OrderItem per line records
    the sale price, advisory stock is decremented and the cart is deleted.
    """
    cart = await store.get_cart_by_telegram_chat_id(db, chat_id)
    if cart is None:
        raise EmptyCartError("No cart for this chat")

    summary = await summarize_cart(db, cart)
    if summary.is_empty:
        raise EmptyCartError("Cart has no purchasable items")

    for line in summary.lines:
        available = await inventory.count_available_accounts(db, line.product.id)
        if available < line.item.quantity:
            raise OutOfStockError(line.product.id, line.product.name)

    order = await store.create_order(db, OrderCreate(
        user_id=user.id,
        status=OrderStatus.COMPLETED,
        total_amount=summary.total,
        telegram_chat_id=str(chat_id),
        payment_method=payment_method,
    ))

    accounts: List[Account] = []
    items: List[OrderItem] = []
    for line in summary.lines:
        for _ in range(line.item.quantity):
            account = await inventory.claim_account(db, line.product.id, user.id, order.id)
            if account is None:
                raise OutOfStockError(line.product.id, line.product.name)
            accounts.append(account)

        items.append(await store.create_order_item(db, OrderItemCreate(
            order_id=order.id,
            product_id=line.product.id,
            quantity=line.item.quantity,
            price=line.product.price,
        )))

        if line.product.stock >= line.item.quantity:
            await store.update_product(db, line.product.id, ProductUpdate(
                stock=line.product.stock - line.item.quantity,
            ))

    order.account_credentials = "\n".join(account.credentials for account in accounts)
    await store.delete_cart(db, cart.id)
    await db.flush()

    logger.info(
        f"🧾 Order {order.id} completed for user {user.id}: "
        f"{len(accounts)} accounts, total {order.total_amount}"
    )
    return CheckoutResult(order=order, items=items, accounts=accounts)


async def fail_delivery(db: AsyncSession, order_id: int, release_accounts: bool = True) -> Optional[Order]:
    """
    Compensation after credentials could not be sent: the order is marked
    failed and, unless some credentials already reached the buyer, its
    accounts go back to the pool.
    """
    order = await store.get_order(db, order_id)
    if order is None:
        return None

    if release_accounts:
        for account in await inventory.get_accounts_by_order_id(db, order_id):
            await inventory.release_account(db, account.id)

    order.status = OrderStatus.FAILED
    await db.flush()
    kept = "released" if release_accounts else "kept as delivered"
    logger.warning(f"↩️ Order {order_id} marked failed, accounts {kept}")
    return order


async def get_user_order(db: AsyncSession, user: User, order_id: int) -> Optional[Order]:
    """An order, only if it belongs to the given user."""
    order = await store.get_order(db, order_id)
    if order is None or order.user_id != user.id:
        return None
    return order


# ==============================================================================
# 5. DASHBOARD OPERATIONS
# ==============================================================================

async def create_category(db: AsyncSession, data: CategoryCreate) -> Category:
    if await store.get_category_by_name(db, data.name) is not None:
        raise ValidationError(f"Category '{data.name}' already exists.")
    return await store.create_category(db, data)


async def create_bot_command(db: AsyncSession, data: BotCommandCreate) -> BotCommand:
    if await store.get_bot_command(db, data.command) is not None:
        raise ValidationError(f"Command '{data.command}' already exists.")
    return await store.create_bot_command(db, data)


async def upload_product_accounts(
    db: AsyncSession,
    product_id: int,
    accounts: Union[str, Sequence[str]],
) -> Union[Account, List[Account]]:
    """A single string adds one account, a list adds them in bulk."""
    product = await store.get_product(db, product_id)
    if product is None:
        raise NotFoundError("Product not found")

    if isinstance(accounts, str):
        if not accounts.strip():
            raise ValidationError("Credentials must not be empty")
        return await inventory.add_account(db, product_id, accounts)

    return await inventory.add_bulk_accounts(db, product_id, accounts)


async def update_bot_settings(
    db: AsyncSession,
    patch: BotSettingsUpdate,
) -> Tuple[BotSettings, bool]:
    """
    Applies a settings patch. Returns (settings, restart_needed).

    A masked token echoed back by the dashboard ('12345...abcde') is ignored
    rather than stored; a new token must match the Telegram format.
    """
    settings = await store.get_bot_settings(db)
    if settings is None:
        raise NotFoundError("Bot settings not found")

    changes = patch.model_dump(exclude_unset=True)

    token = changes.get("token")
    if token is not None and (token == settings.token or "..." in token):
        changes.pop("token")
    elif token:
        if not is_valid_token_format(token):
            raise ValidationError(
                "Invalid token format. Telegram bot tokens should match pattern: "
                "123456789:ABCdefGhIJKlmNoPQRsTUVwxyZ"
            )

    token_changed = "token" in changes and changes["token"] != settings.token
    status_changed = changes.get("status") is not None and changes["status"] != settings.status

    updated = await store.update_bot_settings(db, BotSettingsUpdate(**changes))
    return updated, token_changed or status_changed


async def add_user(db: AsyncSession, data: UserCreate) -> User:
    """Creates a user, turning a unique-key clash into a ValidationError."""
    if await store.get_user_by_username(db, data.username) is not None:
        raise ValidationError("Username already exists")
    try:
        return await store.create_user(db, data)
    except IntegrityError as e:
        raise ValidationError("User already exists") from e
