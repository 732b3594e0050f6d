# bot_commands.py
"""
Bot Command Dispatcher.

Turns inbound chat events (text messages and inline-button callbacks) into
workflow calls and renders the replies. Transport-agnostic: the dispatcher
only needs a messenger offering

    send_message(chat_id, text, parse_mode=None, reply_markup=None)
    answer_callback_query(callback_query_id)

which python-telegram-bot's `Bot` already satisfies.

Each event runs its reads/writes in short units of work and sends replies
after the session is closed, so the database is never held during network
I/O or delivery retries.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from telegram import ForceReply, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import MessageLimit, ParseMode
from telegram.error import TelegramError
from telegram.helpers import escape_markdown

from account_shop import inventory, services, store
from account_shop.config import Settings, get_settings
from account_shop.db import Database
from account_shop.exceptions import DeliveryError, EmptyCartError, NotFoundError, OutOfStockError
from account_shop.models import Order, OrderStatus, User
from account_shop.services import ChatIdentity

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = MessageLimit.MAX_TEXT_LENGTH
PRODUCTS_PER_MESSAGE = 3

# ==============================================================================
# REPLY TEXTS
# ==============================================================================

DEFAULT_WELCOME = "Welcome to our Digital Shop Bot! 👋 I can help you purchase premium digital accounts."
EMPTY_CART_TEXT = "Your cart is empty. Use /products to browse our catalog."
NO_PRODUCTS_TEXT = "Sorry, no products are available at the moment."
PRODUCT_GONE_TEXT = "Sorry, this product is no longer available."
OUT_OF_STOCK_TEXT = "❌ Sorry, no accounts are available at the moment. Please try again later."
NOT_AVAILABLE_TEXT = "Sorry, this command is not available."
NOT_IMPLEMENTED_TEXT = "Command not implemented yet."
NO_ORDERS_TEXT = "You don't have any orders yet. Use /products to browse our catalog."
NO_CREDENTIALS_TEXT = "Sorry, no credentials are available for this order."
PAYMENT_UNAVAILABLE_TEXT = "❌ This payment method is not available. Please choose another one."
NO_PAYMENT_METHODS_TEXT = "❌ No payment methods are configured. Please contact support."
DELIVERY_FAILED_TEXT = (
    "❌ Failed to deliver account credentials. Your order was cancelled and nothing "
    "was charged. Please try again or contact support."
)
PARTIAL_DELIVERY_TEXT = (
    "⚠️ Only part of your credentials could be delivered for order #ORD-{order_id}. "
    "Please contact support with this order number."
)
GENERIC_ERROR_TEXT = "❌ An unexpected error occurred. Please try again or contact support."
FEEDBACK_PROMPT = "We value your feedback! Please share your thoughts about our bot and service:"
FEEDBACK_THANKS = "🙏 Thank you for your feedback!"

HELP_TEXT = (
    "🤖 *Need help?* Here's how to use our shop:\n\n"
    "• /products - Browse our catalog of premium accounts\n"
    "• /cart - View your shopping cart\n"
    "• /checkout - Complete your purchase\n"
    "• /orders - View your order history\n\n"
    "If you need assistance, please contact our support team."
)

UNKNOWN_TEXT_HINT = (
    "I'm not sure what you mean. Please use one of the following commands:\n\n"
    "/products - Browse our products\n"
    "/cart - View your shopping cart\n"
    "/orders - Check your order history\n"
    "/help - Get assistance"
)


class Messenger(Protocol):
    async def send_message(self, chat_id: Any, text: str, parse_mode: Optional[str] = None,
                           reply_markup: Any = None) -> Any: ...

    async def answer_callback_query(self, callback_query_id: str) -> Any: ...


# ==============================================================================
# FORMATTING HELPERS
# ==============================================================================

def format_price(cents: int) -> str:
    return f"${cents / 100:.2f}"


def md(text: Optional[str]) -> str:
    """Escapes user-controlled text for legacy Markdown."""
    return escape_markdown(text or "", version=1)


def normalize_command(text: str) -> str:
    """'/start@ShopBot payload' -> '/start'; case is kept, lookups are literal."""
    command = text.strip().split()[0] if text.strip() else ""
    return command.split("@", 1)[0]


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Splits text into chunks no longer than `limit`, preferring line breaks.
    A single line longer than the limit is hard-split.
    """
    if len(text) <= limit:
        return [text]

    chunks: List[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]

        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate

    if current:
        chunks.append(current)
    return chunks


def credential_messages(header: str, credentials: str, footer: str = "") -> List[str]:
    """
    Renders credentials inside Markdown code blocks, spread over as many
    messages as needed to respect the Telegram length limit.
    """
    single = f"{header}\n```\n{credentials}\n```"
    if footer:
        single += f"\n\n{footer}"
    if len(single) <= MAX_MESSAGE_LENGTH:
        return [single]

    fence_overhead = len("```\n\n```")
    messages = [header]
    for chunk in split_message(credentials, MAX_MESSAGE_LENGTH - fence_overhead):
        messages.append(f"```\n{chunk}\n```")
    if footer:
        messages.append(footer)
    return messages


def _parse_id(data: str, prefix: str) -> Optional[int]:
    try:
        return int(data[len(prefix):])
    except ValueError:
        return None


# ==============================================================================
# KEYBOARDS
# ==============================================================================

def _keyboard(*rows) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(text, callback_data=data)] for text, data in rows
    ])


START_KEYBOARD = _keyboard(
    ("🛍️ Browse Products", "browse_products"),
    ("🛒 View Cart", "view_cart"),
    ("📦 My Orders", "view_orders"),
    ("❓ Help", "help"),
    ("📝 Feedback", "feedback"),
)

HELP_KEYBOARD = _keyboard(
    ("Browse Products", "browse_products"),
    ("View Cart", "view_cart"),
)

ADDED_TO_CART_KEYBOARD = _keyboard(
    ("Continue Shopping", "browse_products"),
    ("View Cart", "view_cart"),
    ("Checkout Now", "checkout"),
)

ORDER_CONFIRMED_KEYBOARD = _keyboard(
    ("View My Orders", "view_orders"),
    ("Browse More Products", "browse_products"),
)


# ==============================================================================
# DISPATCHER
# ==============================================================================

class BotDispatcher:
    """
    Routes chat events to the shop workflow.

    Every public entry point catches unexpected errors, logs them and sends a
    generic apology, so one failing update never stops the bot.
    """

    def __init__(self, database: Database, messenger: Messenger, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.database = database
        self.messenger = messenger
        self.max_attempts = max(1, settings.DELIVERY_MAX_ATTEMPTS)
        self.retry_delay = settings.DELIVERY_RETRY_DELAY_SECONDS

        self._command_handlers: Dict[str, Callable[[str, User], Awaitable[None]]] = {
            "/start": self.send_welcome,
            "/products": self.send_product_list,
            "/cart": self.send_cart,
            "/checkout": self.start_checkout,
            "/orders": self.send_orders,
            "/help": self.send_help,
            "/feedback": self.send_feedback_prompt,
        }

    # --------------------------------------------------------------------------
    # Entry points
    # --------------------------------------------------------------------------

    async def handle_message(
        self,
        chat_id: Any,
        sender: ChatIdentity,
        text: str,
        reply_to_text: Optional[str] = None,
    ) -> None:
        chat_id = str(chat_id)
        text = text or ""
        try:
            user = await self._register(sender)

            if text.startswith("/"):
                await self.handle_command(chat_id, user, normalize_command(text))
            elif reply_to_text == FEEDBACK_PROMPT:
                logger.info(f"📝 Feedback from user {user.id} ({user.username}): {text}")
                await self._send(chat_id, FEEDBACK_THANKS)
            elif "product" in text.lower() or "buy" in text.lower():
                await self.send_product_list(chat_id, user)
            else:
                await self._send(chat_id, UNKNOWN_TEXT_HINT)
        except Exception as e:
            logger.error(f"Error handling message from chat {chat_id}: {e}", exc_info=True)
            await self._apologise(chat_id)

    async def handle_callback(
        self,
        callback_query_id: str,
        chat_id: Any,
        sender: ChatIdentity,
        data: str,
    ) -> None:
        chat_id = str(chat_id)
        try:
            await self.messenger.answer_callback_query(callback_query_id)
            user = await self._register(sender)
            await self._route_callback(chat_id, user, data or "")
        except Exception as e:
            logger.error(f"Error handling callback '{data}' from chat {chat_id}: {e}", exc_info=True)
            await self._apologise(chat_id)

    async def handle_command(self, chat_id: str, user: User, command: str) -> None:
        async with self.database.session() as db:
            registered = await store.get_bot_command(db, command)

        if registered is None or not registered.active:
            await self._send(chat_id, NOT_AVAILABLE_TEXT)
            return

        handler = self._command_handlers.get(command)
        if handler is not None:
            await handler(chat_id, user)
        else:
            await self._send(chat_id, registered.response_message or NOT_IMPLEMENTED_TEXT)

    async def _route_callback(self, chat_id: str, user: User, data: str) -> None:
        if data.startswith("product_"):
            product_id = _parse_id(data, "product_")
            if product_id is not None:
                await self.add_to_cart(chat_id, user, product_id)
        elif data.startswith("remove_item_"):
            item_id = _parse_id(data, "remove_item_")
            if item_id is not None:
                await self.remove_from_cart(chat_id, user, item_id)
        elif data.startswith("payment_"):
            await self.process_payment(chat_id, user, data[len("payment_"):])
        elif data.startswith("view_credentials_"):
            order_id = _parse_id(data, "view_credentials_")
            if order_id is not None:
                await self.send_credentials(chat_id, user, order_id)
        elif data == "browse_products":
            await self.send_product_list(chat_id, user)
        elif data == "view_cart":
            await self.send_cart(chat_id, user)
        elif data == "checkout":
            await self.start_checkout(chat_id, user)
        elif data == "view_orders":
            await self.send_orders(chat_id, user)
        elif data == "help":
            await self.send_help(chat_id, user)
        elif data == "feedback":
            await self.send_feedback_prompt(chat_id, user)
        else:
            logger.warning(f"Unknown callback data '{data}' from chat {chat_id}")

    # --------------------------------------------------------------------------
    # Catalogue & cart
    # --------------------------------------------------------------------------

    async def send_welcome(self, chat_id: str, user: User) -> None:
        async with self.database.session() as db:
            settings = await store.get_bot_settings(db)

        welcome = settings.welcome_message if settings and settings.welcome_message else DEFAULT_WELCOME
        await self._send(chat_id, welcome, parse_mode=ParseMode.MARKDOWN, reply_markup=START_KEYBOARD)

    async def send_product_list(self, chat_id: str, user: Optional[User] = None) -> None:
        async with self.database.session() as db:
            products = await store.list_products(db, only_active=True)

        if not products:
            await self._send(chat_id, NO_PRODUCTS_TEXT)
            return

        await self._send(chat_id, "📋 *Available Products:*", parse_mode=ParseMode.MARKDOWN)

        for i in range(0, len(products), PRODUCTS_PER_MESSAGE):
            chunk = products[i:i + PRODUCTS_PER_MESSAGE]
            keyboard = _keyboard(*[
                (f"{product.name} - {format_price(product.price)}", f"product_{product.id}")
                for product in chunk
            ])
            intro = "Please select a product to add to your cart:" if i == 0 else "More products:"
            await self._send(chat_id, intro, reply_markup=keyboard)

    async def add_to_cart(self, chat_id: str, user: User, product_id: int) -> None:
        try:
            async with self.database.session() as db:
                product, _ = await services.add_product_to_cart(db, user, chat_id, product_id)
        except NotFoundError:
            await self._send(chat_id, PRODUCT_GONE_TEXT)
            return

        await self._send(
            chat_id,
            f"✅ Added *{md(product.name)} ({md(product.description)})* to your cart "
            f"for *{format_price(product.price)}*.",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=ADDED_TO_CART_KEYBOARD,
        )

    async def remove_from_cart(self, chat_id: str, user: User, item_id: int) -> None:
        async with self.database.session() as db:
            removed = await services.remove_item_from_cart(db, chat_id, item_id)

        notice = "Item removed from cart." if removed else None
        await self.send_cart(chat_id, user, notice=notice)

    async def send_cart(self, chat_id: str, user: User, notice: Optional[str] = None) -> None:
        async with self.database.session() as db:
            summary = await services.get_cart_summary(db, chat_id)

        if summary is None or summary.is_empty:
            await self._send(chat_id, f"{notice}\n\n{EMPTY_CART_TEXT}" if notice else EMPTY_CART_TEXT)
            return

        text = "🛒 *Your Shopping Cart:*\n\n"
        for line in summary.lines:
            text += f"• {md(line.product.name)} ({md(line.product.description)})\n"
            text += f"  Quantity: {line.item.quantity}\n"
            text += f"  Price: {format_price(line.product.price)}\n"
            text += f"  Subtotal: {format_price(line.subtotal)}\n\n"
        text += f"*Total: {format_price(summary.total)}*"

        if notice:
            text = f"{notice}\n\n{text}"

        rows = [("Continue Shopping", "browse_products"), ("Checkout", "checkout")]
        rows += [(f"Remove {line.product.name}", f"remove_item_{line.item.id}") for line in summary.lines]

        await self._send(chat_id, text, parse_mode=ParseMode.MARKDOWN, reply_markup=_keyboard(*rows))

    # --------------------------------------------------------------------------
    # Checkout
    # --------------------------------------------------------------------------

    async def start_checkout(self, chat_id: str, user: User) -> None:
        async with self.database.session() as db:
            summary = await services.get_cart_summary(db, chat_id)
            settings = await store.get_bot_settings(db)

        if summary is None or summary.is_empty:
            await self._send(chat_id, EMPTY_CART_TEXT)
            return

        methods = settings.payment_methods if settings else []
        if not methods:
            await self._send(chat_id, NO_PAYMENT_METHODS_TEXT)
            return

        keyboard = _keyboard(*[
            (method, f"payment_{services.payment_method_slug(method)}") for method in methods
        ])
        await self._send(
            chat_id,
            f"🛍️ *Checkout*\n\nTotal amount: *{format_price(summary.total)}*\n\n"
            "Please select a payment method:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=keyboard,
        )

    async def process_payment(self, chat_id: str, user: User, method_slug: str) -> Optional[Order]:
        """
        Simulated payment followed by credential delivery.
        Returns the order if it was created, None otherwise.
        """
        async with self.database.session() as db:
            settings = await store.get_bot_settings(db)
        method = services.resolve_payment_method(settings, method_slug)
        if method is None:
            await self._send(chat_id, PAYMENT_UNAVAILABLE_TEXT)
            return None

        try:
            async with self.database.session() as db:
                result = await services.checkout(db, user, chat_id, method)
        except EmptyCartError:
            await self._send(chat_id, EMPTY_CART_TEXT)
            return None
        except OutOfStockError as e:
            logger.warning(f"Checkout for chat {chat_id} stopped: {e}")
            text = OUT_OF_STOCK_TEXT
            if e.product_name:
                text = f"❌ Sorry, no accounts are available for {e.product_name} at the moment. Please try again later."
            await self._send(chat_id, text)
            return None

        order = result.order
        messages = credential_messages(
            header=(
                f"✅ *Order Confirmed!*\n\n"
                f"Order ID: #ORD-{order.id}\n"
                f"Total: {format_price(order.total_amount)}\n"
                f"Payment Method: {md(order.payment_method)}\n\n"
                f"Your account credentials:"
            ),
            credentials=order.account_credentials or "",
            footer="Thank you for your purchase!",
        )

        try:
            await self._deliver(chat_id, messages, reply_markup=ORDER_CONFIRMED_KEYBOARD, order_id=order.id)
            return order
        except DeliveryError as e:
            # Credentials that reached the chat must never go back on sale
            exposed = any("```" in text for text in messages[:e.sent])
            logger.error(f"🔥 {e} (chat {chat_id}), credentials exposed: {exposed}")

        async with self.database.session() as db:
            order = await services.fail_delivery(db, order.id, release_accounts=not exposed) or order

        notice = PARTIAL_DELIVERY_TEXT.format(order_id=order.id) if exposed else DELIVERY_FAILED_TEXT
        try:
            await self.messenger.send_message(chat_id, notice)
        except TelegramError as e:
            logger.warning(f"Could not notify chat {chat_id} about failed delivery: {e}")
        return order

    # --------------------------------------------------------------------------
    # Orders
    # --------------------------------------------------------------------------

    async def send_orders(self, chat_id: str, user: User) -> None:
        async with self.database.session() as db:
            orders = await store.list_user_orders(db, user.id)
            accounts = {order.id: await inventory.get_account_by_order_id(db, order.id) for order in orders}

        if not orders:
            await self._send(chat_id, NO_ORDERS_TEXT)
            return

        await self._send(chat_id, "📜 *Your Order History:*", parse_mode=ParseMode.MARKDOWN)

        for order in orders:
            account = accounts.get(order.id)
            text = (
                f"• Order #{order.id}\n"
                f"  Account ID: #ACC-{account.id if account else 'N/A'}\n"
                f"  Date: {order.created_at:%Y-%m-%d %H:%M}\n"
                f"  Total: {format_price(order.total_amount)}\n"
                f"  Status: {OrderStatus(order.status).value.upper()}"
            )
            rows = []
            if order.status == OrderStatus.COMPLETED:
                rows.append((f"🔑 View Credentials for Order #{order.id}", f"view_credentials_{order.id}"))
            rows.append(("🛍️ Browse More Products", "browse_products"))
            await self._send(chat_id, text, reply_markup=_keyboard(*rows))

    async def send_credentials(self, chat_id: str, user: User, order_id: int) -> None:
        async with self.database.session() as db:
            order = await services.get_user_order(db, user, order_id)

        if order is None or order.status != OrderStatus.COMPLETED or not order.account_credentials:
            await self._send(chat_id, NO_CREDENTIALS_TEXT)
            return

        messages = credential_messages(
            header=f"🔐 *Account Credentials for Order #{order.id}*\n",
            credentials=order.account_credentials,
            footer="⚠️ Keep these credentials safe and do not share them.",
        )
        try:
            await self._deliver(chat_id, messages, order_id=order.id)
        except DeliveryError as e:
            logger.warning(f"Could not resend credentials: {e}")

    # --------------------------------------------------------------------------
    # Help & feedback
    # --------------------------------------------------------------------------

    async def send_help(self, chat_id: str, user: Optional[User] = None) -> None:
        await self._send(chat_id, HELP_TEXT, parse_mode=ParseMode.MARKDOWN, reply_markup=HELP_KEYBOARD)

    async def send_feedback_prompt(self, chat_id: str, user: Optional[User] = None) -> None:
        await self._send(chat_id, FEEDBACK_PROMPT, reply_markup=ForceReply(selective=True))

    # --------------------------------------------------------------------------
    # Internals
    # --------------------------------------------------------------------------

    async def _register(self, sender: ChatIdentity) -> User:
        async with self.database.session() as db:
            user, _ = await services.register_telegram_user(db, sender)
        return user

    async def _send(self, chat_id: str, text: str, parse_mode: Optional[str] = None, reply_markup: Any = None):
        return await self.messenger.send_message(chat_id, text, parse_mode=parse_mode, reply_markup=reply_markup)

    async def _send_with_retry(self, chat_id: str, text: str, parse_mode: Optional[str] = None,
                               reply_markup: Any = None) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._send(chat_id, text, parse_mode=parse_mode, reply_markup=reply_markup)
                return True
            except TelegramError as e:
                logger.warning(f"⚠️ Send to chat {chat_id} failed (attempt {attempt}/{self.max_attempts}): {e}")
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
        return False

    async def _deliver(self, chat_id: str, messages: List[str], reply_markup: Any = None, order_id: int = 0) -> None:
        """
        Sends every chunk with retries; the keyboard rides on the last one.
        Raises DeliveryError as soon as one chunk runs out of attempts.
        """
        for index, text in enumerate(messages):
            markup = reply_markup if index == len(messages) - 1 else None
            if not await self._send_with_retry(chat_id, text, parse_mode=ParseMode.MARKDOWN, reply_markup=markup):
                raise DeliveryError(order_id, self.max_attempts, sent=index)

    async def _apologise(self, chat_id: str) -> None:
        try:
            await self.messenger.send_message(chat_id, GENERIC_ERROR_TEXT)
        except TelegramError as e:
            logger.debug(f"Could not send error message to chat {chat_id}: {e}")
