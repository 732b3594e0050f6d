# tests/test_bot_commands.py
import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from telegram import ForceReply, InlineKeyboardMarkup
from telegram.error import NetworkError

from account_shop import bot_commands, inventory, store
from account_shop.bot_commands import (
    EMPTY_CART_TEXT,
    FEEDBACK_PROMPT,
    FEEDBACK_THANKS,
    GENERIC_ERROR_TEXT,
    NO_CREDENTIALS_TEXT,
    NOT_AVAILABLE_TEXT,
    NOT_IMPLEMENTED_TEXT,
    PARTIAL_DELIVERY_TEXT,
    PAYMENT_UNAVAILABLE_TEXT,
    UNKNOWN_TEXT_HINT,
    credential_messages,
    normalize_command,
    split_message,
)
from account_shop.models import OrderStatus
from account_shop.schemas import BotCommandCreate

from tests.conftest import BUYER, CHAT_ID, OTHER_BUYER, seed_product, sent_texts


def _callback_buttons(messenger):
    """All callback_data values of every keyboard sent so far."""
    data = []
    for call in messenger.send_message.await_args_list:
        markup = call.kwargs.get("reply_markup")
        if isinstance(markup, InlineKeyboardMarkup):
            data += [button.callback_data for row in markup.inline_keyboard for button in row]
    return data


# ==============================================================================
# HELPERS
# ==============================================================================

def test_normalize_command():
    assert normalize_command("/start") == "/start"
    assert normalize_command("/start@ShopBot payload") == "/start"
    assert normalize_command("/Promo@ShopBot") == "/Promo"
    assert normalize_command("  /cart  ") == "/cart"


def test_split_message_respects_limit():
    text = "\n".join(f"user{i}@example.com:password{i}" for i in range(400))

    chunks = split_message(text, limit=1000)

    assert len(chunks) > 1
    assert all(len(chunk) <= 1000 for chunk in chunks)
    assert "\n".join(chunks) == text


def test_split_message_hard_splits_long_lines():
    chunks = split_message("x" * 2500, limit=1000)
    assert [len(c) for c in chunks] == [1000, 1000, 500]


def test_credential_messages_short_and_long():
    assert len(credential_messages("Header", "a:b", "Bye")) == 1

    long_credentials = "\n".join(f"user{i}@example.com:{'p' * 40}" for i in range(300))
    messages = credential_messages("Header", long_credentials, "Bye")
    assert messages[0] == "Header"
    assert messages[-1] == "Bye"
    assert all(len(m) <= bot_commands.MAX_MESSAGE_LENGTH for m in messages)


# ==============================================================================
# COMMANDS
# ==============================================================================

@pytest.mark.asyncio
async def test_first_contact_registers_customer(dispatcher, shop):
    await dispatcher.handle_message(CHAT_ID, BUYER, "/help")

    async with shop.session() as db:
        user = await store.get_user_by_telegram_id(db, BUYER.telegram_id)
    assert user is not None
    assert user.telegram_username == "buyer"


@pytest.mark.asyncio
async def test_start_sends_welcome_with_menu(dispatcher, messenger):
    await dispatcher.handle_message(CHAT_ID, BUYER, "/start")

    assert sent_texts(messenger) == ["Welcome to the test shop!"]
    assert {"browse_products", "view_cart", "view_orders", "help", "feedback"} <= set(_callback_buttons(messenger))


@pytest.mark.asyncio
async def test_inactive_command_is_not_available(dispatcher, messenger, shop):
    async with shop.session() as db:
        await store.create_bot_command(db, BotCommandCreate(
            command="/ping", description="Ping", active=False, response_message="pong",
        ))

    await dispatcher.handle_message(CHAT_ID, BUYER, "/ping")

    assert sent_texts(messenger) == [NOT_AVAILABLE_TEXT]


@pytest.mark.asyncio
async def test_unknown_command_is_not_available(dispatcher, messenger):
    await dispatcher.handle_message(CHAT_ID, BUYER, "/nope")
    assert sent_texts(messenger) == [NOT_AVAILABLE_TEXT]


@pytest.mark.asyncio
async def test_default_feedback_command_is_inactive(dispatcher, messenger):
    await dispatcher.handle_message(CHAT_ID, BUYER, "/feedback")
    assert sent_texts(messenger) == [NOT_AVAILABLE_TEXT]


@pytest.mark.asyncio
async def test_custom_command_replies_with_response_message(dispatcher, messenger, shop):
    async with shop.session() as db:
        await store.create_bot_command(db, BotCommandCreate(command="/ping", description="Ping", response_message="pong"))
        await store.create_bot_command(db, BotCommandCreate(command="/silent", description="No reply"))

    await dispatcher.handle_message(CHAT_ID, BUYER, "/ping@ShopBot")
    await dispatcher.handle_message(CHAT_ID, BUYER, "/silent")

    assert sent_texts(messenger) == ["pong", NOT_IMPLEMENTED_TEXT]


@pytest.mark.asyncio
async def test_mixed_case_custom_command_is_matched_literally(dispatcher, messenger, shop):
    async with shop.session() as db:
        await store.create_bot_command(db, BotCommandCreate(command="/Promo", description="Deals", response_message="PROMO!"))

    await dispatcher.handle_message(CHAT_ID, BUYER, "/Promo")
    await dispatcher.handle_message(CHAT_ID, BUYER, "/Promo@ShopBot")
    await dispatcher.handle_message(CHAT_ID, BUYER, "/promo")

    assert sent_texts(messenger) == ["PROMO!", "PROMO!", NOT_AVAILABLE_TEXT]


@pytest.mark.asyncio
async def test_products_lists_active_products_in_chunks(dispatcher, messenger, shop):
    ids = [await seed_product(shop, name=f"P{i}", credentials=[]) for i in range(4)]

    await dispatcher.handle_message(CHAT_ID, BUYER, "/products")

    texts = sent_texts(messenger)
    assert texts[0] == "📋 *Available Products:*"
    assert texts[1:] == ["Please select a product to add to your cart:", "More products:"]
    assert _callback_buttons(messenger) == [f"product_{i}" for i in ids]


@pytest.mark.asyncio
async def test_empty_cart(dispatcher, messenger):
    await dispatcher.handle_message(CHAT_ID, BUYER, "/cart")
    await dispatcher.handle_message(CHAT_ID, BUYER, "/checkout")

    assert sent_texts(messenger) == [EMPTY_CART_TEXT, EMPTY_CART_TEXT]


# ==============================================================================
# FREE TEXT
# ==============================================================================

@pytest.mark.asyncio
async def test_free_text(dispatcher, messenger, shop):
    await seed_product(shop)

    await dispatcher.handle_message(CHAT_ID, BUYER, "I want to BUY something")
    await dispatcher.handle_message(CHAT_ID, BUYER, "hello?")

    texts = sent_texts(messenger)
    assert texts[0] == "📋 *Available Products:*"
    assert texts[-1] == UNKNOWN_TEXT_HINT


@pytest.mark.asyncio
async def test_feedback_reply_is_acknowledged(dispatcher, messenger):
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, "feedback")
    prompt = messenger.send_message.await_args
    assert isinstance(prompt.kwargs["reply_markup"], ForceReply)

    await dispatcher.handle_message(CHAT_ID, BUYER, "Great shop", reply_to_text=FEEDBACK_PROMPT)

    assert sent_texts(messenger) == [FEEDBACK_PROMPT, FEEDBACK_THANKS]


# ==============================================================================
# CART & CHECKOUT FLOW
# ==============================================================================

@pytest.mark.asyncio
async def test_purchase_flow_delivers_credentials(dispatcher, messenger, shop):
    product_id = await seed_product(shop, price=500, credentials=["alice@example.com:pw1"])

    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")
    await dispatcher.handle_callback("q2", CHAT_ID, BUYER, "checkout")
    assert "payment_crypto" in _callback_buttons(messenger)
    assert "payment_bank_transfer" in _callback_buttons(messenger)

    await dispatcher.handle_callback("q3", CHAT_ID, BUYER, "payment_crypto")

    messenger.answer_callback_query.assert_any_await("q3")
    confirmation = sent_texts(messenger)[-1]
    assert "Order Confirmed" in confirmation
    assert "$5.00" in confirmation
    assert "alice@example.com:pw1" in confirmation

    async with shop.session() as db:
        orders = await store.list_orders(db)
        assert len(orders) == 1
        assert orders[0].status == OrderStatus.COMPLETED
        assert orders[0].total_amount == 500
        assert orders[0].account_credentials == "alice@example.com:pw1"
        assert orders[0].payment_method == "Crypto"
        assert await inventory.count_available_accounts(db, product_id) == 0
        assert await store.get_cart_by_telegram_chat_id(db, CHAT_ID) is None


@pytest.mark.asyncio
async def test_checkout_out_of_stock(dispatcher, messenger, shop):
    product_id = await seed_product(shop, name="Empty", price=500, credentials=[])

    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")
    await dispatcher.handle_callback("q2", CHAT_ID, BUYER, "payment_crypto")

    assert "no accounts are available" in sent_texts(messenger)[-1]
    async with shop.session() as db:
        assert await store.list_orders(db) == []
        cart = await store.get_cart_by_telegram_chat_id(db, CHAT_ID)
        assert cart is not None
        assert len(await store.get_cart_items(db, cart.id)) == 1


@pytest.mark.asyncio
async def test_unknown_payment_method(dispatcher, messenger, shop):
    product_id = await seed_product(shop)
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")

    await dispatcher.handle_callback("q2", CHAT_ID, BUYER, "payment_paypal")

    assert sent_texts(messenger)[-1] == PAYMENT_UNAVAILABLE_TEXT
    async with shop.session() as db:
        assert await store.list_orders(db) == []


@pytest.mark.asyncio
async def test_remove_item_shows_cart(dispatcher, messenger, shop):
    product_id = await seed_product(shop)
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")
    async with shop.session() as db:
        cart = await store.get_cart_by_telegram_chat_id(db, CHAT_ID)
        item = (await store.get_cart_items(db, cart.id))[0]

    await dispatcher.handle_callback("q2", CHAT_ID, BUYER, f"remove_item_{item.id}")

    assert sent_texts(messenger)[-1].startswith("Item removed from cart.")


@pytest.mark.asyncio
async def test_missing_product_callback(dispatcher, messenger):
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, "product_404")
    assert sent_texts(messenger) == [bot_commands.PRODUCT_GONE_TEXT]


@pytest.mark.asyncio
async def test_failed_delivery_releases_account(dispatcher, messenger, shop):
    product_id = await seed_product(shop, credentials=["bob@example.com:pw"])
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")

    async def flaky_send(chat_id, text, parse_mode=None, reply_markup=None):
        if "Order Confirmed" in text:
            raise NetworkError("connection reset")

    messenger.send_message.side_effect = flaky_send
    await dispatcher.handle_callback("q2", CHAT_ID, BUYER, "payment_crypto")

    attempts = [t for t in sent_texts(messenger) if "Order Confirmed" in t]
    assert len(attempts) == 3
    assert sent_texts(messenger)[-1] == bot_commands.DELIVERY_FAILED_TEXT

    async with shop.session() as db:
        order = (await store.list_orders(db))[0]
        assert order.status == OrderStatus.FAILED
        assert await inventory.count_available_accounts(db, product_id) == 1


@pytest.mark.asyncio
async def test_partly_delivered_credentials_stay_sold(dispatcher, messenger, shop):
    first = "first@example.com:" + "a" * 3000
    second = "second@example.com:" + "b" * 3000
    product_id = await seed_product(shop, credentials=[first, second])
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")
    await dispatcher.handle_callback("q2", CHAT_ID, BUYER, f"product_{product_id}")

    async def drop_second_chunk(chat_id, text, parse_mode=None, reply_markup=None):
        if "second@example.com" in text:
            raise NetworkError("connection reset")

    messenger.send_message.side_effect = drop_second_chunk
    await dispatcher.handle_callback("q3", CHAT_ID, BUYER, "payment_crypto")

    texts = sent_texts(messenger)
    assert any("first@example.com" in t for t in texts)
    assert sum("second@example.com" in t for t in texts) == 3

    async with shop.session() as db:
        order = (await store.list_orders(db))[0]
        assert order.status == OrderStatus.FAILED
        assert await inventory.count_available_accounts(db, product_id) == 0
    assert texts[-1] == PARTIAL_DELIVERY_TEXT.format(order_id=order.id)


@pytest.mark.asyncio
async def test_concurrent_checkouts_sell_the_last_account_once(dispatcher, messenger, shop):
    product_id = await seed_product(shop, credentials=["only:one"])
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")
    await dispatcher.handle_callback("q2", "2002", OTHER_BUYER, f"product_{product_id}")

    await asyncio.gather(
        dispatcher.handle_callback("q3", CHAT_ID, BUYER, "payment_crypto"),
        dispatcher.handle_callback("q4", "2002", OTHER_BUYER, "payment_crypto"),
    )

    async with shop.session() as db:
        orders = await store.list_orders(db)
        accounts = await inventory.get_product_accounts(db, product_id)
    assert [order.account_credentials for order in orders] == ["only:one"]
    assert [account.is_delivered for account in accounts] == [True]
    assert accounts[0].delivered_to_order_id == orders[0].id
    assert sum("no accounts are available" in t for t in sent_texts(messenger)) == 1


# ==============================================================================
# ORDERS & CREDENTIALS
# ==============================================================================

@pytest.mark.asyncio
async def test_orders_and_credentials_only_for_owner(dispatcher, messenger, shop):
    product_id = await seed_product(shop, credentials=["carol@example.com:pw"])
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, f"product_{product_id}")
    await dispatcher.handle_callback("q2", CHAT_ID, BUYER, "payment_crypto")
    async with shop.session() as db:
        order = (await store.list_orders(db))[0]

    await dispatcher.handle_message(CHAT_ID, BUYER, "/orders")
    assert f"view_credentials_{order.id}" in _callback_buttons(messenger)

    await dispatcher.handle_callback("q3", CHAT_ID, BUYER, f"view_credentials_{order.id}")
    assert "carol@example.com:pw" in sent_texts(messenger)[-1]

    await dispatcher.handle_callback("q4", "2002", OTHER_BUYER, f"view_credentials_{order.id}")
    assert sent_texts(messenger)[-1] == NO_CREDENTIALS_TEXT


@pytest.mark.asyncio
async def test_orders_empty(dispatcher, messenger):
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, "view_orders")
    assert sent_texts(messenger) == [bot_commands.NO_ORDERS_TEXT]


# ==============================================================================
# ERROR HANDLING
# ==============================================================================

@pytest.mark.asyncio
async def test_unexpected_error_gets_generic_apology(dispatcher, messenger):
    with patch.object(bot_commands.store, "list_products", new=AsyncMock(side_effect=RuntimeError("boom"))):
        await dispatcher.handle_message(CHAT_ID, BUYER, "/products")

    assert sent_texts(messenger) == [GENERIC_ERROR_TEXT]


@pytest.mark.asyncio
async def test_unknown_callback_is_ignored(dispatcher, messenger):
    await dispatcher.handle_callback("q1", CHAT_ID, BUYER, "something_else")

    messenger.answer_callback_query.assert_awaited_once_with("q1")
    assert sent_texts(messenger) == []
