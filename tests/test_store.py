# tests/test_store.py
import pytest

from account_shop import store
from account_shop.exceptions import ValidationError
from account_shop.models import OrderStatus
from account_shop.schemas import (
    BotCommandCreate,
    OrderCreate,
    ProductCreate,
    ProductUpdate,
    UserCreate,
    UserUpdate,
)


async def _user(db, username="alice", telegram_id=None):
    return await store.create_user(db, UserCreate(username=username, telegram_id=telegram_id))


async def _product(db, name="Spotify", price=999, active=True):
    return await store.create_product(db, ProductCreate(name=name, price=price, stock=5, active=active))


@pytest.mark.asyncio
async def test_create_assigns_increasing_ids(session):
    first = await _user(session, "alice")
    second = await _user(session, "bob")

    assert first.id is not None
    assert second.id > first.id


@pytest.mark.asyncio
async def test_missing_entities_are_results_not_errors(session):
    assert await store.get_user(session, 999) is None
    assert await store.get_product(session, 999) is None
    assert await store.update_product(session, 999, ProductUpdate(price=1)) is None
    assert await store.delete_product(session, 999) is False
    assert await store.update_order_status(session, 999, OrderStatus.CANCELLED) is None
    assert await store.remove_cart_item(session, 999) is False


@pytest.mark.asyncio
async def test_lookup_by_alternate_keys(session):
    user = await _user(session, "carol", telegram_id="555")

    assert (await store.get_user_by_username(session, "carol")).id == user.id
    assert (await store.get_user_by_telegram_id(session, "555")).id == user.id
    assert await store.get_user_by_telegram_id(session, "556") is None


@pytest.mark.asyncio
async def test_partial_update_only_touches_set_fields(session):
    product = await _product(session, "Spotify", price=999)

    updated = await store.update_product(session, product.id, ProductUpdate(price=1299))

    assert updated.price == 1299
    assert updated.name == "Spotify"
    assert updated.stock == 5

    user = await _user(session, "dave")
    await store.update_user(session, user.id, UserUpdate(first_name="Dave"))
    assert (await store.get_user(session, user.id)).username == "dave"


@pytest.mark.asyncio
async def test_list_products_only_active(session):
    await _product(session, "Visible")
    await _product(session, "Hidden", active=False)

    assert [p.name for p in await store.list_products(session)] == ["Visible", "Hidden"]
    assert [p.name for p in await store.list_products(session, only_active=True)] == ["Visible"]


@pytest.mark.asyncio
async def test_adding_same_product_twice_coalesces_quantity(session):
    user = await _user(session)
    product = await _product(session)
    cart = await store.create_cart(session, user.id, "42")

    await store.add_cart_item(session, cart.id, product.id)
    await store.add_cart_item(session, cart.id, product.id, quantity=2)

    items = await store.get_cart_items(session, cart.id)
    assert len(items) == 1
    assert items[0].quantity == 3


@pytest.mark.asyncio
async def test_delete_cart_removes_its_items(session):
    user = await _user(session)
    product = await _product(session)
    cart = await store.create_cart(session, user.id, "42")
    await store.add_cart_item(session, cart.id, product.id)

    assert await store.delete_cart(session, cart.id) is True

    assert await store.get_cart_by_telegram_chat_id(session, "42") is None
    assert await store.get_cart_items(session, cart.id) == []
    assert await store.delete_cart(session, cart.id) is False


@pytest.mark.asyncio
async def test_order_status_can_be_overwritten_freely(session):
    user = await _user(session)
    order = await store.create_order(session, OrderCreate(user_id=user.id, total_amount=100))
    assert order.status == OrderStatus.PENDING

    await store.update_order_status(session, order.id, OrderStatus.CANCELLED)
    await store.update_order_status(session, order.id, OrderStatus.COMPLETED)

    assert (await store.get_order(session, order.id)).status == OrderStatus.COMPLETED
    assert [o.id for o in await store.list_user_orders(session, user.id)] == [order.id]


@pytest.mark.asyncio
async def test_bot_commands_looked_up_by_literal_text(session):
    await store.create_bot_command(session, BotCommandCreate(command="/ping", description="Ping", active=False))

    command = await store.get_bot_command(session, "/ping")
    assert command is not None
    assert command.active is False
    assert await store.get_bot_command(session, "ping") is None
    assert await store.list_bot_commands(session, only_active=True) == []


@pytest.mark.asyncio
async def test_null_for_required_column_is_rejected(session):
    product = await _product(session)

    with pytest.raises(ValidationError):
        await store.update_product(session, product.id, ProductUpdate(name=None))

    # nullable columns may still be cleared
    updated = await store.update_product(session, product.id, ProductUpdate(category_id=None))
    assert updated.name == "Spotify"
    assert updated.category_id is None
