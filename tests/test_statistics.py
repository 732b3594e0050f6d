# tests/test_statistics.py
import pytest

from account_shop import services, store
from account_shop.models import OrderStatus
from account_shop.schemas import OrderCreate, ProductCreate, UserCreate
from account_shop.statistics import get_statistics

from tests.conftest import BUYER


@pytest.mark.asyncio
async def test_product_count_follows_creates_and_deletes(session):
    before = (await get_statistics(session)).total_products

    first = await store.create_product(session, ProductCreate(name="One", price=100))
    assert (await get_statistics(session)).total_products == before + 1

    await store.create_product(session, ProductCreate(name="Two", price=100))
    assert (await get_statistics(session)).total_products == before + 2

    await store.delete_product(session, first.id)
    assert (await get_statistics(session)).total_products == before + 1


@pytest.mark.asyncio
async def test_deleting_missing_product_never_goes_negative(session):
    assert await store.delete_product(session, 1) is False
    assert (await get_statistics(session)).total_products == 0


@pytest.mark.asyncio
async def test_customers_are_bot_users_only(session):
    await store.create_user(session, UserCreate(username="admin", password="hash", is_admin=True))
    await services.register_telegram_user(session, BUYER)

    assert (await get_statistics(session)).total_customers == 1


@pytest.mark.asyncio
async def test_revenue_counts_completed_orders(session):
    user = await store.create_user(session, UserCreate(username="payer", telegram_id="9"))
    await store.create_order(session, OrderCreate(user_id=user.id, status=OrderStatus.COMPLETED, total_amount=500))
    await store.create_order(session, OrderCreate(user_id=user.id, status=OrderStatus.COMPLETED, total_amount=250))
    await store.create_order(session, OrderCreate(user_id=user.id, status=OrderStatus.FAILED, total_amount=999))

    stats = await get_statistics(session)

    assert stats.total_orders == 3
    assert stats.total_revenue == 750
