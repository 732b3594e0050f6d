# tests/conftest.py
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from account_shop import inventory, store
from account_shop.bot_commands import BotDispatcher
from account_shop.config import Settings
from account_shop.create_tables import DEFAULT_COMMANDS
from account_shop.db import Database
from account_shop.models import BotSettings, BotStatus
from account_shop.schemas import ProductCreate
from account_shop.services import ChatIdentity

CHAT_ID = "1001"
BUYER = ChatIdentity(telegram_id="1001", username="buyer", first_name="Bea", last_name="Buyer")
OTHER_BUYER = ChatIdentity(telegram_id="2002", username="other", first_name="Otto")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        SESSION_SECRET="test-secret",
        ADMIN_USERNAME="admin",
        ADMIN_PASSWORD="admin-password",
        TELEGRAM_BOT_TOKEN="",
        SEED_DEMO_DATA=False,
        DELIVERY_MAX_ATTEMPTS=3,
        DELIVERY_RETRY_DELAY_SECONDS=0,
    )


@pytest_asyncio.fixture
async def database():
    db = Database()
    await db.create_schema()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def session(database):
    """A single open unit of work; do not combine with the dispatcher."""
    async with database.session() as db:
        yield db


@pytest_asyncio.fixture
async def shop(database):
    """Bot settings and the default command registry, no products."""
    async with database.session() as db:
        db.add(BotSettings(
            id=store.BOT_SETTINGS_ID,
            token="",
            status=BotStatus.ACTIVE,
            welcome_message="Welcome to the test shop!",
            payment_methods=["Crypto", "Bank Transfer"],
        ))
        for command in DEFAULT_COMMANDS:
            await store.create_bot_command(db, command)
    return database


@pytest.fixture
def messenger():
    return AsyncMock()


@pytest.fixture
def dispatcher(shop, messenger, settings) -> BotDispatcher:
    return BotDispatcher(shop, messenger, settings)


async def seed_product(database, name="Netflix", price=500, stock=10, credentials=("user@example.com:secret",)):
    """Creates a product with the given accounts; returns its id."""
    async with database.session() as db:
        product = await store.create_product(db, ProductCreate(
            name=name,
            description="1 Month Subscription",
            price=price,
            stock=stock,
        ))
        await inventory.add_bulk_accounts(db, product.id, list(credentials))
        return product.id


def sent_texts(messenger):
    return [call.args[1] for call in messenger.send_message.await_args_list]
