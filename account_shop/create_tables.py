# create_tables.py
"""
Database Initialization.

Responsibilities:
1. Applies schema to the database (creates tables).
2. Bootstraps the dashboard admin from ADMIN_USERNAME / ADMIN_PASSWORD.
3. Seeds the default catalogue, bot settings and bot commands on an empty store.

Runs inside the app lifespan on every start; with the default in-memory
database that means every restart begins from these defaults. Can also be run
directly against a file-backed DATABASE_URL.
"""

import asyncio
import logging
import sys

from account_shop import inventory, store
from account_shop.auth import AuthService
from account_shop.config import Settings, get_settings
from account_shop.db import Database
from account_shop.models import BotSettings, BotStatus, UserRole
from account_shop.schemas import (
    BotCommandCreate,
    CategoryCreate,
    ProductCreate,
    UserCreate,
)

logger = logging.getLogger(__name__)

# ==============================================================================
# DEFAULT DATA
# ==============================================================================

DEFAULT_WELCOME_MESSAGE = (
    "Welcome to our Digital Shop! Browse our catalog of premium accounts by using the /products command."
)
DEFAULT_PAYMENT_METHODS = ["Crypto", "Bank Transfer"]

DEFAULT_COMMANDS = [
    BotCommandCreate(
        command="/start",
        description="Welcome message with bot instructions",
        response_message=(
            "Welcome to our Digital Shop Bot! 👋 I can help you purchase premium digital accounts. "
            "Use these commands:\n\n/products - Browse available products\n/cart - View your shopping cart\n"
            "/orders - Check your order history\n/help - Get assistance"
        ),
    ),
    BotCommandCreate(
        command="/products",
        description="Browse available digital accounts",
        response_message="Here are our available products:",
    ),
    BotCommandCreate(
        command="/cart",
        description="View current shopping cart",
        response_message="Your shopping cart:",
    ),
    BotCommandCreate(
        command="/checkout",
        description="Complete purchase process",
        response_message="Let's complete your purchase:",
    ),
    BotCommandCreate(
        command="/orders",
        description="Check order history and status",
        response_message="Your order history:",
    ),
    BotCommandCreate(
        command="/help",
        description="Get customer assistance",
        response_message=(
            "How can I help you today? Here are the available commands:\n\n"
            "/products - Browse available products\n/cart - View your shopping cart\n"
            "/orders - Check your order history"
        ),
    ),
    BotCommandCreate(
        command="/feedback",
        description="Submit customer feedback",
        active=False,
        response_message="Please share your feedback with us:",
    ),
]

# (category, name, description, price in cents, stock)
DEFAULT_PRODUCTS = [
    ("Streaming Services", "Gmail Account", "1 Month Old Account", 200, 22),
    ("Streaming Services", "YouTube Premium", "1 Month Subscription", 1199, 75),
    ("Streaming Services", "Disney+ Premium", "1 Month Subscription", 799, 80),
    ("Gaming", "Xbox Game Pass", "1 Month Subscription", 1499, 30),
    ("Gaming", "PlayStation Plus", "1 Month Subscription", 999, 40),
    ("Production Software", "Adobe Creative Cloud", "1 Month Subscription", 5299, 20),
]

DEMO_ACCOUNT_COUNT = 22


def demo_credentials(count: int = DEMO_ACCOUNT_COUNT):
    """Obviously fake placeholder logins for the first product."""
    return [f"demo.user{i:02d}@example.com:demo-password-{i:02d}" for i in range(1, count + 1)]


# ==============================================================================
# STEPS
# ==============================================================================

async def create_schema(database: Database):
    """
    Creates tables defined in SQLAlchemy models.
    """
    logger.info("🛠  Checking database schema...")
    try:
        await database.create_schema()
        logger.info("✅ Schema applied successfully.")
    except Exception as e:
        logger.critical(f"❌ Failed to create schema: {e}")
        raise


async def bootstrap_admin(database: Database, settings: Settings):
    """
    Ensures the bootstrap admin defined in settings exists in the DB.
    """
    if settings.ADMIN_PASSWORD is None or not settings.ADMIN_PASSWORD.get_secret_value():
        logger.warning("⚠️  ADMIN_PASSWORD not set. Skipping admin bootstrap; dashboard login disabled.")
        return

    username = settings.ADMIN_USERNAME
    logger.info(f"👤 Verifying bootstrap admin: '{username}'")

    async with database.session() as db:
        if await store.get_user_by_username(db, username) is not None:
            logger.info("✅ Bootstrap admin already exists. Skipping creation.")
            return

        await store.create_user(db, UserCreate(
            username=username,
            password=AuthService.hash_password(settings.ADMIN_PASSWORD.get_secret_value()),
            is_admin=True,
            role=UserRole.ADMIN,
        ))
        logger.info(f"✅ User '{username}' created with Role: ADMIN")


async def seed_defaults(database: Database, settings: Settings):
    """
    Seeds bot settings, commands and the catalogue. Each part is only
    written when its table is still empty, so re-running is harmless.
    """
    async with database.session() as db:
        if await store.get_bot_settings(db) is None:
            db.add(BotSettings(
                id=store.BOT_SETTINGS_ID,
                token=settings.TELEGRAM_BOT_TOKEN,
                status=BotStatus.ACTIVE,
                welcome_message=DEFAULT_WELCOME_MESSAGE,
                payment_methods=list(DEFAULT_PAYMENT_METHODS),
            ))
            await db.flush()
            logger.info("🌱 Seeded default bot settings.")

        if not await store.list_bot_commands(db):
            for command in DEFAULT_COMMANDS:
                await store.create_bot_command(db, command)
            logger.info(f"🌱 Seeded {len(DEFAULT_COMMANDS)} bot commands.")

        if not await store.list_products(db):
            first_product = None
            for category_name, name, description, price, stock in DEFAULT_PRODUCTS:
                category = await store.get_category_by_name(db, category_name)
                if category is None:
                    category = await store.create_category(db, CategoryCreate(name=category_name))

                product = await store.create_product(db, ProductCreate(
                    name=name,
                    description=description,
                    price=price,
                    category_id=category.id,
                    stock=stock,
                ))
                first_product = first_product or product
            logger.info(f"🌱 Seeded {len(DEFAULT_PRODUCTS)} products.")

            if settings.SEED_DEMO_DATA and first_product is not None:
                await inventory.add_bulk_accounts(db, first_product.id, demo_credentials())


async def initialize_database(database: Database, settings: Settings):
    await create_schema(database)
    await bootstrap_admin(database, settings)
    await seed_defaults(database, settings)


async def main():
    """
    Orchestrator function.
    """
    settings = get_settings()
    database = Database(settings.DATABASE_URL, echo=settings.DB_ECHO)
    try:
        await initialize_database(database, settings)
    finally:
        # Close the connection pool gracefully
        await database.dispose()
        logger.info("👋 Database connection closed.")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - [%(levelname)s] - %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Process cancelled by user.")
    except Exception as e:
        logger.critical(f"Fatal Error: {e}")
        sys.exit(1)
