# web_routes.py
"""
Admin Dashboard Routes.
Exposes RESTful endpoints for the dashboard under /api.
Handles Authentication (OAuth2 password flow -> JWT bearer) and delegates
business logic to store.py / services.py.

NotFoundError and ValidationError raised below are mapped to 404/400 by the
exception handlers registered in main.py.
"""

import logging
from typing import List, Union

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from account_shop import inventory, services, store
from account_shop.auth import AuthService
from account_shop.config import mask_token
from account_shop.dependencies import (
    AppBotService,
    AppDatabase,
    AppSettings,
    CurrentUser,
    RequireAdmin,
    RequireDBSession,
)
from account_shop.exceptions import NotFoundError, ValidationError
from account_shop.models import BotSettings
from account_shop.schemas import (
    AccountResponse,
    AccountsUpload,
    BotCommandCreate,
    BotCommandResponse,
    BotCommandUpdate,
    BotSettingsResponse,
    BotSettingsUpdate,
    CategoryCreate,
    CategoryResponse,
    OrderDetailResponse,
    OrderItemResponse,
    OrderResponse,
    OrderStatusUpdate,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    RegisterRequest,
    StatisticsResponse,
    Token,
    UserCreate,
    UserResponse,
)
from account_shop.statistics import get_statistics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Admin Dashboard"])


def _masked_settings(settings: BotSettings) -> BotSettingsResponse:
    """The dashboard never receives the full bot token."""
    return BotSettingsResponse(
        token=mask_token(settings.token),
        status=settings.status,
        welcome_message=settings.welcome_message,
        payment_methods=settings.payment_methods or [],
    )


# ==============================================================================
# AUTH ROUTES
# ==============================================================================

@router.post("/login", response_model=Token, tags=["Auth"])
async def login_for_access_token(
    db: RequireDBSession,
    settings: AppSettings,
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    """
    Exchanges username/password for a JWT access token.
    """
    user = await AuthService.authenticate_user(db, form_data.username, form_data.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(f"🔐 User '{user.username}' logged in")
    return Token(access_token=AuthService.create_access_token(user, settings), token_type="bearer")


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED, tags=["Auth"])
async def register(payload: RegisterRequest, db: RequireDBSession):
    """Creates a dashboard account. New accounts are never admins."""
    return await services.add_user(db, UserCreate(
        username=payload.username,
        password=AuthService.hash_password(payload.password),
        email=payload.email,
        is_admin=False,
    ))


@router.post("/logout", tags=["Auth"])
async def logout():
    """Client-side logout (clearing token)."""
    return {"message": "Successfully logged out"}


@router.get("/user", response_model=UserResponse, tags=["Auth"])
async def read_current_user(user: CurrentUser):
    return user


@router.get("/health", tags=["System"])
async def health(database: AppDatabase, bot_service: AppBotService):
    db_ok = await database.healthcheck()
    return {
        "status": "ok" if db_ok else "degraded",
        "database": db_ok,
        "bot": "active" if bot_service.is_active else "demo",
    }


# ==============================================================================
# PRODUCT ROUTES
# ==============================================================================

@router.get("/products", response_model=List[ProductResponse])
async def list_products(db: RequireDBSession, admin: RequireAdmin):
    return await store.list_products(db)


@router.post("/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreate, db: RequireDBSession, admin: RequireAdmin):
    product = await store.create_product(db, payload)
    logger.info(f"Admin {admin.username} created product {product.id} '{product.name}'")
    return product


@router.put("/products/{product_id}", response_model=ProductResponse)
async def update_product(product_id: int, payload: ProductUpdate, db: RequireDBSession, admin: RequireAdmin):
    product = await store.update_product(db, product_id, payload)
    if product is None:
        raise NotFoundError("Product not found")
    return product


@router.delete("/products/{product_id}")
async def delete_product(product_id: int, db: RequireDBSession, admin: RequireAdmin):
    if not await store.delete_product(db, product_id):
        raise NotFoundError("Product not found")
    logger.info(f"Admin {admin.username} deleted product {product_id}")
    return {"success": True}


@router.post(
    "/products/{product_id}/accounts",
    response_model=Union[AccountResponse, List[AccountResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def add_product_accounts(product_id: int, payload: AccountsUpload, db: RequireDBSession, admin: RequireAdmin):
    """`accounts` may be one credential string or a list of them."""
    return await services.upload_product_accounts(db, product_id, payload.accounts)


@router.get("/products/{product_id}/accounts", response_model=List[AccountResponse])
async def list_product_accounts(product_id: int, db: RequireDBSession, admin: RequireAdmin):
    if await store.get_product(db, product_id) is None:
        raise NotFoundError("Product not found")
    return await inventory.get_product_accounts(db, product_id)


# ==============================================================================
# CATEGORY ROUTES
# ==============================================================================

@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(db: RequireDBSession, admin: RequireAdmin):
    return await store.list_categories(db)


@router.post("/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(payload: CategoryCreate, db: RequireDBSession, admin: RequireAdmin):
    return await services.create_category(db, payload)


# ==============================================================================
# ORDER & CUSTOMER ROUTES
# ==============================================================================

@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(db: RequireDBSession, admin: RequireAdmin):
    return await store.list_orders(db)


@router.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def read_order(order_id: int, db: RequireDBSession, admin: RequireAdmin):
    order = await store.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")

    items = await store.get_order_items(db, order_id)
    return OrderDetailResponse(
        **OrderResponse.model_validate(order).model_dump(),
        items=[OrderItemResponse.model_validate(item) for item in items],
    )


@router.put("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(order_id: int, payload: OrderStatusUpdate, db: RequireDBSession, admin: RequireAdmin):
    """Any status may be set; there is no transition check."""
    if payload.status is None:
        raise ValidationError("Status is required")

    order = await store.update_order_status(db, order_id, payload.status)
    if order is None:
        raise NotFoundError("Order not found")

    logger.info(f"Admin {admin.username} set order {order_id} to {payload.status.value}")
    return order


@router.get("/customers", response_model=List[UserResponse])
async def list_customers(db: RequireDBSession, admin: RequireAdmin):
    return await store.list_users(db)


# ==============================================================================
# BOT ROUTES
# ==============================================================================

@router.get("/bot/settings", response_model=BotSettingsResponse)
async def read_bot_settings(db: RequireDBSession, admin: RequireAdmin):
    settings = await store.get_bot_settings(db)
    if settings is None:
        raise NotFoundError("Bot settings not found")
    return _masked_settings(settings)


@router.put("/bot/settings", response_model=BotSettingsResponse)
async def update_bot_settings(
    payload: BotSettingsUpdate,
    background_tasks: BackgroundTasks,
    db: RequireDBSession,
    admin: RequireAdmin,
    bot_service: AppBotService,
):
    """
    Saves the settings; a token or status change restarts the bot after the
    response is sent.
    """
    settings, restart_needed = await services.update_bot_settings(db, payload)

    if restart_needed:
        logger.info(f"Bot settings changed by {admin.username}; scheduling bot restart")
        background_tasks.add_task(bot_service.restart, settings.token, settings.status)

    return _masked_settings(settings)


@router.get("/bot/commands", response_model=List[BotCommandResponse])
async def list_bot_commands(db: RequireDBSession, admin: RequireAdmin):
    return await store.list_bot_commands(db)


@router.post("/bot/commands", response_model=BotCommandResponse, status_code=status.HTTP_201_CREATED)
async def create_bot_command(payload: BotCommandCreate, db: RequireDBSession, admin: RequireAdmin):
    return await services.create_bot_command(db, payload)


@router.put("/bot/commands/{command_id}", response_model=BotCommandResponse)
async def update_bot_command(command_id: int, payload: BotCommandUpdate, db: RequireDBSession, admin: RequireAdmin):
    command = await store.update_bot_command(db, command_id, payload)
    if command is None:
        raise NotFoundError("Command not found")
    return command


# ==============================================================================
# STATISTICS
# ==============================================================================

@router.get("/statistics", response_model=StatisticsResponse)
async def read_statistics(db: RequireDBSession, admin: RequireAdmin):
    return await get_statistics(db)
