# schemas.py
"""
Pydantic models for the store and the dashboard API.

*Create models carry required fields for inserts.
*Update models are partial patches: every field is optional and only the
fields explicitly set by the caller are applied (exclude_unset=True).
*Response models are read from ORM objects (from_attributes).
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from account_shop.models import BotStatus, OrderStatus, UserRole


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ==============================================================================
# USERS
# ==============================================================================

class UserCreate(BaseModel):
    username: str
    password: str = ""
    is_admin: bool = False
    role: UserRole = UserRole.USER
    is_active: bool = True
    email: Optional[str] = None
    telegram_id: Optional[str] = None
    telegram_username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserUpdate(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    is_admin: Optional[bool] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    email: Optional[str] = None
    telegram_username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserResponse(ORMModel):
    id: int
    username: str
    is_admin: bool
    role: UserRole
    is_active: bool
    email: Optional[str] = None
    telegram_id: Optional[str] = None
    telegram_username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: datetime


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=6)
    email: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str


# ==============================================================================
# CATALOGUE
# ==============================================================================

class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)


class CategoryResponse(ORMModel):
    id: int
    name: str


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str = ""
    price: int = Field(ge=0)  # cents
    category_id: Optional[int] = None
    stock: int = Field(default=0, ge=0)
    active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    stock: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None


class ProductResponse(ORMModel):
    id: int
    name: str
    description: str
    price: int
    category_id: Optional[int] = None
    stock: int
    active: bool


class AccountsUpload(BaseModel):
    """A single credential string or a list of them."""
    accounts: Union[str, List[str]]


class AccountResponse(ORMModel):
    id: int
    product_id: int
    credentials: str
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    delivered_to_user_id: Optional[int] = None
    delivered_to_order_id: Optional[int] = None
    created_at: datetime


# ==============================================================================
# ORDERS
# ==============================================================================

class OrderCreate(BaseModel):
    user_id: int
    status: OrderStatus = OrderStatus.PENDING
    total_amount: int
    telegram_chat_id: Optional[str] = None
    payment_method: Optional[str] = None
    account_credentials: Optional[str] = None


class OrderItemCreate(BaseModel):
    order_id: int
    product_id: int
    quantity: int = Field(ge=1)
    price: int


class OrderItemResponse(ORMModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: int


class OrderResponse(ORMModel):
    id: int
    user_id: int
    status: OrderStatus
    total_amount: int
    telegram_chat_id: Optional[str] = None
    payment_method: Optional[str] = None
    account_credentials: Optional[str] = None
    created_at: datetime


class OrderDetailResponse(OrderResponse):
    items: List[OrderItemResponse] = []


class OrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None


# ==============================================================================
# BOT
# ==============================================================================

class BotSettingsUpdate(BaseModel):
    token: Optional[str] = None
    status: Optional[BotStatus] = None
    welcome_message: Optional[str] = None
    payment_methods: Optional[List[str]] = None


class BotSettingsResponse(ORMModel):
    token: str
    status: BotStatus
    welcome_message: str
    payment_methods: List[str]


class BotCommandCreate(BaseModel):
    command: str = Field(min_length=2, max_length=64)
    description: str
    active: bool = True
    response_message: Optional[str] = None

    @field_validator("command")
    def command_starts_with_slash(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("Command must start with '/'")
        return v


class BotCommandUpdate(BaseModel):
    description: Optional[str] = None
    active: Optional[bool] = None
    response_message: Optional[str] = None


class BotCommandResponse(ORMModel):
    id: int
    command: str
    description: str
    active: bool
    response_message: Optional[str] = None


# ==============================================================================
# STATISTICS
# ==============================================================================

class StatisticsResponse(BaseModel):
    total_orders: int
    total_customers: int
    total_revenue: int
    total_products: int
