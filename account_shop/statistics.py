# statistics.py
"""
Dashboard statistics, derived from the store on every read.

- total_orders: number of orders (any status)
- total_customers: number of users registered through the bot (telegram_id set)
- total_revenue: sum of total_amount over completed orders, in cents
- total_products: number of products
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from account_shop.models import Order, OrderStatus, Product, User
from account_shop.schemas import StatisticsResponse

logger = logging.getLogger(__name__)


async def _scalar(db: AsyncSession, stmt) -> int:
    result = await db.execute(stmt)
    return int(result.scalar() or 0)


async def get_statistics(db: AsyncSession) -> StatisticsResponse:
    total_orders = await _scalar(db, select(func.count(Order.id)))
    total_customers = await _scalar(db, select(func.count(User.id)).where(User.telegram_id.is_not(None)))
    total_revenue = await _scalar(
        db,
        select(func.coalesce(func.sum(Order.total_amount), 0)).where(Order.status == OrderStatus.COMPLETED),
    )
    total_products = await _scalar(db, select(func.count(Product.id)))

    return StatisticsResponse(
        total_orders=total_orders,
        total_customers=total_customers,
        total_revenue=total_revenue,
        total_products=total_products,
    )
