# inventory.py
"""
Inventory / Account Allocator.

The one place that must guarantee at-most-one buyer per credential.
`get_available_account` + `mark_account_delivered` are the plain read and
write; `claim_account` fuses them into a single compare-and-swap so two
checkouts can never be handed the same Account.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from account_shop.models import Account, utcnow

logger = logging.getLogger(__name__)

# Upper bound on CAS retries for a single claim
MAX_CLAIM_ATTEMPTS = 5


# ==============================================================================
# 1. STOCK INTAKE
# ==============================================================================

async def add_account(db: AsyncSession, product_id: int, credentials: str) -> Account:
    """Appends one undelivered credential record for a product."""
    account = Account(product_id=product_id, credentials=credentials.strip())
    db.add(account)
    await db.flush()
    return account


async def add_bulk_accounts(db: AsyncSession, product_id: int, credentials: Iterable[str]) -> List[Account]:
    """
    Sequence of single adds. Blank lines are skipped; there is no
    partial-failure atomicity beyond the surrounding unit of work.
    """
    added = []
    for raw in credentials:
        if not raw or not raw.strip():
            continue
        added.append(await add_account(db, product_id, raw))

    logger.info(f"📦 Added {len(added)} accounts to product {product_id}")
    return added


# ==============================================================================
# 2. LOOKUPS
# ==============================================================================

async def get_account(db: AsyncSession, account_id: int) -> Optional[Account]:
    return await db.get(Account, account_id)


async def get_available_account(db: AsyncSession, product_id: int) -> Optional[Account]:
    """First undelivered account for the product, oldest first."""
    stmt = (
        select(Account)
        .where(Account.product_id == product_id, Account.is_delivered.is_(False))
        .order_by(Account.id)
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def count_available_accounts(db: AsyncSession, product_id: int) -> int:
    stmt = select(func.count(Account.id)).where(Account.product_id == product_id, Account.is_delivered.is_(False))
    result = await db.execute(stmt)
    return int(result.scalar() or 0)


async def get_product_accounts(db: AsyncSession, product_id: int) -> List[Account]:
    stmt = select(Account).where(Account.product_id == product_id).order_by(Account.id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_accounts_by_order_id(db: AsyncSession, order_id: int) -> List[Account]:
    stmt = select(Account).where(Account.delivered_to_order_id == order_id).order_by(Account.id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_account_by_order_id(db: AsyncSession, order_id: int) -> Optional[Account]:
    accounts = await get_accounts_by_order_id(db, order_id)
    return accounts[0] if accounts else None


# ==============================================================================
# 3. DELIVERY STATE
# ==============================================================================

async def mark_account_delivered(
    db: AsyncSession,
    account_id: int,
    user_id: int,
    order_id: Optional[int] = None,
) -> Optional[Account]:
    """
    Unconditionally stamps the account as delivered. Calling it twice simply
    overwrites the fields; use claim_account when the previous state matters.
    """
    account = await db.get(Account, account_id)
    if account is None:
        return None

    account.is_delivered = True
    account.delivered_at = utcnow()
    account.delivered_to_user_id = user_id
    account.delivered_to_order_id = order_id
    await db.flush()
    return account


async def claim_account(
    db: AsyncSession,
    product_id: int,
    user_id: int,
    order_id: Optional[int] = None,
) -> Optional[Account]:
    """
    Atomically selects and marks one undelivered account.

    The write only succeeds if the row is still undelivered
    (UPDATE ... WHERE is_delivered = false); a lost race moves on to the
    next candidate. Returns None when the product has no stock left.
    """
    for _ in range(MAX_CLAIM_ATTEMPTS):
        candidate = await get_available_account(db, product_id)
        if candidate is None:
            return None

        stmt = (
            update(Account)
            .where(Account.id == candidate.id, Account.is_delivered.is_(False))
            .values(
                is_delivered=True,
                delivered_at=utcnow(),
                delivered_to_user_id=user_id,
                delivered_to_order_id=order_id,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if result.rowcount == 1:
            await db.refresh(candidate)
            return candidate

        logger.warning(f"Account {candidate.id} was claimed concurrently, retrying")
        await db.refresh(candidate)

    logger.error(f"Gave up claiming an account for product {product_id} after {MAX_CLAIM_ATTEMPTS} attempts")
    return None


async def release_account(db: AsyncSession, account_id: int) -> Optional[Account]:
    """Compensating write: returns a delivered account to the available pool."""
    account = await db.get(Account, account_id)
    if account is None:
        return None

    account.is_delivered = False
    account.delivered_at = None
    account.delivered_to_user_id = None
    account.delivered_to_order_id = None
    await db.flush()
    return account
