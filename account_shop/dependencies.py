# dependencies.py
"""
Dependency Utilities for FastAPI.

Responsibilities:
- Defining type aliases for dependency injection.
- The admin gate every management route sits behind.
- Access to the per-app services kept on app.state.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from account_shop.auth import get_current_user, is_admin_user
from account_shop.bot_service import BotService
from account_shop.config import Settings, get_app_settings
from account_shop.db import Database, get_db
from account_shop.models import User

logger = logging.getLogger(__name__)

# ==============================================================================
# 1. CORE TYPE ALIASES (For Clean Route Signatures)
# ==============================================================================

# Resolves the current authenticated and active User (admin or not).
CurrentUser = Annotated[User, Depends(get_current_user)]

# Resolves a database session (shared by every dependency of one request).
RequireDBSession = Annotated[AsyncSession, Depends(get_db)]

AppSettings = Annotated[Settings, Depends(get_app_settings)]


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_bot_service(request: Request) -> BotService:
    return request.app.state.bot_service


AppDatabase = Annotated[Database, Depends(get_database)]
AppBotService = Annotated[BotService, Depends(get_bot_service)]


# ==============================================================================
# 2. ROLE-BASED ACCESS CONTROL (RBAC) GATES
# ==============================================================================

def require_admin_role(user: CurrentUser) -> User:
    """
    Dependency that ensures the authenticated user is a dashboard admin.
    """
    if not is_admin_user(user):
        # Log unauthorized attempt for auditing purposes
        logger.warning(
            f"RBAC failed: User {user.username} (ID: {user.id}) accessed "
            f"admin resource without admin privileges"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Requires Administrator privileges.",
        )

    return user

# This is the primary dependency to use for management routes
RequireAdmin = Annotated[User, Depends(require_admin_role)]
