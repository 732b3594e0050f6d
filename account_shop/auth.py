# auth.py
"""
Dashboard Authentication Module.

Standards:
- Passwords stored as salted PBKDF2-SHA256 hashes (passlib).
- JWT (JSON Web Tokens) for stateless bearer authentication, signed with
  SESSION_SECRET.
- Telegram customers have an empty password and can never log in.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from account_shop import store
from account_shop.config import Settings, get_app_settings
from account_shop.db import get_db
from account_shop.models import User, UserRole

# ==============================================================================
# CONFIGURATION & LOGGING
# ==============================================================================

ALGORITHM = "HS256"
TOKEN_URL = "/api/login"  # Endpoint for Swagger UI

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=TOKEN_URL)


class TokenPayload(BaseModel):
    sub: Optional[str] = None  # User ID (stored as string in JWT)
    username: Optional[str] = None
    role: Optional[str] = None
    exp: Optional[int] = None


# ==============================================================================
# AUTH SERVICE LAYER
# ==============================================================================

class AuthService:
    """
    Encapsulates all cryptographic and authentication business logic.
    """

    @staticmethod
    def hash_password(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        # Empty hashes belong to Telegram-only users
        if not hashed:
            return False
        try:
            return pwd_context.verify(password, hashed)
        except ValueError:
            logger.warning("Stored password hash could not be identified.")
            return False

    @staticmethod
    def create_access_token(user: User, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
        """
        Creates a signed JWT access token for a user.
        """
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        role = user.role.value if hasattr(user.role, "value") else str(user.role)
        to_encode = {
            "sub": str(user.id),
            "username": user.username,
            "role": role,
            "exp": expire,
        }
        return jwt.encode(to_encode, settings.SESSION_SECRET.get_secret_value(), algorithm=ALGORITHM)

    @staticmethod
    def decode_access_token(token: str, settings: Settings) -> TokenPayload:
        payload = jwt.decode(token, settings.SESSION_SECRET.get_secret_value(), algorithms=[ALGORITHM])
        return TokenPayload(**payload)

    @staticmethod
    async def authenticate_user(db: AsyncSession, username: str, password: str) -> Optional[User]:
        """Returns the user if the username/password pair is valid and active."""
        user = await store.get_user_by_username(db, username)
        if user is None or not user.is_active:
            logger.warning(f"Auth failed: unknown or inactive user '{username}'.")
            return None

        if not AuthService.verify_password(password, user.password):
            logger.warning(f"Auth failed: invalid credentials for '{username}'.")
            return None

        return user


def is_admin_user(user: User) -> bool:
    return bool(user.is_admin) or user.role == UserRole.ADMIN


# ==============================================================================
# DEPENDENCIES (FastAPI Injection)
# ==============================================================================

async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> User:
    """
    Validates the JWT token and retrieves the current active User.
    Raises 401 for invalid/expired tokens or unknown and inactive users.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        token_data = AuthService.decode_access_token(token, settings)
        if token_data.sub is None:
            logger.error("Token validation failed: Missing 'sub' (user_id).")
            raise credentials_exception
        user_id = int(token_data.sub)
    except ExpiredSignatureError:
        logger.info("Token validation failed: Token expired.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except (JWTError, ValueError) as e:
        logger.error(f"Token validation error: {e}")
        raise credentials_exception

    user = await store.get_user(db, user_id)
    if user is None:
        logger.warning(f"Token valid but User ID {user_id} not found in DB.")
        raise credentials_exception

    if not user.is_active:
        logger.warning(f"Access denied: User {user.username} is deactivated.")
        raise credentials_exception

    return user
