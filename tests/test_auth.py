# tests/test_auth.py
from datetime import timedelta

import pytest
from jose import ExpiredSignatureError, JWTError

from account_shop import store
from account_shop.auth import AuthService, is_admin_user
from account_shop.config import Settings
from account_shop.models import UserRole
from account_shop.schemas import UserCreate


def test_password_hashing():
    hashed = AuthService.hash_password("hunter22")

    assert hashed != "hunter22"
    assert AuthService.verify_password("hunter22", hashed)
    assert not AuthService.verify_password("wrong", hashed)
    # Telegram customers have no password at all
    assert not AuthService.verify_password("", "")


@pytest.mark.asyncio
async def test_token_roundtrip_and_expiry(session, settings):
    user = await store.create_user(session, UserCreate(username="boss", is_admin=True, role=UserRole.ADMIN))

    payload = AuthService.decode_access_token(AuthService.create_access_token(user, settings), settings)
    assert payload.sub == str(user.id)
    assert payload.role == "admin"

    expired = AuthService.create_access_token(user, settings, expires_delta=timedelta(minutes=-1))
    with pytest.raises(ExpiredSignatureError):
        AuthService.decode_access_token(expired, settings)

    other = Settings(SESSION_SECRET="another-secret")
    with pytest.raises(JWTError):
        AuthService.decode_access_token(AuthService.create_access_token(user, settings), other)


@pytest.mark.asyncio
async def test_authenticate_user(session):
    await store.create_user(session, UserCreate(username="ops", password=AuthService.hash_password("pw123456")))
    await store.create_user(session, UserCreate(
        username="gone", password=AuthService.hash_password("pw123456"), is_active=False,
    ))
    await store.create_user(session, UserCreate(username="user_42", telegram_id="42"))

    assert (await AuthService.authenticate_user(session, "ops", "pw123456")).username == "ops"
    assert await AuthService.authenticate_user(session, "ops", "nope") is None
    assert await AuthService.authenticate_user(session, "gone", "pw123456") is None
    assert await AuthService.authenticate_user(session, "user_42", "") is None


@pytest.mark.asyncio
async def test_admin_flag_or_role_grants_admin(session):
    flagged = await store.create_user(session, UserCreate(username="flagged", is_admin=True))
    by_role = await store.create_user(session, UserCreate(username="by_role", role=UserRole.ADMIN))
    plain = await store.create_user(session, UserCreate(username="plain"))

    assert is_admin_user(flagged)
    assert is_admin_user(by_role)
    assert not is_admin_user(plain)
