# app/api/routes/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from app.api.deps import PrincipalDep, StoreDep
from app.core.errors import AuthenticationError
from app.core.logging import log_extra
from app.schemas.auth import LoginIn, PrincipalOut, TokenOut, UserOut
from app.services.auth import ensure_grant_consistent, login as login_user, serialize_user
from app.services.principal import grants_to_claims

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, store: StoreDep, request: Request):
    result = await login_user(
        store,
        payload.username,
        payload.password or "",
        remember_me=bool(payload.remember_me),
    )
    log.info("auth_login", extra={**log_extra(request), "user_id": result.user.id})
    return {
        "access_token": result.token,
        "token_type": "bearer",
        "expires_in": result.expires_in,
        "user": UserOut(**serialize_user(result.user, result.grants)),
    }


@router.get("/me", response_model=UserOut)
async def me(principal: PrincipalDep, store: StoreDep):
    """Профіль з БД + актуальні (не з токена) grant-и."""
    user = await store.get_user(principal.user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Account is disabled")
    grants = await ensure_grant_consistent(store, await store.get_user_grants(user.id), user_id=user.id)
    return UserOut(**serialize_user(user, grants))


@router.get("/claims", response_model=PrincipalOut)
async def claims(principal: PrincipalDep):
    """Що саме несе поточний токен (може відставати від БД до exp)."""
    return {
        "user_id": principal.user_id,
        "email": principal.email,
        "grants": grants_to_claims(principal.grants),
    }
