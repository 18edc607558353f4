# app/api/routes/users.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from app.api.deps import AdminDep, StaffDep, StoreDep
from app.core.errors import NotFoundError
from app.core.logging import log_extra
from app.schemas.auth import UserOut
from app.schemas.users import UserCreate, UsersPage, UserUpdate
from app.services import admin
from app.services.auth import serialize_user
from app.services.records import UserRecord
from app.services.store import TicketStore

router = APIRouter()
log = logging.getLogger(__name__)


async def _out(store: TicketStore, user: UserRecord) -> UserOut:
    return UserOut(**serialize_user(user, await store.get_user_grants(user.id)))


# ---------- STAFF: перегляд ----------
@router.get("", response_model=UsersPage)
async def list_users(
    principal: StaffDep,
    store: StoreDep,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    q: Optional[str] = Query(None, description="search by email/name"),
    is_active: Optional[bool] = Query(None),
    department_id: Optional[int] = Query(None),
    team_id: Optional[int] = Query(None),
):
    rows = await store.list_users(department_id=department_id, team_id=team_id)
    if is_active is not None:
        rows = [u for u in rows if u.is_active == is_active]
    if q:
        needle = q.strip().lower()
        rows = [u for u in rows if needle in u.email.lower() or needle in u.full_name.lower()]

    chunk = rows[(page - 1) * limit: page * limit]
    return UsersPage(
        items=[await _out(store, u) for u in chunk],
        total=len(rows),
        page=page,
        limit=limit,
    )


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: int, principal: StaffDep, store: StoreDep):
    user = await store.get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return await _out(store, user)


# ---------- ADMIN: створення / зміна / деактивація ----------
@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, principal: AdminDep, store: StoreDep, request: Request):
    user = await admin.create_user(
        store,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        grants=admin.parse_grants(payload.grants),
    )
    log.info("admin_user_created", extra={**log_extra(request), "user_id": user.id, "actor_id": principal.user_id})
    return await _out(store, user)


@router.put("/{user_id}", response_model=UserOut)
async def update_user(user_id: int, payload: UserUpdate, principal: AdminDep, store: StoreDep):
    user = await admin.update_user(
        store,
        principal,
        user_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        is_active=payload.is_active,
        password=payload.password,
        grants=admin.parse_grants(payload.grants) if payload.grants is not None else None,
    )
    return await _out(store, user)


@router.delete("/{user_id}")
async def deactivate_user(user_id: int, principal: AdminDep, store: StoreDep):
    """М'яке видалення: is_active = False, grant-и лишаються."""
    await admin.deactivate_user(store, principal, user_id)
    return {"ok": True}
