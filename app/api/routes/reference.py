# app/api/routes/reference.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, status

from app.api.deps import AdminDep, PrincipalDep, StoreDep
from app.core.errors import NotFoundError
from app.schemas.reference import RefCreate, RefOut, RefUpdate, TeamCreate, TeamOut
from app.services import admin

# довідники читає будь-який автентифікований користувач, змінює лише Admin
router = APIRouter()


@router.get("/categories", response_model=list[RefOut])
async def list_categories(principal: PrincipalDep, store: StoreDep, active_only: bool = True):
    rows = await store.list_categories()
    return [r for r in rows if r.is_active or not active_only]


@router.get("/priorities", response_model=list[RefOut])
async def list_priorities(principal: PrincipalDep, store: StoreDep):
    return await store.list_priorities()


@router.get("/statuses", response_model=list[RefOut])
async def list_statuses(principal: PrincipalDep, store: StoreDep):
    return await store.list_statuses()


@router.get("/departments", response_model=list[RefOut])
async def list_departments(principal: PrincipalDep, store: StoreDep, active_only: bool = True):
    rows = await store.list_departments()
    return [r for r in rows if r.is_active or not active_only]


@router.get("/departments/{department_id}/teams", response_model=list[TeamOut])
async def list_department_teams(department_id: int, principal: PrincipalDep, store: StoreDep,
                                active_only: bool = True):
    if await store.get_department(department_id) is None:
        raise NotFoundError("Department", department_id)
    rows = await store.list_teams(department_id)
    return [r for r in rows if r.is_active or not active_only]


@router.get("/teams", response_model=list[TeamOut])
async def list_teams(principal: PrincipalDep, store: StoreDep, department_id: Optional[int] = None,
                     active_only: bool = True):
    rows = await store.list_teams(department_id)
    return [r for r in rows if r.is_active or not active_only]

@router.get("/categories/active", response_model=list[RefOut])
async def list_active_categories(principal: PrincipalDep, store: StoreDep):
    return [r for r in await store.list_categories() if r.is_active]


# ---------- ADMIN: категорії / відділи / команди ----------
# DELETE лише деактивує: на рядках тримаються заявки та grant-и

@router.post("/categories", response_model=RefOut, status_code=status.HTTP_201_CREATED)
async def create_category(payload: RefCreate, principal: AdminDep, store: StoreDep):
    return await admin.create_reference(store, "category", name=payload.name, description=payload.description)


@router.put("/categories/{category_id}", response_model=RefOut)
async def update_category(category_id: int, payload: RefUpdate, principal: AdminDep, store: StoreDep):
    return await admin.update_reference(store, "category", category_id, **payload.model_dump(exclude_unset=True))


@router.delete("/categories/{category_id}", response_model=RefOut)
async def deactivate_category(category_id: int, principal: AdminDep, store: StoreDep):
    return await admin.deactivate_reference(store, "category", category_id)


@router.post("/departments", response_model=RefOut, status_code=status.HTTP_201_CREATED)
async def create_department(payload: RefCreate, principal: AdminDep, store: StoreDep):
    return await admin.create_reference(store, "department", name=payload.name, description=payload.description)


@router.put("/departments/{department_id}", response_model=RefOut)
async def update_department(department_id: int, payload: RefUpdate, principal: AdminDep, store: StoreDep):
    return await admin.update_reference(store, "department", department_id,
                                        **payload.model_dump(exclude_unset=True))


@router.delete("/departments/{department_id}", response_model=RefOut)
async def deactivate_department(department_id: int, principal: AdminDep, store: StoreDep):
    return await admin.deactivate_reference(store, "department", department_id)


@router.post("/teams", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
async def create_team(payload: TeamCreate, principal: AdminDep, store: StoreDep):
    return await admin.create_reference(store, "team", name=payload.name, description=payload.description,
                                        department_id=payload.department_id)


@router.put("/teams/{team_id}", response_model=TeamOut)
async def update_team(team_id: int, payload: RefUpdate, principal: AdminDep, store: StoreDep):
    return await admin.update_reference(store, "team", team_id, **payload.model_dump(exclude_unset=True))


@router.delete("/teams/{team_id}", response_model=TeamOut)
async def deactivate_team(team_id: int, principal: AdminDep, store: StoreDep):
    return await admin.deactivate_reference(store, "team", team_id)
