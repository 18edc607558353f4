# app/api/routes/analytics.py
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from app.api.deps import PrincipalDep, StoreDep
from app.api.routes.tickets import ticket_filter_from_query
from app.schemas.tickets import TicketOut
from app.services import reports
from app.services.filters import TicketFilterIn

router = APIRouter()


@router.get("/summary")
async def summary(principal: PrincipalDep, store: StoreDep,
                  requested: TicketFilterIn = Depends(ticket_filter_from_query)):
    return await reports.summary(store, principal, requested)


@router.get("/count")
async def count(principal: PrincipalDep, store: StoreDep,
                requested: TicketFilterIn = Depends(ticket_filter_from_query)):
    return {"count": await reports.count(store, principal, requested)}


@router.get("/active-count")
async def active_count(principal: PrincipalDep, store: StoreDep):
    return {"count": await reports.active_count(store, principal)}


@router.get("/count/status/{status_id}")
async def count_by_status(status_id: int, principal: PrincipalDep, store: StoreDep):
    return {"status_id": status_id, "count": await reports.count_by_status(store, principal, status_id)}


@router.get("/count/user/{user_id}")
async def count_by_user(user_id: int, principal: PrincipalDep, store: StoreDep):
    return {"user_id": user_id, "count": await reports.count_by_user(store, principal, user_id)}


@router.get("/count/department/{department_id}")
async def count_by_department(department_id: int, principal: PrincipalDep, store: StoreDep):
    return {"department_id": department_id,
            "count": await reports.count_by_department(store, principal, department_id)}


@router.get("/date-range", response_model=list[TicketOut])
async def tickets_between(
    principal: PrincipalDep,
    store: StoreDep,
    start_date: datetime = Query(alias="startDate"),
    end_date: datetime = Query(alias="endDate"),
):
    return await reports.tickets_between(store, principal, start_date, end_date)
