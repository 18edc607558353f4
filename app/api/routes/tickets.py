# app/api/routes/tickets.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import Response

from app.api.deps import LifecycleDep, PrincipalDep, StoreDep
from app.core.logging import log_extra
from app.schemas.tickets import (
    AssignIn,
    AttachmentIn,
    AttachmentOut,
    FeedbackIn,
    FeedbackOut,
    PriorityIn,
    StatusIn,
    TicketCreate,
    TicketOut,
    TicketPage,
    TicketUpdate,
)
from app.services import reports
from app.services.filters import TicketFilterIn

router = APIRouter()
log = logging.getLogger(__name__)


def ticket_filter_from_query(
    status_id: Optional[List[int]] = Query(default=None),
    priority_id: Optional[List[int]] = Query(default=None),
    category_id: Optional[List[int]] = Query(default=None),
    department_id: Optional[List[int]] = Query(default=None),
    team_id: Optional[List[int]] = Query(default=None),
    assigned_to_id: Optional[int] = None,
    created_by_id: Optional[int] = None,
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    active_only: bool = False,
) -> TicketFilterIn:
    return TicketFilterIn.of(
        status_ids=status_id,
        priority_ids=priority_id,
        category_ids=category_id,
        department_ids=department_id,
        team_ids=team_id,
        assigned_to_id=assigned_to_id,
        created_by_id=created_by_id,
        start_date=start_date,
        end_date=end_date,
        active_only=active_only,
    )


@router.post("", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreate, principal: PrincipalDep, lifecycle: LifecycleDep,
                        request: Request):
    ticket = await lifecycle.create_ticket(principal, **payload.model_dump())
    log.info("api_ticket_created", extra={**log_extra(request), "ticket_id": ticket.id})
    return ticket


@router.get("", response_model=TicketPage)
async def list_tickets(
    principal: PrincipalDep,
    store: StoreDep,
    requested: TicketFilterIn = Depends(ticket_filter_from_query),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    items, total = await reports.list_tickets(store, principal, requested, limit=limit, offset=offset)
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@router.get("/{ticket_id}", response_model=TicketOut)
async def get_ticket(ticket_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.get_ticket(principal, ticket_id)


@router.patch("/{ticket_id}", response_model=TicketOut)
async def patch_ticket(ticket_id: int, payload: TicketUpdate, principal: PrincipalDep,
                       lifecycle: LifecycleDep):
    changes: Dict[str, Any] = payload.model_dump(exclude_unset=True)
    # team_id не передано -> не чіпаємо; передано null -> знімаємо команду
    return await lifecycle.update_ticket(principal, ticket_id, **changes)


# ---------- lifecycle ----------

@router.post("/{ticket_id}/assign", response_model=TicketOut)
async def assign_ticket(ticket_id: int, payload: AssignIn, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.assign_ticket(principal, ticket_id, payload.assignee_id)


@router.post("/{ticket_id}/unassign", response_model=TicketOut)
async def unassign_ticket(ticket_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.unassign_ticket(principal, ticket_id)


@router.post("/{ticket_id}/reassign", response_model=TicketOut)
async def reassign_ticket(ticket_id: int, payload: AssignIn, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.reassign_ticket(principal, ticket_id, payload.assignee_id)


@router.put("/{ticket_id}/status", response_model=TicketOut)
async def update_status(ticket_id: int, payload: StatusIn, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.update_status(principal, ticket_id, payload.status_id)


@router.post("/{ticket_id}/close", response_model=TicketOut)
async def close_ticket(ticket_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.close_ticket(principal, ticket_id)


@router.post("/{ticket_id}/reopen", response_model=TicketOut)
async def reopen_ticket(ticket_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.reopen_ticket(principal, ticket_id)


@router.put("/{ticket_id}/priority", response_model=TicketOut)
async def update_priority(ticket_id: int, payload: PriorityIn, principal: PrincipalDep,
                          lifecycle: LifecycleDep):
    return await lifecycle.update_priority(principal, ticket_id, payload.priority_id)


# ---------- attachments ----------

@router.post("/{ticket_id}/attachments", response_model=AttachmentOut, status_code=status.HTTP_201_CREATED)
async def add_attachment(ticket_id: int, payload: AttachmentIn, principal: PrincipalDep,
                         lifecycle: LifecycleDep):
    return await lifecycle.add_attachment(principal, ticket_id, **payload.model_dump())


@router.get("/{ticket_id}/attachments", response_model=list[AttachmentOut])
async def list_attachments(ticket_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.list_attachments(principal, ticket_id)


@router.delete("/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_attachment(attachment_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    await lifecycle.remove_attachment(principal, attachment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- feedback ----------

@router.post("/{ticket_id}/feedback", response_model=FeedbackOut, status_code=status.HTTP_201_CREATED)
async def submit_feedback(ticket_id: int, payload: FeedbackIn, principal: PrincipalDep,
                          lifecycle: LifecycleDep):
    return await lifecycle.submit_feedback(principal, ticket_id, payload.rating, payload.comment)


@router.get("/{ticket_id}/feedback", response_model=list[FeedbackOut])
async def list_feedback(ticket_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.list_feedback(principal, ticket_id)
