from fastapi import APIRouter, status

from ..deps import LifecycleDep, PrincipalDep
from app.schemas.comments import CommentCreate, CommentOut

router = APIRouter()

@router.post("/{ticket_id}/comments", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def add_comment(ticket_id: int, payload: CommentCreate, principal: PrincipalDep, lifecycle: LifecycleDep):
    # internal-коментарі — лише для співробітників, що бачать заявку (перевіряє lifecycle)
    return await lifecycle.add_comment(principal, ticket_id, payload.content, payload.is_internal)

@router.get("/{ticket_id}/comments", response_model=list[CommentOut])
async def list_comments(ticket_id: int, principal: PrincipalDep, lifecycle: LifecycleDep):
    return await lifecycle.list_comments(principal, ticket_id)
