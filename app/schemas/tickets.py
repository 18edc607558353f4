# app/schemas/tickets.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TicketCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=4000)
    category_id: int
    priority_id: int
    department_id: int
    team_id: Optional[int] = None
    assigned_to_id: Optional[int] = None


class TicketUpdate(BaseModel):
    # усі поля опційні; team_id: null означає "зняти команду"
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=4000)
    category_id: Optional[int] = None
    department_id: Optional[int] = None
    team_id: Optional[int] = None


class AssignIn(BaseModel):
    assignee_id: int


class StatusIn(BaseModel):
    status_id: int


class PriorityIn(BaseModel):
    priority_id: int


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    category_id: int
    priority_id: int
    status_id: int
    created_by_id: int
    assigned_to_id: Optional[int] = None
    department_id: int
    team_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    version: int


class TicketPage(BaseModel):
    items: List[TicketOut]
    total: int
    limit: Optional[int] = None
    offset: int = 0


class AttachmentIn(BaseModel):
    # лише метадані: сам файл лежить у зовнішньому сховищі
    file_name: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1, max_length=500)
    content_type: str = Field(default="application/octet-stream", max_length=100)
    file_size: int


class AttachmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    user_id: int
    file_name: str
    file_path: str
    content_type: str
    file_size: int
    uploaded_at: datetime


class FeedbackIn(BaseModel):
    rating: int
    comment: Optional[str] = Field(default=None, max_length=1000)


class FeedbackOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime
