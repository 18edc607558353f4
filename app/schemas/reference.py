# app/schemas/reference.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool = True
    color: Optional[str] = None
    icon: Optional[str] = None


class TeamOut(RefOut):
    department_id: int


class RefCreate(BaseModel):
    name: str = Field(..., max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class TeamCreate(RefCreate):
    department_id: int


class RefUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None
