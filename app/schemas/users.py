# app/schemas/users.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from app.schemas.auth import UserOut


class GrantIn(BaseModel):
    role: str
    department_id: Optional[int] = None
    team_id: Optional[int] = None


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    grants: List[GrantIn] = []


class UserUpdate(BaseModel):
    # None = не змінювати; grants: [] знімає всі права
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None
    password: Optional[str] = None
    grants: Optional[List[GrantIn]] = None


class UsersPage(BaseModel):
    items: List[UserOut]
    total: int
    page: int
    limit: int
