# app/schemas/auth.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr


class LoginIn(BaseModel):
    username: EmailStr
    password: str
    # чи хоче користувач подовжену сесію
    remember_me: bool | None = None


class GrantOut(BaseModel):
    role: str
    department_id: Optional[int] = None
    team_id: Optional[int] = None


class UserOut(BaseModel):
    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    full_name: str
    is_active: bool
    last_login: Optional[datetime] = None
    grants: List[GrantOut] = []


class PrincipalOut(BaseModel):
    user_id: int
    email: Optional[str] = None
    grants: List[GrantOut] = []


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut
