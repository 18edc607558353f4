"""
Знімки (snapshots) сутностей, з якими працює ядро.

Ядро не тримає ORM-об'єкти: сховище віддає копії, а запис іде через
compare-and-set по `version`. Так гонка двох запитів ловиться на записі.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class TicketRecord:
    id: Optional[int]
    title: str
    description: str
    category_id: int
    priority_id: int
    status_id: int
    created_by_id: int
    department_id: int
    assigned_to_id: Optional[int] = None
    team_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    version: int = 1

    def evolve(self, **changes) -> "TicketRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class RefRecord:
    """Рядок довідника: категорія / пріоритет / статус / відділ / команда."""

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool = True
    department_id: Optional[int] = None  # лише для команд
    color: Optional[str] = None
    icon: Optional[str] = None


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    password_hash: Optional[str] = None
    last_login: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email


@dataclass(frozen=True)
class CommentRecord:
    id: Optional[int]
    ticket_id: int
    user_id: int
    content: str
    is_internal: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AttachmentRecord:
    id: Optional[int]
    ticket_id: int
    user_id: int
    file_name: str
    file_path: str
    content_type: str
    file_size: int
    uploaded_at: Optional[datetime] = None


@dataclass(frozen=True)
class FeedbackRecord:
    id: Optional[int]
    ticket_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
