"""
Збирання фільтра для списків/аналітики заявок.

Запитані фільтри перетинаються з областю видимості principal-а: параметри
запиту можуть лише звузити вибірку. Значення поза областю відкидаються
(без помилки); якщо після цього фільтр вимірювання порожній — результат
порожній, а не "без фільтра".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Iterable, Optional

from app.core.errors import ValidationError
from app.services.policy import Action, ScopeDecision, require
from app.services.principal import Principal
from app.services.records import TicketRecord


def _ids(values: Optional[Iterable[int]]) -> Optional[FrozenSet[int]]:
    return None if values is None else frozenset(int(v) for v in values)


@dataclass(frozen=True)
class TicketFilterIn:
    """Фільтри, які прийшли від клієнта. None = вимір не фільтрується."""

    status_ids: Optional[FrozenSet[int]] = None
    priority_ids: Optional[FrozenSet[int]] = None
    category_ids: Optional[FrozenSet[int]] = None
    department_ids: Optional[FrozenSet[int]] = None
    team_ids: Optional[FrozenSet[int]] = None
    assigned_to_id: Optional[int] = None
    created_by_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active_only: bool = False

    @classmethod
    def of(cls, **kwargs) -> "TicketFilterIn":
        for key in ("status_ids", "priority_ids", "category_ids", "department_ids", "team_ids"):
            if key in kwargs:
                kwargs[key] = _ids(kwargs[key])
        return cls(**kwargs)


@dataclass(frozen=True)
class EffectiveFilter:
    scope: ScopeDecision
    status_ids: Optional[FrozenSet[int]] = None
    priority_ids: Optional[FrozenSet[int]] = None
    category_ids: Optional[FrozenSet[int]] = None
    department_ids: Optional[FrozenSet[int]] = None
    team_ids: Optional[FrozenSet[int]] = None
    assigned_to_id: Optional[int] = None
    created_by_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active_only: bool = False
    # перетин виявився порожнім — сховище навіть не питаємо
    empty: bool = False
    dropped: FrozenSet[str] = field(default_factory=frozenset)

    def matches(self, ticket: TicketRecord) -> bool:
        if self.empty or not self.scope.covers(ticket):
            return False
        if self.status_ids is not None and ticket.status_id not in self.status_ids:
            return False
        if self.priority_ids is not None and ticket.priority_id not in self.priority_ids:
            return False
        if self.category_ids is not None and ticket.category_id not in self.category_ids:
            return False
        if self.department_ids is not None and ticket.department_id not in self.department_ids:
            return False
        if self.team_ids is not None and ticket.team_id not in self.team_ids:
            return False
        if self.assigned_to_id is not None and ticket.assigned_to_id != self.assigned_to_id:
            return False
        if self.created_by_id is not None and ticket.created_by_id != self.created_by_id:
            return False
        # межі дат — включно з обох боків
        if self.start_date is not None and (ticket.created_at is None or ticket.created_at < self.start_date):
            return False
        if self.end_date is not None and (ticket.created_at is None or ticket.created_at > self.end_date):
            return False
        if self.active_only and ticket.closed_at is not None:
            return False
        return True


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # дати без tz вважаємо UTC, як і все в базі
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _has_staff_scope(scope: ScopeDecision) -> bool:
    return scope.unrestricted or bool(scope.department_ids) or bool(scope.team_scopes)


def build_filter(principal: Principal, requested: Optional[TicketFilterIn] = None) -> EffectiveFilter:
    requested = requested or TicketFilterIn()
    start_date = _as_utc(requested.start_date)
    end_date = _as_utc(requested.end_date)

    if start_date is not None and end_date is not None and start_date > end_date:
        raise ValidationError("startDate must be less than or equal to endDate")

    scope = require(principal, Action.read)
    dropped = set()
    empty = False

    department_ids = requested.department_ids
    if department_ids is not None and not scope.unrestricted:
        visible = scope.visible_department_ids
        kept = department_ids & visible
        if kept != department_ids:
            dropped.add("department_ids")
        department_ids = kept
        empty = empty or not kept

    team_ids = requested.team_ids
    if team_ids is not None and not scope.unrestricted and not scope.department_ids:
        # без відділу цілком видно лише команди з team_scopes
        kept = team_ids & scope.visible_team_ids
        if kept != team_ids:
            dropped.add("team_ids")
        team_ids = kept
        empty = empty or not kept

    created_by_id = requested.created_by_id
    if created_by_id is not None and not _has_staff_scope(scope) and created_by_id != principal.user_id:
        # self-only principal не може дивитись чужі заявки
        dropped.add("created_by_id")
        empty = True

    return EffectiveFilter(
        scope=scope,
        status_ids=requested.status_ids,
        priority_ids=requested.priority_ids,
        category_ids=requested.category_ids,
        department_ids=department_ids,
        team_ids=team_ids,
        assigned_to_id=requested.assigned_to_id,
        created_by_id=created_by_id,
        start_date=start_date,
        end_date=end_date,
        active_only=requested.active_only,
        empty=empty,
        dropped=frozenset(dropped),
    )
