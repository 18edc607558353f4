"""
Scope policy: хто що може робити з якою заявкою і які заявки бачить.

Політика — таблиця правил, по одному на тип grant-а. Рішення для principal-а
з кількома grant-ами — об'єднання того, що дає кожен grant окремо
(найширший застосовний grant виграє). Self-правило діє для всіх.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Tuple

from app.core.errors import AuthenticationError, ForbiddenError
from app.services.principal import Grant, Principal, RoleName, STAFF_ROLES
from app.services.records import TicketRecord


class Action(str, enum.Enum):
    read = "read"
    create = "create"
    comment = "comment"
    update = "update"
    assign = "assign"
    status_change = "status_change"
    close = "close"
    reopen = "reopen"
    priority_change = "priority_change"


# дії, які змінюють заявку (для Agent без команди — лише на своїх заявках)
TICKET_MUTATIONS = frozenset({
    Action.comment,
    Action.update,
    Action.assign,
    Action.status_change,
    Action.close,
    Action.reopen,
    Action.priority_change,
})

STAFF_ACTIONS = frozenset({Action.read}) | TICKET_MUTATIONS
SELF_ACTIONS = frozenset({Action.read, Action.comment})


class _All:
    """Sentinel: видимість без обмежень."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ALL"


ALL = _All()


@dataclass(frozen=True)
class ScopeDecision:
    allowed: bool
    unrestricted: bool = False
    # відділи, видимі цілком (Manager, Agent без команди)
    department_ids: FrozenSet[int] = field(default_factory=frozenset)
    # (відділ, команда): заявки цієї команди + заявки відділу без команди
    team_scopes: FrozenSet[Tuple[int, int]] = field(default_factory=frozenset)
    # заявки, створені цими користувачами
    user_ids: FrozenSet[int] = field(default_factory=frozenset)
    # Admin або Manager відділу заявки: cancel з будь-якого стану,
    # close не з Resolved, призначення інших людей
    can_override: bool = False

    @property
    def visible_department_ids(self):
        if self.unrestricted:
            return ALL
        return self.department_ids | frozenset(d for d, _ in self.team_scopes)

    @property
    def visible_team_ids(self):
        if self.unrestricted:
            return ALL
        return frozenset(t for _, t in self.team_scopes)

    @property
    def visible_user_ids(self):
        if self.unrestricted:
            return ALL
        return self.user_ids

    def covers(self, ticket: TicketRecord) -> bool:
        """Чи потрапляє заявка в область видимості."""
        if self.unrestricted:
            return True
        if ticket.department_id in self.department_ids:
            return True
        for dept_id, team_id in self.team_scopes:
            if ticket.department_id == dept_id and ticket.team_id in (None, team_id):
                return True
        return ticket.created_by_id in self.user_ids


# ==== Правила (по одному на тип grant-а) ====


class _Rule:
    role: Optional[RoleName] = None

    def matches(self, grant: Grant) -> bool:
        return grant.role is self.role

    def permits(self, grant: Grant, principal: Principal, action: Action,
                ticket: Optional[TicketRecord]) -> bool:
        raise NotImplementedError

    def scope(self, grant: Grant, principal: Principal) -> ScopeDecision:
        raise NotImplementedError

    def overrides(self, grant: Grant, ticket: Optional[TicketRecord]) -> bool:
        return False


class AdminRule(_Rule):
    role = RoleName.admin

    def permits(self, grant, principal, action, ticket):
        return True

    def scope(self, grant, principal):
        return ScopeDecision(allowed=True, unrestricted=True)

    def overrides(self, grant, ticket):
        return True


class ManagerRule(_Rule):
    role = RoleName.manager

    def permits(self, grant, principal, action, ticket):
        if action is Action.create:
            return True
        if action not in STAFF_ACTIONS:
            return False
        return ticket is None or ticket.department_id == grant.department_id

    def scope(self, grant, principal):
        return ScopeDecision(allowed=True, department_ids=frozenset({grant.department_id}))

    def overrides(self, grant, ticket):
        return ticket is None or ticket.department_id == grant.department_id


class TeamAgentRule(_Rule):
    role = RoleName.agent

    def matches(self, grant):
        return grant.role is RoleName.agent and grant.team_id is not None

    def permits(self, grant, principal, action, ticket):
        if action is Action.create:
            return True
        if action not in STAFF_ACTIONS:
            return False
        if ticket is None:
            return True
        return (ticket.department_id == grant.department_id
                and ticket.team_id in (None, grant.team_id))

    def scope(self, grant, principal):
        return ScopeDecision(
            allowed=True,
            team_scopes=frozenset({(grant.department_id, grant.team_id)}),
        )


class DepartmentAgentRule(_Rule):
    role = RoleName.agent

    def matches(self, grant):
        return grant.role is RoleName.agent and grant.team_id is None

    def permits(self, grant, principal, action, ticket):
        if action is Action.create:
            return True
        if action not in STAFF_ACTIONS:
            return False
        if ticket is None:
            return True
        if ticket.department_id != grant.department_id:
            return False
        if action in TICKET_MUTATIONS:
            return ticket.assigned_to_id == principal.user_id
        return True

    def scope(self, grant, principal):
        return ScopeDecision(allowed=True, department_ids=frozenset({grant.department_id}))


class UserRule(_Rule):
    role = RoleName.user

    def permits(self, grant, principal, action, ticket):
        return action is Action.create


class SelfRule:
    """Неявне правило для будь-якого автентифікованого: свої заявки."""

    def permits(self, principal: Principal, action: Action, ticket: Optional[TicketRecord]) -> bool:
        if action not in SELF_ACTIONS:
            return False
        return ticket is None or ticket.created_by_id == principal.user_id

    def scope(self, principal: Principal) -> ScopeDecision:
        return ScopeDecision(allowed=True, user_ids=frozenset({principal.user_id}))


POLICY_TABLE: Tuple[_Rule, ...] = (
    AdminRule(),
    ManagerRule(),
    TeamAgentRule(),
    DepartmentAgentRule(),
    UserRule(),
)
SELF_RULE = SelfRule()


def rule_for(grant: Grant) -> _Rule:
    for rule in POLICY_TABLE:
        if rule.matches(grant):
            return rule
    raise LookupError(f"no rule for grant {grant!r}")


def _union(decisions: Iterable[ScopeDecision]) -> ScopeDecision:
    unrestricted = False
    depts: set = set()
    teams: set = set()
    users: set = set()
    for d in decisions:
        unrestricted = unrestricted or d.unrestricted
        depts |= d.department_ids
        teams |= d.team_scopes
        users |= d.user_ids
    return ScopeDecision(
        allowed=True,
        unrestricted=unrestricted,
        department_ids=frozenset(depts),
        team_scopes=frozenset(teams),
        user_ids=frozenset(users),
    )


def authorize(principal: Principal, action: Action,
              ticket: Optional[TicketRecord] = None) -> ScopeDecision:
    """
    Рішення allow/deny + область видимості.
    Без ticket: чи є дія в принципі доступною (для списків/створення).
    """
    if not principal.is_active:
        return ScopeDecision(allowed=False)

    pairs = [(rule_for(g), g) for g in principal.grants]

    allowed = SELF_RULE.permits(principal, action, ticket)
    if action is Action.create:
        # створювати можна з будь-яким grant-ом, але не без них
        allowed = False
    for rule, grant in pairs:
        if allowed:
            break
        allowed = rule.permits(grant, principal, action, ticket)

    scope = _union([SELF_RULE.scope(principal)] + [
        rule.scope(grant, principal) for rule, grant in pairs if not isinstance(rule, UserRule)
    ])
    can_override = any(rule.overrides(grant, ticket) for rule, grant in pairs)

    return ScopeDecision(
        allowed=allowed,
        unrestricted=scope.unrestricted,
        department_ids=scope.department_ids,
        team_scopes=scope.team_scopes,
        user_ids=scope.user_ids,
        can_override=can_override,
    )


def require(principal: Principal, action: Action,
            ticket: Optional[TicketRecord] = None) -> ScopeDecision:
    """Як authorize, але з винятком замість allowed=False."""
    if not principal.is_active:
        raise AuthenticationError("Account is disabled")
    decision = authorize(principal, action, ticket)
    if not decision.allowed:
        if not principal.grants:
            raise ForbiddenError("No role granted")
        what = action.value.replace("_", " ")
        raise ForbiddenError(f"Not allowed to {what} this ticket" if ticket is not None
                             else f"Not allowed to {what}")
    return decision


def is_staff_for(principal: Principal, ticket: TicketRecord) -> bool:
    """Чи бачить principal заявку як співробітник (а не лише як її автор)."""
    if not principal.is_active:
        return False
    for grant in principal.grants:
        rule = rule_for(grant)
        if isinstance(rule, UserRule):
            continue
        if rule.permits(grant, principal, Action.read, ticket):
            return True
    return False


def is_eligible_assignee(grants: Iterable[Grant], ticket: TicketRecord) -> bool:
    """
    Чи може користувач з цими (актуальними, з БД) grant-ами бути виконавцем:
    Admin — будь-де; Manager — свій відділ; Agent — свій відділ і
    (команда заявки, або заявка без команди, або agent без команди).
    """
    for g in grants:
        if g.role not in STAFF_ROLES:
            continue
        if g.role is RoleName.admin:
            return True
        if g.department_id != ticket.department_id:
            continue
        if g.role is RoleName.manager:
            return True
        if g.team_id is None or ticket.team_id is None or g.team_id == ticket.team_id:
            return True
    return False
