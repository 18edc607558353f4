"""In-memory TicketStore + seeded reference data used across the test suite."""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from app.core.errors import StaleStateError, ValidationError
from app.services.filters import EffectiveFilter
from app.services.principal import Grant, Principal, RoleName
from app.services.records import (
    AttachmentRecord,
    CommentRecord,
    FeedbackRecord,
    RefRecord,
    TicketRecord,
    UserRecord,
)
from app.services.store import GROUPABLE_FIELDS, SavedTicket

OPEN, IN_PROGRESS, PENDING, RESOLVED, CLOSED, CANCELLED = 1, 2, 3, 4, 5, 6
LOW, MEDIUM, HIGH, CRITICAL, URGENT = 1, 2, 3, 4, 5
BUG, FEATURE, SUPPORT, ACCOUNT, GENERAL, HARDWARE, RETIRED_CATEGORY = 1, 2, 3, 4, 5, 6, 7
IT, CUSTOMER_SERVICE, DEVELOPMENT = 1, 2, 3
HW_TEAM, SW_TEAM, HELP_DESK, BACKEND = 1, 2, 3, 4

ADMIN = 1
IT_MANAGER = 2
SW_AGENT = 3          # Agent in IT / Software Support
HELPDESK_AGENT = 4    # Agent in Customer Service / Help Desk
END_USER = 5
IT_AGENT = 6          # Agent in IT with no team
NO_GRANTS = 7
INACTIVE_AGENT = 8
HW_AGENT = 9          # Agent in IT / Hardware Support
CS_MANAGER = 10

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0, step: timedelta = timedelta(minutes=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        self.now = self.now + self.step
        return self.now


class InMemoryTicketStore:
    """Keeps snapshots in dicts; save_ticket does the same version check as the SQL store."""

    def __init__(self) -> None:
        self.tickets: Dict[int, TicketRecord] = {}
        self.comments: List[CommentRecord] = []
        self.attachments: Dict[int, AttachmentRecord] = {}
        self.feedback: List[FeedbackRecord] = []
        self.categories: Dict[int, RefRecord] = {}
        self.priorities: Dict[int, RefRecord] = {}
        self.statuses: Dict[int, RefRecord] = {}
        self.departments: Dict[int, RefRecord] = {}
        self.teams: Dict[int, RefRecord] = {}
        self.users: Dict[int, UserRecord] = {}
        self.grants: Dict[int, List[Grant]] = {}
        self.logins: Dict[int, datetime] = {}
        self.before_save: Optional[Callable[[TicketRecord], Awaitable[None]]] = None
        self.saves = 0
        self._ticket_ids = itertools.count(1)
        self._child_ids = itertools.count(1)

    # --- tickets ---

    async def get_ticket(self, ticket_id: int) -> Optional[TicketRecord]:
        return self.tickets.get(ticket_id)

    def _children(self, ticket_id: int, children: Sequence) -> list:
        created = []
        for child in children:
            child = replace(child, id=next(self._child_ids), ticket_id=ticket_id)
            if isinstance(child, CommentRecord):
                self.comments.append(child)
            elif isinstance(child, AttachmentRecord):
                self.attachments[child.id] = child
            elif isinstance(child, FeedbackRecord):
                if any(f.ticket_id == ticket_id and f.user_id == child.user_id for f in self.feedback):
                    raise ValidationError("Feedback already submitted for this ticket")
                self.feedback.append(child)
            created.append(child)
        return created

    async def add_ticket(self, ticket: TicketRecord, children: Sequence = ()) -> SavedTicket:
        stored = ticket.evolve(id=next(self._ticket_ids), version=1)
        self.tickets[stored.id] = stored
        return SavedTicket(stored, self._children(stored.id, children))

    def put(self, ticket: TicketRecord) -> TicketRecord:
        """Direct insert, bypassing the lifecycle (arrange step of tests)."""
        stored = ticket.evolve(id=next(self._ticket_ids))
        self.tickets[stored.id] = stored
        return stored

    async def save_ticket(self, ticket: TicketRecord, expected_version: int,
                          children: Sequence = ()) -> SavedTicket:
        if self.before_save is not None:
            hook, self.before_save = self.before_save, None
            await hook(ticket)
        current = self.tickets.get(ticket.id)
        if current is None or current.version != expected_version:
            raise StaleStateError()
        created = self._children(ticket.id, children)
        stored = ticket.evolve(version=expected_version + 1)
        self.tickets[ticket.id] = stored
        self.saves += 1
        return SavedTicket(stored, created)

    async def query_tickets(self, flt: EffectiveFilter, limit: Optional[int] = None,
                            offset: int = 0) -> List[TicketRecord]:
        rows = sorted((t for t in self.tickets.values() if flt.matches(t)),
                      key=lambda t: (t.created_at, t.id), reverse=True)
        rows = rows[offset:]
        return rows[:limit] if limit is not None else rows

    async def count_tickets(self, flt: EffectiveFilter) -> int:
        return sum(1 for t in self.tickets.values() if flt.matches(t))

    async def count_grouped(self, flt: EffectiveFilter, field: str) -> Dict[Optional[int], int]:
        assert field in GROUPABLE_FIELDS
        out: Dict[Optional[int], int] = {}
        for t in self.tickets.values():
            if flt.matches(t):
                key = getattr(t, field)
                out[key] = out.get(key, 0) + 1
        return out

    # --- children ---

    async def list_comments(self, ticket_id: int, include_internal: bool) -> List[CommentRecord]:
        return [c for c in self.comments
                if c.ticket_id == ticket_id and (include_internal or not c.is_internal)]

    async def list_attachments(self, ticket_id: int) -> List[AttachmentRecord]:
        return [a for a in self.attachments.values() if a.ticket_id == ticket_id]

    async def get_attachment(self, attachment_id: int) -> Optional[AttachmentRecord]:
        return self.attachments.get(attachment_id)

    async def remove_attachment(self, attachment_id: int) -> None:
        self.attachments.pop(attachment_id, None)

    async def get_feedback(self, ticket_id: int, user_id: int) -> Optional[FeedbackRecord]:
        for f in self.feedback:
            if f.ticket_id == ticket_id and f.user_id == user_id:
                return f
        return None

    async def list_feedback(self, ticket_id: int) -> List[FeedbackRecord]:
        return [f for f in self.feedback if f.ticket_id == ticket_id]

    # --- reference ---

    async def get_category(self, category_id):
        return self.categories.get(category_id)

    async def get_priority(self, priority_id):
        return self.priorities.get(priority_id)

    async def get_status(self, status_id):
        return self.statuses.get(status_id)

    async def list_statuses(self):
        return sorted(self.statuses.values(), key=lambda r: r.id)

    async def list_categories(self):
        return sorted(self.categories.values(), key=lambda r: r.id)

    async def list_priorities(self):
        return sorted(self.priorities.values(), key=lambda r: r.id)

    async def get_department(self, department_id):
        return self.departments.get(department_id)

    async def list_departments(self):
        return sorted(self.departments.values(), key=lambda r: r.id)

    async def get_team(self, team_id):
        return self.teams.get(team_id)

    async def list_teams(self, department_id=None):
        return [t for t in sorted(self.teams.values(), key=lambda r: r.id)
                if department_id is None or t.department_id == department_id]

    # --- users ---

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_user_by_email(self, email):
        email = email.strip().lower()
        for u in self.users.values():
            if u.email.lower() == email:
                return u
        return None

    async def get_user_grants(self, user_id):
        return list(self.grants.get(user_id, []))

    async def touch_login(self, user_id, when):
        self.logins[user_id] = when
        self.users[user_id] = replace(self.users[user_id], last_login=when)

    # --- administration ---

    async def list_users(self, *, active_only=False, department_id=None, team_id=None):
        out = []
        for uid in sorted(self.users):
            user = self.users[uid]
            grants = self.grants.get(uid, [])
            if active_only and not user.is_active:
                continue
            if department_id is not None and not any(g.department_id == department_id for g in grants):
                continue
            if team_id is not None and not any(g.team_id == team_id for g in grants):
                continue
            out.append(user)
        return out

    async def add_user(self, *, email, password_hash, first_name="", last_name="", grants=()):
        user = UserRecord(id=max(self.users, default=0) + 1, email=email, first_name=first_name,
                          last_name=last_name, is_active=True, password_hash=password_hash)
        self.users[user.id] = user
        self.grants[user.id] = list(grants)
        return user

    async def save_user(self, user, grants=None):
        self.users[user.id] = user
        if grants is not None:
            self.grants[user.id] = list(grants)
        return user

    def _ref_table(self, kind) -> Dict[int, RefRecord]:
        return {"category": self.categories, "department": self.departments, "team": self.teams}[kind]

    async def add_reference(self, kind, *, name, description=None, department_id=None):
        table = self._ref_table(kind)
        row = RefRecord(id=max(table, default=0) + 1, name=name, description=description,
                        department_id=department_id if kind == "team" else None)
        table[row.id] = row
        return row

    async def save_reference(self, kind, row):
        self._ref_table(kind)[row.id] = row
        return row


def _refs(rows) -> Dict[int, RefRecord]:
    return {r.id: r for r in rows}


def seeded_store(password_hash: Optional[str] = None) -> InMemoryTicketStore:
    store = InMemoryTicketStore()
    store.statuses = _refs(RefRecord(id=i, name=n) for i, n in [
        (OPEN, "Open"), (IN_PROGRESS, "In Progress"), (PENDING, "Pending"),
        (RESOLVED, "Resolved"), (CLOSED, "Closed"), (CANCELLED, "Cancelled"),
    ])
    store.priorities = _refs(RefRecord(id=i, name=n) for i, n in [
        (LOW, "Low"), (MEDIUM, "Medium"), (HIGH, "High"), (CRITICAL, "Critical"), (URGENT, "Urgent"),
    ])
    store.categories = _refs([
        RefRecord(id=BUG, name="Bug Report"),
        RefRecord(id=FEATURE, name="Feature Request"),
        RefRecord(id=SUPPORT, name="Technical Support"),
        RefRecord(id=ACCOUNT, name="Account Issue"),
        RefRecord(id=GENERAL, name="General Inquiry"),
        RefRecord(id=HARDWARE, name="Hardware Issue"),
        RefRecord(id=RETIRED_CATEGORY, name="Retired", is_active=False),
    ])
    store.departments = _refs([
        RefRecord(id=IT, name="IT Support"),
        RefRecord(id=CUSTOMER_SERVICE, name="Customer Service"),
        RefRecord(id=DEVELOPMENT, name="Development"),
    ])
    store.teams = _refs([
        RefRecord(id=HW_TEAM, name="Hardware Support", department_id=IT),
        RefRecord(id=SW_TEAM, name="Software Support", department_id=IT),
        RefRecord(id=HELP_DESK, name="Help Desk", department_id=CUSTOMER_SERVICE),
        RefRecord(id=BACKEND, name="Backend Team", department_id=DEVELOPMENT),
    ])

    people = [
        (ADMIN, "admin@example.com", "System", "Admin", True, [Grant.build(RoleName.admin)]),
        (IT_MANAGER, "john.doe@example.com", "John", "Doe", True, [Grant.build(RoleName.manager, IT)]),
        (SW_AGENT, "jane.smith@example.com", "Jane", "Smith", True, [Grant.build(RoleName.agent, IT, SW_TEAM)]),
        (HELPDESK_AGENT, "mike.wilson@example.com", "Mike", "Wilson", True,
         [Grant.build(RoleName.agent, CUSTOMER_SERVICE, HELP_DESK)]),
        (END_USER, "sarah.johnson@example.com", "Sarah", "Johnson", True, [Grant.build(RoleName.user)]),
        (IT_AGENT, "dan.floor@example.com", "Dan", "Floor", True, [Grant.build(RoleName.agent, IT)]),
        (NO_GRANTS, "nora.none@example.com", "Nora", "None", True, []),
        (INACTIVE_AGENT, "ivan.idle@example.com", "Ivan", "Idle", False, [Grant.build(RoleName.agent, IT, SW_TEAM)]),
        (HW_AGENT, "hank.iron@example.com", "Hank", "Iron", True, [Grant.build(RoleName.agent, IT, HW_TEAM)]),
        (CS_MANAGER, "carla.desk@example.com", "Carla", "Desk", True,
         [Grant.build(RoleName.manager, CUSTOMER_SERVICE)]),
    ]
    for uid, email, first, last, active, grants in people:
        store.users[uid] = UserRecord(id=uid, email=email, first_name=first, last_name=last,
                                      is_active=active, password_hash=password_hash)
        store.grants[uid] = grants
    return store


def principal_for(store: InMemoryTicketStore, user_id: int, *, active: bool = True) -> Principal:
    user = store.users.get(user_id)
    return Principal(
        user_id=user_id,
        is_active=active,
        grants=frozenset(store.grants.get(user_id, [])),
        email=user.email if user else None,
    )


def make_ticket(store: InMemoryTicketStore, *, status_id: int = OPEN, department_id: int = IT,
                team_id: Optional[int] = SW_TEAM, assigned_to_id: Optional[int] = None,
                created_by_id: int = END_USER, priority_id: int = MEDIUM, category_id: int = SUPPORT,
                created_at: datetime = T0, title: str = "Printer is on fire") -> TicketRecord:
    closed_at = created_at if status_id in (CLOSED, CANCELLED) else None
    return store.put(TicketRecord(
        id=None,
        title=title,
        description="Smoke everywhere",
        category_id=category_id,
        priority_id=priority_id,
        status_id=status_id,
        created_by_id=created_by_id,
        department_id=department_id,
        assigned_to_id=assigned_to_id,
        team_id=team_id,
        created_at=created_at,
        updated_at=created_at,
        closed_at=closed_at,
    ))
