"""
Ticket lifecycle (бізнес-правила для заявок)

Тут живе state machine і всі операції, які змінюють заявку. Кожна операція:
  1) перечитує поточний стан зі сховища;
  2) питає політику (policy.require);
  3) перевіряє довідники (NotFoundError з назвою сутності);
  4) перевіряє перехід / інваріанти (ValidationError);
  5) пише одним compare-and-set разом із системним коментарем;
  6) після commit-у кладе подію в чергу (best-effort).
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from app.core.errors import AuthenticationError, ForbiddenError, NotFoundError, ValidationError
from app.services.notifications import enqueue
from app.services.policy import Action, ScopeDecision, is_eligible_assignee, is_staff_for, require
from app.services.principal import Principal
from app.services.records import (
    AttachmentRecord,
    CommentRecord,
    FeedbackRecord,
    RefRecord,
    TicketRecord,
    UserRecord,
)
from app.services.store import SavedTicket, TicketStore

log = logging.getLogger(__name__)

Notifier = Callable[[str, Mapping[str, Any]], Any]

MIN_RATING = 1
MAX_RATING = 5


def _norm(name: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


class StatusName(str, enum.Enum):
    """Канонічні стани. Ідентичність — за назвою рядка в ticket_statuses, не за id."""

    open = "Open"
    in_progress = "In Progress"
    pending = "Pending"
    resolved = "Resolved"
    closed = "Closed"
    cancelled = "Cancelled"

    @classmethod
    def of(cls, name: Optional[str]) -> Optional["StatusName"]:
        key = _norm(name)
        if key == "canceled":
            key = "cancelled"
        for member in cls:
            if _norm(member.value) == key:
                return member
        return None


TERMINAL = frozenset({StatusName.closed, StatusName.cancelled})

# Допустимі переходи (state machine).
# Closed -> Open лише через reopen_ticket; Cancelled — кінцевий стан.
# Admin / Manager відділу додатково можуть скасувати заявку з будь-якого стану (див. can_transition).
ALLOWED_TRANSITIONS: Dict[StatusName, Set[StatusName]] = {
    StatusName.open: {StatusName.in_progress, StatusName.cancelled},
    StatusName.in_progress: {StatusName.pending, StatusName.resolved, StatusName.cancelled},
    StatusName.pending: {StatusName.in_progress},
    StatusName.resolved: {StatusName.closed, StatusName.open},
    StatusName.closed: set(),
    StatusName.cancelled: set(),
}

REOPENABLE = frozenset({StatusName.resolved, StatusName.closed})
FEEDBACK_STATES = frozenset({StatusName.resolved, StatusName.closed})


def can_transition(src: StatusName, dst: StatusName, *, override: bool = False) -> bool:
    """
    Перевіряє, чи дозволено перейти зі стану src до dst через update_status.
    override (Admin / Manager відділу) додає скасування з будь-якого стану, зокрема з Closed
    (closed_at тоді ставиться заново). Cancelled -> Cancelled переходом не є.
    """
    if dst in ALLOWED_TRANSITIONS.get(src, set()):
        return True
    return override and dst is StatusName.cancelled and src is not StatusName.cancelled


def can_close(src: StatusName, *, override: bool = False) -> bool:
    if src is StatusName.resolved:
        return True
    return override and src not in TERMINAL


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _StatusBook:
    """Статуси, прочитані на початку операції (без кешу між запитами)."""

    def __init__(self, rows: List[RefRecord]) -> None:
        self.by_id = {r.id: r for r in rows}
        self.by_state: Dict[StatusName, RefRecord] = {}
        for r in rows:
            state = StatusName.of(r.name)
            if state is not None and state not in self.by_state:
                self.by_state[state] = r

    def state_of(self, status_id: int) -> StatusName:
        row = self.by_id.get(status_id)
        if row is None:
            raise NotFoundError("Status", status_id)
        state = StatusName.of(row.name)
        if state is None:
            raise ValidationError(f"Status '{row.name}' is not part of the ticket lifecycle")
        return state

    def row(self, state: StatusName) -> RefRecord:
        row = self.by_state.get(state)
        if row is None:
            raise ValidationError(f"Status '{state.value}' is not configured")
        return row


_UNSET: Any = object()


class TicketLifecycle:
    def __init__(
        self,
        store: TicketStore,
        notify: Optional[Notifier] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        recheck_grants: bool = False,
    ) -> None:
        self.store = store
        self.notify = notify or enqueue
        self._clock = clock or _utcnow
        self.recheck_grants = recheck_grants

    # ---------- допоміжне ----------

    async def _actor(self, principal: Principal) -> Principal:
        # claims токена довіряємо до exp; за налаштуванням — перечитуємо з БД
        if not self.recheck_grants:
            return principal
        user = await self.store.get_user(principal.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("Account is disabled")
        grants = await self.store.get_user_grants(principal.user_id)
        return replace(principal, is_active=True, grants=frozenset(grants))

    async def _load(self, ticket_id: int) -> TicketRecord:
        ticket = await self.store.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    async def _statuses(self) -> _StatusBook:
        return _StatusBook(await self.store.list_statuses())

    async def _active_category(self, category_id: int) -> RefRecord:
        row = await self.store.get_category(category_id)
        if row is None:
            raise NotFoundError("Category", category_id)
        if not row.is_active:
            raise ValidationError("Category is not active")
        return row

    async def _priority(self, priority_id: int) -> RefRecord:
        row = await self.store.get_priority(priority_id)
        if row is None:
            raise NotFoundError("Priority", priority_id)
        return row

    async def _active_department(self, department_id: int) -> RefRecord:
        row = await self.store.get_department(department_id)
        if row is None:
            raise NotFoundError("Department", department_id)
        if not row.is_active:
            raise ValidationError("Department is not active")
        return row

    async def _team_in(self, team_id: int, department_id: int, *, require_active: bool = True) -> RefRecord:
        row = await self.store.get_team(team_id)
        if row is None:
            raise NotFoundError("Team", team_id)
        if row.department_id != department_id:
            raise ValidationError("Team does not belong to the ticket's department")
        if require_active and not row.is_active:
            raise ValidationError("Team is not active")
        return row

    async def _check_refs(self, ticket: TicketRecord) -> None:
        """Повторна перевірка всіх FK заявки, яку збираємось записати."""
        if await self.store.get_category(ticket.category_id) is None:
            raise NotFoundError("Category", ticket.category_id)
        await self._priority(ticket.priority_id)
        if await self.store.get_status(ticket.status_id) is None:
            raise NotFoundError("Status", ticket.status_id)
        if await self.store.get_department(ticket.department_id) is None:
            raise NotFoundError("Department", ticket.department_id)
        if ticket.team_id is not None:
            await self._team_in(ticket.team_id, ticket.department_id, require_active=False)
        if ticket.assigned_to_id is not None and await self.store.get_user(ticket.assigned_to_id) is None:
            raise NotFoundError("User", ticket.assigned_to_id)

    async def _assignee(self, ticket: TicketRecord, assignee_id: int) -> UserRecord:
        user = await self.store.get_user(assignee_id)
        if user is None:
            raise NotFoundError("User", assignee_id)
        if not user.is_active:
            raise ValidationError("Assignee account is disabled")
        # права виконавця — завжди актуальні, з БД, а не з чийогось токена
        grants = await self.store.get_user_grants(assignee_id)
        if not is_eligible_assignee(grants, ticket):
            raise ValidationError("User is not eligible to work on this ticket")
        return user

    @staticmethod
    def _only_self_unless_override(actor: Principal, decision: ScopeDecision, user_id: int, verb: str) -> None:
        if user_id != actor.user_id and not decision.can_override:
            raise ForbiddenError(f"Only managers can {verb} other users")

    async def _touch(self, ticket: TicketRecord) -> TicketRecord:
        updated = ticket.evolve(updated_at=self._clock())
        await self._check_refs(updated)
        saved = await self.store.save_ticket(updated, ticket.version)
        return saved.ticket

    def _system_comment(self, ticket_id: int, actor_id: int, text: str, now: datetime) -> CommentRecord:
        return CommentRecord(id=None, ticket_id=ticket_id, user_id=actor_id, content=text,
                             is_internal=True, created_at=now)

    def _emit(self, event_type: str, payload: Mapping[str, Any]) -> None:
        # запис уже закомічено: подія best-effort
        try:
            self.notify(event_type, payload)
        except Exception:
            log.exception("notify_failed", extra={"event_type": event_type})

    # ---------- створення / читання ----------

    async def create_ticket(
        self,
        principal: Principal,
        *,
        title: str,
        description: str,
        category_id: int,
        priority_id: int,
        department_id: int,
        team_id: Optional[int] = None,
        assigned_to_id: Optional[int] = None,
    ) -> TicketRecord:
        actor = await self._actor(principal)
        require(actor, Action.create)

        title = (title or "").strip()
        description = (description or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if not description:
            raise ValidationError("Description is required")

        await self._active_department(department_id)
        if team_id is not None:
            await self._team_in(team_id, department_id)
        await self._active_category(category_id)
        await self._priority(priority_id)
        statuses = await self._statuses()

        now = self._clock()
        draft = TicketRecord(
            id=None,
            title=title,
            description=description,
            category_id=category_id,
            priority_id=priority_id,
            status_id=statuses.row(StatusName.open).id,
            created_by_id=actor.user_id,
            department_id=department_id,
            team_id=team_id,
            created_at=now,
            updated_at=now,
        )

        if assigned_to_id is not None:
            decision = require(actor, Action.assign, draft)
            self._only_self_unless_override(actor, decision, assigned_to_id, "assign tickets to")
            await self._assignee(draft, assigned_to_id)
            draft = draft.evolve(assigned_to_id=assigned_to_id)

        saved = await self.store.add_ticket(draft)
        ticket = saved.ticket
        log.info("ticket_created", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                          "department_id": department_id})
        self._emit("ticket_created", {
            "ticket_id": ticket.id,
            "actor_id": actor.user_id,
            "title": ticket.title,
            "department_id": ticket.department_id,
            "team_id": ticket.team_id,
            "assigned_to_id": ticket.assigned_to_id,
        })
        return ticket

    async def get_ticket(self, principal: Principal, ticket_id: int) -> TicketRecord:
        ticket = await self._load(ticket_id)
        require(principal, Action.read, ticket)
        return ticket

    async def update_ticket(
        self,
        principal: Principal,
        ticket_id: int,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        category_id: Optional[int] = None,
        department_id: Optional[int] = None,
        team_id: Any = _UNSET,
    ) -> TicketRecord:
        """Редагування полів заявки. Відділ незмінний; команда — лише в межах відділу."""
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        require(actor, Action.update, ticket)

        statuses = await self._statuses()
        if statuses.state_of(ticket.status_id) in TERMINAL:
            raise ValidationError("Closed or cancelled tickets cannot be edited")

        changes: Dict[str, Any] = {}
        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationError("Title is required")
            if title != ticket.title:
                changes["title"] = title
        if description is not None:
            description = description.strip()
            if not description:
                raise ValidationError("Description is required")
            if description != ticket.description:
                changes["description"] = description
        if department_id is not None and department_id != ticket.department_id:
            raise ValidationError("Department of a ticket cannot be changed")
        if category_id is not None and category_id != ticket.category_id:
            await self._active_category(category_id)
            changes["category_id"] = category_id
        if team_id is not _UNSET and team_id != ticket.team_id:
            if team_id is not None:
                await self._team_in(team_id, ticket.department_id)
            changes["team_id"] = team_id

        if not changes:
            # нічого не змінилось: лише updated_at, без коментаря та події
            return await self._touch(ticket)

        updated = ticket.evolve(updated_at=self._clock(), **changes)
        # не можна винести заявку за межі власної області
        require(actor, Action.update, updated)
        if "team_id" in changes and updated.assigned_to_id is not None:
            await self._assignee(updated, updated.assigned_to_id)
        await self._check_refs(updated)

        saved = await self.store.save_ticket(updated, ticket.version)
        log.info("ticket_updated", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                          "fields": sorted(changes)})
        self._emit("ticket_updated", {"ticket_id": ticket.id, "actor_id": actor.user_id,
                                      "fields": sorted(changes)})
        return saved.ticket

    # ---------- призначення ----------

    async def _write_assignment(self, actor: Principal, ticket: TicketRecord, statuses: _StatusBook,
                                assignee_id: int) -> SavedTicket:
        state = statuses.state_of(ticket.status_id)
        if state in TERMINAL:
            raise ValidationError("Cannot assign a closed or cancelled ticket")
        assignee = await self._assignee(ticket, assignee_id)

        now = self._clock()
        changes: Dict[str, Any] = {"assigned_to_id": assignee_id, "updated_at": now}
        if state is StatusName.open:
            changes["status_id"] = statuses.row(StatusName.in_progress).id
        updated = ticket.evolve(**changes)
        await self._check_refs(updated)

        previous = ticket.assigned_to_id
        if previous is not None and previous != assignee_id:
            text = f"Ticket reassigned to {assignee.full_name}"
        else:
            text = f"Ticket assigned to {assignee.full_name}"
        comment = self._system_comment(ticket.id, actor.user_id, text, now)
        # одна compare-and-set операція: проміжного "без виконавця" не буває
        return await self.store.save_ticket(updated, ticket.version, [comment])

    async def assign_ticket(self, principal: Principal, ticket_id: int, assignee_id: int) -> TicketRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        decision = require(actor, Action.assign, ticket)
        self._only_self_unless_override(actor, decision, assignee_id, "assign tickets to")
        statuses = await self._statuses()

        saved = await self._write_assignment(actor, ticket, statuses, assignee_id)
        self._after_assignment(actor, ticket, saved.ticket)
        return saved.ticket

    async def reassign_ticket(self, principal: Principal, ticket_id: int, assignee_id: int) -> TicketRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        decision = require(actor, Action.assign, ticket)
        self._only_self_unless_override(actor, decision, assignee_id, "assign tickets to")
        # перепризначення = зняття + призначення: забрати чужу заявку може лише override
        if ticket.assigned_to_id is not None:
            self._only_self_unless_override(actor, decision, ticket.assigned_to_id, "unassign")
        if ticket.assigned_to_id == assignee_id:
            raise ValidationError("Ticket is already assigned to this user")
        statuses = await self._statuses()

        saved = await self._write_assignment(actor, ticket, statuses, assignee_id)
        self._after_assignment(actor, ticket, saved.ticket)
        return saved.ticket

    def _after_assignment(self, actor: Principal, before: TicketRecord, after: TicketRecord) -> None:
        log.info("ticket_assigned", extra={
            "ticket_id": after.id,
            "actor_id": actor.user_id,
            "assigned_to_id": after.assigned_to_id,
            "previous_assignee_id": before.assigned_to_id,
            "from_status_id": before.status_id,
            "to_status_id": after.status_id,
        })
        self._emit("ticket_assigned", {
            "ticket_id": after.id,
            "actor_id": actor.user_id,
            "assigned_to_id": after.assigned_to_id,
            "previous_assignee_id": before.assigned_to_id,
        })
        if before.status_id != after.status_id:
            self._emit("status_changed", {
                "ticket_id": after.id,
                "actor_id": actor.user_id,
                "from_status_id": before.status_id,
                "to_status_id": after.status_id,
            })

    async def unassign_ticket(self, principal: Principal, ticket_id: int) -> TicketRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        decision = require(actor, Action.assign, ticket)
        if ticket.assigned_to_id is None:
            raise ValidationError("Ticket is not assigned")
        self._only_self_unless_override(actor, decision, ticket.assigned_to_id, "unassign")

        statuses = await self._statuses()
        if statuses.state_of(ticket.status_id) in TERMINAL:
            raise ValidationError("Cannot unassign a closed or cancelled ticket")

        now = self._clock()
        updated = ticket.evolve(assigned_to_id=None, updated_at=now)
        await self._check_refs(updated)
        comment = self._system_comment(ticket.id, actor.user_id, "Ticket unassigned", now)
        saved = await self.store.save_ticket(updated, ticket.version, [comment])

        log.info("ticket_unassigned", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                             "previous_assignee_id": ticket.assigned_to_id})
        self._emit("ticket_unassigned", {"ticket_id": ticket.id, "actor_id": actor.user_id,
                                         "previous_assignee_id": ticket.assigned_to_id})
        return saved.ticket

    # ---------- статуси ----------

    async def _write_status(self, actor: Principal, ticket: TicketRecord, target: RefRecord,
                            target_state: StatusName, **extra: Any) -> TicketRecord:
        now = self._clock()
        closed_at = now if target_state in TERMINAL else None
        updated = ticket.evolve(status_id=target.id, closed_at=closed_at, updated_at=now, **extra)
        await self._check_refs(updated)
        comment = self._system_comment(ticket.id, actor.user_id, f"Status changed to {target.name}", now)
        saved = await self.store.save_ticket(updated, ticket.version, [comment])

        log.info("ticket_status_changed", extra={
            "ticket_id": ticket.id,
            "actor_id": actor.user_id,
            "from_status_id": ticket.status_id,
            "to_status_id": target.id,
        })
        self._emit("status_changed", {
            "ticket_id": ticket.id,
            "actor_id": actor.user_id,
            "from_status_id": ticket.status_id,
            "to_status_id": target.id,
            "status": target.name,
        })
        return saved.ticket

    async def update_status(self, principal: Principal, ticket_id: int, status_id: int) -> TicketRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        decision = require(actor, Action.status_change, ticket)

        statuses = await self._statuses()
        target = statuses.by_id.get(status_id)
        if target is None:
            raise NotFoundError("Status", status_id)
        target_state = statuses.state_of(status_id)
        current = statuses.state_of(ticket.status_id)

        if current is StatusName.closed and target_state is StatusName.open:
            raise ValidationError("Closed tickets can only be reopened explicitly")
        if not can_transition(current, target_state, override=decision.can_override):
            raise ValidationError(f"Transition from '{current.value}' to '{target_state.value}' is not allowed")

        extra: Dict[str, Any] = {}
        if current is StatusName.open and target_state is StatusName.in_progress and ticket.assigned_to_id is None:
            # взяти в роботу = призначити на себе
            grants = await self.store.get_user_grants(actor.user_id)
            if not is_eligible_assignee(grants, ticket):
                raise ValidationError("Ticket must be assigned before work starts")
            extra["assigned_to_id"] = actor.user_id

        return await self._write_status(actor, ticket, target, target_state, **extra)

    async def close_ticket(self, principal: Principal, ticket_id: int) -> TicketRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        decision = require(actor, Action.close, ticket)

        statuses = await self._statuses()
        current = statuses.state_of(ticket.status_id)
        if not can_close(current, override=decision.can_override):
            if current in TERMINAL:
                raise ValidationError("Ticket is already closed")
            raise ValidationError("Only resolved tickets can be closed")
        return await self._write_status(actor, ticket, statuses.row(StatusName.closed), StatusName.closed)

    async def reopen_ticket(self, principal: Principal, ticket_id: int) -> TicketRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        require(actor, Action.reopen, ticket)

        statuses = await self._statuses()
        current = statuses.state_of(ticket.status_id)
        if current not in REOPENABLE:
            raise ValidationError("Only resolved or closed tickets can be reopened")
        return await self._write_status(actor, ticket, statuses.row(StatusName.open), StatusName.open)

    async def update_priority(self, principal: Principal, ticket_id: int, priority_id: int) -> TicketRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        require(actor, Action.priority_change, ticket)
        priority = await self._priority(priority_id)
        if priority.id == ticket.priority_id:
            return await self._touch(ticket)

        now = self._clock()
        updated = ticket.evolve(priority_id=priority.id, updated_at=now)
        await self._check_refs(updated)
        comment = self._system_comment(ticket.id, actor.user_id, f"Priority changed to {priority.name}", now)
        saved = await self.store.save_ticket(updated, ticket.version, [comment])

        log.info("ticket_priority_changed", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                                   "from_priority_id": ticket.priority_id,
                                                   "to_priority_id": priority.id})
        self._emit("priority_changed", {
            "ticket_id": ticket.id,
            "actor_id": actor.user_id,
            "from_priority_id": ticket.priority_id,
            "to_priority_id": priority.id,
            "priority": priority.name,
        })
        return saved.ticket

    # ---------- коментарі ----------

    async def add_comment(self, principal: Principal, ticket_id: int, content: str,
                          is_internal: bool = False) -> CommentRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        require(actor, Action.comment, ticket)
        if is_internal and not is_staff_for(actor, ticket):
            raise ForbiddenError("Only staff can post internal comments")
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment content is required")

        now = self._clock()
        comment = CommentRecord(id=None, ticket_id=ticket.id, user_id=actor.user_id, content=content,
                                is_internal=is_internal, created_at=now)
        saved = await self.store.save_ticket(ticket.evolve(updated_at=now), ticket.version, [comment])
        created = saved.children[0]

        log.info("comment_added", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                         "comment_id": created.id, "is_internal": is_internal})
        self._emit("comment_added", {
            "ticket_id": ticket.id,
            "actor_id": actor.user_id,
            "comment_id": created.id,
            "is_internal": is_internal,
        })
        return created

    async def list_comments(self, principal: Principal, ticket_id: int) -> List[CommentRecord]:
        ticket = await self._load(ticket_id)
        require(principal, Action.read, ticket)
        return await self.store.list_comments(ticket.id, include_internal=is_staff_for(principal, ticket))

    # ---------- вкладення (лише метадані) ----------

    async def add_attachment(self, principal: Principal, ticket_id: int, *, file_name: str,
                             file_path: str, content_type: str, file_size: int) -> AttachmentRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        require(actor, Action.comment, ticket)
        file_name = (file_name or "").strip()
        if not file_name or not (file_path or "").strip():
            raise ValidationError("File name and path are required")
        if file_size is None or file_size <= 0:
            raise ValidationError("File size must be positive")

        now = self._clock()
        attachment = AttachmentRecord(id=None, ticket_id=ticket.id, user_id=actor.user_id,
                                      file_name=file_name, file_path=file_path.strip(),
                                      content_type=content_type or "application/octet-stream",
                                      file_size=file_size, uploaded_at=now)
        saved = await self.store.save_ticket(ticket.evolve(updated_at=now), ticket.version, [attachment])
        created = saved.children[0]
        log.info("attachment_added", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                            "attachment_id": created.id})
        self._emit("attachment_added", {"ticket_id": ticket.id, "actor_id": actor.user_id,
                                        "attachment_id": created.id, "file_name": created.file_name})
        return created

    async def list_attachments(self, principal: Principal, ticket_id: int) -> List[AttachmentRecord]:
        ticket = await self._load(ticket_id)
        require(principal, Action.read, ticket)
        return await self.store.list_attachments(ticket.id)

    async def remove_attachment(self, principal: Principal, attachment_id: int) -> None:
        actor = await self._actor(principal)
        attachment = await self.store.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment", attachment_id)
        ticket = await self._load(attachment.ticket_id)
        decision = require(actor, Action.comment, ticket)
        if attachment.user_id != actor.user_id and not decision.can_override:
            raise ForbiddenError("Only the uploader can remove this attachment")
        await self.store.remove_attachment(attachment_id)
        log.info("attachment_removed", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                              "attachment_id": attachment_id})

    # ---------- відгук ----------

    async def submit_feedback(self, principal: Principal, ticket_id: int, rating: int,
                              comment: Optional[str] = None) -> FeedbackRecord:
        actor = await self._actor(principal)
        ticket = await self._load(ticket_id)
        require(actor, Action.read, ticket)
        if ticket.created_by_id != actor.user_id:
            raise ForbiddenError("Only the ticket creator can leave feedback")
        if rating is None or not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")

        statuses = await self._statuses()
        if statuses.state_of(ticket.status_id) not in FEEDBACK_STATES:
            raise ValidationError("Feedback is accepted only for resolved or closed tickets")
        if await self.store.get_feedback(ticket.id, actor.user_id) is not None:
            raise ValidationError("Feedback already submitted for this ticket")

        now = self._clock()
        feedback = FeedbackRecord(id=None, ticket_id=ticket.id, user_id=actor.user_id, rating=rating,
                                  comment=(comment or "").strip() or None, created_at=now)
        saved = await self.store.save_ticket(ticket.evolve(updated_at=now), ticket.version, [feedback])
        created = saved.children[0]
        log.info("feedback_submitted", extra={"ticket_id": ticket.id, "actor_id": actor.user_id,
                                              "rating": rating})
        self._emit("feedback_submitted", {"ticket_id": ticket.id, "actor_id": actor.user_id,
                                          "rating": rating})
        return created

    async def list_feedback(self, principal: Principal, ticket_id: int) -> List[FeedbackRecord]:
        ticket = await self._load(ticket_id)
        require(principal, Action.read, ticket)
        return await self.store.list_feedback(ticket.id)
