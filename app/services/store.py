"""
Сховище для ядра заявок.

`TicketStore` — інтерфейс, яким користується lifecycle/reports; `SqlTicketStore` —
реалізація на async SQLAlchemy. Жодного кешу: довідники читаються щоразу
(read-through), сховище створюється на кожен запит.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Sequence, Union

from sqlalchemy import and_, delete, false, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, StaleStateError, ValidationError
from app.db.models import (
    Department,
    Role,
    Team,
    Ticket,
    TicketAttachment,
    TicketCategory,
    TicketComment,
    TicketFeedback,
    TicketPriority,
    TicketStatus,
    User,
    UserRole,
)
from app.services.filters import EffectiveFilter
from app.services.principal import Grant
from app.services.records import (
    AttachmentRecord,
    CommentRecord,
    FeedbackRecord,
    RefRecord,
    TicketRecord,
    UserRecord,
)

log = logging.getLogger(__name__)

ChildRecord = Union[CommentRecord, AttachmentRecord, FeedbackRecord]

# поля, за якими дозволено групувати аналітику
GROUPABLE_FIELDS = ("status_id", "priority_id", "category_id", "department_id", "assigned_to_id", "created_by_id")


class SavedTicket(NamedTuple):
    ticket: TicketRecord
    children: List[ChildRecord]


class TicketStore(Protocol):
    # --- заявки ---
    async def get_ticket(self, ticket_id: int) -> Optional[TicketRecord]: ...
    async def add_ticket(self, ticket: TicketRecord, children: Sequence[ChildRecord] = ()) -> SavedTicket: ...
    async def save_ticket(self, ticket: TicketRecord, expected_version: int,
                          children: Sequence[ChildRecord] = ()) -> SavedTicket: ...
    async def query_tickets(self, flt: EffectiveFilter, limit: Optional[int] = None,
                            offset: int = 0) -> List[TicketRecord]: ...
    async def count_tickets(self, flt: EffectiveFilter) -> int: ...
    async def count_grouped(self, flt: EffectiveFilter, field: str) -> Dict[Optional[int], int]: ...

    # --- дочірні записи ---
    async def list_comments(self, ticket_id: int, include_internal: bool) -> List[CommentRecord]: ...
    async def list_attachments(self, ticket_id: int) -> List[AttachmentRecord]: ...
    async def get_attachment(self, attachment_id: int) -> Optional[AttachmentRecord]: ...
    async def remove_attachment(self, attachment_id: int) -> None: ...
    async def get_feedback(self, ticket_id: int, user_id: int) -> Optional[FeedbackRecord]: ...
    async def list_feedback(self, ticket_id: int) -> List[FeedbackRecord]: ...

    # --- довідники ---
    async def get_category(self, category_id: int) -> Optional[RefRecord]: ...
    async def get_priority(self, priority_id: int) -> Optional[RefRecord]: ...
    async def get_status(self, status_id: int) -> Optional[RefRecord]: ...
    async def list_statuses(self) -> List[RefRecord]: ...
    async def list_categories(self) -> List[RefRecord]: ...
    async def list_priorities(self) -> List[RefRecord]: ...
    async def get_department(self, department_id: int) -> Optional[RefRecord]: ...
    async def list_departments(self) -> List[RefRecord]: ...
    async def get_team(self, team_id: int) -> Optional[RefRecord]: ...
    async def list_teams(self, department_id: Optional[int] = None) -> List[RefRecord]: ...

    # --- користувачі ---
    async def get_user(self, user_id: int) -> Optional[UserRecord]: ...
    async def get_user_by_email(self, email: str) -> Optional[UserRecord]: ...
    async def get_user_grants(self, user_id: int) -> List[Grant]: ...
    async def touch_login(self, user_id: int, when: Any) -> None: ...

    # --- адміністрування ---
    async def list_users(self, *, active_only: bool = False, department_id: Optional[int] = None,
                         team_id: Optional[int] = None) -> List[UserRecord]: ...
    async def add_user(self, *, email: str, password_hash: str, first_name: str = "", last_name: str = "",
                       grants: Sequence[Grant] = ()) -> UserRecord: ...
    async def save_user(self, user: UserRecord, grants: Optional[Sequence[Grant]] = None) -> UserRecord: ...
    async def add_reference(self, kind: str, *, name: str, description: Optional[str] = None,
                            department_id: Optional[int] = None) -> RefRecord: ...
    async def save_reference(self, kind: str, row: RefRecord) -> RefRecord: ...


# ==== ORM <-> records ====


def _ticket_record(t: Ticket) -> TicketRecord:
    return TicketRecord(
        id=t.id,
        title=t.title,
        description=t.description,
        category_id=t.category_id,
        priority_id=t.priority_id,
        status_id=t.status_id,
        created_by_id=t.created_by_id,
        department_id=t.department_id,
        assigned_to_id=t.assigned_to_id,
        team_id=t.team_id,
        created_at=t.created_at,
        updated_at=t.updated_at,
        closed_at=t.closed_at,
        version=t.version,
    )


def _ref(row: Any, **extra) -> RefRecord:
    return RefRecord(
        id=row.id,
        name=row.name,
        description=getattr(row, "description", None),
        is_active=getattr(row, "is_active", True),
        color=getattr(row, "color", None),
        icon=getattr(row, "icon", None),
        **extra,
    )


# довідники, які редагує адміністратор (kind -> модель)
EDITABLE_REFS = {"category": TicketCategory, "department": Department, "team": Team}


def _editable_ref(kind: str, row: Any) -> RefRecord:
    return _ref(row, department_id=row.department_id) if kind == "team" else _ref(row)


def _user_record(u: User) -> UserRecord:
    return UserRecord(
        id=u.id,
        email=u.email,
        first_name=u.first_name or "",
        last_name=u.last_name or "",
        is_active=u.is_active,
        password_hash=u.password_hash,
        last_login=u.last_login,
    )


def _comment_record(c: TicketComment) -> CommentRecord:
    return CommentRecord(id=c.id, ticket_id=c.ticket_id, user_id=c.user_id, content=c.content,
                         is_internal=c.is_internal, created_at=c.created_at)


def _attachment_record(a: TicketAttachment) -> AttachmentRecord:
    return AttachmentRecord(id=a.id, ticket_id=a.ticket_id, user_id=a.user_id, file_name=a.file_name,
                            file_path=a.file_path, content_type=a.content_type, file_size=a.file_size,
                            uploaded_at=a.uploaded_at)


def _feedback_record(f: TicketFeedback) -> FeedbackRecord:
    return FeedbackRecord(id=f.id, ticket_id=f.ticket_id, user_id=f.user_id, rating=f.rating,
                          comment=f.comment, created_at=f.created_at)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _child_orm(child: ChildRecord, ticket_id: int):
    # timestamps ставимо явно: server_default після commit в async-сесії не довантажується
    if isinstance(child, CommentRecord):
        orm = TicketComment(ticket_id=ticket_id, user_id=child.user_id, content=child.content,
                            is_internal=child.is_internal)
        orm.created_at = child.created_at or _now()
        return orm, _comment_record
    if isinstance(child, AttachmentRecord):
        orm = TicketAttachment(ticket_id=ticket_id, user_id=child.user_id, file_name=child.file_name,
                               file_path=child.file_path, content_type=child.content_type,
                               file_size=child.file_size)
        orm.uploaded_at = child.uploaded_at or _now()
        return orm, _attachment_record
    if isinstance(child, FeedbackRecord):
        orm = TicketFeedback(ticket_id=ticket_id, user_id=child.user_id, rating=child.rating,
                             comment=child.comment)
        orm.created_at = child.created_at or _now()
        return orm, _feedback_record
    raise TypeError(f"unsupported child record: {type(child).__name__}")


def filter_clauses(flt: EffectiveFilter) -> list:
    """EffectiveFilter -> WHERE-умови (та сама семантика, що й EffectiveFilter.matches)."""
    if flt.empty:
        return [false()]

    clauses = []
    scope = flt.scope
    if not scope.unrestricted:
        parts = []
        if scope.department_ids:
            parts.append(Ticket.department_id.in_(sorted(scope.department_ids)))
        for dept_id, team_id in sorted(scope.team_scopes):
            parts.append(and_(
                Ticket.department_id == dept_id,
                or_(Ticket.team_id.is_(None), Ticket.team_id == team_id),
            ))
        if scope.user_ids:
            parts.append(Ticket.created_by_id.in_(sorted(scope.user_ids)))
        clauses.append(or_(*parts) if parts else false())

    if flt.status_ids is not None:
        clauses.append(Ticket.status_id.in_(sorted(flt.status_ids)))
    if flt.priority_ids is not None:
        clauses.append(Ticket.priority_id.in_(sorted(flt.priority_ids)))
    if flt.category_ids is not None:
        clauses.append(Ticket.category_id.in_(sorted(flt.category_ids)))
    if flt.department_ids is not None:
        clauses.append(Ticket.department_id.in_(sorted(flt.department_ids)))
    if flt.team_ids is not None:
        clauses.append(Ticket.team_id.in_(sorted(flt.team_ids)))
    if flt.assigned_to_id is not None:
        clauses.append(Ticket.assigned_to_id == flt.assigned_to_id)
    if flt.created_by_id is not None:
        clauses.append(Ticket.created_by_id == flt.created_by_id)
    if flt.start_date is not None:
        clauses.append(Ticket.created_at >= flt.start_date)
    if flt.end_date is not None:
        clauses.append(Ticket.created_at <= flt.end_date)
    if flt.active_only:
        clauses.append(Ticket.closed_at.is_(None))
    return clauses


class SqlTicketStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ---------- заявки ----------

    async def get_ticket(self, ticket_id: int) -> Optional[TicketRecord]:
        # populate_existing: завжди свіжий стан із БД, не з identity map сесії
        res = await self.db.execute(
            select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
        )
        t = res.scalar_one_or_none()
        return _ticket_record(t) if t else None

    def _add_children(self, ticket_id: int, children: Sequence[ChildRecord]) -> list:
        pending = []
        for child in children:
            orm, to_record = _child_orm(child, ticket_id)
            self.db.add(orm)
            pending.append((orm, to_record))
        return pending

    async def add_ticket(self, ticket: TicketRecord, children: Sequence[ChildRecord] = ()) -> SavedTicket:
        t = Ticket(
            title=ticket.title,
            description=ticket.description,
            category_id=ticket.category_id,
            priority_id=ticket.priority_id,
            status_id=ticket.status_id,
            created_by_id=ticket.created_by_id,
            assigned_to_id=ticket.assigned_to_id,
            department_id=ticket.department_id,
            team_id=ticket.team_id,
            closed_at=ticket.closed_at,
            version=1,
        )
        if ticket.created_at is not None:
            t.created_at = ticket.created_at
        if ticket.updated_at is not None:
            t.updated_at = ticket.updated_at
        self.db.add(t)
        try:
            await self.db.flush()
            pending = self._add_children(t.id, children)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(t)
        return SavedTicket(_ticket_record(t), [to_record(orm) for orm, to_record in pending])

    async def save_ticket(self, ticket: TicketRecord, expected_version: int,
                          children: Sequence[ChildRecord] = ()) -> SavedTicket:
        """
        Compare-and-set: UPDATE ... WHERE id = :id AND version = :expected.
        0 рядків — заявку вже змінив інший запит -> StaleStateError, нічого не записано.
        Дочірні записи (системний коментар тощо) — у тій самій транзакції.
        """
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.version == expected_version)
            .values(
                title=ticket.title,
                description=ticket.description,
                category_id=ticket.category_id,
                priority_id=ticket.priority_id,
                status_id=ticket.status_id,
                assigned_to_id=ticket.assigned_to_id,
                team_id=ticket.team_id,
                closed_at=ticket.closed_at,
                updated_at=ticket.updated_at,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            res = await self.db.execute(stmt)
            if res.rowcount != 1:
                raise StaleStateError()
            pending = self._add_children(ticket.id, children)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if any(isinstance(c, FeedbackRecord) for c in children):
                raise ValidationError("Feedback already submitted for this ticket") from e
            raise
        except Exception:
            await self.db.rollback()
            raise
        return SavedTicket(
            ticket.evolve(version=expected_version + 1),
            [to_record(orm) for orm, to_record in pending],
        )

    async def query_tickets(self, flt: EffectiveFilter, limit: Optional[int] = None,
                            offset: int = 0) -> List[TicketRecord]:
        if flt.empty:
            return []
        q = select(Ticket).where(*filter_clauses(flt)).order_by(Ticket.created_at.desc(), Ticket.id.desc())
        if limit is not None:
            q = q.limit(limit)
        if offset:
            q = q.offset(offset)
        rows = (await self.db.execute(q)).scalars().all()
        return [_ticket_record(t) for t in rows]

    async def count_tickets(self, flt: EffectiveFilter) -> int:
        if flt.empty:
            return 0
        q = select(func.count()).select_from(Ticket).where(*filter_clauses(flt))
        return int((await self.db.execute(q)).scalar_one())

    async def count_grouped(self, flt: EffectiveFilter, field: str) -> Dict[Optional[int], int]:
        if field not in GROUPABLE_FIELDS:
            raise ValueError(f"cannot group by {field!r}")
        if flt.empty:
            return {}
        col = getattr(Ticket, field)
        rows = (await self.db.execute(
            select(col, func.count()).where(*filter_clauses(flt)).group_by(col)
        )).all()
        return {k: int(c) for k, c in rows}

    # ---------- дочірні записи ----------

    async def list_comments(self, ticket_id: int, include_internal: bool) -> List[CommentRecord]:
        q = select(TicketComment).where(TicketComment.ticket_id == ticket_id)
        if not include_internal:
            q = q.where(TicketComment.is_internal == False)  # noqa: E712
        rows = (await self.db.execute(q.order_by(TicketComment.created_at, TicketComment.id))).scalars().all()
        return [_comment_record(c) for c in rows]

    async def list_attachments(self, ticket_id: int) -> List[AttachmentRecord]:
        rows = (await self.db.execute(
            select(TicketAttachment).where(TicketAttachment.ticket_id == ticket_id).order_by(TicketAttachment.id)
        )).scalars().all()
        return [_attachment_record(a) for a in rows]

    async def get_attachment(self, attachment_id: int) -> Optional[AttachmentRecord]:
        a = await self.db.get(TicketAttachment, attachment_id)
        return _attachment_record(a) if a else None

    async def remove_attachment(self, attachment_id: int) -> None:
        a = await self.db.get(TicketAttachment, attachment_id)
        if a is None:
            return
        await self.db.delete(a)
        await self.db.commit()

    async def get_feedback(self, ticket_id: int, user_id: int) -> Optional[FeedbackRecord]:
        f = (await self.db.execute(
            select(TicketFeedback).where(TicketFeedback.ticket_id == ticket_id, TicketFeedback.user_id == user_id)
        )).scalar_one_or_none()
        return _feedback_record(f) if f else None

    async def list_feedback(self, ticket_id: int) -> List[FeedbackRecord]:
        rows = (await self.db.execute(
            select(TicketFeedback).where(TicketFeedback.ticket_id == ticket_id).order_by(TicketFeedback.id)
        )).scalars().all()
        return [_feedback_record(f) for f in rows]

    # ---------- довідники ----------

    async def get_category(self, category_id: int) -> Optional[RefRecord]:
        row = await self.db.get(TicketCategory, category_id)
        return _ref(row) if row else None

    async def get_priority(self, priority_id: int) -> Optional[RefRecord]:
        row = await self.db.get(TicketPriority, priority_id)
        return _ref(row) if row else None

    async def get_status(self, status_id: int) -> Optional[RefRecord]:
        row = await self.db.get(TicketStatus, status_id)
        return _ref(row) if row else None

    async def list_statuses(self) -> List[RefRecord]:
        rows = (await self.db.execute(select(TicketStatus).order_by(TicketStatus.id))).scalars().all()
        return [_ref(r) for r in rows]

    async def list_categories(self) -> List[RefRecord]:
        rows = (await self.db.execute(select(TicketCategory).order_by(TicketCategory.id))).scalars().all()
        return [_ref(r) for r in rows]

    async def list_priorities(self) -> List[RefRecord]:
        rows = (await self.db.execute(select(TicketPriority).order_by(TicketPriority.id))).scalars().all()
        return [_ref(r) for r in rows]

    async def get_department(self, department_id: int) -> Optional[RefRecord]:
        row = await self.db.get(Department, department_id)
        return _ref(row) if row else None

    async def list_departments(self) -> List[RefRecord]:
        rows = (await self.db.execute(select(Department).order_by(Department.id))).scalars().all()
        return [_ref(r) for r in rows]

    async def get_team(self, team_id: int) -> Optional[RefRecord]:
        row = await self.db.get(Team, team_id)
        return _ref(row, department_id=row.department_id) if row else None

    async def list_teams(self, department_id: Optional[int] = None) -> List[RefRecord]:
        q = select(Team)
        if department_id is not None:
            q = q.where(Team.department_id == department_id)
        rows = (await self.db.execute(q.order_by(Team.id))).scalars().all()
        return [_ref(r, department_id=r.department_id) for r in rows]

    # ---------- користувачі ----------

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        u = await self.db.get(User, user_id)
        return _user_record(u) if u else None

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        u = (await self.db.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )).scalar_one_or_none()
        return _user_record(u) if u else None

    async def get_user_grants(self, user_id: int) -> List[Grant]:
        rows = (await self.db.execute(
            select(UserRole).where(UserRole.user_id == user_id).order_by(UserRole.id)
        )).scalars().all()
        grants = []
        for ur in rows:
            try:
                grants.append(Grant.build(ur.role.name, ur.department_id, ur.team_id))
            except ValueError as e:
                # битий рядок user_roles не дає прав
                log.warning("invalid_user_role", extra={"user_id": user_id, "user_role_id": ur.id, "error": str(e)})
        return grants

    async def touch_login(self, user_id: int, when: Any) -> None:
        await self.db.execute(
            update(User).where(User.id == user_id).values(last_login=when)
        )
        await self.db.commit()

    # ---------- адміністрування ----------

    async def list_users(self, *, active_only: bool = False, department_id: Optional[int] = None,
                         team_id: Optional[int] = None) -> List[UserRecord]:
        q = select(User)
        if department_id is not None or team_id is not None:
            holders = select(UserRole.user_id)
            if department_id is not None:
                holders = holders.where(UserRole.department_id == department_id)
            if team_id is not None:
                holders = holders.where(UserRole.team_id == team_id)
            q = q.where(User.id.in_(holders))
        if active_only:
            q = q.where(User.is_active == True)  # noqa: E712
        rows = (await self.db.execute(q.order_by(User.id))).scalars().all()
        return [_user_record(u) for u in rows]

    async def _replace_grants(self, user_id: int, grants: Sequence[Grant]) -> None:
        role_ids = {r.name.lower(): r.id for r in (await self.db.execute(select(Role))).scalars().all()}
        await self.db.execute(delete(UserRole).where(UserRole.user_id == user_id))
        for g in grants:
            role_id = role_ids.get(g.role.value.lower())
            if role_id is None:
                raise ValidationError(f"Role '{g.role.value}' is not configured")
            self.db.add(UserRole(user_id=user_id, role_id=role_id,
                                 department_id=g.department_id, team_id=g.team_id))

    async def add_user(self, *, email: str, password_hash: str, first_name: str = "", last_name: str = "",
                       grants: Sequence[Grant] = ()) -> UserRecord:
        u = User(email=email, password_hash=password_hash, first_name=first_name, last_name=last_name,
                 is_active=True)
        self.db.add(u)
        try:
            await self.db.flush()
            await self._replace_grants(u.id, grants)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationError("Email already exists") from e
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(u)
        return _user_record(u)

    async def save_user(self, user: UserRecord, grants: Optional[Sequence[Grant]] = None) -> UserRecord:
        """Профіль + (якщо передано) повна заміна grant-ів, однією транзакцією."""
        u = await self.db.get(User, user.id, populate_existing=True)
        if u is None:
            raise NotFoundError("User", user.id)
        u.first_name = user.first_name
        u.last_name = user.last_name
        u.is_active = user.is_active
        if user.password_hash:
            u.password_hash = user.password_hash
        try:
            if grants is not None:
                await self._replace_grants(u.id, grants)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(u)
        return _user_record(u)

    async def add_reference(self, kind: str, *, name: str, description: Optional[str] = None,
                            department_id: Optional[int] = None) -> RefRecord:
        model = EDITABLE_REFS[kind]
        row = model(name=name, description=description, is_active=True)
        if kind == "team":
            row.department_id = department_id
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationError(f"{kind.capitalize()} name already exists") from e
        await self.db.refresh(row)
        return _editable_ref(kind, row)

    async def save_reference(self, kind: str, ref: RefRecord) -> RefRecord:
        row = await self.db.get(EDITABLE_REFS[kind], ref.id, populate_existing=True)
        if row is None:
            raise NotFoundError(kind.capitalize(), ref.id)
        # команда не переїжджає між відділами: на ній тримаються grant-и і заявки
        row.name = ref.name
        row.description = ref.description
        row.is_active = ref.is_active
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationError(f"{kind.capitalize()} name already exists") from e
        await self.db.refresh(row)
        return _editable_ref(kind, row)

