"""
Адміністрування: користувачі з grant-ами та редаговані довідники
(категорії, відділи, команди).

Хто має сюди доступ, вирішує роутер (deps.AdminDep); тут лише правила даних.
Grant-и перевіряються суворо: команда з іншого відділу, неіснуючий або
неактивний відділ/команда -> ValidationError, нічого не записано.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, List, Mapping, Optional

from app.core.errors import NotFoundError, ValidationError
from app.core.security import hash_password
from app.services.auth import ensure_grant_consistent
from app.services.filters import EffectiveFilter
from app.services.policy import ScopeDecision
from app.services.principal import Grant, Principal, RoleName
from app.services.records import RefRecord, UserRecord
from app.services.store import TicketStore

log = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

REF_KINDS = ("category", "department", "team")
_LABELS = {"category": "Category", "department": "Department", "team": "Team"}

# лічильники для перевірок перед деактивацією: бачимо всі заявки
_EVERYTHING = ScopeDecision(allowed=True, unrestricted=True)


def parse_grants(raw: Iterable[Any]) -> List[Grant]:
    """[{role, department_id, team_id}, ...] -> унікальні Grant-и у вхідному порядку."""
    grants: List[Grant] = []
    for item in raw:
        data = item if isinstance(item, Mapping) else item.model_dump()
        try:
            grant = Grant.build(data.get("role"), data.get("department_id"), data.get("team_id"))
        except ValueError as e:
            raise ValidationError(f"Invalid grant: {e}") from e
        if grant not in grants:
            grants.append(grant)
    return grants


def _check_password(password: Optional[str]) -> str:
    if not password:
        raise ValidationError("Password is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


async def _load_user(store: TicketStore, user_id: int) -> UserRecord:
    user = await store.get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


# ---------- користувачі ----------

async def create_user(
    store: TicketStore,
    *,
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
    grants: Iterable[Grant] = (),
) -> UserRecord:
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")
    _check_password(password)
    if await store.get_user_by_email(email) is not None:
        raise ValidationError("Email already exists")
    grants = await ensure_grant_consistent(store, grants, strict=True)

    user = await store.add_user(
        email=email,
        password_hash=hash_password(password),
        first_name=(first_name or "").strip(),
        last_name=(last_name or "").strip(),
        grants=grants,
    )
    log.info("user_created", extra={"user_id": user.id, "grants": len(grants)})
    return user


async def update_user(
    store: TicketStore,
    actor: Principal,
    user_id: int,
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    is_active: Optional[bool] = None,
    password: Optional[str] = None,
    grants: Optional[Iterable[Grant]] = None,
) -> UserRecord:
    """
    None = поле не чіпаємо. grants замінюються повністю (порожній список знімає всі).
    Нові права діють з наступного токена користувача.
    """
    user = await _load_user(store, user_id)
    changes: dict = {}
    if first_name is not None:
        changes["first_name"] = first_name.strip()
    if last_name is not None:
        changes["last_name"] = last_name.strip()
    if is_active is not None:
        if not is_active and user_id == actor.user_id:
            raise ValidationError("You cannot deactivate your own account")
        changes["is_active"] = is_active
    if password is not None:
        changes["password_hash"] = hash_password(_check_password(password))

    new_grants = None
    if grants is not None:
        new_grants = await ensure_grant_consistent(store, grants, strict=True)
        # без цього адміністратор може випадково забрати доступ у самого себе
        if user_id == actor.user_id and actor.is_admin and not any(g.role is RoleName.admin for g in new_grants):
            raise ValidationError("You cannot remove your own Admin role")

    saved = await store.save_user(replace(user, **changes), new_grants)
    log.info("user_updated", extra={"user_id": user_id, "actor_id": actor.user_id,
                                    "fields": sorted(changes), "grants_replaced": new_grants is not None})
    return saved


async def deactivate_user(store: TicketStore, actor: Principal, user_id: int) -> UserRecord:
    return await update_user(store, actor, user_id, is_active=False)


# ---------- довідники ----------

def _kind(kind: str) -> str:
    if kind not in REF_KINDS:
        raise ValueError(f"not an editable reference: {kind!r}")
    return kind


async def get_reference(store: TicketStore, kind: str, ref_id: int) -> RefRecord:
    row = await getattr(store, f"get_{_kind(kind)}")(ref_id)
    if row is None:
        raise NotFoundError(_LABELS[kind], ref_id)
    return row


async def _siblings(store: TicketStore, kind: str, department_id: Optional[int]) -> List[RefRecord]:
    if kind == "category":
        return await store.list_categories()
    if kind == "department":
        return await store.list_departments()
    return await store.list_teams(department_id)


async def _ensure_unique_name(store: TicketStore, kind: str, name: str, *,
                              department_id: Optional[int] = None, exclude_id: Optional[int] = None) -> None:
    wanted = name.lower()
    for row in await _siblings(store, kind, department_id):
        if row.id != exclude_id and row.name.strip().lower() == wanted:
            if kind == "team":
                raise ValidationError("Team name already exists in this department")
            raise ValidationError(f"{_LABELS[kind]} name already exists")


def _clean_name(kind: str, name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError(f"{_LABELS[kind]} name is required")
    return name


async def create_reference(
    store: TicketStore,
    kind: str,
    *,
    name: str,
    description: Optional[str] = None,
    department_id: Optional[int] = None,
) -> RefRecord:
    _kind(kind)
    name = _clean_name(kind, name)
    if kind == "team":
        dept = await store.get_department(department_id) if department_id is not None else None
        if dept is None or not dept.is_active:
            raise ValidationError("Invalid department")
    else:
        department_id = None
    await _ensure_unique_name(store, kind, name, department_id=department_id)

    row = await store.add_reference(kind, name=name, description=description, department_id=department_id)
    log.info("reference_created", extra={"kind": kind, "ref_id": row.id})
    return row


async def _active_tickets(store: TicketStore, **dims: Any) -> int:
    flt = EffectiveFilter(scope=_EVERYTHING, active_only=True,
                          **{k: frozenset({v}) for k, v in dims.items()})
    return await store.count_tickets(flt)


async def _ensure_can_deactivate(store: TicketStore, kind: str, row: RefRecord) -> None:
    """Як у довідниках служби: не гасимо те, на чому ще тримається робота."""
    if kind == "department":
        teams = [t for t in await store.list_teams(row.id) if t.is_active]
        if teams:
            raise ValidationError(f"Cannot deactivate department with {len(teams)} active teams")
        users = await store.list_users(active_only=True, department_id=row.id)
        if users:
            raise ValidationError(f"Cannot deactivate department with {len(users)} active users")
    elif kind == "team":
        users = await store.list_users(active_only=True, team_id=row.id)
        if users:
            raise ValidationError(f"Cannot deactivate team with {len(users)} active users")
        tickets = await _active_tickets(store, team_ids=row.id)
        if tickets:
            raise ValidationError(f"Cannot deactivate team with {tickets} active tickets")
    else:
        tickets = await _active_tickets(store, category_ids=row.id)
        if tickets:
            raise ValidationError(f"Cannot deactivate category with {tickets} active tickets")


async def update_reference(
    store: TicketStore,
    kind: str,
    ref_id: int,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> RefRecord:
    row = await get_reference(store, kind, ref_id)
    changes: dict = {}
    if name is not None:
        name = _clean_name(kind, name)
        if name != row.name:
            await _ensure_unique_name(store, kind, name, department_id=row.department_id, exclude_id=row.id)
            changes["name"] = name
    if description is not None:
        changes["description"] = description
    if is_active is not None and is_active != row.is_active:
        if not is_active:
            await _ensure_can_deactivate(store, kind, row)
        elif kind == "team":
            dept = await store.get_department(row.department_id)
            if dept is None or not dept.is_active:
                raise ValidationError("Invalid department")
        changes["is_active"] = is_active

    if not changes:
        return row
    saved = await store.save_reference(kind, replace(row, **changes))
    log.info("reference_updated", extra={"kind": kind, "ref_id": ref_id, "fields": sorted(changes)})
    return saved


async def deactivate_reference(store: TicketStore, kind: str, ref_id: int) -> RefRecord:
    return await update_reference(store, kind, ref_id, is_active=False)
