from __future__ import annotations

import argparse
import asyncio
from typing import Any, Dict, Iterable, Optional, Tuple, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import hash_password
from app.db.models import (
    Department,
    Role,
    Team,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    User,
    UserRole,
)
from app.db.session import get_engine, get_sessionmaker
from app.services.principal import Grant, RoleName


# ---------- довідники (назви — контракт для state machine) ----------

ROLES = (
    (RoleName.admin.value, "System Administrator with full access"),
    (RoleName.manager.value, "Department/Team Manager"),
    (RoleName.agent.value, "Support Agent who handles tickets"),
    (RoleName.user.value, "End user who can create tickets"),
)

CATEGORIES = (
    ("Bug Report", "Software bugs and issues"),
    ("Feature Request", "New feature requests"),
    ("Technical Support", "Technical assistance and support"),
    ("Account Issue", "User account related problems"),
    ("General Inquiry", "General questions and inquiries"),
    ("Hardware Issue", "Hardware related problems"),
)

PRIORITIES = (
    ("Low", "Low priority - can be addressed when time permits", "#6c757d", "arrow-down"),
    ("Medium", "Medium priority - normal business priority", "#0d6efd", "minus"),
    ("High", "High priority - should be addressed quickly", "#fd7e14", "arrow-up"),
    ("Critical", "Critical priority - requires immediate attention", "#dc3545", "exclamation"),
    ("Urgent", "Urgent priority - business critical issue", "#842029", "bolt"),
)

STATUSES = (
    ("Open", "Newly created ticket, not yet assigned", "#0dcaf0", "circle"),
    ("In Progress", "Ticket is being worked on", "#0d6efd", "play"),
    ("Pending", "Waiting for customer response or external dependency", "#ffc107", "pause"),
    ("Resolved", "Issue has been resolved, awaiting confirmation", "#198754", "check"),
    ("Closed", "Ticket has been completed and closed", "#6c757d", "lock"),
    ("Cancelled", "Ticket has been cancelled", "#dc3545", "x"),
)

DEPARTMENTS = (
    ("IT Support", "Information Technology Support Department"),
    ("Customer Service", "Customer Service and Support Department"),
    ("Development", "Software Development Department"),
)

# (команда, опис, відділ)
TEAMS = (
    ("Hardware Support", "Hardware support and maintenance team", "IT Support"),
    ("Software Support", "Software support and troubleshooting team", "IT Support"),
    ("Help Desk", "First level customer support", "Customer Service"),
    ("Backend Team", "Backend development team", "Development"),
)

# (email, пароль, ім'я, прізвище, роль, відділ, команда)
DEMO_USERS = (
    ("john.doe@example.com", "Password123!", "John", "Doe", RoleName.manager, "IT Support", None),
    ("jane.smith@example.com", "Password123!", "Jane", "Smith", RoleName.agent, "IT Support", "Software Support"),
    ("mike.wilson@example.com", "Password123!", "Mike", "Wilson", RoleName.agent, "Customer Service", "Help Desk"),
    ("sarah.johnson@example.com", "Password123!", "Sarah", "Johnson", RoleName.user, None, None),
)


# ---------- helpers ----------

async def _ensure_named(db: AsyncSession, model: Type[Any], name: str, **fields: Any) -> Any:
    """Рядок довідника за назвою: створює, якщо немає; існуючий не чіпає."""
    row = (await db.execute(select(model).where(model.name == name))).scalar_one_or_none()
    if row is None:
        row = model(name=name, **fields)
        db.add(row)
        await db.flush()
        print(f"[bootstrap] створено {model.__tablename__}: {name}")
    return row


async def _ensure_team(db: AsyncSession, name: str, description: str, department: Department) -> Team:
    row = (await db.execute(
        select(Team).where(Team.name == name, Team.department_id == department.id)
    )).scalar_one_or_none()
    if row is None:
        row = Team(name=name, description=description, department_id=department.id, is_active=True)
        db.add(row)
        await db.flush()
        print(f"[bootstrap] створено команду: {name} ({department.name})")
    return row


async def _ensure_user(
    db: AsyncSession,
    *,
    email: str,
    password_plain: Optional[str],
    first_name: str,
    last_name: str,
) -> User:
    """
    Якщо користувача немає — створює його (потрібен password_plain).
    Якщо є — повертає активність та ім'я (пароль не чіпає).
    """
    email = email.strip().lower()
    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if user is None:
        if not password_plain:
            raise ValueError(f"Не задано пароль для нового користувача {email}")
        user = User(
            email=email,
            password_hash=hash_password(password_plain),
            first_name=first_name,
            last_name=last_name,
            is_active=True,
        )
        db.add(user)
        await db.flush()
        print(f"[bootstrap] створено користувача: {email}")
        return user

    if not user.is_active or user.first_name != first_name or user.last_name != last_name:
        user.is_active = True
        user.first_name = first_name
        user.last_name = last_name
        print(f"[bootstrap] оновлено користувача: {email}")
    else:
        print(f"[bootstrap] існує без змін: {email}")
    return user


async def _ensure_grant(db: AsyncSession, user: User, roles: Dict[str, Role], grant: Grant) -> None:
    role = roles[grant.role.value]
    exists = (await db.execute(
        select(UserRole).where(
            UserRole.user_id == user.id,
            UserRole.role_id == role.id,
            UserRole.department_id.is_(None) if grant.department_id is None
            else UserRole.department_id == grant.department_id,
            UserRole.team_id.is_(None) if grant.team_id is None else UserRole.team_id == grant.team_id,
        )
    )).scalar_one_or_none()
    if exists is None:
        db.add(UserRole(user_id=user.id, role_id=role.id,
                        department_id=grant.department_id, team_id=grant.team_id))
        await db.flush()
        print(f"[bootstrap] grant {grant.role.value} -> {user.email}")


async def _seed_reference(db: AsyncSession) -> Tuple[Dict[str, Role], Dict[str, Department], Dict[str, Team]]:
    roles = {name: await _ensure_named(db, Role, name, description=desc) for name, desc in ROLES}
    for name, desc in CATEGORIES:
        await _ensure_named(db, TicketCategory, name, description=desc, is_active=True)
    for name, desc, color, icon in PRIORITIES:
        await _ensure_named(db, TicketPriority, name, description=desc, color=color, icon=icon)
    for name, desc, color, icon in STATUSES:
        await _ensure_named(db, TicketStatus, name, description=desc, color=color, icon=icon)

    departments = {name: await _ensure_named(db, Department, name, description=desc, is_active=True)
                   for name, desc in DEPARTMENTS}
    teams = {name: await _ensure_team(db, name, desc, departments[dept]) for name, desc, dept in TEAMS}
    return roles, departments, teams


def _demo_grants(departments: Dict[str, Department], teams: Dict[str, Team]) -> Iterable[Tuple[tuple, Grant]]:
    for row in DEMO_USERS:
        role, dept_name, team_name = row[4], row[5], row[6]
        department = departments[dept_name] if dept_name else None
        team = teams[team_name] if team_name else None
        if team is not None and department is not None and team.department_id != department.id:
            raise ValueError(f"Команда {team_name} не належить відділу {dept_name}")
        yield row, Grant.build(role, department.id if department else None, team.id if team else None)


async def _seed(db: AsyncSession, admin_email: str, admin_password: str,
                first_name: str, last_name: str, demo: bool) -> None:
    roles, departments, teams = await _seed_reference(db)

    admin = await _ensure_user(db, email=admin_email, password_plain=admin_password,
                               first_name=first_name, last_name=last_name)
    await _ensure_grant(db, admin, roles, Grant.build(RoleName.admin))

    if demo:
        for (email, password, first, last, *_), grant in _demo_grants(departments, teams):
            user = await _ensure_user(db, email=email, password_plain=password, first_name=first, last_name=last)
            await _ensure_grant(db, user, roles, grant)

    await db.commit()
    print("[bootstrap] завершено ✅")


async def _run(**kwargs: Any) -> None:
    async with get_sessionmaker()() as db:
        await _seed(db, **kwargs)
    await get_engine().dispose()


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed довідників, admin та демо-користувачів")
    p.add_argument("email", nargs="?", default=settings.admin_email, help="Email адміністратора")
    p.add_argument("password", nargs="?", default=settings.admin_password, help="Пароль адміністратора")
    p.add_argument("--first-name", default=settings.admin_first_name)
    p.add_argument("--last-name", default=settings.admin_last_name)

    p.add_argument("--demo", dest="demo", action="store_true", help="Створити демо-користувачів")
    p.add_argument("--no-demo", dest="demo", action="store_false", help="Не створювати демо-користувачів")
    p.set_defaults(demo=settings.seed_demo_data)
    return p.parse_args()


def main() -> None:
    args = _parse_args()

    if not args.email:
        raise SystemExit("Помилка: не задано email адміністратора (аргумент або ADMIN_EMAIL у .env)")
    if not args.password:
        raise SystemExit("Помилка: не задано пароль адміністратора (аргумент або ADMIN_PASSWORD у .env)")

    asyncio.run(
        _run(
            admin_email=args.email,
            admin_password=args.password,
            first_name=args.first_name,
            last_name=args.last_name,
            demo=args.demo,
        )
    )


if __name__ == "__main__":
    main()
