# app/services/auth.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, NamedTuple, Optional, Tuple

from app.core.config import settings
from app.core.errors import AuthenticationError, ValidationError
from app.core.security import create_access_token, verify_password
from app.services.principal import Grant, grants_to_claims
from app.services.records import UserRecord
from app.services.store import TicketStore

log = logging.getLogger(__name__)


class LoginResult(NamedTuple):
    token: str
    user: UserRecord
    grants: List[Grant]
    expires_in: int


async def _grant_problem(store: TicketStore, grant: Grant, *,
                         require_active: bool) -> Optional[Tuple[str, str]]:
    """(reason для логу, повідомлення для клієнта) або None, якщо grant коректний."""
    if grant.department_id is not None:
        dept = await store.get_department(grant.department_id)
        if dept is None:
            return "department_missing", f"Invalid department ID: {grant.department_id}"
        if require_active and not dept.is_active:
            return "department_inactive", f"Invalid department ID: {grant.department_id}"
    if grant.team_id is not None:
        team = await store.get_team(grant.team_id)
        if team is None:
            return "team_missing", f"Invalid team ID: {grant.team_id}"
        if team.department_id != grant.department_id:
            return "team_outside_department", "Team does not belong to the specified department"
        if require_active and not team.is_active:
            return "team_inactive", f"Invalid team ID: {grant.team_id}"
    return None


async def ensure_grant_consistent(store: TicketStore, grants: Iterable[Grant], *,
                                  user_id: Optional[int] = None, strict: bool = False) -> List[Grant]:
    """
    Перевіряє, що відділ/команда grant-а існують і команда належить відділу.

    strict=False (логін, /me): битий рядок прав не дає, його відкидаємо з warning-ом.
    strict=True (видача прав адміністратором): перший битий grant -> ValidationError,
    до того ж відділ і команда мають бути активними.
    """
    valid: List[Grant] = []
    for g in grants:
        problem = await _grant_problem(store, g, require_active=strict)
        if problem is None:
            valid.append(g)
            continue
        reason, message = problem
        if strict:
            raise ValidationError(message)
        log.warning("grant_skipped", extra={"user_id": user_id, "reason": reason,
                                            "department_id": g.department_id, "team_id": g.team_id})
    return valid


def make_token(user: UserRecord, grants: Iterable[Grant], *, remember_me: bool = False) -> tuple[str, int]:
    """
    Створюємо access-токен із поточними grant-ами.
    Якщо remember_me=True → беремо збільшений TTL з jwt_remember_expires_min.
    """
    minutes = settings.jwt_remember_expires_min if remember_me else settings.jwt_expires_min
    token = create_access_token(
        subject=str(user.id),
        grants=grants_to_claims(grants),
        email=user.email,
        secret=settings.jwt_secret,
        expires_minutes=minutes,
        algorithm=settings.jwt_alg,
    )
    return token, minutes * 60


async def login(store: TicketStore, email: str, password: str, *, remember_me: bool = False) -> LoginResult:
    email = (email or "").strip().lower()
    user = await store.get_user_by_email(email)
    if user is None or not user.password_hash:
        log.warning("login_failed", extra={"email": email, "reason": "unknown_user"})
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        log.warning("login_failed", extra={"user_id": user.id, "reason": "inactive"})
        raise AuthenticationError("Account is disabled")
    if not verify_password(password or "", user.password_hash):
        log.warning("login_failed", extra={"user_id": user.id, "reason": "bad_password"})
        raise AuthenticationError("Invalid credentials")

    grants = await ensure_grant_consistent(store, await store.get_user_grants(user.id), user_id=user.id)
    await store.touch_login(user.id, datetime.now(timezone.utc))
    token, expires_in = make_token(user, grants, remember_me=remember_me)
    log.info("login_ok", extra={"user_id": user.id, "grants": len(grants)})
    return LoginResult(token=token, user=user, grants=grants, expires_in=expires_in)


def serialize_user(user: UserRecord, grants: Iterable[Grant] = ()) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "is_active": user.is_active,
        "last_login": user.last_login,
        "grants": grants_to_claims(grants),
    }
