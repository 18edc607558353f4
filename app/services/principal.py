"""
Principal / Grant: хто робить запит і з якими правами.

Principal будується з уже перевіреного payload токена (підпис і exp перевіряє
app.core.security) і живе один запит. Жодних звернень до БД тут немає.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from app.core.errors import AuthenticationError


class RoleName(str, enum.Enum):
    admin = "Admin"
    manager = "Manager"
    agent = "Agent"
    user = "User"

    @classmethod
    def parse(cls, value: Any) -> "RoleName":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            wanted = value.strip().lower()
            for role in cls:
                if role.value.lower() == wanted:
                    return role
        raise ValueError(f"unknown_role:{value!r}")


# ролі, які можуть виконувати заявки (бути assignee)
STAFF_ROLES = frozenset({RoleName.admin, RoleName.manager, RoleName.agent})


@dataclass(frozen=True)
class Grant:
    role: RoleName
    department_id: Optional[int] = None
    team_id: Optional[int] = None

    @classmethod
    def build(
        cls,
        role: Any,
        department_id: Optional[int] = None,
        team_id: Optional[int] = None,
    ) -> "Grant":
        """
        Валідує форму grant-а:
          - team без department — некоректно;
          - Manager/Agent завжди прив'язані до відділу;
          - Admin/User не мають області, department/team ігноруються.
        Належність команди до відділу перевіряє services.auth.ensure_grant_consistent.
        """
        role = RoleName.parse(role)
        if role in (RoleName.admin, RoleName.user):
            return cls(role=role)
        if department_id is None:
            raise ValueError(f"{role.value.lower()}_grant_requires_department")
        return cls(role=role, department_id=int(department_id),
                   team_id=int(team_id) if team_id is not None else None)

    def to_claim(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "department_id": self.department_id,
            "team_id": self.team_id,
        }


@dataclass(frozen=True)
class Principal:
    user_id: int
    is_active: bool = True
    grants: FrozenSet[Grant] = field(default_factory=frozenset)
    email: Optional[str] = None

    def roles(self) -> FrozenSet[RoleName]:
        return frozenset(g.role for g in self.grants)

    def has_role(self, role: RoleName) -> bool:
        return any(g.role is role for g in self.grants)

    @property
    def is_admin(self) -> bool:
        return self.has_role(RoleName.admin)


def grants_to_claims(grants: Iterable[Grant]) -> List[Dict[str, Any]]:
    # стабільний порядок, щоб токен не залежав від порядку рядків у БД
    ordered = sorted(grants, key=lambda g: (g.role.value, g.department_id or 0, g.team_id or 0))
    return [g.to_claim() for g in ordered]


def _claim_int(value: Any, what: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise AuthenticationError(f"Malformed {what} claim")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise AuthenticationError(f"Malformed {what} claim")


def resolve(payload: Mapping[str, Any]) -> Principal:
    """
    Перетворює payload токена на Principal.
    Помилка AuthenticationError — якщо claims порожні/биті або користувач неактивний.
    """
    if not payload:
        raise AuthenticationError("Empty credential")

    user_id = _claim_int(payload.get("sub"), "subject")
    if user_id is None or user_id <= 0:
        raise AuthenticationError("Credential has no valid subject")

    if payload.get("active") is False:
        raise AuthenticationError("Account is disabled")

    raw_grants = payload.get("grants", [])
    if not isinstance(raw_grants, list):
        raise AuthenticationError("Malformed grants claim")

    grants = set()
    for raw in raw_grants:
        if not isinstance(raw, Mapping) or "role" not in raw:
            raise AuthenticationError("Malformed grant claim")
        try:
            grant = Grant.build(
                raw.get("role"),
                department_id=_claim_int(raw.get("department_id"), "department"),
                team_id=_claim_int(raw.get("team_id"), "team"),
            )
        except ValueError as e:
            raise AuthenticationError(f"Malformed grant claim: {e}") from e
        grants.add(grant)

    email = payload.get("email")
    return Principal(
        user_id=user_id,
        is_active=True,
        grants=frozenset(grants),
        email=email if isinstance(email, str) else None,
    )
