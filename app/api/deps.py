from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import AuthenticationError, ForbiddenError
from app.core.security import decode_token
from app.db.session import get_session
from app.services.lifecycle import TicketLifecycle
from app.services.notifications import enqueue
from app.services.principal import Principal, RoleName, resolve
from app.services.store import SqlTicketStore, TicketStore

# OAuth2 bearer (для інтеграції з /api/docs)
# префікс /api у main.py, тож вказуємо повний шлях
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# Тип для DI сесії БД
DBDep = Annotated[AsyncSession, Depends(get_session)]


async def get_store(db: DBDep) -> TicketStore:
    # нове сховище на кожен запит, без кешу
    return SqlTicketStore(db)


StoreDep = Annotated[TicketStore, Depends(get_store)]


async def get_principal(token: Annotated[str | None, Depends(oauth2_scheme)]) -> Principal:
    """
    Декодує Bearer JWT і будує Principal лише з claims (без звернення до БД).
    Ролі/відділи з токена діють до його exp.
    """
    if not token:
        raise AuthenticationError("Not authenticated")
    try:
        payload = decode_token(token, settings.jwt_secret, settings.jwt_alg)
    except ValueError as e:
        raise AuthenticationError("Invalid or expired token") from e
    return resolve(payload)


PrincipalDep = Annotated[Principal, Depends(get_principal)]


def require_role(*allowed: RoleName):
    """
    Пускає лише principal-ів, що мають хоча б один grant з allowed (область не важлива).
    Приклад: dependencies=[Depends(require_role(RoleName.admin))]
    """
    allowed_set = frozenset(allowed)

    async def _guard(principal: PrincipalDep) -> Principal:
        if not principal.roles() & allowed_set:
            raise ForbiddenError(f"Requires role: {', '.join(sorted(r.value for r in allowed_set))}")
        return principal

    return _guard


AdminDep = Annotated[Principal, Depends(require_role(RoleName.admin))]
StaffDep = Annotated[Principal, Depends(require_role(RoleName.admin, RoleName.manager, RoleName.agent))]


def get_notifier():
    return enqueue


async def get_lifecycle(store: StoreDep, notify=Depends(get_notifier)) -> TicketLifecycle:
    return TicketLifecycle(store, notify, recheck_grants=settings.recheck_grants_on_write)


LifecycleDep = Annotated[TicketLifecycle, Depends(get_lifecycle)]
