"""
Reports service

Списки та агреговані зрізи по заявках. Кожен зріз іде через build_filter,
тож лічильники рахують лише те, що principal має право бачити.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.services.filters import TicketFilterIn, build_filter
from app.services.principal import Principal
from app.services.records import TicketRecord
from app.services.store import TicketStore


async def list_tickets(
    store: TicketStore,
    principal: Principal,
    requested: Optional[TicketFilterIn] = None,
    *,
    limit: Optional[int] = 50,
    offset: int = 0,
) -> Tuple[List[TicketRecord], int]:
    flt = build_filter(principal, requested)
    items = await store.query_tickets(flt, limit=limit, offset=offset)
    total = await store.count_tickets(flt)
    return items, total


async def tickets_between(store: TicketStore, principal: Principal,
                          start_date: datetime, end_date: datetime) -> List[TicketRecord]:
    """Заявки, створені в [start_date, end_date] (обидві межі включно)."""
    flt = build_filter(principal, TicketFilterIn(start_date=start_date, end_date=end_date))
    return await store.query_tickets(flt)


async def count(store: TicketStore, principal: Principal,
                requested: Optional[TicketFilterIn] = None) -> int:
    return await store.count_tickets(build_filter(principal, requested))


async def active_count(store: TicketStore, principal: Principal,
                       requested: Optional[TicketFilterIn] = None) -> int:
    # активна = ще не закрита (closed_at порожній)
    requested = replace(requested or TicketFilterIn(), active_only=True)
    return await count(store, principal, requested)


async def count_by_status(store: TicketStore, principal: Principal, status_id: int) -> int:
    return await count(store, principal, TicketFilterIn.of(status_ids=[status_id]))


async def count_by_user(store: TicketStore, principal: Principal, user_id: int) -> int:
    # як і раніше: "заявки користувача" = створені ним
    return await count(store, principal, TicketFilterIn(created_by_id=user_id))


async def count_by_department(store: TicketStore, principal: Principal, department_id: int) -> int:
    return await count(store, principal, TicketFilterIn.of(department_ids=[department_id]))


async def summary(store: TicketStore, principal: Principal,
                  requested: Optional[TicketFilterIn] = None) -> Dict[str, Any]:
    """
    Простий звіт у межах видимості:
      - розподіл за статусом і пріоритетом (назви довідника, нулі теж);
      - скільки всього і скільки ще відкрито.
    """
    flt = build_filter(principal, requested)
    by_status = await store.count_grouped(flt, "status_id")
    by_priority = await store.count_grouped(flt, "priority_id")
    statuses = await store.list_statuses()
    priorities = await store.list_priorities()

    active = await store.count_tickets(replace(flt, active_only=True))
    return {
        "total": sum(by_status.values()),
        "active": active,
        "by_status": {s.name: by_status.get(s.id, 0) for s in statuses},
        "by_priority": {p.name: by_priority.get(p.id, 0) for p in priorities},
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
