from dataclasses import replace

import pytest

from app.core.errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from app.services.lifecycle import ALLOWED_TRANSITIONS, StatusName, TicketLifecycle, can_transition
from app.services.principal import Grant

from support import (
    ADMIN,
    CANCELLED,
    CLOSED,
    CS_MANAGER,
    CUSTOMER_SERVICE,
    END_USER,
    HARDWARE,
    HELP_DESK,
    HELPDESK_AGENT,
    HIGH,
    HW_AGENT,
    HW_TEAM,
    IN_PROGRESS,
    INACTIVE_AGENT,
    IT,
    IT_AGENT,
    IT_MANAGER,
    LOW,
    MEDIUM,
    NO_GRANTS,
    OPEN,
    PENDING,
    RESOLVED,
    RETIRED_CATEGORY,
    SUPPORT,
    SW_AGENT,
    SW_TEAM,
    make_ticket,
)

STATE_IDS = {
    StatusName.open: OPEN,
    StatusName.in_progress: IN_PROGRESS,
    StatusName.pending: PENDING,
    StatusName.resolved: RESOLVED,
    StatusName.closed: CLOSED,
    StatusName.cancelled: CANCELLED,
}


def new_ticket_kwargs(**overrides):
    data = dict(title="VPN drops", description="Every 5 minutes", category_id=SUPPORT,
                priority_id=MEDIUM, department_id=IT, team_id=SW_TEAM)
    data.update(overrides)
    return data


def comments_of(store, ticket_id):
    return [c.content for c in store.comments if c.ticket_id == ticket_id]


# ---------- create / get ----------

async def test_create_ticket_starts_open_and_unassigned(lifecycle, as_user, notifier):
    t = await lifecycle.create_ticket(as_user(END_USER), **new_ticket_kwargs())
    assert t.id is not None
    assert t.status_id == OPEN
    assert t.assigned_to_id is None
    assert t.closed_at is None
    assert t.created_by_id == END_USER
    assert t.version == 1
    assert notifier.types() == ["ticket_created"]
    assert notifier.events[0][1]["ticket_id"] == t.id


async def test_create_then_get_returns_same_ticket(lifecycle, as_user):
    created = await lifecycle.create_ticket(as_user(END_USER), **new_ticket_kwargs())
    fetched = await lifecycle.get_ticket(as_user(END_USER), created.id)
    assert fetched == created


@pytest.mark.parametrize("overrides,error,message", [
    ({"category_id": 99}, NotFoundError, "Category not found with ID: 99"),
    ({"priority_id": 99}, NotFoundError, "Priority not found with ID: 99"),
    ({"department_id": 99, "team_id": None}, NotFoundError, "Department not found with ID: 99"),
    ({"team_id": 99}, NotFoundError, "Team not found with ID: 99"),
    ({"category_id": RETIRED_CATEGORY}, ValidationError, "Category is not active"),
    ({"team_id": HELP_DESK}, ValidationError, "Team does not belong to the ticket's department"),
    ({"title": "   "}, ValidationError, "Title is required"),
])
async def test_create_ticket_validation(lifecycle, as_user, store, overrides, error, message):
    with pytest.raises(error) as exc:
        await lifecycle.create_ticket(as_user(END_USER), **new_ticket_kwargs(**overrides))
    assert exc.value.message == message
    assert store.tickets == {}


async def test_create_requires_a_grant(lifecycle, as_user):
    with pytest.raises(ForbiddenError):
        await lifecycle.create_ticket(as_user(NO_GRANTS), **new_ticket_kwargs())


async def test_plain_user_cannot_preassign(lifecycle, as_user):
    with pytest.raises(ForbiddenError):
        await lifecycle.create_ticket(as_user(END_USER), **new_ticket_kwargs(assigned_to_id=SW_AGENT))


async def test_manager_may_preassign_eligible_agent(lifecycle, as_user):
    t = await lifecycle.create_ticket(as_user(IT_MANAGER), **new_ticket_kwargs(assigned_to_id=SW_AGENT))
    assert t.assigned_to_id == SW_AGENT
    assert t.status_id == OPEN


async def test_get_missing_ticket(lifecycle, as_user):
    with pytest.raises(NotFoundError) as exc:
        await lifecycle.get_ticket(as_user(ADMIN), 999)
    assert exc.value.message == "Ticket not found with ID: 999"


async def test_get_ticket_outside_scope_is_forbidden(lifecycle, as_user, store):
    t = make_ticket(store, department_id=IT, team_id=HW_TEAM)
    with pytest.raises(ForbiddenError):
        await lifecycle.get_ticket(as_user(SW_AGENT), t.id)


# ---------- assign / unassign / reassign ----------

async def test_team_agent_takes_open_ticket(lifecycle, as_user, store, notifier):
    t = make_ticket(store, status_id=OPEN, team_id=SW_TEAM)
    updated = await lifecycle.assign_ticket(as_user(SW_AGENT), t.id, SW_AGENT)
    assert updated.status_id == IN_PROGRESS
    assert updated.assigned_to_id == SW_AGENT
    assert updated.version == t.version + 1
    assert updated.updated_at > t.updated_at
    assert comments_of(store, t.id) == ["Ticket assigned to Jane Smith"]
    assert store.comments[0].is_internal
    assert notifier.types() == ["ticket_assigned", "status_changed"]


async def test_agent_cannot_close_in_progress_ticket(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, team_id=SW_TEAM)
    await lifecycle.assign_ticket(as_user(SW_AGENT), t.id, SW_AGENT)
    with pytest.raises(ValidationError):
        await lifecycle.close_ticket(as_user(SW_AGENT), t.id)
    assert store.tickets[t.id].status_id == IN_PROGRESS


async def test_manager_closes_in_progress_ticket(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    closed = await lifecycle.close_ticket(as_user(IT_MANAGER), t.id)
    assert closed.status_id == CLOSED
    assert closed.closed_at is not None


async def test_inactive_principal_is_rejected_before_anything_else(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN)
    with pytest.raises(AuthenticationError):
        await lifecycle.assign_ticket(as_user(INACTIVE_AGENT, active=False), t.id, INACTIVE_AGENT)
    assert store.tickets[t.id] == t


async def test_agent_cannot_assign_other_people(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN)
    with pytest.raises(ForbiddenError):
        await lifecycle.assign_ticket(as_user(SW_AGENT), t.id, IT_AGENT)


@pytest.mark.parametrize("assignee,error", [
    (HELPDESK_AGENT, ValidationError),   # другий відділ
    (HW_AGENT, ValidationError),         # інша команда того ж відділу
    (END_USER, ValidationError),         # не співробітник
    (INACTIVE_AGENT, ValidationError),   # вимкнений акаунт
    (404, NotFoundError),
])
async def test_manager_assign_validates_assignee(lifecycle, as_user, store, assignee, error):
    t = make_ticket(store, status_id=OPEN, team_id=SW_TEAM)
    with pytest.raises(error):
        await lifecycle.assign_ticket(as_user(IT_MANAGER), t.id, assignee)
    assert store.tickets[t.id] == t


async def test_department_agent_is_eligible_for_any_team(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, team_id=SW_TEAM)
    updated = await lifecycle.assign_ticket(as_user(IT_MANAGER), t.id, IT_AGENT)
    assert updated.assigned_to_id == IT_AGENT


async def test_assign_checks_live_grants_not_token(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN)
    store.grants[SW_AGENT] = [Grant.build("Agent", CUSTOMER_SERVICE, HELP_DESK)]
    with pytest.raises(ValidationError):
        await lifecycle.assign_ticket(as_user(IT_MANAGER), t.id, SW_AGENT)


async def test_cannot_assign_closed_ticket(lifecycle, as_user, store):
    t = make_ticket(store, status_id=CLOSED)
    with pytest.raises(ValidationError):
        await lifecycle.assign_ticket(as_user(IT_MANAGER), t.id, SW_AGENT)


async def test_assign_keeps_non_open_status(lifecycle, as_user, store):
    t = make_ticket(store, status_id=PENDING, assigned_to_id=None)
    updated = await lifecycle.assign_ticket(as_user(IT_MANAGER), t.id, SW_AGENT)
    assert updated.status_id == PENDING


async def test_reassign_is_a_single_write(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    seen = []

    async def observe(ticket):
        seen.append(store.tickets[ticket.id].assigned_to_id)

    store.before_save = observe
    updated = await lifecycle.reassign_ticket(as_user(IT_MANAGER), t.id, IT_AGENT)
    assert updated.assigned_to_id == IT_AGENT
    assert store.saves == 1
    assert None not in seen
    assert comments_of(store, t.id) == ["Ticket reassigned to Dan Floor"]


async def test_reassign_to_current_assignee_is_rejected(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    with pytest.raises(ValidationError):
        await lifecycle.reassign_ticket(as_user(IT_MANAGER), t.id, SW_AGENT)


async def test_failed_reassign_leaves_previous_assignee(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    with pytest.raises(ValidationError):
        await lifecycle.reassign_ticket(as_user(IT_MANAGER), t.id, HELPDESK_AGENT)
    assert store.tickets[t.id].assigned_to_id == SW_AGENT
    assert store.comments == []


async def test_unassign(lifecycle, as_user, store, notifier):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    updated = await lifecycle.unassign_ticket(as_user(IT_MANAGER), t.id)
    assert updated.assigned_to_id is None
    assert comments_of(store, t.id) == ["Ticket unassigned"]
    assert notifier.types() == ["ticket_unassigned"]


async def test_unassign_rules(lifecycle, as_user, store):
    unassigned = make_ticket(store, status_id=OPEN)
    with pytest.raises(ValidationError):
        await lifecycle.unassign_ticket(as_user(IT_MANAGER), unassigned.id)

    someone_elses = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=IT_AGENT)
    with pytest.raises(ForbiddenError):
        await lifecycle.unassign_ticket(as_user(SW_AGENT), someone_elses.id)

    mine = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    assert (await lifecycle.unassign_ticket(as_user(SW_AGENT), mine.id)).assigned_to_id is None


async def test_agent_cannot_take_colleagues_ticket_by_reassigning(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, team_id=None, assigned_to_id=SW_AGENT)
    with pytest.raises(ForbiddenError):
        await lifecycle.unassign_ticket(as_user(HW_AGENT), t.id)
    with pytest.raises(ForbiddenError):
        await lifecycle.reassign_ticket(as_user(HW_AGENT), t.id, HW_AGENT)
    assert store.tickets[t.id] == t
    assert store.comments == []

    taken = await lifecycle.reassign_ticket(as_user(IT_MANAGER), t.id, HW_AGENT)
    assert taken.assigned_to_id == HW_AGENT


# ---------- status transitions ----------

ALL_STATES = list(StatusName)


@pytest.mark.parametrize("src", ALL_STATES)
@pytest.mark.parametrize("dst", ALL_STATES)
async def test_transition_grid_for_team_agent(lifecycle, as_user, store, src, dst):
    t = make_ticket(store, status_id=STATE_IDS[src], assigned_to_id=SW_AGENT)
    if dst in ALLOWED_TRANSITIONS[src]:
        updated = await lifecycle.update_status(as_user(SW_AGENT), t.id, STATE_IDS[dst])
        assert updated.status_id == STATE_IDS[dst]
        assert comments_of(store, t.id) == [f"Status changed to {store.statuses[STATE_IDS[dst]].name}"]
    else:
        with pytest.raises(ValidationError):
            await lifecycle.update_status(as_user(SW_AGENT), t.id, STATE_IDS[dst])
        assert store.tickets[t.id] == t


@pytest.mark.parametrize("src", ALL_STATES)
async def test_manager_may_cancel_from_any_state(lifecycle, as_user, store, src):
    t = make_ticket(store, status_id=STATE_IDS[src], assigned_to_id=SW_AGENT)
    if src is StatusName.cancelled:
        with pytest.raises(ValidationError):
            await lifecycle.update_status(as_user(IT_MANAGER), t.id, CANCELLED)
    else:
        updated = await lifecycle.update_status(as_user(IT_MANAGER), t.id, CANCELLED)
        assert updated.status_id == CANCELLED
        assert updated.closed_at is not None
        assert updated.closed_at != t.closed_at


def test_override_only_adds_cancellation():
    assert not can_transition(StatusName.pending, StatusName.closed, override=True)
    assert can_transition(StatusName.pending, StatusName.cancelled, override=True)
    assert not can_transition(StatusName.pending, StatusName.cancelled)
    assert can_transition(StatusName.closed, StatusName.cancelled, override=True)
    assert not can_transition(StatusName.closed, StatusName.cancelled)
    assert not can_transition(StatusName.cancelled, StatusName.cancelled, override=True)


async def test_closed_ticket_reopens_only_explicitly(lifecycle, as_user, store):
    t = make_ticket(store, status_id=CLOSED, assigned_to_id=SW_AGENT)
    with pytest.raises(ValidationError):
        await lifecycle.update_status(as_user(ADMIN), t.id, OPEN)
    reopened = await lifecycle.reopen_ticket(as_user(SW_AGENT), t.id)
    assert reopened.status_id == OPEN
    assert reopened.closed_at is None


@pytest.mark.parametrize("src", [OPEN, IN_PROGRESS, PENDING, CANCELLED])
async def test_reopen_requires_resolved_or_closed(lifecycle, as_user, store, src):
    t = make_ticket(store, status_id=src, assigned_to_id=SW_AGENT)
    with pytest.raises(ValidationError):
        await lifecycle.reopen_ticket(as_user(ADMIN), t.id)


async def test_ticket_creator_cannot_reopen_or_close(lifecycle, as_user, store):
    t = make_ticket(store, status_id=RESOLVED, created_by_id=END_USER)
    with pytest.raises(ForbiddenError):
        await lifecycle.reopen_ticket(as_user(END_USER), t.id)
    with pytest.raises(ForbiddenError):
        await lifecycle.close_ticket(as_user(END_USER), t.id)


async def test_closed_at_follows_status(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    agent = as_user(SW_AGENT)
    t = await lifecycle.update_status(agent, t.id, RESOLVED)
    assert t.closed_at is None
    t = await lifecycle.close_ticket(agent, t.id)
    assert t.closed_at is not None
    t = await lifecycle.reopen_ticket(agent, t.id)
    assert t.closed_at is None
    t = await lifecycle.update_status(agent, t.id, CANCELLED)
    assert t.closed_at is not None


async def test_close_rules(lifecycle, as_user, store):
    resolved = make_ticket(store, status_id=RESOLVED, assigned_to_id=SW_AGENT)
    assert (await lifecycle.close_ticket(as_user(SW_AGENT), resolved.id)).status_id == CLOSED
    with pytest.raises(ValidationError) as exc:
        await lifecycle.close_ticket(as_user(ADMIN), resolved.id)
    assert exc.value.message == "Ticket is already closed"


async def test_start_work_on_unassigned_ticket_assigns_actor(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, assigned_to_id=None)
    updated = await lifecycle.update_status(as_user(SW_AGENT), t.id, IN_PROGRESS)
    assert updated.status_id == IN_PROGRESS
    assert updated.assigned_to_id == SW_AGENT


async def test_start_work_needs_eligible_actor(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, assigned_to_id=None)
    agent = as_user(SW_AGENT)
    store.grants[SW_AGENT] = []
    with pytest.raises(ValidationError):
        await lifecycle.update_status(agent, t.id, IN_PROGRESS)


async def test_unknown_status(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    with pytest.raises(NotFoundError) as exc:
        await lifecycle.update_status(as_user(SW_AGENT), t.id, 42)
    assert exc.value.message == "Status not found with ID: 42"


async def test_dangling_reference_is_reported_by_name(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    del store.categories[t.category_id]
    with pytest.raises(NotFoundError) as exc:
        await lifecycle.update_status(as_user(SW_AGENT), t.id, RESOLVED)
    assert exc.value.entity == "Category"


async def test_update_priority(lifecycle, as_user, store, notifier):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT, priority_id=MEDIUM)
    updated = await lifecycle.update_priority(as_user(SW_AGENT), t.id, HIGH)
    assert updated.priority_id == HIGH
    assert comments_of(store, t.id) == ["Priority changed to High"]
    assert notifier.types() == ["priority_changed"]
    with pytest.raises(NotFoundError):
        await lifecycle.update_priority(as_user(SW_AGENT), t.id, 77)


async def test_same_priority_still_bumps_updated_at(lifecycle, as_user, store, notifier):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT, priority_id=MEDIUM)
    updated = await lifecycle.update_priority(as_user(SW_AGENT), t.id, MEDIUM)
    assert updated.priority_id == MEDIUM
    assert updated.updated_at > t.updated_at
    assert store.saves == 1
    assert comments_of(store, t.id) == []
    assert notifier.types() == []


# ---------- concurrency ----------

async def test_concurrent_status_changes_exactly_one_wins(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)

    async def racing_cancel(_):
        await lifecycle.update_status(as_user(IT_MANAGER), t.id, CANCELLED)

    store.before_save = racing_cancel
    with pytest.raises(ValidationError) as exc:
        await lifecycle.update_status(as_user(SW_AGENT), t.id, RESOLVED)
    assert isinstance(exc.value, StaleStateError)
    assert exc.value.reason == "stale_state"
    assert store.tickets[t.id].status_id == CANCELLED
    assert comments_of(store, t.id) == ["Status changed to Cancelled"]


async def test_late_transition_is_revalidated_against_current_state(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, assigned_to_id=SW_AGENT)
    await lifecycle.update_status(as_user(SW_AGENT), t.id, RESOLVED)
    with pytest.raises(ValidationError):
        await lifecycle.update_status(as_user(SW_AGENT), t.id, CANCELLED)
    assert store.tickets[t.id].status_id == RESOLVED


async def test_concurrent_assignments_do_not_overwrite(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN)

    async def racing_assign(_):
        await lifecycle.assign_ticket(as_user(IT_MANAGER), t.id, IT_AGENT)

    store.before_save = racing_assign
    with pytest.raises(StaleStateError):
        await lifecycle.assign_ticket(as_user(SW_AGENT), t.id, SW_AGENT)
    assert store.tickets[t.id].assigned_to_id == IT_AGENT


# ---------- update ----------

async def test_update_ticket_fields(lifecycle, as_user, store, notifier):
    t = make_ticket(store, status_id=IN_PROGRESS, team_id=SW_TEAM)
    updated = await lifecycle.update_ticket(as_user(IT_MANAGER), t.id, title="New title", team_id=HW_TEAM)
    assert updated.title == "New title"
    assert updated.team_id == HW_TEAM
    assert notifier.types() == ["ticket_updated"]


async def test_update_ticket_without_changes_only_touches_updated_at(lifecycle, as_user, store, notifier):
    t = make_ticket(store, status_id=OPEN)
    updated = await lifecycle.update_ticket(as_user(IT_MANAGER), t.id, title=t.title)
    assert updated.title == t.title
    assert updated.updated_at > t.updated_at
    assert updated.version == t.version + 1
    assert store.saves == 1
    assert comments_of(store, t.id) == []
    assert notifier.types() == []


@pytest.mark.parametrize("kwargs,error", [
    ({"department_id": CUSTOMER_SERVICE}, ValidationError),
    ({"team_id": HELP_DESK}, ValidationError),
    ({"category_id": RETIRED_CATEGORY}, ValidationError),
    ({"category_id": 99}, NotFoundError),
    ({"title": ""}, ValidationError),
])
async def test_update_ticket_validation(lifecycle, as_user, store, kwargs, error):
    t = make_ticket(store, status_id=OPEN)
    with pytest.raises(error):
        await lifecycle.update_ticket(as_user(IT_MANAGER), t.id, **kwargs)


async def test_update_ticket_permissions(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, team_id=SW_TEAM, created_by_id=END_USER)
    with pytest.raises(ForbiddenError):
        await lifecycle.update_ticket(as_user(END_USER), t.id, title="Mine now")
    # агент не може винести заявку за межі своєї команди
    with pytest.raises(ForbiddenError):
        await lifecycle.update_ticket(as_user(SW_AGENT), t.id, team_id=HW_TEAM)


async def test_team_change_rechecks_assignee(lifecycle, as_user, store):
    t = make_ticket(store, status_id=IN_PROGRESS, team_id=SW_TEAM, assigned_to_id=SW_AGENT)
    with pytest.raises(ValidationError):
        await lifecycle.update_ticket(as_user(IT_MANAGER), t.id, team_id=HW_TEAM)


async def test_closed_ticket_is_read_only(lifecycle, as_user, store):
    t = make_ticket(store, status_id=CLOSED)
    with pytest.raises(ValidationError):
        await lifecycle.update_ticket(as_user(ADMIN), t.id, title="Late edit")


# ---------- comments / attachments / feedback ----------

async def test_comments_and_internal_visibility(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, created_by_id=END_USER)
    user = as_user(END_USER)
    await lifecycle.add_comment(user, t.id, "Any news?")
    await lifecycle.assign_ticket(as_user(SW_AGENT), t.id, SW_AGENT)
    await lifecycle.add_comment(as_user(SW_AGENT), t.id, "Looks like the router", is_internal=True)

    visible_to_user = [c.content for c in await lifecycle.list_comments(user, t.id)]
    visible_to_staff = [c.content for c in await lifecycle.list_comments(as_user(SW_AGENT), t.id)]
    assert visible_to_user == ["Any news?"]
    assert visible_to_staff == ["Any news?", "Ticket assigned to Jane Smith", "Looks like the router"]


async def test_comment_bumps_updated_at(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, created_by_id=END_USER)
    await lifecycle.add_comment(as_user(END_USER), t.id, "ping")
    assert store.tickets[t.id].updated_at > t.updated_at


async def test_comment_rules(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, created_by_id=END_USER)
    with pytest.raises(ForbiddenError):
        await lifecycle.add_comment(as_user(END_USER), t.id, "secret", is_internal=True)
    with pytest.raises(ValidationError):
        await lifecycle.add_comment(as_user(END_USER), t.id, "   ")
    with pytest.raises(ForbiddenError):
        await lifecycle.add_comment(as_user(HELPDESK_AGENT), t.id, "hello")


async def test_attachments(lifecycle, as_user, store):
    t = make_ticket(store, status_id=OPEN, created_by_id=END_USER)
    a = await lifecycle.add_attachment(as_user(END_USER), t.id, file_name="log.txt",
                                       file_path="/uploads/1/log.txt", content_type="text/plain", file_size=120)
    assert [x.id for x in await lifecycle.list_attachments(as_user(SW_AGENT), t.id)] == [a.id]

    with pytest.raises(ForbiddenError):
        await lifecycle.remove_attachment(as_user(SW_AGENT), a.id)
    await lifecycle.remove_attachment(as_user(END_USER), a.id)
    assert await lifecycle.list_attachments(as_user(END_USER), t.id) == []
    with pytest.raises(NotFoundError):
        await lifecycle.remove_attachment(as_user(END_USER), a.id)

    with pytest.raises(ValidationError):
        await lifecycle.add_attachment(as_user(END_USER), t.id, file_name="empty.txt",
                                       file_path="/uploads/1/empty.txt", content_type="text/plain", file_size=0)


async def test_feedback(lifecycle, as_user, store):
    t = make_ticket(store, status_id=RESOLVED, created_by_id=END_USER)
    fb = await lifecycle.submit_feedback(as_user(END_USER), t.id, 5, "Thanks!")
    assert fb.rating == 5
    assert [f.id for f in await lifecycle.list_feedback(as_user(IT_MANAGER), t.id)] == [fb.id]
    with pytest.raises(ValidationError):
        await lifecycle.submit_feedback(as_user(END_USER), t.id, 4)


@pytest.mark.parametrize("status_id,user_id,rating,error", [
    (IN_PROGRESS, END_USER, 4, ValidationError),
    (RESOLVED, END_USER, 6, ValidationError),
    (RESOLVED, END_USER, 0, ValidationError),
    (RESOLVED, IT_MANAGER, 4, ForbiddenError),
])
async def test_feedback_rules(lifecycle, as_user, store, status_id, user_id, rating, error):
    t = make_ticket(store, status_id=status_id, created_by_id=END_USER)
    with pytest.raises(error):
        await lifecycle.submit_feedback(as_user(user_id), t.id, rating)


# ---------- events / claims ----------

async def test_failing_notifier_does_not_undo_the_write(store, as_user, clock):
    def broken(event_type, payload):
        raise ConnectionError("redis is down")

    lifecycle = TicketLifecycle(store, broken, clock=clock)
    t = make_ticket(store, status_id=OPEN)
    updated = await lifecycle.assign_ticket(as_user(SW_AGENT), t.id, SW_AGENT)
    assert store.tickets[t.id] == updated


async def test_recheck_grants_uses_store_instead_of_claims(store, as_user, notifier, clock):
    lifecycle = TicketLifecycle(store, notifier, clock=clock, recheck_grants=True)
    t = make_ticket(store, status_id=OPEN)
    agent = as_user(SW_AGENT)
    store.grants[SW_AGENT] = []
    with pytest.raises(ForbiddenError):
        await lifecycle.assign_ticket(agent, t.id, SW_AGENT)

    store.users[HW_AGENT] = replace(store.users[HW_AGENT], is_active=False)
    with pytest.raises(AuthenticationError):
        await lifecycle.update_status(as_user(HW_AGENT), t.id, CANCELLED)


# ---------- scenarios ----------

async def test_printer_jam_ticket_starts_clean(lifecycle, as_user):
    t = await lifecycle.create_ticket(as_user(END_USER), title="Printer jam", description="Tray 2",
                                      category_id=HARDWARE, priority_id=LOW, department_id=IT)
    assert t.status_id == OPEN
    assert t.assigned_to_id is None
    assert t.closed_at is None


@pytest.mark.parametrize("operation", [
    lambda lc, p, tid: lc.assign_ticket(p, tid, CS_MANAGER),
    lambda lc, p, tid: lc.unassign_ticket(p, tid),
    lambda lc, p, tid: lc.update_status(p, tid, CANCELLED),
    lambda lc, p, tid: lc.close_ticket(p, tid),
    lambda lc, p, tid: lc.update_priority(p, tid, HIGH),
    lambda lc, p, tid: lc.update_ticket(p, tid, title="Not mine"),
    lambda lc, p, tid: lc.add_comment(p, tid, "hi"),
])
async def test_manager_of_other_department_cannot_touch_ticket(lifecycle, as_user, store, operation):
    t = make_ticket(store, status_id=IN_PROGRESS, department_id=IT, assigned_to_id=SW_AGENT)
    with pytest.raises(ForbiddenError):
        await operation(lifecycle, as_user(CS_MANAGER), t.id)
    assert store.tickets[t.id] == t
