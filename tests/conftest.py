import pytest

from app.services.lifecycle import TicketLifecycle
from support import FakeClock, principal_for, seeded_store


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def __call__(self, event_type, payload):
        self.events.append((event_type, dict(payload)))
        return "job-1"

    def types(self):
        return [e for e, _ in self.events]


@pytest.fixture
def store():
    return seeded_store()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(store, notifier, clock):
    return TicketLifecycle(store, notifier, clock=clock)


@pytest.fixture
def as_user(store):
    """as_user(user_id) -> Principal with the user's seeded grants."""
    def build(user_id, **kwargs):
        return principal_for(store, user_id, **kwargs)
    return build
