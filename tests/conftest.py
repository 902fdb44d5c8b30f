import os
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FILE_PATH"] = ""
os.environ["REFERENCE_TIMEZONE"] = "UTC"

from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from custody.api.deps import get_coordinator
from custody.core.lifecycle import LifecycleCoordinator
from custody.core.notifications import NotificationDispatcher
from custody.core.permissions import AccessTier, Actor
from custody.core.security import create_access_token
from custody.db.store import InMemoryReservationStore
from custody.main import app
from custody.models.asset import Asset
from custody.models.reservation import Reservation

TODAY = date(2025, 3, 10)


class FrozenClock:
    """Callable clock the tests can move forward by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set_day(self, day: date, hour: int = 9) -> None:
        self.now = datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


class RecordingHook:
    def __init__(self):
        self.events = []

    async def __call__(self, event, reservation):
        self.events.append((event, reservation.id))


def day(offset: int) -> date:
    return TODAY + timedelta(days=offset)


@pytest.fixture
def clock():
    return FrozenClock(datetime(TODAY.year, TODAY.month, TODAY.day, 9, tzinfo=timezone.utc))


@pytest.fixture
def hook():
    return RecordingHook()


@pytest.fixture
def store():
    return InMemoryReservationStore()


@pytest.fixture
def coordinator(store, clock, hook):
    return LifecycleCoordinator(store, NotificationDispatcher(hook), clock=clock, tz=timezone.utc)


@pytest.fixture
def approver():
    return Actor(actor_id="approver-1", tier=AccessTier.APPROVER, display_name="Admin")


@pytest.fixture
def requester():
    return Actor(actor_id="user-1", tier=AccessTier.REQUESTER)


@pytest.fixture
def other_requester():
    return Actor(actor_id="user-2", tier=AccessTier.REQUESTER)


async def register(coordinator, actor, name="Projector", category="AV"):
    return await coordinator.register_asset(actor, Asset.Create(name=name, category=category))


async def submit(coordinator, actor, item_id, start, end, return_date=None):
    return await coordinator.create_reservation(
        actor,
        Reservation.Create(item_id=item_id, start_date=start, end_date=end, return_date=return_date),
    )


@pytest.fixture
def client(coordinator):
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_coordinator, None)


def auth_headers(sub: str, role: str = "user", **extra) -> dict:
    token = create_access_token({"sub": sub, "role": role, **extra})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return auth_headers("approver-1", role="admin")


@pytest.fixture
def user_headers():
    return auth_headers("user-1", role="user")
