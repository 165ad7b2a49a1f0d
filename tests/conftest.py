import datetime as dt

import pytest

from slotwise.config import SchedulingConfig
from slotwise.domain.models import WeeklyScheduleEntry
from slotwise.scheduling.adapters.memory import (
    InMemoryBookingStore,
    InMemoryScheduleStore,
    InMemoryWaitlistStore,
    RecordingNotifier,
)
from slotwise.scheduling.service import SchedulingService

UTC = dt.timezone.utc

# Sunday morning; MONDAY is the next day.
NOW = dt.datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
MONDAY = dt.date(2026, 3, 2)
DOCTOR = "doc-1"
DEPARTMENT = "cardiology"


class FrozenClock:
    """A manually advanced clock."""

    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += dt.timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def schedules() -> InMemoryScheduleStore:
    """Doctor works Mondays 09:00-12:00 with no breaks."""
    store = InMemoryScheduleStore()
    store.add_weekly(
        WeeklyScheduleEntry(
            staff_id=DOCTOR,
            day_of_week=1,
            start_time=dt.time(9, 0),
            end_time=dt.time(12, 0),
        )
    )
    store.set_department(DOCTOR, DEPARTMENT)
    return store


@pytest.fixture
def bookings(clock: FrozenClock) -> InMemoryBookingStore:
    return InMemoryBookingStore(clock=clock)


@pytest.fixture
def waitlist_store() -> InMemoryWaitlistStore:
    return InMemoryWaitlistStore()


@pytest.fixture
def notifier(clock: FrozenClock) -> RecordingNotifier:
    return RecordingNotifier(clock=clock)


@pytest.fixture
def service(
    schedules: InMemoryScheduleStore,
    bookings: InMemoryBookingStore,
    waitlist_store: InMemoryWaitlistStore,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> SchedulingService:
    return SchedulingService(
        schedules,
        bookings,
        waitlist_store,
        notifier,
        config=SchedulingConfig(),
        clock=clock,
    )
