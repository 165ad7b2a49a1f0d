import datetime as dt
from collections.abc import Iterable

from loguru import logger
from pydantic import BaseModel, ConfigDict

from slotwise.domain.models import BreakWindow, SlotCandidate, SlotReason
from slotwise.scheduling.ports import BookingStoreProtocol, ScheduleStoreProtocol
from slotwise.scheduling.time_helpers import day_of_week, minutes_to_time, time_to_minutes

NO_SCHEDULE = SlotCandidate(time=None, available=False, reason=SlotReason.NO_SCHEDULE_CONFIGURED)


class WorkingWindow(BaseModel):
    """The effective working hours for one doctor on one date."""

    model_config = ConfigDict(frozen=True)

    start: dt.time
    end: dt.time
    breaks: tuple[BreakWindow, ...] = ()

    def in_break(self, time: dt.time) -> bool:
        return any(b.contains(time) for b in self.breaks)


def generate_slots(
    window: WorkingWindow,
    booked_times: Iterable[dt.time],
    slot_minutes: int = 30,
) -> list[SlotCandidate]:
    """Lay the slot grid over ``window`` and mark breaks and bookings.

    Only slots that fit entirely inside the window are generated. A slot in a
    break is reported as ``break`` even if a booking also sits on it.
    """
    booked = {t.replace(second=0, microsecond=0) for t in booked_times}
    start = time_to_minutes(window.start)
    end = time_to_minutes(window.end)

    slots: list[SlotCandidate] = []
    for minutes in range(start, end - slot_minutes + 1, slot_minutes):
        time = minutes_to_time(minutes)
        if window.in_break(time):
            slots.append(SlotCandidate(time=time, available=False, reason=SlotReason.BREAK))
        elif time in booked:
            slots.append(SlotCandidate(time=time, available=False, reason=SlotReason.ALREADY_BOOKED))
        else:
            slots.append(SlotCandidate(time=time, available=True))
    return slots


class SlotResolver:
    """Computes which slots a doctor can be booked into on a given date.

    Side-effect free: schedules and bookings are read fresh on every call.
    """

    def __init__(
        self,
        schedules: ScheduleStoreProtocol,
        bookings: BookingStoreProtocol,
        *,
        slot_minutes: int = 30,
    ) -> None:
        self._schedules = schedules
        self._bookings = bookings
        self._slot_minutes = slot_minutes

    @property
    def slot_minutes(self) -> int:
        return self._slot_minutes

    async def working_window(self, doctor_id: str, date: dt.date) -> WorkingWindow | None:
        """Merge the weekly entry with any per-date override.

        Returns None when the doctor does not work on ``date``.
        """
        weekly = await self._schedules.get_weekly_entry(doctor_id, day_of_week(date))
        override = await self._schedules.get_override(doctor_id, date)

        if override is not None:
            if not override.is_available:
                return None
            start = override.start_time or (weekly.start_time if weekly else None)
            end = override.end_time or (weekly.end_time if weekly else None)
            if start is None or end is None:
                return None
            breaks = override.breaks or (weekly.breaks if weekly else ())
            return WorkingWindow(start=start, end=end, breaks=breaks)

        if weekly is None or not weekly.is_available:
            return None
        return WorkingWindow(start=weekly.start_time, end=weekly.end_time, breaks=weekly.breaks)

    async def resolve(self, doctor_id: str, date: dt.date) -> list[SlotCandidate]:
        """Return the ordered slot candidates for ``doctor_id`` on ``date``.

        A doctor with no schedule for the day yields the single
        ``no_schedule_configured`` sentinel, never an empty list.
        """
        window = await self.working_window(doctor_id, date)
        if window is None:
            logger.info("No schedule configured: doctor={}, date={}", doctor_id, date)
            return [NO_SCHEDULE]

        appointments = await self._bookings.list_active(doctor_id, date)
        slots = generate_slots(window, (a.time for a in appointments), self._slot_minutes)
        if not slots:
            logger.info("Working window too short for a slot: doctor={}, date={}", doctor_id, date)
            return [NO_SCHEDULE]

        logger.debug(
            "Resolved {} slot(s), {} available: doctor={}, date={}",
            len(slots),
            sum(1 for s in slots if s.available),
            doctor_id,
            date,
        )
        return slots

    async def check(self, doctor_id: str, date: dt.date, time: dt.time) -> SlotCandidate:
        """Report the availability of a single slot."""
        window = await self.working_window(doctor_id, date)
        if window is None:
            return NO_SCHEDULE

        time = time.replace(second=0, microsecond=0)
        offset = time_to_minutes(time) - time_to_minutes(window.start)
        fits = (
            offset >= 0
            and offset % self._slot_minutes == 0
            and time_to_minutes(time) + self._slot_minutes <= time_to_minutes(window.end)
        )
        if not fits:
            return SlotCandidate(time=time, available=False, reason=SlotReason.OUTSIDE_SCHEDULE)
        if window.in_break(time):
            return SlotCandidate(time=time, available=False, reason=SlotReason.BREAK)

        appointments = await self._bookings.list_active(doctor_id, date)
        if any(a.time.replace(second=0, microsecond=0) == time for a in appointments):
            return SlotCandidate(time=time, available=False, reason=SlotReason.ALREADY_BOOKED)
        return SlotCandidate(time=time, available=True)
