import asyncio
import datetime as dt
import uuid
from typing import Any

from slotwise.domain.exceptions import NotificationDispatchError, SlotConflictError
from slotwise.domain.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    DispatchReceipt,
    ScheduleOverride,
    WaitlistEntry,
    WaitlistNotice,
    WaitlistRequest,
    WaitlistStatus,
    WeeklyScheduleEntry,
)
from slotwise.scheduling.time_helpers import Clock, utc_now


def generate_id(prefix: str) -> str:
    """Generate a prefixed short UUID."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


class InMemoryScheduleStore:
    """In-memory ScheduleStoreProtocol.

    Load it with :meth:`add_weekly`, :meth:`add_override` and
    :meth:`set_department`.
    """

    def __init__(self) -> None:
        self.weekly: dict[tuple[str, int], WeeklyScheduleEntry] = {}
        self.overrides: dict[tuple[str, dt.date], ScheduleOverride] = {}
        self.departments: dict[str, str] = {}

    def add_weekly(self, entry: WeeklyScheduleEntry) -> None:
        self.weekly[(entry.staff_id, entry.day_of_week)] = entry

    def add_override(self, override: ScheduleOverride) -> None:
        self.overrides[(override.staff_id, override.date)] = override

    def set_department(self, doctor_id: str, department_id: str) -> None:
        self.departments[doctor_id] = department_id

    async def get_weekly_entry(self, doctor_id: str, day_of_week: int) -> WeeklyScheduleEntry | None:
        return self.weekly.get((doctor_id, day_of_week))

    async def get_override(self, doctor_id: str, date: dt.date) -> ScheduleOverride | None:
        return self.overrides.get((doctor_id, date))

    async def get_department(self, doctor_id: str) -> str | None:
        return self.departments.get(doctor_id)


class InMemoryBookingStore:
    """In-memory BookingStoreProtocol with an atomic insert-if-absent.

    The uniqueness check and the write happen under one lock, with a yield
    point in between so concurrent callers really interleave. Set
    ``insert_error`` to make the next insert raise.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self.rows: dict[str, Appointment] = {}
        self.insert_error: Exception | None = None
        self._clock = clock
        self._lock = asyncio.Lock()

    def seed(self, appointment: Appointment) -> Appointment:
        """Insert a row directly, bypassing the uniqueness check."""
        self.rows[appointment.appointment_id] = appointment
        return appointment

    async def list_active(self, doctor_id: str, date: dt.date) -> list[Appointment]:
        return sorted(
            (
                a
                for a in self.rows.values()
                if a.doctor_id == doctor_id
                and a.date == date
                and a.status is not AppointmentStatus.CANCELLED
            ),
            key=lambda a: a.time,
        )

    async def insert_if_absent(self, request: BookingRequest, duration_minutes: int) -> Appointment:
        if self.insert_error:
            raise self.insert_error

        async with self._lock:
            taken = any(
                a.doctor_id == request.doctor_id
                and a.date == request.date
                and a.time == request.time
                and a.status is not AppointmentStatus.CANCELLED
                for a in self.rows.values()
            )
            if taken:
                raise SlotConflictError(request.doctor_id, request.date, request.time)

            await asyncio.sleep(0)

            appointment = Appointment(
                appointment_id=generate_id("appt"),
                doctor_id=request.doctor_id,
                patient_id=request.patient_id,
                department_id=request.department_id,
                date=request.date,
                time=request.time,
                duration_minutes=duration_minutes,
                type=request.type,
                status=AppointmentStatus.SCHEDULED,
                is_emergency=request.is_emergency,
                notes=request.notes,
                created_at=self._clock(),
            )
            self.rows[appointment.appointment_id] = appointment
            return appointment

    async def get(self, appointment_id: str) -> Appointment | None:
        return self.rows.get(appointment_id)

    async def update_status(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        target: AppointmentStatus,
    ) -> Appointment | None:
        current = self.rows.get(appointment_id)
        if current is None or current.status is not expected:
            return None
        updated = current.model_copy(update={"status": target})
        self.rows[appointment_id] = updated
        return updated


class InMemoryWaitlistStore:
    """In-memory WaitlistStoreProtocol with compare-and-set transitions."""

    def __init__(self) -> None:
        self.entries: dict[str, WaitlistEntry] = {}

    def seed(self, entry: WaitlistEntry) -> WaitlistEntry:
        self.entries[entry.entry_id] = entry
        return entry

    async def create(self, request: WaitlistRequest, created_at: dt.datetime) -> WaitlistEntry:
        entry = WaitlistEntry(
            entry_id=generate_id("wl"),
            created_at=created_at,
            status=WaitlistStatus.WAITING,
            **request.model_dump(),
        )
        self.entries[entry.entry_id] = entry
        return entry

    async def get(self, entry_id: str) -> WaitlistEntry | None:
        return self.entries.get(entry_id)

    async def list_by_status(self, statuses: list[WaitlistStatus] | None = None) -> list[WaitlistEntry]:
        if statuses is None:
            return list(self.entries.values())
        return [e for e in self.entries.values() if e.status in statuses]

    async def transition(
        self,
        entry_id: str,
        expected: WaitlistStatus,
        target: WaitlistStatus,
        changes: dict[str, Any] | None = None,
    ) -> WaitlistEntry | None:
        current = self.entries.get(entry_id)
        if current is None or current.status is not expected:
            return None
        updated = current.model_copy(update={**(changes or {}), "status": target})
        self.entries[entry_id] = updated
        return updated


class RecordingNotifier:
    """In-memory NotificationDispatcherProtocol.

    Inspect ``sent`` after calls. Set ``dispatch_error`` to fail every
    dispatch, add patient ids to ``failing_patients`` to fail selectively,
    or clear ``acknowledge`` to return unacknowledged receipts.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self.sent: list[WaitlistNotice] = []
        self.dispatch_error: Exception | None = None
        self.failing_patients: set[str] = set()
        self.acknowledge: bool = True
        self._clock = clock

    async def dispatch(self, notice: WaitlistNotice) -> DispatchReceipt:
        if self.dispatch_error:
            raise self.dispatch_error
        if notice.patient_id in self.failing_patients:
            raise NotificationDispatchError(
                reason=f"no delivery channel for patient {notice.patient_id}",
                entry_id=notice.waitlist_entry_id,
            )
        self.sent.append(notice)
        return DispatchReceipt(acknowledged=self.acknowledge, delivered_at=self._clock())
