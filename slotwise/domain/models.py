import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SlotReason(str, Enum):
    """Why a slot candidate is (or is not) bookable."""

    NONE = "none"
    BREAK = "break"
    ALREADY_BOOKED = "already_booked"
    OUTSIDE_SCHEDULE = "outside_schedule"
    NO_SCHEDULE_CONFIGURED = "no_schedule_configured"


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AppointmentType(str, Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow-up"
    CHECK_UP = "check-up"
    EMERGENCY = "emergency"


class WaitlistPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Lower rank is served first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[WaitlistPriority, int] = {
    WaitlistPriority.URGENT: 0,
    WaitlistPriority.HIGH: 1,
    WaitlistPriority.NORMAL: 2,
    WaitlistPriority.LOW: 3,
}


class WaitlistStatus(str, Enum):
    """Waitlist entry states. ``waiting`` and ``notified`` form the active queue."""

    WAITING = "waiting"
    NOTIFIED = "notified"
    BOOKED = "booked"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_active(self) -> bool:
        return self in (WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED)


class TimeBucket(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class BreakWindow(BaseModel):
    """A half-open ``[start, end)`` interval with no bookings offered."""

    model_config = ConfigDict(frozen=True)

    start: dt.time
    end: dt.time

    def contains(self, time: dt.time) -> bool:
        return self.start <= time < self.end


class WeeklyScheduleEntry(BaseModel):
    """A doctor's recurring availability for one day of the week (0 = Sunday)."""

    model_config = ConfigDict(frozen=True)

    staff_id: str
    day_of_week: int = Field(ge=0, le=6)
    start_time: dt.time
    end_time: dt.time
    is_available: bool = True
    breaks: tuple[BreakWindow, ...] = ()


class ScheduleOverride(BaseModel):
    """Replaces the weekly entry for a single date."""

    model_config = ConfigDict(frozen=True)

    staff_id: str
    date: dt.date
    is_available: bool = False
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    breaks: tuple[BreakWindow, ...] = ()


class SlotCandidate(BaseModel):
    """A derived, never-persisted bookable time point."""

    model_config = ConfigDict(frozen=True)

    time: dt.time | None
    available: bool
    reason: SlotReason = SlotReason.NONE

    @property
    def is_sentinel(self) -> bool:
        return self.reason is SlotReason.NO_SCHEDULE_CONFIGURED


class BookingRequest(BaseModel):
    """A request to book a doctor's slot for a patient."""

    model_config = ConfigDict(frozen=True)

    doctor_id: str
    patient_id: str
    date: dt.date
    time: dt.time
    department_id: str | None = None
    duration_minutes: int | None = None
    type: AppointmentType = AppointmentType.CONSULTATION
    is_emergency: bool = False
    notes: str | None = None

    @field_validator("time")
    @classmethod
    def _truncate_to_minute(cls, value: dt.time) -> dt.time:
        return value.replace(second=0, microsecond=0)


class Appointment(BaseModel):
    """A committed appointment. Never deleted, only status-transitioned."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    doctor_id: str
    patient_id: str
    date: dt.date
    time: dt.time
    department_id: str | None = None
    duration_minutes: int = 30
    type: AppointmentType = AppointmentType.CONSULTATION
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    is_emergency: bool = False
    notes: str | None = None
    created_at: dt.datetime | None = None

    @field_validator("time")
    @classmethod
    def _truncate_to_minute(cls, value: dt.time) -> dt.time:
        return value.replace(second=0, microsecond=0)


class WaitlistRequest(BaseModel):
    """A request to join the waitlist."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    preferred_date_start: dt.date
    preferred_date_end: dt.date | None = None
    doctor_id: str | None = None
    department_id: str | None = None
    preferred_time_slots: frozenset[TimeBucket] = frozenset()
    priority: WaitlistPriority = WaitlistPriority.NORMAL
    reason: str | None = None
    notes: str | None = None


class WaitlistEntry(BaseModel):
    """A patient's place in the waitlist."""

    model_config = ConfigDict(frozen=True)

    entry_id: str
    patient_id: str
    preferred_date_start: dt.date
    created_at: dt.datetime
    preferred_date_end: dt.date | None = None
    doctor_id: str | None = None
    department_id: str | None = None
    preferred_time_slots: frozenset[TimeBucket] = frozenset()
    priority: WaitlistPriority = WaitlistPriority.NORMAL
    status: WaitlistStatus = WaitlistStatus.WAITING
    reason: str | None = None
    notes: str | None = None
    notified_at: dt.datetime | None = None
    response_deadline: dt.datetime | None = None
    responded_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class WaitlistNotice(BaseModel):
    """Payload handed to the notification dispatcher."""

    model_config = ConfigDict(frozen=True)

    waitlist_entry_id: str
    patient_id: str
    message: str


class DispatchReceipt(BaseModel):
    """Acknowledgement returned by the notification dispatcher."""

    model_config = ConfigDict(frozen=True)

    acknowledged: bool
    delivered_at: dt.datetime


class WaitlistStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    waiting: int = 0
    notified: int = 0
    urgent: int = 0
    booked: int = 0
