import datetime as dt
from typing import Any, Protocol

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


class ScheduleStoreProtocol(Protocol):
    """Read-only access to doctors' working hours."""

    async def get_weekly_entry(self, doctor_id: str, day_of_week: int) -> WeeklyScheduleEntry | None:
        """Return the weekly entry for ``day_of_week`` (0 = Sunday), or None."""
        ...

    async def get_override(self, doctor_id: str, date: dt.date) -> ScheduleOverride | None:
        """Return the per-date override for ``date``, or None."""
        ...

    async def get_department(self, doctor_id: str) -> str | None:
        """Return the department the doctor belongs to, or None."""
        ...


class BookingStoreProtocol(Protocol):
    """Committed appointments.

    ``insert_if_absent`` must be atomic: two concurrent inserts for the same
    ``(doctor_id, date, time)`` among non-cancelled rows yield exactly one
    appointment and one ``SlotConflictError``.
    """

    async def list_active(self, doctor_id: str, date: dt.date) -> list[Appointment]:
        """Return the non-cancelled appointments for a doctor on a date."""
        ...

    async def insert_if_absent(self, request: BookingRequest, duration_minutes: int) -> Appointment:
        """Insert a new ``scheduled`` appointment.

        Raises:
            SlotConflictError: If the slot is held by a non-cancelled appointment.
            StoreUnavailableError: If the store is unreachable.
        """
        ...

    async def get(self, appointment_id: str) -> Appointment | None:
        """Return the appointment, or None if it does not exist."""
        ...

    async def update_status(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        target: AppointmentStatus,
    ) -> Appointment | None:
        """Compare-and-set the status. Returns None when ``expected`` no longer holds."""
        ...


class WaitlistStoreProtocol(Protocol):
    """Persisted waitlist entries."""

    async def create(self, request: WaitlistRequest, created_at: dt.datetime) -> WaitlistEntry:
        """Persist a new ``waiting`` entry."""
        ...

    async def get(self, entry_id: str) -> WaitlistEntry | None:
        """Return the entry, or None if it does not exist."""
        ...

    async def list_by_status(self, statuses: list[WaitlistStatus] | None = None) -> list[WaitlistEntry]:
        """Return entries in any of ``statuses`` (all entries when None)."""
        ...

    async def transition(
        self,
        entry_id: str,
        expected: WaitlistStatus,
        target: WaitlistStatus,
        changes: dict[str, Any] | None = None,
    ) -> WaitlistEntry | None:
        """Compare-and-set the status, applying ``changes`` in the same write.

        Returns None when the entry is no longer in ``expected``.
        """
        ...


class NotificationDispatcherProtocol(Protocol):
    """Delivers "slot available" notices to patients."""

    async def dispatch(self, notice: WaitlistNotice) -> DispatchReceipt:
        """Deliver the notice and return the delivery receipt.

        Raises:
            NotificationDispatchError: If delivery failed.
        """
        ...


class LifecycleProtocol(Protocol):
    """Connection lifecycle of a backend shared by the stores."""

    async def health_check(self) -> bool:
        """Check if the backend is reachable."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
