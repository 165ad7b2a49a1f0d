import datetime as dt

from loguru import logger

from slotwise.config import SchedulingConfig
from slotwise.domain.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    SlotCandidate,
    WaitlistEntry,
    WaitlistPriority,
    WaitlistRequest,
    WaitlistStats,
)
from slotwise.scheduling.gate import BookingGate
from slotwise.scheduling.ports import (
    BookingStoreProtocol,
    LifecycleProtocol,
    NotificationDispatcherProtocol,
    ScheduleStoreProtocol,
    WaitlistStoreProtocol,
)
from slotwise.scheduling.resolver import SlotResolver
from slotwise.scheduling.sweeper import ExpirySweeper
from slotwise.scheduling.time_helpers import Clock, utc_now
from slotwise.scheduling.waitlist import WaitlistEngine


class SchedulingService:
    """Public surface of the scheduling core.

    Wires the booking gate's slot-freed callback into the waitlist engine so
    a cancellation synchronously triggers promotion.
    """

    def __init__(
        self,
        schedules: ScheduleStoreProtocol,
        bookings: BookingStoreProtocol,
        waitlist: WaitlistStoreProtocol,
        notifier: NotificationDispatcherProtocol,
        *,
        config: SchedulingConfig | None = None,
        clock: Clock = utc_now,
        lifecycle: LifecycleProtocol | None = None,
    ) -> None:
        config = config or SchedulingConfig()
        self._lifecycle = lifecycle
        self.resolver = SlotResolver(schedules, bookings, slot_minutes=config.slot_minutes)
        self.waitlist = WaitlistEngine(
            waitlist,
            notifier,
            schedules=schedules,
            clock=clock,
            response_window_hours=config.response_window_hours,
        )
        self.gate = BookingGate(
            bookings,
            self.resolver,
            clock=clock,
            booking_horizon_days=config.booking_horizon_days,
            default_duration_minutes=config.default_duration_minutes,
            on_slot_freed=self.waitlist.on_slot_freed,
        )
        self.sweeper = ExpirySweeper(self.waitlist, interval_seconds=config.sweep_interval_seconds)

    async def get_available_slots(self, doctor_id: str, date: dt.date) -> list[SlotCandidate]:
        return await self.resolver.resolve(doctor_id, date)

    async def check_slot(self, doctor_id: str, date: dt.date, time: dt.time) -> SlotCandidate:
        return await self.resolver.check(doctor_id, date, time)

    async def book(self, request: BookingRequest) -> Appointment:
        return await self.gate.commit(request)

    async def cancel_appointment(self, appointment_id: str) -> Appointment:
        return await self.gate.cancel(appointment_id)

    async def update_appointment_status(
        self, appointment_id: str, status: AppointmentStatus
    ) -> Appointment:
        return await self.gate.update_status(appointment_id, status)

    async def join_waitlist(self, request: WaitlistRequest) -> WaitlistEntry:
        return await self.waitlist.join(request)

    async def notify_waitlist_entry(self, entry_id: str, message: str | None = None) -> WaitlistEntry:
        return await self.waitlist.notify(entry_id, message)

    async def mark_waitlist_booked(self, entry_id: str) -> WaitlistEntry:
        return await self.waitlist.mark_booked(entry_id)

    async def cancel_waitlist_entry(self, entry_id: str) -> WaitlistEntry:
        return await self.waitlist.cancel(entry_id)

    async def list_waitlist(
        self,
        status_filter: str = "active",
        priority: WaitlistPriority | None = None,
    ) -> list[WaitlistEntry]:
        return await self.waitlist.list_entries(status_filter, priority)

    async def waitlist_stats(self) -> WaitlistStats:
        return await self.waitlist.stats()

    async def sweep_expired(self) -> list[WaitlistEntry]:
        return await self.waitlist.expire_overdue()

    async def health_check(self) -> bool:
        if self._lifecycle is None:
            return True
        return await self._lifecycle.health_check()

    async def close(self) -> None:
        await self.sweeper.stop()
        if self._lifecycle is not None:
            await self._lifecycle.close()
        logger.info("Scheduling service closed")
