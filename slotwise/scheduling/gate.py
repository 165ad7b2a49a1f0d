import datetime as dt
from collections.abc import Awaitable, Callable

from loguru import logger

from slotwise.domain.exceptions import (
    InvalidRequestError,
    InvalidStateTransitionError,
    NotFoundError,
    SchedulingError,
    SlotConflictError,
    StoreUnavailableError,
)
from slotwise.domain.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BookingRequest,
    SlotReason,
)
from slotwise.scheduling.ports import BookingStoreProtocol
from slotwise.scheduling.resolver import SlotResolver
from slotwise.scheduling.time_helpers import Clock, utc_now

SlotFreedCallback = Callable[[str, dt.date, dt.time], Awaitable[object]]

APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Reasons that mean the requested time is not on the doctor's bookable grid.
_OFF_GRID = {SlotReason.NO_SCHEDULE_CONFIGURED, SlotReason.OUTSIDE_SCHEDULE, SlotReason.BREAK}


class BookingGate:
    """The only path through which a slot goes from free to booked.

    Uniqueness of ``(doctor_id, date, time)`` is delegated to the store's
    atomic insert; this class never does a read-then-write check on its own.
    """

    def __init__(
        self,
        bookings: BookingStoreProtocol,
        resolver: SlotResolver,
        *,
        clock: Clock = utc_now,
        booking_horizon_days: int = 90,
        default_duration_minutes: int = 30,
        on_slot_freed: SlotFreedCallback | None = None,
    ) -> None:
        self._bookings = bookings
        self._resolver = resolver
        self._clock = clock
        self._horizon = dt.timedelta(days=booking_horizon_days)
        self._default_duration = default_duration_minutes
        self._on_slot_freed = on_slot_freed

    async def commit(self, request: BookingRequest) -> Appointment:
        """Book a slot.

        Emergency bookings skip the future/horizon/grid checks but still go
        through the uniqueness gate.

        Raises:
            InvalidRequestError: If the request fails validation.
            SlotConflictError: If the slot is already held.
            StoreUnavailableError: If the store is unreachable.
        """
        if not request.patient_id.strip():
            raise InvalidRequestError("patient_id is required")
        if not request.doctor_id.strip():
            raise InvalidRequestError("doctor_id is required")

        if request.is_emergency:
            request = request.model_copy(update={"type": AppointmentType.EMERGENCY})
        else:
            await self._validate_regular(request)

        logger.info(
            "Committing booking: doctor={}, date={}, time={}, emergency={}",
            request.doctor_id,
            request.date,
            request.time,
            request.is_emergency,
        )

        try:
            appointment = await self._bookings.insert_if_absent(
                request, request.duration_minutes or self._default_duration
            )
        except SlotConflictError:
            logger.info(
                "Slot conflict: doctor={}, date={}, time={}",
                request.doctor_id,
                request.date,
                request.time,
            )
            raise
        except StoreUnavailableError:
            raise
        except Exception as exc:
            raise StoreUnavailableError(f"Booking insert failed: {exc}") from exc

        logger.info("Appointment booked: id={}", appointment.appointment_id)
        return appointment

    async def cancel(self, appointment_id: str) -> Appointment:
        """Cancel an appointment and hand the freed slot to the waitlist.

        Raises:
            NotFoundError: If the appointment does not exist.
            InvalidStateTransitionError: If the appointment can no longer be cancelled.
        """
        appointment = await self._transition(appointment_id, AppointmentStatus.CANCELLED)
        logger.info("Appointment cancelled: id={}", appointment.appointment_id)

        if self._on_slot_freed is not None:
            try:
                await self._on_slot_freed(appointment.doctor_id, appointment.date, appointment.time)
            except SchedulingError as exc:
                logger.warning(
                    "Waitlist promotion failed for freed slot {} {} {}: {}",
                    appointment.doctor_id,
                    appointment.date,
                    appointment.time,
                    exc,
                )
        return appointment

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        """Apply a lifecycle transition. Cancellation is routed through :meth:`cancel`."""
        if status is AppointmentStatus.CANCELLED:
            return await self.cancel(appointment_id)
        appointment = await self._transition(appointment_id, status)
        logger.info("Appointment {} is now {}", appointment.appointment_id, status.value)
        return appointment

    async def _transition(self, appointment_id: str, target: AppointmentStatus) -> Appointment:
        current = await self._bookings.get(appointment_id)
        if current is None:
            raise NotFoundError("appointment", appointment_id)
        if target not in APPOINTMENT_TRANSITIONS[current.status]:
            raise InvalidStateTransitionError(
                "appointment", appointment_id, current.status.value, target.value
            )

        updated = await self._bookings.update_status(appointment_id, current.status, target)
        if updated is None:
            latest = await self._bookings.get(appointment_id)
            raise InvalidStateTransitionError(
                "appointment",
                appointment_id,
                latest.status.value if latest else current.status.value,
                target.value,
            )
        return updated

    async def _validate_regular(self, request: BookingRequest) -> None:
        now = self._clock()
        slot_at = dt.datetime.combine(request.date, request.time, tzinfo=now.tzinfo)
        if slot_at <= now:
            raise InvalidRequestError("appointment time must be in the future")
        if request.date > now.date() + self._horizon:
            raise InvalidRequestError(
                f"appointments can be booked at most {self._horizon.days} days ahead"
            )

        candidate = await self._resolver.check(request.doctor_id, request.date, request.time)
        if candidate.reason in _OFF_GRID:
            raise InvalidRequestError(
                f"{request.time.strftime('%H:%M')} is not a bookable slot "
                f"({candidate.reason.value})"
            )
