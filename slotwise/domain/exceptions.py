import datetime as dt


class SchedulingError(Exception):
    """Base exception for all scheduling and waitlist errors."""


class StoreUnavailableError(SchedulingError):
    """Raised when the backing store is unreachable or not responding."""


class InvalidRequestError(SchedulingError):
    """Raised when a booking or waitlist request fails validation."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid request: {reason}")


class NotFoundError(SchedulingError):
    """Raised when an appointment or waitlist entry does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class SlotConflictError(SchedulingError):
    """Raised when the requested slot is already held by another booking."""

    def __init__(self, doctor_id: str, date: dt.date, time: dt.time) -> None:
        self.doctor_id = doctor_id
        self.date = date
        self.time = time
        super().__init__(
            f"Slot already booked: doctor={doctor_id}, date={date.isoformat()}, "
            f"time={time.strftime('%H:%M')}"
        )


class InvalidStateTransitionError(SchedulingError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, entity: str, entity_id: str, current: str, target: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} {entity_id} from '{current}' to '{target}'")


class NotificationDispatchError(SchedulingError):
    """Raised when a waitlist notice could not be delivered."""

    def __init__(self, reason: str, entry_id: str | None = None) -> None:
        self.reason = reason
        self.entry_id = entry_id
        super().__init__(f"Failed to dispatch notification: {reason}")
