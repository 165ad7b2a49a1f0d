"""Conversions between backend table rows and domain models."""

import datetime as dt
from typing import Any

from slotwise.domain.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BookingRequest,
    BreakWindow,
    ScheduleOverride,
    TimeBucket,
    WaitlistEntry,
    WaitlistPriority,
    WaitlistRequest,
    WaitlistStatus,
    WeeklyScheduleEntry,
)
from slotwise.scheduling.time_helpers import format_clock, parse_clock


def parse_timestamp(value: str | None) -> dt.datetime | None:
    """Parse an ISO 8601 timestamp such as ``2026-03-15T10:00:00+00:00``.

    A trailing ``Z`` is accepted. Naive values are taken to be UTC.
    """
    if not value:
        return None
    parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _optional_clock(value: str | None) -> dt.time | None:
    return parse_clock(value) if value else None


def _breaks(row: dict[str, Any]) -> tuple[BreakWindow, ...]:
    start = _optional_clock(row.get("break_start"))
    end = _optional_clock(row.get("break_end"))
    if start is None or end is None:
        return ()
    return (BreakWindow(start=start, end=end),)


def schedule_from_row(row: dict[str, Any]) -> WeeklyScheduleEntry:
    return WeeklyScheduleEntry(
        staff_id=str(row["staff_id"]),
        day_of_week=int(row["day_of_week"]),
        start_time=parse_clock(row["start_time"]),
        end_time=parse_clock(row["end_time"]),
        is_available=bool(row.get("is_available", True)),
        breaks=_breaks(row),
    )


def override_from_row(row: dict[str, Any]) -> ScheduleOverride:
    return ScheduleOverride(
        staff_id=str(row["staff_id"]),
        date=dt.date.fromisoformat(row["override_date"]),
        is_available=bool(row.get("is_available", False)),
        start_time=_optional_clock(row.get("start_time")),
        end_time=_optional_clock(row.get("end_time")),
        breaks=_breaks(row),
    )


def appointment_from_row(row: dict[str, Any]) -> Appointment:
    return Appointment(
        appointment_id=str(row["id"]),
        doctor_id=str(row["doctor_id"]),
        patient_id=str(row["patient_id"]),
        department_id=row.get("department_id"),
        date=dt.date.fromisoformat(row["appointment_date"]),
        time=parse_clock(row["appointment_time"]),
        duration_minutes=int(row.get("duration") or 30),
        type=AppointmentType(row.get("type") or AppointmentType.CONSULTATION.value),
        status=AppointmentStatus(row.get("status") or AppointmentStatus.SCHEDULED.value),
        is_emergency=bool(row.get("is_emergency", False)),
        notes=row.get("notes"),
        created_at=parse_timestamp(row.get("created_at")),
    )


def appointment_to_row(request: BookingRequest, duration_minutes: int) -> dict[str, Any]:
    return {
        "doctor_id": request.doctor_id,
        "patient_id": request.patient_id,
        "department_id": request.department_id,
        "appointment_date": request.date.isoformat(),
        "appointment_time": format_clock(request.time),
        "duration": duration_minutes,
        "type": request.type.value,
        "status": AppointmentStatus.SCHEDULED.value,
        "is_emergency": request.is_emergency,
        "notes": request.notes,
    }


def waitlist_from_row(row: dict[str, Any]) -> WaitlistEntry:
    end_raw: str | None = row.get("preferred_date_end")
    return WaitlistEntry(
        entry_id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        doctor_id=row.get("doctor_id"),
        department_id=row.get("department_id"),
        preferred_date_start=dt.date.fromisoformat(row["preferred_date_start"]),
        preferred_date_end=dt.date.fromisoformat(end_raw) if end_raw else None,
        preferred_time_slots=frozenset(
            TimeBucket(s) for s in row.get("preferred_time_slots") or []
        ),
        priority=WaitlistPriority(row.get("priority") or WaitlistPriority.NORMAL.value),
        status=WaitlistStatus(row.get("status") or WaitlistStatus.WAITING.value),
        reason=row.get("reason"),
        notes=row.get("notes"),
        notified_at=parse_timestamp(row.get("notified_at")),
        response_deadline=parse_timestamp(row.get("response_deadline")),
        responded_at=parse_timestamp(row.get("responded_at")),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def waitlist_to_row(request: WaitlistRequest, created_at: dt.datetime) -> dict[str, Any]:
    return {
        "patient_id": request.patient_id,
        "doctor_id": request.doctor_id,
        "department_id": request.department_id,
        "preferred_date_start": request.preferred_date_start.isoformat(),
        "preferred_date_end": (
            request.preferred_date_end.isoformat() if request.preferred_date_end else None
        ),
        "preferred_time_slots": sorted(s.value for s in request.preferred_time_slots),
        "priority": request.priority.value,
        "reason": request.reason,
        "notes": request.notes,
        "status": WaitlistStatus.WAITING.value,
        "created_at": created_at.isoformat(),
    }


def waitlist_changes_to_row(changes: dict[str, Any]) -> dict[str, Any]:
    """Serialise a ``transition`` change set for a PATCH body."""
    row: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, (dt.datetime, dt.date)):
            row[key] = value.isoformat()
        elif isinstance(value, WaitlistStatus):
            row[key] = value.value
        else:
            row[key] = value
    return row
