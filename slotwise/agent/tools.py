import datetime as dt
from enum import Enum
from typing import Any

from loguru import logger
from pipecat.adapters.schemas.function_schema import FunctionSchema
from pipecat.adapters.schemas.tools_schema import ToolsSchema
from pipecat.services.llm_service import FunctionCallParams, LLMService

from slotwise.domain.exceptions import SchedulingError
from slotwise.domain.models import (
    BookingRequest,
    TimeBucket,
    WaitlistPriority,
    WaitlistRequest,
)
from slotwise.scheduling.service import SchedulingService
from slotwise.scheduling.time_helpers import format_clock


class ToolCall(Enum):
    GET_AVAILABLE_SLOTS = "get_available_slots"
    BOOK_APPOINTMENT = "book_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"
    JOIN_WAITLIST = "join_waitlist"


GET_AVAILABLE_SLOTS_SCHEMA = FunctionSchema(
    name=ToolCall.GET_AVAILABLE_SLOTS.value,
    description=(
        "List a doctor's appointment slots for one day, with which ones are "
        "still free. Call this before offering times to the patient."
    ),
    properties={
        "doctor_id": {
            "type": "string",
            "description": "The doctor's unique ID.",
        },
        "date": {
            "type": "string",
            "description": (
                "The day to check in ISO 8601 format (YYYY-MM-DD). "
                "Convert any natural language date to this format."
            ),
        },
    },
    required=["doctor_id", "date"],
)

BOOK_APPOINTMENT_SCHEMA = FunctionSchema(
    name=ToolCall.BOOK_APPOINTMENT.value,
    description=(
        "Book an appointment slot. ONLY call this after the patient has "
        "explicitly confirmed the doctor, date and time."
    ),
    properties={
        "doctor_id": {"type": "string", "description": "The doctor's unique ID."},
        "patient_id": {"type": "string", "description": "The patient's unique ID."},
        "date": {
            "type": "string",
            "description": "The appointment date in ISO 8601 format (YYYY-MM-DD).",
        },
        "time": {
            "type": "string",
            "description": "The slot start time in 24-hour format (HH:MM).",
        },
        "is_emergency": {
            "type": "boolean",
            "description": "True only when the patient reports an emergency.",
        },
    },
    required=["doctor_id", "patient_id", "date", "time"],
)

CANCEL_APPOINTMENT_SCHEMA = FunctionSchema(
    name=ToolCall.CANCEL_APPOINTMENT.value,
    description=(
        "Cancel an existing appointment. ONLY call this after the patient "
        "has explicitly confirmed they want to cancel."
    ),
    properties={
        "appointment_id": {
            "type": "string",
            "description": "The appointment ID to cancel.",
        },
    },
    required=["appointment_id"],
)

JOIN_WAITLIST_SCHEMA = FunctionSchema(
    name=ToolCall.JOIN_WAITLIST.value,
    description=(
        "Put the patient on the waitlist when no suitable slot is free. "
        "They will be notified when a matching slot opens up."
    ),
    properties={
        "patient_id": {"type": "string", "description": "The patient's unique ID."},
        "doctor_id": {"type": "string", "description": "Preferred doctor's ID, if any."},
        "department_id": {"type": "string", "description": "Preferred department's ID, if any."},
        "preferred_date_start": {
            "type": "string",
            "description": "Earliest acceptable date (YYYY-MM-DD).",
        },
        "preferred_date_end": {
            "type": "string",
            "description": "Latest acceptable date (YYYY-MM-DD), if any.",
        },
        "preferred_time_slots": {
            "type": "array",
            "items": {"type": "string", "enum": [b.value for b in TimeBucket]},
            "description": "Acceptable parts of the day. Empty means any time.",
        },
        "priority": {
            "type": "string",
            "enum": [p.value for p in WaitlistPriority],
            "description": "Clinical priority. Defaults to normal.",
        },
    },
    required=["patient_id", "preferred_date_start"],
)


def get_tools_schema() -> ToolsSchema:
    """Return the ToolsSchema with all available tools."""
    return ToolsSchema(
        standard_tools=[
            GET_AVAILABLE_SLOTS_SCHEMA,
            BOOK_APPOINTMENT_SCHEMA,
            CANCEL_APPOINTMENT_SCHEMA,
            JOIN_WAITLIST_SCHEMA,
        ]
    )


def _parse_iso_date(value: object, field_name: str) -> tuple[dt.date | None, str | None]:
    """Parse an ISO 8601 date string. Returns ``(date, None)`` or ``(None, error_msg)``."""
    if not isinstance(value, str):
        return (
            None,
            f"Invalid date format for '{field_name}': must be a string in YYYY-MM-DD format.",
        )
    try:
        return dt.date.fromisoformat(value), None
    except (ValueError, TypeError):
        return None, f"Invalid date format for '{field_name}': '{value}'. Expected YYYY-MM-DD."


def _parse_iso_time(value: object, field_name: str) -> tuple[dt.time | None, str | None]:
    """Parse an ISO 8601 time string. Returns ``(time, None)`` or ``(None, error_msg)``."""
    if not isinstance(value, str):
        return None, f"Invalid time format for '{field_name}': must be a string in HH:MM format."
    try:
        return dt.time.fromisoformat(value), None
    except (ValueError, TypeError):
        return None, f"Invalid time format for '{field_name}': '{value}'. Expected HH:MM."


def _error(message: str) -> dict[str, Any]:
    return {"success": False, "error": True, "message": message}


class ToolHandlers:
    """Encapsulates all tool handler methods for the booking assistant."""

    def __init__(self, service: SchedulingService) -> None:
        self._service = service

    async def handle_get_available_slots(self, params: FunctionCallParams) -> None:
        doctor_id: str = params.arguments.get("doctor_id", "")
        date_str: str = params.arguments.get("date", "")

        if not doctor_id or not date_str:
            await params.result_callback(_error("Both 'doctor_id' and 'date' are required."))
            return

        date_val, err = _parse_iso_date(date_str, "date")
        if err or date_val is None:
            await params.result_callback(_error(err or "Invalid date."))
            return

        logger.debug("Tool call: get_available_slots")

        try:
            slots = await self._service.get_available_slots(doctor_id, date_val)
        except SchedulingError as exc:
            await params.result_callback(_error(str(exc)))
            return
        except Exception:
            logger.exception("Unexpected error in get_available_slots")
            await params.result_callback(
                _error("An unexpected error occurred while looking up slots.")
            )
            return

        if len(slots) == 1 and slots[0].is_sentinel:
            await params.result_callback(
                {
                    "success": True,
                    "scheduled": False,
                    "available_times": [],
                    "message": (
                        "This doctor has no schedule for that day. "
                        "Please ask the patient to contact the hospital."
                    ),
                }
            )
            return

        available = [format_clock(s.time) for s in slots if s.available and s.time]
        result: dict[str, Any] = {
            "success": True,
            "scheduled": True,
            "available_times": available,
        }
        if not available:
            result["message"] = "Every slot that day is taken. Offer the waitlist instead."
        await params.result_callback(result)

    async def handle_book_appointment(self, params: FunctionCallParams) -> None:
        doctor_id: str = params.arguments.get("doctor_id", "")
        patient_id: str = params.arguments.get("patient_id", "")
        date_str: str = params.arguments.get("date", "")
        time_str: str = params.arguments.get("time", "")
        is_emergency = bool(params.arguments.get("is_emergency", False))

        if not doctor_id or not patient_id or not date_str or not time_str:
            await params.result_callback(
                _error("'doctor_id', 'patient_id', 'date', and 'time' are all required.")
            )
            return

        date_val, date_err = _parse_iso_date(date_str, "date")
        time_val, time_err = _parse_iso_time(time_str, "time")
        err = date_err or time_err
        if err or date_val is None or time_val is None:
            await params.result_callback(_error(err or "Invalid date/time format."))
            return

        logger.debug("Tool call: book_appointment")

        try:
            appointment = await self._service.book(
                BookingRequest(
                    doctor_id=doctor_id,
                    patient_id=patient_id,
                    date=date_val,
                    time=time_val,
                    is_emergency=is_emergency,
                )
            )
        except SchedulingError as exc:
            await params.result_callback(_error(str(exc)))
            return
        except Exception:
            logger.exception("Unexpected error in book_appointment")
            await params.result_callback(
                _error("An unexpected error occurred while booking the appointment.")
            )
            return

        await params.result_callback(
            {
                "success": True,
                "appointment_id": appointment.appointment_id,
                "doctor_id": appointment.doctor_id,
                "date": appointment.date.isoformat(),
                "time": format_clock(appointment.time),
                "status": appointment.status.value,
                "message": "Appointment booked successfully.",
            }
        )

    async def handle_cancel_appointment(self, params: FunctionCallParams) -> None:
        appointment_id: str = params.arguments.get("appointment_id", "")

        if not appointment_id:
            await params.result_callback(_error("'appointment_id' is required."))
            return

        logger.debug("Tool call: cancel_appointment")

        try:
            appointment = await self._service.cancel_appointment(appointment_id)
        except SchedulingError as exc:
            await params.result_callback(_error(str(exc)))
            return
        except Exception:
            logger.exception("Unexpected error in cancel_appointment")
            await params.result_callback(
                _error("An unexpected error occurred while cancelling the appointment.")
            )
            return

        await params.result_callback(
            {
                "success": True,
                "appointment_id": appointment.appointment_id,
                "message": "Appointment cancelled successfully.",
            }
        )

    async def handle_join_waitlist(self, params: FunctionCallParams) -> None:
        patient_id: str = params.arguments.get("patient_id", "")
        start_str: str = params.arguments.get("preferred_date_start", "")
        end_str: str = params.arguments.get("preferred_date_end", "")

        if not patient_id or not start_str:
            await params.result_callback(
                _error("'patient_id' and 'preferred_date_start' are required.")
            )
            return

        start, start_err = _parse_iso_date(start_str, "preferred_date_start")
        end: dt.date | None = None
        end_err: str | None = None
        if end_str:
            end, end_err = _parse_iso_date(end_str, "preferred_date_end")
        err = start_err or end_err
        if err or start is None:
            await params.result_callback(_error(err or "Invalid date."))
            return

        try:
            slots = frozenset(
                TimeBucket(s) for s in params.arguments.get("preferred_time_slots") or []
            )
            priority = WaitlistPriority(params.arguments.get("priority") or "normal")
        except ValueError as exc:
            await params.result_callback(_error(f"Invalid waitlist preference: {exc}"))
            return

        logger.debug("Tool call: join_waitlist")

        try:
            entry = await self._service.join_waitlist(
                WaitlistRequest(
                    patient_id=patient_id,
                    doctor_id=params.arguments.get("doctor_id") or None,
                    department_id=params.arguments.get("department_id") or None,
                    preferred_date_start=start,
                    preferred_date_end=end,
                    preferred_time_slots=slots,
                    priority=priority,
                )
            )
        except SchedulingError as exc:
            await params.result_callback(_error(str(exc)))
            return
        except Exception:
            logger.exception("Unexpected error in join_waitlist")
            await params.result_callback(
                _error("An unexpected error occurred while joining the waitlist.")
            )
            return

        await params.result_callback(
            {
                "success": True,
                "waitlist_entry_id": entry.entry_id,
                "priority": entry.priority.value,
                "message": "Added to the waitlist. The patient will be notified when a slot opens.",
            }
        )


def register_tools(llm: LLMService, service: SchedulingService) -> None:
    """Register all tool handlers on the LLM service."""
    handlers = ToolHandlers(service)
    llm.register_function(ToolCall.GET_AVAILABLE_SLOTS.value, handlers.handle_get_available_slots)  # type: ignore[reportUnknownMemberType]
    llm.register_function(ToolCall.BOOK_APPOINTMENT.value, handlers.handle_book_appointment)  # type: ignore[reportUnknownMemberType]
    llm.register_function(ToolCall.CANCEL_APPOINTMENT.value, handlers.handle_cancel_appointment)  # type: ignore[reportUnknownMemberType]
    llm.register_function(ToolCall.JOIN_WAITLIST.value, handlers.handle_join_waitlist)  # type: ignore[reportUnknownMemberType]
